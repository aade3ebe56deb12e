from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from bs4 import BeautifulSoup

from ..utils import as_int, log_event

_ID_CLASS = re.compile(r"^wp-image-(\d+)$")
_ID_ATTRIBUTES = ("data-id", "data-attachment-id")


@dataclass(frozen=True)
class InlineImage:
    src: str
    alt: str
    class_id: int
    attribute_id: int


def extract_images(html: str, logger: logging.Logger | None = None) -> list[InlineImage]:
    """Return every <img> element found in a markup fragment.

    Parsing is lenient: unclosed tags and stray markup are tolerated and
    only the image elements the parser could recover are returned.
    """
    if not isinstance(html, str) or "<img" not in html.lower():
        return []
    try:
        soup = BeautifulSoup(html, "html.parser")
    except Exception as exc:  # noqa: BLE001
        log_event(
            logger or logging.getLogger("altwatch.scan"),
            logging.WARNING,
            "markup_parse_failed",
            error=str(exc),
        )
        return []
    images = []
    for tag in soup.find_all("img"):
        alt = tag.get("alt")
        images.append(
            InlineImage(
                src=str(tag.get("src") or "").strip(),
                alt=alt if isinstance(alt, str) else "",
                class_id=_class_id(tag.get("class")),
                attribute_id=_attribute_id(tag),
            )
        )
    return images


def _class_id(classes) -> int:
    if isinstance(classes, str):
        classes = classes.split()
    for token in classes or []:
        match = _ID_CLASS.match(str(token))
        if match:
            return int(match.group(1))
    return 0


def _attribute_id(tag) -> int:
    for name in _ID_ATTRIBUTES:
        value = tag.get(name)
        if isinstance(value, str):
            value = value.strip()
        asset_id = as_int(value)
        if asset_id > 0:
            return asset_id
    return 0
