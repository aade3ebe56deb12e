from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence

from ..models import (
    SOURCE_CONTENT_GALLERY,
    SOURCE_CONTENT_IMAGE,
    SOURCE_CONTENT_INLINE_MARKUP,
    ContentRecord,
    FieldNode,
    FindingRow,
)
from ..utils import as_int, log_event, strip_query
from .attachments import AttachmentEvaluator, build_row
from .markup import extract_images

KIND_IMAGE = "image"
KIND_GALLERY = "gallery"
KIND_GROUP = "group"
KIND_REPEATER = "repeater"
KIND_VARIANT_BLOCK_LIST = "variant_block_list"
KIND_INLINE_MARKUP = "inline_markup"

VARIANT_TAG_KEYS = ("acf_fc_layout", "layout")

_URL = re.compile(r"^https?://", re.IGNORECASE)


@dataclass(frozen=True)
class Container:
    id: int = 0
    title: str = ""


Handler = Callable[[FieldNode, Any, str, Container], list[FindingRow]]


class FieldWalker:
    """Find every image reference inside a content record's field tree.

    Each node kind has one handler; kinds without a handler produce no
    rows. Paths follow ``group.sub``, ``repeater[0].sub`` and
    ``blocks[0].variant.sub``.
    """

    def __init__(self, evaluator: AttachmentEvaluator, logger: logging.Logger | None = None) -> None:
        self.evaluator = evaluator
        self.logger = logger or logging.getLogger("altwatch.scan")
        self._handlers: dict[str, Handler] = {
            KIND_IMAGE: self._walk_image,
            KIND_GALLERY: self._walk_gallery,
            KIND_GROUP: self._walk_group,
            KIND_REPEATER: self._walk_repeater,
            KIND_VARIANT_BLOCK_LIST: self._walk_variant_blocks,
            KIND_INLINE_MARKUP: self._walk_inline_markup,
        }

    def walk_record(self, record: ContentRecord) -> list[FindingRow]:
        container = Container(record.id, record.title)
        rows: list[FindingRow] = []
        for field in record.fields:
            rows.extend(self.walk(field.node, field.value, field.node.name, container))
        return rows

    def walk(
        self,
        node: FieldNode,
        value: Any,
        path: str,
        container: Container | None = None,
    ) -> list[FindingRow]:
        handler = self._handlers.get(node.kind)
        if handler is None:
            log_event(self.logger, logging.DEBUG, "field_kind_skipped", kind=node.kind, path=path)
            return []
        return handler(node, value, path, container or Container())

    def resolve_image_id(self, value: Any) -> int:
        asset_id = as_int(value)
        if asset_id:
            return asset_id
        if isinstance(value, Mapping):
            for key in ("ID", "id"):
                asset_id = as_int(value.get(key))
                if asset_id:
                    return asset_id
            return 0
        if isinstance(value, str) and _URL.match(value):
            return self.evaluator.resolve_url(value)
        return 0

    def _walk_image(self, node: FieldNode, value: Any, path: str, container: Container) -> list[FindingRow]:
        row = self._image_row(value, path, SOURCE_CONTENT_IMAGE, container)
        return [row] if row else []

    def _walk_gallery(self, node: FieldNode, value: Any, path: str, container: Container) -> list[FindingRow]:
        rows = []
        for index, item in enumerate(_as_sequence(value)):
            row = self._image_row(item, f"{path}[{index}]", SOURCE_CONTENT_GALLERY, container)
            if row:
                rows.append(row)
        return rows

    def _walk_group(self, node: FieldNode, value: Any, path: str, container: Container) -> list[FindingRow]:
        if not isinstance(value, Mapping):
            return []
        return self._walk_sub_fields(node.sub_fields, value, path, container)

    def _walk_repeater(self, node: FieldNode, value: Any, path: str, container: Container) -> list[FindingRow]:
        rows = []
        for index, row_value in enumerate(_as_sequence(value)):
            if not isinstance(row_value, Mapping):
                continue
            rows.extend(self._walk_sub_fields(node.sub_fields, row_value, f"{path}[{index}]", container))
        return rows

    def _walk_variant_blocks(
        self, node: FieldNode, value: Any, path: str, container: Container
    ) -> list[FindingRow]:
        rows = []
        for index, block in enumerate(_as_sequence(value)):
            if not isinstance(block, Mapping):
                continue
            variant = _variant_tag(block)
            sub_fields = node.variants.get(variant) if variant else None
            if sub_fields is None:
                log_event(
                    self.logger,
                    logging.DEBUG,
                    "variant_unknown",
                    path=f"{path}[{index}]",
                    variant=variant,
                )
                continue
            rows.extend(
                self._walk_sub_fields(sub_fields, block, f"{path}[{index}].{variant}", container)
            )
        return rows

    def _walk_inline_markup(
        self, node: FieldNode, value: Any, path: str, container: Container
    ) -> list[FindingRow]:
        rows = []
        for image in extract_images(value, self.logger):
            asset_id = image.class_id or image.attribute_id
            if not asset_id and image.src:
                asset_id = self.evaluator.resolve_url(strip_query(image.src))
            attachment_alt = self.evaluator.lookup(asset_id).alt_text if asset_id else ""
            rows.append(
                build_row(
                    image.alt,
                    self.evaluator.rules,
                    source=SOURCE_CONTENT_INLINE_MARKUP,
                    attachment_id=asset_id,
                    field_path=path,
                    container_id=container.id,
                    container_title=container.title,
                    img_src=image.src,
                    attachment_alt=attachment_alt,
                )
            )
        return rows

    def _walk_sub_fields(
        self,
        sub_fields: Sequence[FieldNode],
        values: Mapping[str, Any],
        path: str,
        container: Container,
    ) -> list[FindingRow]:
        rows = []
        for sub in sub_fields:
            if not sub.name:
                continue
            rows.extend(self.walk(sub, values.get(sub.name), f"{path}.{sub.name}", container))
        return rows

    def _image_row(self, value: Any, path: str, source: str, container: Container) -> FindingRow | None:
        asset_id = self.resolve_image_id(value)
        if asset_id <= 0 or not self.evaluator.is_image(asset_id):
            return None
        return self.evaluator.evaluate(
            asset_id,
            source=source,
            field_path=path,
            container_id=container.id,
            container_title=container.title,
        )


def _as_sequence(value: Any) -> list[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    return []


def _variant_tag(block: Mapping[str, Any]) -> str:
    for key in VARIANT_TAG_KEYS:
        tag = block.get(key)
        if isinstance(tag, str) and tag:
            return tag
    return ""
