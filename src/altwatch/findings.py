from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from .models import SEVERITY_ERROR, SEVERITY_OK, SEVERITY_WARNING
from .storage import get_findings

SEVERITY_FILTERS = ("issues", "all", SEVERITY_ERROR, SEVERITY_WARNING, SEVERITY_OK)
DEFAULT_PER_PAGE = 50

_SEARCH_KEYS = ("container_title", "title", "field_path", "img_src", "file_name", "alt_trimmed")


@dataclass(frozen=True)
class FindingsPage:
    job_id: str
    items: list[dict[str, Any]]
    counts: dict[str, int]
    total_items: int
    page: int
    per_page: int
    total_pages: int


def filter_items(
    items: list[dict[str, Any]],
    *,
    severity: str = "issues",
    source: str | None = None,
    issue: str | None = None,
    search: str | None = None,
) -> list[dict[str, Any]]:
    if severity == "issues":
        items = [row for row in items if row.get("severity") in (SEVERITY_ERROR, SEVERITY_WARNING)]
    elif severity != "all":
        items = [row for row in items if row.get("severity") == severity]
    if source:
        items = [row for row in items if row.get("source") == source]
    if issue:
        items = [row for row in items if issue in (row.get("issues") or [])]
    if search:
        needle = search.lower()
        items = [row for row in items if needle in _haystack(row)]
    return items


def query_findings(
    conn,
    job_id: str,
    *,
    severity: str = "issues",
    source: str | None = None,
    issue: str | None = None,
    search: str | None = None,
    page: int = 1,
    per_page: int = DEFAULT_PER_PAGE,
) -> FindingsPage | None:
    if severity not in SEVERITY_FILTERS:
        raise ValueError(f"severity must be one of {', '.join(SEVERITY_FILTERS)}")
    collection = get_findings(conn, job_id)
    if collection is None:
        return None
    items = filter_items(
        collection.items,
        severity=severity,
        source=source,
        issue=issue,
        search=search,
    )
    per_page = max(1, per_page)
    total_items = len(items)
    total_pages = max(1, math.ceil(total_items / per_page))
    page = min(max(1, page), total_pages)
    start = (page - 1) * per_page
    return FindingsPage(
        job_id=job_id,
        items=items[start : start + per_page],
        counts=dict(collection.counts),
        total_items=total_items,
        page=page,
        per_page=per_page,
        total_pages=total_pages,
    )


def _haystack(row: dict[str, Any]) -> str:
    return " ".join(str(row.get(key) or "") for key in _SEARCH_KEYS).lower()
