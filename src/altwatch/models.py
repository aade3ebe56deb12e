from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

SEVERITY_OK = "ok"
SEVERITY_WARNING = "warning"
SEVERITY_ERROR = "error"
SEVERITY_RANK = {SEVERITY_OK: 0, SEVERITY_WARNING: 1, SEVERITY_ERROR: 2}

SOURCE_MEDIA = "media"
SOURCE_CONTENT_IMAGE = "content_image"
SOURCE_CONTENT_GALLERY = "content_gallery"
SOURCE_CONTENT_INLINE_MARKUP = "content_inline_markup"
FINDING_SOURCES = (
    SOURCE_MEDIA,
    SOURCE_CONTENT_IMAGE,
    SOURCE_CONTENT_GALLERY,
    SOURCE_CONTENT_INLINE_MARKUP,
)

JOB_TYPE_MEDIA = "media"
JOB_TYPE_CONTENT = "content"
JOB_TYPES = (JOB_TYPE_MEDIA, JOB_TYPE_CONTENT)

STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"
STATUS_ERROR = "error"
TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_CANCELLED, STATUS_ERROR)

SCOPE_ALL = "all"
SCOPE_MODIFIED_WITHIN = "modified_within"
SCOPE_MOST_RECENT = "most_recent"
SCAN_SCOPES = (SCOPE_ALL, SCOPE_MODIFIED_WITHIN, SCOPE_MOST_RECENT)


@dataclass(frozen=True)
class RuleConfig:
    missing_alt_is_error: bool
    min_alt_length: int
    detect_filename_like_alt: bool
    generic_words: frozenset[str]


@dataclass(frozen=True)
class Verdict:
    severity: str
    issues: list[str]
    matched_rule: str


@dataclass(frozen=True)
class FindingRow:
    source: str
    severity: str
    issues: list[str]
    matched_rule: str
    alt_raw: str
    alt_trimmed: str
    alt_length: int
    attachment_id: int
    field_path: str = ""
    container_id: int = 0
    container_title: str = ""
    title: str = ""
    file_name: str = ""
    mime_type: str = ""
    img_src: str = ""
    attachment_alt: str = ""


@dataclass(frozen=True)
class AssetMetadata:
    alt_text: str
    filename: str
    mime_type: str
    title: str
    url: str = ""
    modified_at: str | None = None


@dataclass(frozen=True)
class FieldNode:
    name: str
    kind: str
    sub_fields: tuple["FieldNode", ...] = ()
    variants: dict[str, tuple["FieldNode", ...]] = field(default_factory=dict)


@dataclass(frozen=True)
class RecordField:
    node: FieldNode
    value: Any


@dataclass(frozen=True)
class ContentRecord:
    id: int
    title: str
    content_type: str
    modified_at: str | None
    fields: list[RecordField]


@dataclass(frozen=True)
class ScanScope:
    kind: str
    days: int = 0
    count: int = 0


@dataclass(frozen=True)
class BatchResult:
    rows: list[FindingRow]
    next_offset: int
    total: int
    done: bool


@dataclass(frozen=True)
class Job:
    id: str
    job_type: str
    status: str
    cursor_offset: int
    progress_current: int
    progress_total: int
    message: str
    error: str
    created_at: str
    updated_at: str
    findings_initialized: bool = False
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FindingsCollection:
    job_id: str
    created_at: str
    items: list[dict[str, Any]]
    counts: dict[str, int]
