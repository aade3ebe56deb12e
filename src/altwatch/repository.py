from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

import jsonschema
import yaml

from .models import SCOPE_MODIFIED_WITHIN, AssetMetadata, ContentRecord, FieldNode, RecordField, ScanScope
from .utils import as_int, log_event, parse_iso, strip_query, utc_now

ORDER_ID_ASC = "id_asc"
ORDER_MODIFIED_DESC = "modified_desc"

KIND_ALIASES = {
    "flexible_content": "variant_block_list",
    "wysiwyg": "inline_markup",
    "html": "inline_markup",
}


class CorpusError(ValueError):
    pass


class AssetRepository(Protocol):
    def get_asset_metadata(self, asset_id: int) -> AssetMetadata | None: ...

    def list_image_assets(
        self, offset: int, limit: int, order: str = ORDER_ID_ASC
    ) -> tuple[list[int], int]: ...

    def resolve_asset_id_from_url(self, url: str) -> int | None: ...


class ContentRepository(Protocol):
    def list_content_records(
        self, offset: int, limit: int, scope: ScanScope, order: str = ORDER_ID_ASC
    ) -> tuple[list[ContentRecord], int]: ...


class InMemoryAssetRepository:
    def __init__(self, assets: dict[int, AssetMetadata] | None = None) -> None:
        self._assets: dict[int, AssetMetadata] = dict(assets or {})

    def add(self, asset_id: int, metadata: AssetMetadata) -> None:
        self._assets[asset_id] = metadata

    def remove(self, asset_id: int) -> None:
        self._assets.pop(asset_id, None)

    def get_asset_metadata(self, asset_id: int) -> AssetMetadata | None:
        return self._assets.get(asset_id)

    def list_image_assets(
        self, offset: int, limit: int, order: str = ORDER_ID_ASC
    ) -> tuple[list[int], int]:
        ids = [
            asset_id
            for asset_id, meta in self._assets.items()
            if meta.mime_type.startswith("image/")
        ]
        if order == ORDER_MODIFIED_DESC:
            ids.sort(
                key=lambda asset_id: modified_sort_key(self._assets[asset_id].modified_at, asset_id),
                reverse=True,
            )
        else:
            ids.sort()
        return ids[offset : offset + limit], len(ids)

    def resolve_asset_id_from_url(self, url: str) -> int | None:
        target = strip_query(url)
        if not target:
            return None
        for asset_id in sorted(self._assets):
            asset_url = self._assets[asset_id].url
            if asset_url and strip_query(asset_url) == target:
                return asset_id
        return None


class InMemoryContentRepository:
    def __init__(
        self,
        records: list[ContentRecord] | None = None,
        content_types: list[str] | None = None,
    ) -> None:
        self._records = list(records or [])
        self._content_types = set(content_types or [])

    def add(self, record: ContentRecord) -> None:
        self._records.append(record)

    def list_content_records(
        self, offset: int, limit: int, scope: ScanScope, order: str = ORDER_ID_ASC
    ) -> tuple[list[ContentRecord], int]:
        records = [record for record in self._records if self._matches_type(record)]
        if scope.kind == SCOPE_MODIFIED_WITHIN and scope.days > 0:
            cutoff = utc_now() - timedelta(days=scope.days)
            records = [record for record in records if _modified_since(record, cutoff)]
        if order == ORDER_MODIFIED_DESC:
            records.sort(key=lambda record: modified_sort_key(record.modified_at, record.id), reverse=True)
        else:
            records.sort(key=lambda record: record.id)
        return records[offset : offset + limit], len(records)

    def _matches_type(self, record: ContentRecord) -> bool:
        return not self._content_types or record.content_type in self._content_types


_NEVER_MODIFIED = datetime.min.replace(tzinfo=timezone.utc)


def modified_sort_key(modified_at: str | None, item_id: int) -> tuple[datetime, int]:
    """Sort key for newest-first listings; unparseable timestamps sort oldest."""
    return (parse_iso(modified_at) or _NEVER_MODIFIED, item_id)


def _modified_since(record: ContentRecord, cutoff) -> bool:
    modified = parse_iso(record.modified_at)
    return modified is not None and modified >= cutoff


_FIELD_SCHEMA = {
    "type": "object",
    "required": ["name"],
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "kind": {"type": "string"},
        "type": {"type": "string"},
        "sub_fields": {"type": "array", "items": {"$ref": "#/definitions/field"}},
        "variants": {
            "type": "object",
            "additionalProperties": {
                "type": "array",
                "items": {"$ref": "#/definitions/field"},
            },
        },
        "layouts": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name"],
                "properties": {
                    "name": {"type": "string"},
                    "sub_fields": {"type": "array", "items": {"$ref": "#/definitions/field"}},
                },
            },
        },
    },
}

CORPUS_SCHEMA = {
    "type": "object",
    "definitions": {"field": _FIELD_SCHEMA},
    "properties": {
        "assets": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id"],
                "properties": {
                    "id": {"type": "integer", "minimum": 1},
                    "alt_text": {"type": ["string", "null"]},
                    "filename": {"type": ["string", "null"]},
                    "mime_type": {"type": ["string", "null"]},
                    "title": {"type": ["string", "null"]},
                    "url": {"type": ["string", "null"]},
                    "modified_at": {"type": ["string", "null"]},
                },
            },
        },
        "records": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id"],
                "properties": {
                    "id": {"type": "integer", "minimum": 1},
                    "title": {"type": ["string", "null"]},
                    "content_type": {"type": ["string", "null"]},
                    "modified_at": {"type": ["string", "null"]},
                    "fields": {"type": "array", "items": {"$ref": "#/definitions/field"}},
                },
            },
        },
    },
}


def load_corpus(
    path: str, content_types: list[str] | None = None
) -> tuple[InMemoryAssetRepository, InMemoryContentRepository]:
    """Load a JSON or YAML corpus export into in-memory repositories."""
    try:
        with open(path, "r", encoding="utf-8") as handle:
            text = handle.read()
    except OSError as exc:
        raise CorpusError(f"Unable to read corpus {path}: {exc}") from exc
    try:
        if path.endswith((".yml", ".yaml")):
            payload = yaml.safe_load(text) or {}
        else:
            payload = json.loads(text or "{}")
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise CorpusError(f"Unable to parse corpus {path}: {exc}") from exc
    return build_corpus(payload, content_types=content_types)


def build_corpus(
    payload: dict[str, Any], content_types: list[str] | None = None
) -> tuple[InMemoryAssetRepository, InMemoryContentRepository]:
    try:
        jsonschema.validate(payload, CORPUS_SCHEMA)
    except jsonschema.ValidationError as exc:
        raise CorpusError(f"Invalid corpus: {exc.message}") from exc

    assets = InMemoryAssetRepository()
    for item in payload.get("assets") or []:
        assets.add(
            int(item["id"]),
            AssetMetadata(
                alt_text=str(item.get("alt_text") or ""),
                filename=str(item.get("filename") or ""),
                mime_type=str(item.get("mime_type") or ""),
                title=str(item.get("title") or ""),
                url=str(item.get("url") or ""),
                modified_at=item.get("modified_at"),
            ),
        )

    records = [record_from_dict(item) for item in payload.get("records") or []]
    log_event(
        logging.getLogger("altwatch.repository"),
        logging.DEBUG,
        "corpus_loaded",
        assets=len(payload.get("assets") or []),
        records=len(records),
    )
    return assets, InMemoryContentRepository(records, content_types=content_types)


def parse_field_node(field: dict[str, Any]) -> FieldNode:
    kind = str(field.get("kind") or field.get("type") or "")
    kind = KIND_ALIASES.get(kind, kind)
    sub_fields = tuple(parse_field_node(sub) for sub in field.get("sub_fields") or [])
    variants: dict[str, tuple[FieldNode, ...]] = {}
    for name, subs in (field.get("variants") or {}).items():
        variants[str(name)] = tuple(parse_field_node(sub) for sub in subs or [])
    for layout in field.get("layouts") or []:
        name = str(layout.get("name") or "")
        if name:
            variants[name] = tuple(parse_field_node(sub) for sub in layout.get("sub_fields") or [])
    return FieldNode(name=str(field["name"]), kind=kind, sub_fields=sub_fields, variants=variants)


def record_from_dict(item: dict[str, Any]) -> ContentRecord:
    return ContentRecord(
        id=as_int(item.get("id")),
        title=str(item.get("title") or ""),
        content_type=str(item.get("content_type") or "post"),
        modified_at=item.get("modified_at"),
        fields=[
            RecordField(node=parse_field_node(field), value=field.get("value"))
            for field in item.get("fields") or []
        ],
    )


def get_corpus_path(configured: str | None = None) -> str:
    return os.environ.get("AW_CORPUS_PATH") or configured or ""


def open_repositories(
    corpus_path: str | None, content_types: list[str] | None = None
) -> tuple[InMemoryAssetRepository, InMemoryContentRepository]:
    path = get_corpus_path(corpus_path)
    if not path or not os.path.exists(path):
        log_event(logging.getLogger("altwatch.repository"), logging.WARNING, "corpus_missing", path=path)
        return InMemoryAssetRepository(), InMemoryContentRepository(content_types=content_types)
    return load_corpus(path, content_types=content_types)
