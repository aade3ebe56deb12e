from __future__ import annotations

import logging

from ..models import SOURCE_MEDIA, AssetMetadata, FindingRow, RuleConfig
from ..repository import AssetRepository
from ..utils import log_event
from .rules import evaluate

_EMPTY_ASSET = AssetMetadata(alt_text="", filename="", mime_type="", title="")


def build_row(
    alt_raw: str,
    rules: RuleConfig,
    *,
    source: str,
    attachment_id: int = 0,
    **context,
) -> FindingRow:
    alt_raw = alt_raw or ""
    alt_trimmed = alt_raw.strip()
    verdict = evaluate(alt_trimmed, rules)
    return FindingRow(
        source=source,
        severity=verdict.severity,
        issues=list(verdict.issues),
        matched_rule=verdict.matched_rule,
        alt_raw=alt_raw,
        alt_trimmed=alt_trimmed,
        alt_length=len(alt_trimmed),
        attachment_id=attachment_id,
        **context,
    )


class AttachmentEvaluator:
    def __init__(
        self,
        assets: AssetRepository,
        rules: RuleConfig,
        logger: logging.Logger | None = None,
    ) -> None:
        self.assets = assets
        self.rules = rules
        self.logger = logger or logging.getLogger("altwatch.scan")

    def lookup(self, asset_id: int) -> AssetMetadata:
        try:
            meta = self.assets.get_asset_metadata(asset_id)
        except Exception as exc:  # noqa: BLE001
            log_event(
                self.logger,
                logging.WARNING,
                "asset_lookup_failed",
                attachment_id=asset_id,
                error=str(exc),
            )
            return _EMPTY_ASSET
        if meta is None:
            log_event(self.logger, logging.DEBUG, "asset_missing", attachment_id=asset_id)
            return _EMPTY_ASSET
        return meta

    def is_image(self, asset_id: int) -> bool:
        return asset_id > 0 and self.lookup(asset_id).mime_type.startswith("image/")

    def evaluate(
        self,
        asset_id: int,
        *,
        source: str = SOURCE_MEDIA,
        field_path: str = "",
        container_id: int = 0,
        container_title: str = "",
    ) -> FindingRow:
        meta = self.lookup(asset_id)
        return build_row(
            meta.alt_text,
            self.rules,
            source=source,
            attachment_id=asset_id,
            field_path=field_path,
            container_id=container_id,
            container_title=container_title,
            title=meta.title,
            file_name=meta.filename,
            mime_type=meta.mime_type,
            img_src=meta.url,
        )

    def resolve_url(self, url: str) -> int:
        try:
            asset_id = self.assets.resolve_asset_id_from_url(url)
        except Exception as exc:  # noqa: BLE001
            log_event(self.logger, logging.WARNING, "asset_url_lookup_failed", url=url, error=str(exc))
            return 0
        return int(asset_id or 0)
