from __future__ import annotations

import logging

from ..models import SOURCE_MEDIA, BatchResult, RuleConfig
from ..repository import ORDER_ID_ASC, AssetRepository
from ..utils import log_event
from .attachments import AttachmentEvaluator


class MediaScanner:
    def __init__(self, assets: AssetRepository, logger: logging.Logger | None = None) -> None:
        self.assets = assets
        self.logger = logger or logging.getLogger("altwatch.scan")

    def scan_batch(self, offset: int, limit: int, rules: RuleConfig) -> BatchResult:
        ids, total = self.assets.list_image_assets(offset, limit, ORDER_ID_ASC)
        evaluator = AttachmentEvaluator(self.assets, rules, self.logger)
        rows = [evaluator.evaluate(asset_id, source=SOURCE_MEDIA) for asset_id in ids]

        next_offset = offset + len(ids)
        done = next_offset >= total or not ids
        log_event(
            self.logger,
            logging.DEBUG,
            "media_batch_scanned",
            offset=offset,
            count=len(ids),
            total=total,
            done=done,
        )
        return BatchResult(rows=rows, next_offset=next_offset, total=total, done=done)
