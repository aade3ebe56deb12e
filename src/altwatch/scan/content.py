from __future__ import annotations

import logging

from ..models import SCOPE_ALL, SCOPE_MOST_RECENT, BatchResult, FindingRow, RuleConfig, ScanScope
from ..repository import ORDER_ID_ASC, ORDER_MODIFIED_DESC, AssetRepository, ContentRepository
from ..utils import log_event
from .attachments import AttachmentEvaluator
from .fields import FieldWalker


class ContentScanner:
    def __init__(
        self,
        content: ContentRepository,
        assets: AssetRepository,
        logger: logging.Logger | None = None,
    ) -> None:
        self.content = content
        self.assets = assets
        self.logger = logger or logging.getLogger("altwatch.scan")

    def scan_batch(
        self,
        offset: int,
        limit: int,
        scope: ScanScope,
        rules: RuleConfig,
    ) -> BatchResult:
        order = ORDER_ID_ASC if scope.kind == SCOPE_ALL else ORDER_MODIFIED_DESC
        records, total = self.content.list_content_records(offset, limit, scope, order)
        if scope.kind == SCOPE_MOST_RECENT and scope.count > 0:
            total = min(total, scope.count)
            records = records[: max(0, total - offset)]

        walker = FieldWalker(AttachmentEvaluator(self.assets, rules, self.logger), self.logger)
        rows: list[FindingRow] = []
        for record in records:
            rows.extend(walker.walk_record(record))

        next_offset = offset + len(records)
        done = next_offset >= total or not records
        log_event(
            self.logger,
            logging.DEBUG,
            "content_batch_scanned",
            offset=offset,
            records=len(records),
            rows=len(rows),
            total=total,
            scope=scope.kind,
            done=done,
        )
        return BatchResult(rows=rows, next_offset=next_offset, total=total, done=done)
