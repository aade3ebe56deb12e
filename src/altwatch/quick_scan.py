from __future__ import annotations

import logging

from .config import Config, build_rule_config, load_runtime_config
from .models import SCOPE_ALL, SOURCE_MEDIA, ContentRecord, FindingRow, ScanScope
from .repository import ORDER_MODIFIED_DESC, AssetRepository, ContentRepository, modified_sort_key
from .scan.attachments import AttachmentEvaluator
from .scan.fields import FieldWalker
from .storage import add_findings, init_findings
from .utils import log_event, new_token

DEFAULT_QUICK_LIMIT = 20


def quick_scan(
    conn,
    assets: AssetRepository,
    content: ContentRepository,
    *,
    limit: int = DEFAULT_QUICK_LIMIT,
    config: Config | None = None,
    logger: logging.Logger | None = None,
) -> tuple[str, list[FindingRow]]:
    """Evaluate the most recently modified records and image assets in one go.

    Content records and assets are merged newest first and cut to ``limit``
    items. Results are stored as a finished findings collection; the
    current scan job is left alone.
    """
    logger = logger or logging.getLogger("altwatch.quick_scan")
    config = config or load_runtime_config(conn)
    rules = build_rule_config(config.rules)
    limit = max(0, limit)

    records, _ = content.list_content_records(0, limit, ScanScope(kind=SCOPE_ALL), ORDER_MODIFIED_DESC)
    asset_ids, _ = assets.list_image_assets(0, limit, ORDER_MODIFIED_DESC)
    evaluator = AttachmentEvaluator(assets, rules, logger)

    candidates: list[tuple[tuple, object]] = []
    for record in records:
        candidates.append((modified_sort_key(record.modified_at, record.id), record))
    for asset_id in asset_ids:
        candidates.append((modified_sort_key(evaluator.lookup(asset_id).modified_at, asset_id), asset_id))
    candidates.sort(key=lambda item: item[0], reverse=True)

    walker = FieldWalker(evaluator, logger)
    rows: list[FindingRow] = []
    for _, item in candidates[:limit]:
        if isinstance(item, ContentRecord):
            rows.extend(walker.walk_record(item))
        else:
            rows.append(evaluator.evaluate(item, source=SOURCE_MEDIA))

    job_id = new_token("quick")
    init_findings(conn, job_id)
    add_findings(conn, job_id, rows)
    log_event(
        logger,
        logging.INFO,
        "quick_scan_completed",
        job_id=job_id,
        items=min(limit, len(candidates)),
        rows=len(rows),
    )
    return job_id, rows
