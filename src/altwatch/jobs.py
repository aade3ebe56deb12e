from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from .config import Config, build_rule_config, build_scan_scope, load_runtime_config
from .models import (
    JOB_TYPE_CONTENT,
    JOB_TYPE_MEDIA,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_ERROR,
    STATUS_RUNNING,
    BatchResult,
    FindingsCollection,
    Job,
    RuleConfig,
    ScanScope,
)
from .repository import AssetRepository, ContentRepository
from .scan.content import ContentScanner
from .scan.media import MediaScanner
from .storage import (
    delete_job,
    get_current_job,
    get_current_job_id,
    get_findings,
    init_findings,
    prune_findings,
    record_batch,
    save_job,
    set_current_job_id,
)
from .utils import log_event, new_token, utc_now_iso

_PROGRESS_MESSAGES = {
    JOB_TYPE_MEDIA: ("Scanning media library...", "Media scan completed."),
    JOB_TYPE_CONTENT: ("Scanning content...", "Content scan completed."),
}


class JobCoordinator:
    """Drive the single active scan forward one bounded batch per step.

    The coordinator keeps no state between calls; everything lives in the
    jobs and findings tables. Callers must not run ``step``, ``cancel`` or
    ``start_scan`` concurrently against the same database.
    """

    def __init__(
        self,
        conn,
        assets: AssetRepository,
        content: ContentRepository,
        config: Config | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.conn = conn
        self.assets = assets
        self.content = content
        self._config = config
        self.logger = logger or logging.getLogger("altwatch.jobs")

    @property
    def config(self) -> Config:
        if self._config is None:
            self._config = load_runtime_config(self.conn)
        return self._config

    def current_job(self) -> Job | None:
        return get_current_job(self.conn)

    def start_scan(self, job_type: str) -> Job:
        previous_id = get_current_job_id(self.conn)
        if previous_id:
            delete_job(self.conn, previous_id)
        config = self.config
        now = utc_now_iso()
        job = Job(
            id=new_token("job"),
            job_type=job_type,
            status=STATUS_RUNNING,
            cursor_offset=0,
            progress_current=0,
            progress_total=0,
            message="Job started.",
            error="",
            created_at=now,
            updated_at=now,
            findings_initialized=False,
            payload=_job_payload(config, job_type),
        )
        save_job(self.conn, job)
        set_current_job_id(self.conn, job.id)
        pruned = prune_findings(self.conn, max(0, config.jobs.findings_retention - 1))
        log_event(
            self.logger,
            logging.INFO,
            "job_started",
            job_id=job.id,
            job_type=job_type,
            replaced=previous_id or "",
            findings_pruned=pruned,
        )
        return job

    def step(self) -> Job | None:
        job = self.current_job()
        if job is None or job.status != STATUS_RUNNING:
            return job

        try:
            if not job.findings_initialized:
                init_findings(self.conn, job.id)
                job = self._save(job, findings_initialized=True)

            if job.job_type not in _PROGRESS_MESSAGES:
                log_event(self.logger, logging.ERROR, "job_type_unknown", job_id=job.id, job_type=job.job_type)
                return self._fail(
                    job,
                    f"Unknown scan type: {job.job_type or '(empty)'}",
                    f"unsupported job type {job.job_type!r}; expected one of media, content",
                )

            result = self._scan_batch(job)
            job = self._record_batch(job, result)
        except Exception as exc:  # noqa: BLE001
            log_event(self.logger, logging.ERROR, "job_failed", job_id=job.id, error=str(exc))
            return self._fail(job, "Scan failed.", str(exc))

        log_event(
            self.logger,
            logging.INFO if result.done else logging.DEBUG,
            "job_completed" if result.done else "job_stepped",
            job_id=job.id,
            job_type=job.job_type,
            offset=job.cursor_offset,
            total=job.progress_total,
            rows=len(result.rows),
        )
        return job

    def cancel(self) -> Job | None:
        job = self.current_job()
        if job is None or job.status != STATUS_RUNNING:
            return job
        job = self._save(job, status=STATUS_CANCELLED, message="Job cancelled.")
        log_event(self.logger, logging.INFO, "job_cancelled", job_id=job.id, offset=job.cursor_offset)
        return job

    def get_findings(self, job_id: str) -> FindingsCollection | None:
        return get_findings(self.conn, job_id)

    def _scan_batch(self, job: Job) -> BatchResult:
        rules = rules_from_payload(job.payload, self.config)
        batch_size = int(job.payload.get("batch_size") or 0) or self._batch_size(job.job_type)
        if job.job_type == JOB_TYPE_MEDIA:
            scanner = MediaScanner(self.assets, logging.getLogger("altwatch.scan"))
            return scanner.scan_batch(job.cursor_offset, batch_size, rules)
        scope = scope_from_payload(job.payload, self.config)
        scanner = ContentScanner(self.content, self.assets, logging.getLogger("altwatch.scan"))
        return scanner.scan_batch(job.cursor_offset, batch_size, scope, rules)

    def _batch_size(self, job_type: str) -> int:
        if job_type == JOB_TYPE_CONTENT:
            return self.config.jobs.content_batch_size
        return self.config.jobs.media_batch_size

    def _save(self, job: Job, **changes: Any) -> Job:
        job = replace(job, updated_at=utc_now_iso(), **changes)
        save_job(self.conn, job)
        return job

    def _record_batch(self, job: Job, result: BatchResult) -> Job:
        running_message, done_message = _PROGRESS_MESSAGES[job.job_type]
        job = replace(
            job,
            cursor_offset=result.next_offset,
            progress_current=result.next_offset,
            progress_total=result.total,
            status=STATUS_COMPLETED if result.done else STATUS_RUNNING,
            message=done_message if result.done else running_message,
            updated_at=utc_now_iso(),
        )
        record_batch(self.conn, job, result.rows)
        return job

    def _fail(self, job: Job, message: str, error: str) -> Job:
        failed = replace(job, status=STATUS_ERROR, message=message, error=error, updated_at=utc_now_iso())
        try:
            save_job(self.conn, failed)
        except Exception as exc:  # noqa: BLE001
            log_event(self.logger, logging.ERROR, "job_save_failed", job_id=job.id, error=str(exc))
        return failed


def job_to_dict(job: Job | None) -> dict[str, Any] | None:
    if job is None:
        return None
    return {
        "id": job.id,
        "type": job.job_type,
        "status": job.status,
        "cursor": {"offset": job.cursor_offset},
        "progress": {"current": job.progress_current, "total": job.progress_total},
        "message": job.message,
        "error": job.error,
        "created_at": job.created_at,
        "updated_at": job.updated_at,
    }


def rules_from_payload(payload: dict[str, Any], config: Config) -> RuleConfig:
    rules = payload.get("rules")
    if not isinstance(rules, dict):
        return build_rule_config(config.rules)
    return RuleConfig(
        missing_alt_is_error=bool(rules.get("missing_alt_is_error", True)),
        min_alt_length=max(0, int(rules.get("min_alt_length", 0))),
        detect_filename_like_alt=bool(rules.get("detect_filename_like_alt", True)),
        generic_words=frozenset(str(word).lower() for word in rules.get("generic_words") or []),
    )


def scope_from_payload(payload: dict[str, Any], config: Config) -> ScanScope:
    scope = payload.get("scope")
    if not isinstance(scope, dict):
        return build_scan_scope(config.scan)
    return ScanScope(
        kind=str(scope.get("kind") or "all"),
        days=int(scope.get("days") or 0),
        count=int(scope.get("count") or 0),
    )


def _job_payload(config: Config, job_type: str) -> dict[str, Any]:
    rules = build_rule_config(config.rules)
    scope = build_scan_scope(config.scan)
    batch_size = (
        config.jobs.content_batch_size
        if job_type == JOB_TYPE_CONTENT
        else config.jobs.media_batch_size
    )
    return {
        "rules": {
            "missing_alt_is_error": rules.missing_alt_is_error,
            "min_alt_length": rules.min_alt_length,
            "detect_filename_like_alt": rules.detect_filename_like_alt,
            "generic_words": sorted(rules.generic_words),
        },
        "scope": {"kind": scope.kind, "days": scope.days, "count": scope.count},
        "batch_size": batch_size,
    }
