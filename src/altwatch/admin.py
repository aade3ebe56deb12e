from __future__ import annotations

import logging
import os
from dataclasses import asdict
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel

from .config import (
    ConfigError,
    bootstrap_runtime_config,
    get_runtime_config,
    load_runtime_config,
    set_runtime_config,
)
from .db import DBConn, get_state_db_path
from .findings import DEFAULT_PER_PAGE, query_findings
from .jobs import JobCoordinator, job_to_dict
from .models import JOB_TYPES, FindingRow
from .quick_scan import DEFAULT_QUICK_LIMIT, quick_scan
from .repository import CorpusError, open_repositories
from .scan.rules import issue_label
from .storage import get_current_job, init_db
from .utils import log_event

app = FastAPI(title="Altwatch Admin API")

ADMIN_COOKIE_NAME = "aw_admin_token"

logger = logging.getLogger("altwatch.admin")


def _require_admin_token(request: Request) -> None:
    token = os.environ.get("AW_ADMIN_TOKEN")
    if not token:
        return
    if not _is_authorized(request, token):
        raise HTTPException(status_code=401, detail="unauthorized")


def _is_authorized(request: Request, token: str) -> bool:
    header = request.headers.get("X-Admin-Token")
    if header and header == token:
        return True
    cookie = request.cookies.get(ADMIN_COOKIE_NAME)
    return cookie == token


class ScanRequest(BaseModel):
    job_type: str


class RuntimeConfigRequest(BaseModel):
    config: dict


class QuickScanRequest(BaseModel):
    limit: int = DEFAULT_QUICK_LIMIT


@app.get("/")
def root() -> dict[str, str]:
    return {"service": "Altwatch Admin API"}


@app.get("/health")
def health() -> dict[str, object]:
    return {
        "ok": True,
        "version": _get_version(),
        "time": datetime.now(tz=timezone.utc).isoformat(),
    }


@app.get("/admin/config/runtime", dependencies=[Depends(_require_admin_token)])
def runtime_config_get() -> dict[str, object]:
    conn = _get_conn()
    try:
        cfg = get_runtime_config(conn)
    except ConfigError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"config": cfg}


@app.put("/admin/config/runtime", dependencies=[Depends(_require_admin_token)])
def runtime_config_set(payload: RuntimeConfigRequest) -> dict[str, object]:
    conn = _get_conn()
    try:
        set_runtime_config(conn, payload.config)
    except ConfigError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"status": "ok"}


@app.post("/scans", dependencies=[Depends(_require_admin_token)])
def scan_start(payload: ScanRequest) -> dict[str, object]:
    if payload.job_type not in JOB_TYPES:
        raise HTTPException(status_code=400, detail=f"job_type must be one of {', '.join(JOB_TYPES)}")
    coordinator = _get_coordinator()
    job = coordinator.start_scan(payload.job_type)
    log_event(logger, logging.INFO, "admin_scan_started", job_id=job.id, job_type=job.job_type)
    return {"job": job_to_dict(job)}


@app.post("/scans/step", dependencies=[Depends(_require_admin_token)])
def scan_step() -> dict[str, object]:
    coordinator = _get_coordinator()
    job = coordinator.step()
    if job is None:
        raise HTTPException(status_code=404, detail="job_not_found")
    return {"job": job_to_dict(job)}


@app.post("/scans/cancel", dependencies=[Depends(_require_admin_token)])
def scan_cancel() -> dict[str, object]:
    coordinator = _get_coordinator()
    job = coordinator.cancel()
    if job is None:
        raise HTTPException(status_code=404, detail="job_not_found")
    return {"job": job_to_dict(job)}


@app.get("/scans/current", dependencies=[Depends(_require_admin_token)])
def scan_current() -> dict[str, object]:
    conn = _get_conn()
    job = get_current_job(conn)
    return {"job": job_to_dict(job)}


@app.post("/scans/quick", dependencies=[Depends(_require_admin_token)])
def scan_quick(payload: QuickScanRequest | None = None) -> dict[str, object]:
    limit = payload.limit if payload else DEFAULT_QUICK_LIMIT
    coordinator = _get_coordinator()
    job_id, rows = quick_scan(
        coordinator.conn,
        coordinator.assets,
        coordinator.content,
        limit=limit,
        config=coordinator.config,
    )
    return {"job_id": job_id, "items": [_row_to_dict(row) for row in rows]}


@app.get("/findings/{job_id}", dependencies=[Depends(_require_admin_token)])
def findings_get(
    job_id: str,
    severity: str = "issues",
    source: str | None = None,
    issue: str | None = None,
    search: str | None = None,
    page: int = 1,
    per_page: int = DEFAULT_PER_PAGE,
) -> dict[str, object]:
    conn = _get_conn()
    try:
        result = query_findings(
            conn,
            job_id,
            severity=severity,
            source=source,
            issue=issue,
            search=search,
            page=page,
            per_page=per_page,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if result is None:
        raise HTTPException(status_code=404, detail="findings_not_found")
    return {
        "job_id": result.job_id,
        "counts": result.counts,
        "total_items": result.total_items,
        "page": result.page,
        "per_page": result.per_page,
        "total_pages": result.total_pages,
        "items": [
            {**row, "issue_labels": [issue_label(tag) for tag in row.get("issues") or []]}
            for row in result.items
        ],
    }


def _get_version() -> str:
    try:
        from importlib.metadata import version

        return version("altwatch")
    except Exception:  # noqa: BLE001
        return "unknown"


def _row_to_dict(row: FindingRow) -> dict[str, object]:
    payload = asdict(row)
    payload["issue_labels"] = [issue_label(tag) for tag in row.issues]
    return payload


def _get_conn() -> DBConn:
    conn = init_db(get_state_db_path())
    bootstrap_runtime_config(conn)
    return conn


def _get_coordinator() -> JobCoordinator:
    conn = _get_conn()
    try:
        config = load_runtime_config(conn)
        assets, content = open_repositories(config.paths.corpus_path, config.scan.content_types)
    except (ConfigError, CorpusError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return JobCoordinator(conn, assets, content, config=config, logger=logging.getLogger("altwatch.jobs"))
