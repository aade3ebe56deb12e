from __future__ import annotations

import dataclasses
import json
import logging
from typing import Any, Iterable

from .db import DBConn, connect_db
from .models import (
    SEVERITY_ERROR,
    SEVERITY_OK,
    SEVERITY_WARNING,
    FindingRow,
    FindingsCollection,
    Job,
)
from .utils import json_dumps, log_event, utc_now_iso

CURRENT_JOB_KEY = "jobs.current"

_JOB_COLUMNS = (
    "id, job_type, status, cursor_offset, progress_current, progress_total, "
    "message, error, created_at, updated_at, findings_initialized, payload_json"
)


def init_db(path: str | None = None) -> DBConn:
    return connect_db(path)


def get_setting(conn: Any, key: str, default: object) -> object:
    cursor = conn.execute("SELECT value FROM settings WHERE key = ?", (key,))
    row = cursor.fetchone()
    if not row:
        return default
    try:
        return json.loads(row[0])
    except json.JSONDecodeError:
        return default


def set_setting(conn: Any, key: str, value: object) -> None:
    payload = json_dumps(value)
    now = utc_now_iso()
    conn.execute(
        """
        INSERT INTO settings (key, value, updated_at)
        VALUES (?, ?, ?)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
        """,
        (key, payload, now),
    )
    conn.commit()


def write_job(conn: Any, job: Job) -> None:
    conn.execute(
        f"""
        INSERT INTO jobs ({_JOB_COLUMNS})
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            job_type = excluded.job_type,
            status = excluded.status,
            cursor_offset = excluded.cursor_offset,
            progress_current = excluded.progress_current,
            progress_total = excluded.progress_total,
            message = excluded.message,
            error = excluded.error,
            updated_at = excluded.updated_at,
            findings_initialized = excluded.findings_initialized,
            payload_json = excluded.payload_json
        """,
        (
            job.id,
            job.job_type,
            job.status,
            job.cursor_offset,
            job.progress_current,
            job.progress_total,
            job.message,
            job.error,
            job.created_at,
            job.updated_at,
            1 if job.findings_initialized else 0,
            json_dumps(job.payload) if job.payload else None,
        ),
    )


def save_job(conn: Any, job: Job) -> None:
    write_job(conn, job)
    conn.commit()


def get_job(conn: Any, job_id: str) -> Job | None:
    row = conn.execute(
        f"SELECT {_JOB_COLUMNS} FROM jobs WHERE id = ?",
        (job_id,),
    ).fetchone()
    return _row_to_job(row) if row else None


def delete_job(conn: Any, job_id: str) -> None:
    conn.execute("DELETE FROM jobs WHERE id = ?", (job_id,))
    conn.commit()


def get_current_job_id(conn: Any) -> str | None:
    value = get_setting(conn, CURRENT_JOB_KEY, None)
    return value if isinstance(value, str) and value else None


def set_current_job_id(conn: Any, job_id: str) -> None:
    set_setting(conn, CURRENT_JOB_KEY, job_id)


def get_current_job(conn: Any) -> Job | None:
    job_id = get_current_job_id(conn)
    if not job_id:
        return None
    return get_job(conn, job_id)


def init_findings(conn: Any, job_id: str) -> None:
    counts = {SEVERITY_ERROR: 0, SEVERITY_WARNING: 0, SEVERITY_OK: 0}
    with conn.transaction():
        conn.execute("DELETE FROM finding_items WHERE job_id = ?", (job_id,))
        conn.execute(
            """
            INSERT INTO findings (job_id, created_at, counts_json)
            VALUES (?, ?, ?)
            ON CONFLICT(job_id) DO UPDATE SET
                created_at = excluded.created_at,
                counts_json = excluded.counts_json
            """,
            (job_id, utc_now_iso(), json_dumps(counts)),
        )


def add_findings(conn: Any, job_id: str, rows: Iterable[FindingRow | dict[str, Any]]) -> int:
    """Append rows to a job's findings and bump the severity counts.

    Items and counts are written in one transaction so the counts always
    sum to the number of stored items. Unknown job ids are ignored.
    """
    with conn.transaction():
        return _append_findings(conn, job_id, rows)


def record_batch(conn: Any, job: Job, rows: Iterable[FindingRow | dict[str, Any]]) -> int:
    """Store a scanned batch and the job state that follows it atomically.

    Either the rows land together with the advanced cursor or neither does.
    """
    with conn.transaction():
        added = _append_findings(conn, job.id, rows)
        write_job(conn, job)
    return added


def _append_findings(conn: Any, job_id: str, rows: Iterable[FindingRow | dict[str, Any]]) -> int:
    payloads = [_row_payload(row) for row in rows]
    header = conn.execute(
        "SELECT counts_json FROM findings WHERE job_id = ?", (job_id,)
    ).fetchone()
    if not header:
        log_event(
            logging.getLogger("altwatch.storage"),
            logging.WARNING,
            "findings_missing",
            job_id=job_id,
            dropped=len(payloads),
        )
        return 0
    counts = _load_counts(header[0])
    position = conn.execute(
        "SELECT COALESCE(MAX(position), -1) FROM finding_items WHERE job_id = ?",
        (job_id,),
    ).fetchone()[0]
    for payload in payloads:
        position += 1
        severity = str(payload.get("severity") or SEVERITY_OK)
        payload["severity"] = severity
        counts[severity] = counts.get(severity, 0) + 1
        conn.execute(
            """
            INSERT INTO finding_items (job_id, position, severity, source, row_json)
            VALUES (?, ?, ?, ?, ?)
            """,
            (job_id, position, severity, str(payload.get("source") or ""), json_dumps(payload)),
        )
    conn.execute(
        "UPDATE findings SET counts_json = ? WHERE job_id = ?",
        (json_dumps(counts), job_id),
    )
    return len(payloads)


def get_findings(conn: Any, job_id: str) -> FindingsCollection | None:
    header = conn.execute(
        "SELECT job_id, created_at, counts_json FROM findings WHERE job_id = ?",
        (job_id,),
    ).fetchone()
    if not header:
        return None
    cursor = conn.execute(
        "SELECT row_json FROM finding_items WHERE job_id = ? ORDER BY position ASC",
        (job_id,),
    )
    items = []
    for (row_json,) in cursor.fetchall():
        try:
            items.append(json.loads(row_json))
        except json.JSONDecodeError:
            items.append({})
    return FindingsCollection(
        job_id=header[0],
        created_at=header[1],
        items=items,
        counts=_load_counts(header[2]),
    )


def list_findings_job_ids(conn: Any) -> list[str]:
    cursor = conn.execute("SELECT job_id FROM findings ORDER BY created_at DESC")
    return [row[0] for row in cursor.fetchall()]


def prune_findings(conn: Any, keep: int, protect: Iterable[str] = ()) -> int:
    protected = set(protect)
    stale = [job_id for job_id in list_findings_job_ids(conn)[max(0, keep):] if job_id not in protected]
    if not stale:
        return 0
    with conn.transaction():
        for job_id in stale:
            conn.execute("DELETE FROM finding_items WHERE job_id = ?", (job_id,))
            conn.execute("DELETE FROM findings WHERE job_id = ?", (job_id,))
    return len(stale)


def _row_payload(row: FindingRow | dict[str, Any]) -> dict[str, Any]:
    if dataclasses.is_dataclass(row):
        return dataclasses.asdict(row)
    return dict(row)


def _load_counts(counts_json: str | None) -> dict[str, int]:
    try:
        raw = json.loads(counts_json) if counts_json else {}
    except json.JSONDecodeError:
        raw = {}
    counts = {SEVERITY_ERROR: 0, SEVERITY_WARNING: 0, SEVERITY_OK: 0}
    if isinstance(raw, dict):
        for key, value in raw.items():
            counts[str(key)] = int(value or 0)
    return counts


def _row_to_job(row: tuple) -> Job:
    (
        job_id,
        job_type,
        status,
        cursor_offset,
        progress_current,
        progress_total,
        message,
        error,
        created_at,
        updated_at,
        findings_initialized,
        payload_json,
    ) = row
    try:
        payload = json.loads(payload_json) if payload_json else {}
    except json.JSONDecodeError:
        payload = {}
    return Job(
        id=job_id,
        job_type=job_type,
        status=status,
        cursor_offset=int(cursor_offset or 0),
        progress_current=int(progress_current or 0),
        progress_total=int(progress_total or 0),
        message=message or "",
        error=error or "",
        created_at=created_at,
        updated_at=updated_at,
        findings_initialized=bool(findings_initialized),
        payload=payload,
    )
