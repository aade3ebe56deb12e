from __future__ import annotations

import argparse
import json
import logging
import os

import uvicorn

from .config import (
    ConfigError,
    get_config_path,
    get_runtime_config,
    import_config_file,
    load_runtime_config,
)
from .findings import DEFAULT_PER_PAGE, SEVERITY_FILTERS, query_findings
from .jobs import JobCoordinator, job_to_dict
from .models import FINDING_SOURCES, JOB_TYPES, STATUS_ERROR, TERMINAL_STATUSES
from .quick_scan import DEFAULT_QUICK_LIMIT, quick_scan
from .repository import CorpusError, open_repositories
from .scan.rules import ISSUE_LABELS, issue_label
from .storage import get_current_job, get_current_job_id, init_db
from .utils import configure_logging, json_dumps, log_event


def _setup_logging() -> logging.Logger:
    return configure_logging("altwatch")


def _build_coordinator(args: argparse.Namespace, logger: logging.Logger):
    conn = init_db(args.db)
    try:
        config = load_runtime_config(conn)
        assets, content = open_repositories(args.corpus or config.paths.corpus_path, config.scan.content_types)
    except (ConfigError, CorpusError) as exc:
        conn.close()
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return None
    return JobCoordinator(conn, assets, content, config=config, logger=logger)


def _log_job(logger: logging.Logger, event: str, job) -> None:
    if job is None:
        log_event(logger, logging.INFO, event, job="none")
        return
    log_event(
        logger,
        logging.INFO,
        event,
        job_id=job.id,
        job_type=job.job_type,
        status=job.status,
        offset=job.cursor_offset,
        current=job.progress_current,
        total=job.progress_total,
        message=job.message,
        error=job.error,
    )


def _cmd_scan_start(args: argparse.Namespace, logger: logging.Logger) -> int:
    coordinator = _build_coordinator(args, logger)
    if coordinator is None:
        return 1
    job = coordinator.start_scan(args.type)
    _log_job(logger, "scan_started", job)
    coordinator.conn.close()
    return 0


def _cmd_scan_step(args: argparse.Namespace, logger: logging.Logger) -> int:
    coordinator = _build_coordinator(args, logger)
    if coordinator is None:
        return 1
    job = coordinator.step()
    _log_job(logger, "scan_stepped", job)
    coordinator.conn.close()
    return 0 if job is not None else 1


def _cmd_scan_run(args: argparse.Namespace, logger: logging.Logger) -> int:
    coordinator = _build_coordinator(args, logger)
    if coordinator is None:
        return 1
    if args.type:
        coordinator.start_scan(args.type)
    job = coordinator.current_job()
    steps = 0
    while job is not None and job.status not in TERMINAL_STATUSES:
        if args.max_steps and steps >= args.max_steps:
            log_event(logger, logging.WARNING, "scan_run_step_limit", job_id=job.id, steps=steps)
            break
        job = coordinator.step()
        steps += 1
    _log_job(logger, "scan_finished", job)
    coordinator.conn.close()
    return 0 if job is not None and job.status != STATUS_ERROR else 1


def _cmd_scan_cancel(args: argparse.Namespace, logger: logging.Logger) -> int:
    coordinator = _build_coordinator(args, logger)
    if coordinator is None:
        return 1
    job = coordinator.cancel()
    _log_job(logger, "scan_cancel", job)
    coordinator.conn.close()
    return 0 if job is not None else 1


def _cmd_scan_status(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn = init_db(args.db)
    job = get_current_job(conn)
    conn.close()
    if args.json:
        print(json.dumps(job_to_dict(job), indent=2))
    else:
        _log_job(logger, "scan_status", job)
    return 0


def _cmd_findings_show(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn = init_db(args.db)
    job_id = args.job_id or get_current_job_id(conn)
    if not job_id:
        log_event(logger, logging.WARNING, "findings_missing", hint="Start a scan with `altwatch scan start`")
        conn.close()
        return 1
    try:
        page = query_findings(
            conn,
            job_id,
            severity=args.severity,
            source=args.source,
            issue=args.issue,
            search=args.search,
            page=args.page,
            per_page=args.per_page,
        )
    finally:
        conn.close()
    if page is None:
        log_event(logger, logging.WARNING, "findings_missing", job_id=job_id)
        return 1

    if args.json:
        print(json_dumps(page))
        return 0
    log_event(
        logger,
        logging.INFO,
        "findings",
        job_id=job_id,
        errors=page.counts.get("error", 0),
        warnings=page.counts.get("warning", 0),
        ok=page.counts.get("ok", 0),
        matching=page.total_items,
        page=f"{page.page}/{page.total_pages}",
    )
    for row in page.items:
        log_event(
            logger,
            logging.INFO,
            "finding",
            severity=row.get("severity"),
            source=row.get("source"),
            attachment_id=row.get("attachment_id"),
            container=row.get("container_title") or row.get("title"),
            field_path=row.get("field_path"),
            issues="|".join(issue_label(tag) for tag in row.get("issues") or []),
            alt=json.dumps(row.get("alt_trimmed") or ""),
        )
    return 0


def _cmd_quick_scan(args: argparse.Namespace, logger: logging.Logger) -> int:
    coordinator = _build_coordinator(args, logger)
    if coordinator is None:
        return 1
    job_id, rows = quick_scan(
        coordinator.conn,
        coordinator.assets,
        coordinator.content,
        limit=args.limit,
        config=coordinator.config,
        logger=logger,
    )
    coordinator.conn.close()
    issues = sum(1 for row in rows if row.issues)
    log_event(logger, logging.INFO, "quick_scan", job_id=job_id, rows=len(rows), issues=issues)
    return 0


def _cmd_config_show(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn = init_db(args.db)
    try:
        cfg = get_runtime_config(conn)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1
    finally:
        conn.close()
    print(json.dumps(cfg, indent=2, sort_keys=True))
    return 0


def _cmd_config_import(args: argparse.Namespace, logger: logging.Logger) -> int:
    path = get_config_path(args.path)
    if not path:
        log_event(logger, logging.ERROR, "config_error", error="no config path given and AW_CONFIG_PATH unset")
        return 1
    conn = init_db(args.db)
    try:
        import_config_file(conn, path)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1
    finally:
        conn.close()
    log_event(logger, logging.INFO, "config_imported", path=path)
    return 0


def _cmd_db_migrate(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn = init_db(args.db)
    version = conn.execute("SELECT MAX(version) FROM schema_migrations").fetchone()[0]
    conn.close()
    log_event(logger, logging.INFO, "db_migrated", path=conn.path, version=version)
    return 0


def _cmd_serve(args: argparse.Namespace, logger: logging.Logger) -> int:
    if args.corpus:
        os.environ["AW_CORPUS_PATH"] = args.corpus
    log_event(logger, logging.INFO, "admin_serve", host=args.host, port=args.port)
    uvicorn.run("altwatch.admin:app", host=args.host, port=args.port, log_level=args.log_level)
    return 0


def _cmd_issues(args: argparse.Namespace, logger: logging.Logger) -> int:
    for tag, label in ISSUE_LABELS.items():
        log_event(logger, logging.INFO, "issue", tag=tag, label=label)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="altwatch", description="Alt text audit CLI")
    parser.add_argument(
        "--db",
        dest="db",
        default=None,
        help="Path to the state database (defaults to $AW_DATA_DIR/state.sqlite3)",
    )
    parser.add_argument(
        "--corpus",
        dest="corpus",
        default=None,
        help="Path to a JSON/YAML corpus export (defaults to AW_CORPUS_PATH or paths.corpus_path)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    scan_parser = subparsers.add_parser("scan", help="Control the scan job")
    scan_subparsers = scan_parser.add_subparsers(dest="scan_command", required=True)

    scan_start = scan_subparsers.add_parser("start", help="Start a new scan, replacing the current one")
    scan_start.add_argument("--type", required=True, choices=JOB_TYPES, help="Scan type")
    scan_start.set_defaults(func=_cmd_scan_start)

    scan_step = scan_subparsers.add_parser("step", help="Advance the current scan by one batch")
    scan_step.set_defaults(func=_cmd_scan_step)

    scan_run = scan_subparsers.add_parser("run", help="Step the current scan until it finishes")
    scan_run.add_argument("--type", choices=JOB_TYPES, default=None, help="Start a new scan first")
    scan_run.add_argument("--max-steps", type=int, default=0, help="Stop after this many steps (0 = no limit)")
    scan_run.set_defaults(func=_cmd_scan_run)

    scan_cancel = scan_subparsers.add_parser("cancel", help="Cancel the current scan")
    scan_cancel.set_defaults(func=_cmd_scan_cancel)

    scan_status = scan_subparsers.add_parser("status", help="Show the current scan")
    scan_status.add_argument("--json", action="store_true", help="Print JSON instead of log lines")
    scan_status.set_defaults(func=_cmd_scan_status)

    findings_parser = subparsers.add_parser("findings", help="Inspect scan findings")
    findings_subparsers = findings_parser.add_subparsers(dest="findings_command", required=True)

    findings_show = findings_subparsers.add_parser("show", help="Show findings for a scan")
    findings_show.add_argument("job_id", nargs="?", help="Job id (defaults to the current scan)")
    findings_show.add_argument("--severity", choices=SEVERITY_FILTERS, default="issues")
    findings_show.add_argument("--source", choices=FINDING_SOURCES, default=None)
    findings_show.add_argument("--issue", choices=sorted(ISSUE_LABELS), default=None)
    findings_show.add_argument("--search", default=None, help="Case-insensitive text search")
    findings_show.add_argument("--page", type=int, default=1)
    findings_show.add_argument("--per-page", type=int, default=DEFAULT_PER_PAGE)
    findings_show.add_argument("--json", action="store_true", help="Print JSON instead of log lines")
    findings_show.set_defaults(func=_cmd_findings_show)

    issues_parser = findings_subparsers.add_parser("issues", help="List issue tags and labels")
    issues_parser.set_defaults(func=_cmd_issues)

    quick_parser = subparsers.add_parser("quick-scan", help="Check the most recently modified items now")
    quick_parser.add_argument("--limit", type=int, default=DEFAULT_QUICK_LIMIT)
    quick_parser.set_defaults(func=_cmd_quick_scan)

    config_parser = subparsers.add_parser("config", help="Manage runtime config")
    config_subparsers = config_parser.add_subparsers(dest="config_command", required=True)

    config_show = config_subparsers.add_parser("show", help="Print the runtime config")
    config_show.set_defaults(func=_cmd_config_show)

    config_import = config_subparsers.add_parser("import", help="Import runtime config from YAML")
    config_import.add_argument("path", nargs="?", help="Path to YAML (defaults to AW_CONFIG_PATH)")
    config_import.set_defaults(func=_cmd_config_import)

    db_parser = subparsers.add_parser("db", help="Database maintenance")
    db_subparsers = db_parser.add_subparsers(dest="db_command", required=True)
    db_migrate = db_subparsers.add_parser("migrate", help="Apply pending migrations")
    db_migrate.set_defaults(func=_cmd_db_migrate)

    serve_parser = subparsers.add_parser("serve", help="Run the admin API (state lives under AW_DATA_DIR)")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8080)
    serve_parser.add_argument("--log-level", default="info", help="uvicorn log level")
    serve_parser.set_defaults(func=_cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = _setup_logging()
    return args.func(args, logger)


if __name__ == "__main__":
    raise SystemExit(main())
