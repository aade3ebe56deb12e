from __future__ import annotations

import argparse
import logging
import time

from .config import ConfigError, load_runtime_config
from .jobs import JobCoordinator
from .repository import CorpusError, open_repositories
from .storage import init_db
from .utils import configure_logging, log_event


def _setup_logging() -> logging.Logger:
    return configure_logging("altwatch.worker")


def run_once(db_path: str | None = None) -> int:
    """Advance the current scan by one batch. Returns a process exit code."""
    logger = _setup_logging()
    conn = init_db(db_path)
    try:
        config = load_runtime_config(conn)
        assets, content = open_repositories(config.paths.corpus_path, config.scan.content_types)
    except (ConfigError, CorpusError) as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        conn.close()
        return 1

    coordinator = JobCoordinator(conn, assets, content, config=config, logger=logging.getLogger("altwatch.jobs"))
    try:
        job = coordinator.step()
    finally:
        conn.close()
    if job is None:
        log_event(logger, logging.DEBUG, "worker_idle")
        return 0
    log_event(
        logger,
        logging.DEBUG,
        "worker_tick",
        job_id=job.id,
        status=job.status,
        offset=job.cursor_offset,
        total=job.progress_total,
    )
    return 0


def run_loop(
    sleep_seconds: float | None = None,
    db_path: str | None = None,
    max_ticks: int | None = None,
) -> int:
    logger = _setup_logging()
    ticks = 0
    while max_ticks is None or ticks < max_ticks:
        run_once(db_path)
        ticks += 1
        time.sleep(_sleep_for(sleep_seconds, db_path, logger))
    return 0


def _sleep_for(sleep_seconds: float | None, db_path: str | None, logger: logging.Logger) -> float:
    if sleep_seconds is not None:
        return max(0.0, sleep_seconds)
    conn = init_db(db_path)
    try:
        return max(0.0, load_runtime_config(conn).jobs.step_interval_seconds)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1.0
    finally:
        conn.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="altwatch-worker")
    parser.add_argument("--once", action="store_true", help="Run a single step and exit")
    parser.add_argument(
        "--sleep",
        type=float,
        default=None,
        help="Seconds between steps (defaults to jobs.step_interval_seconds)",
    )
    parser.add_argument("--db", default=None, help="Path to the state database")
    return parser


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()
    if args.once:
        return run_once(args.db)
    return run_loop(args.sleep, args.db)


if __name__ == "__main__":
    raise SystemExit(main())
