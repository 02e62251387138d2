from __future__ import annotations

import argparse
import logging
import signal
import threading
from concurrent.futures import ThreadPoolExecutor, wait

from .config import ConfigError, load_config
from .jobs import build_scheduler
from .registry import seed_sources
from .scheduler import JobScheduler
from .storage import init_db
from .utils import configure_logging, log_event


def _setup_logging() -> logging.Logger:
    return configure_logging("ecowire.worker")


def run_initial_jobs(
    scheduler: JobScheduler, job_ids: list[str], logger: logging.Logger
) -> list[str]:
    """Run each start-up job once, concurrently, through the run guard."""
    known = [job_id for job_id in job_ids if job_id in scheduler.job_ids()]
    for job_id in job_ids:
        if job_id not in known:
            log_event(logger, logging.WARNING, "initial_job_unknown", job_id=job_id)
    if not known:
        return []
    with ThreadPoolExecutor(max_workers=len(known), thread_name_prefix="ecowire-initial") as executor:
        futures = {executor.submit(scheduler.tick, job_id, "startup"): job_id for job_id in known}
        done, _ = wait(futures)
        for future in done:
            try:
                result = future.result()
            except Exception as exc:  # noqa: BLE001
                log_event(
                    logger,
                    logging.ERROR,
                    "job_thread_error",
                    job_id=futures[future],
                    error=str(exc),
                )
                continue
            log_event(
                logger,
                logging.INFO,
                "initial_job_complete",
                job_id=result.job_id,
                status=result.status,
            )
    return known


def run_worker(config_path: str | None = None, initial_run: bool = True) -> int:
    logger = _setup_logging()
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1

    conn = init_db(config.paths.state_db)
    try:
        seed_sources(conn, logger=logger)
    finally:
        conn.close()

    scheduler = build_scheduler(config)
    stop = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        log_event(logger, logging.INFO, "shutdown_requested", signal=signum)
        scheduler.stop_event.set()
        stop.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    scheduler.start()
    log_event(logger, logging.INFO, "worker_started", jobs=",".join(scheduler.job_ids()))

    initial = None
    if initial_run and config.jobs.run_on_start:
        initial = threading.Thread(
            target=run_initial_jobs,
            args=(scheduler, config.jobs.run_on_start, logger),
            name="ecowire-initial-run",
            daemon=True,
        )
        initial.start()

    stop.wait()
    # Collectors stop after their current source; wait for in-flight jobs.
    scheduler.shutdown(wait=True)
    if initial is not None:
        initial.join()
    log_event(logger, logging.INFO, "worker_stopped")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ecowire-worker")
    parser.add_argument("--config", default=None, help="Path to config.yml")
    parser.add_argument(
        "--no-initial-run",
        dest="initial_run",
        action="store_false",
        help="Skip the start-up collection jobs",
    )
    return parser


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()
    return run_worker(args.config, args.initial_run)


if __name__ == "__main__":
    raise SystemExit(main())
