from __future__ import annotations

import argparse
import json
import logging
import sys

import uvicorn

from .config import Config, ConfigError, load_config
from .jobs import JOB_ALIASES, build_scheduler
from .models import SOURCE_KINDS
from .registry import (
    add_source,
    deactivate_source,
    export_sources,
    load_sources_file,
    seed_sources,
)
from .scheduler import ALL_JOBS, UnknownJobError
from .storage import init_db, list_job_runs, list_sources
from .utils import configure_logging, log_event


def _setup_logging() -> logging.Logger:
    return configure_logging("ecowire")


def _load(args: argparse.Namespace, logger: logging.Logger) -> Config | None:
    try:
        return load_config(args.config)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return None


def _cmd_sources_seed(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = _load(args, logger)
    if config is None:
        return 1
    conn = init_db(config.paths.state_db)
    seeded = seed_sources(conn, logger=logger)
    log_event(logger, logging.INFO, "sources_seed_complete", count=len(seeded))
    return 0


def _cmd_sources_import(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = _load(args, logger)
    if config is None:
        return 1
    log_event(logger, logging.INFO, "sources_import_path", path=args.path)
    try:
        definitions = load_sources_file(args.path)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "sources_import_error", error=str(exc))
        return 1
    if not definitions:
        log_event(logger, logging.ERROR, "sources_import_error", error="no sources found")
        return 1
    conn = init_db(config.paths.state_db)
    try:
        seeded = seed_sources(conn, definitions, logger=logger)
    except ValueError as exc:
        log_event(logger, logging.ERROR, "sources_import_error", error=str(exc))
        return 1
    log_event(logger, logging.INFO, "sources_imported", count=len(seeded))
    return 0


def _cmd_sources_export(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = _load(args, logger)
    if config is None:
        return 1
    conn = init_db(config.paths.state_db)
    try:
        text = export_sources(conn, args.out)
    except OSError as exc:
        log_event(logger, logging.ERROR, "sources_export_error", error=str(exc))
        return 1
    if not args.out:
        sys.stdout.write(text)
    log_event(logger, logging.INFO, "sources_exported", path=args.out or "-")
    return 0


def _cmd_sources_list(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = _load(args, logger)
    if config is None:
        return 1
    conn = init_db(config.paths.state_db)
    sources = list_sources(conn, kind=args.kind, active_only=args.active_only)
    if not sources:
        log_event(
            logger,
            logging.WARNING,
            "no_sources",
            hint="Seed sources with `ecowire sources seed`",
        )
        return 1
    for source in sources:
        log_event(
            logger,
            logging.INFO,
            "source",
            source_id=source.id,
            name=source.name,
            kind=source.kind,
            active=source.active,
            url=source.url,
            last_fetched=source.last_fetched,
        )
    log_event(logger, logging.INFO, "sources_listed", count=len(sources))
    return 0


def _cmd_sources_add(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = _load(args, logger)
    if config is None:
        return 1
    conn = init_db(config.paths.state_db)
    try:
        source = add_source(
            conn,
            name=args.name,
            url=args.url,
            kind=args.kind,
            category=args.category,
        )
    except ValueError as exc:
        log_event(logger, logging.ERROR, "source_add_error", error=str(exc))
        return 1
    log_event(logger, logging.INFO, "source_added", source_id=source.id, url=source.url)
    return 0


def _cmd_sources_deactivate(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = _load(args, logger)
    if config is None:
        return 1
    conn = init_db(config.paths.state_db)
    try:
        deactivate_source(conn, args.source_id)
    except KeyError:
        log_event(logger, logging.ERROR, "source_not_found", source_id=args.source_id)
        return 1
    log_event(logger, logging.INFO, "source_deactivated", source_id=args.source_id)
    return 0


def _cmd_jobs_run(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = _load(args, logger)
    if config is None:
        return 1
    init_db(config.paths.state_db).close()
    scheduler = build_scheduler(config)
    try:
        results = scheduler.run_manually(args.job)
    except UnknownJobError:
        log_event(logger, logging.ERROR, "job_not_found", job=args.job)
        return 1
    sys.stdout.write(json.dumps(results, indent=2, sort_keys=True) + "\n")
    failed = [job_id for job_id, result in results.items() if result["status"] == "failed"]
    return 1 if failed else 0


def _cmd_jobs_status(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = _load(args, logger)
    if config is None:
        return 1
    init_db(config.paths.state_db).close()
    scheduler = build_scheduler(config)
    for state in scheduler.status():
        log_event(logger, logging.INFO, "job_status", **state)
    return 0


def _cmd_jobs_history(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = _load(args, logger)
    if config is None:
        return 1
    conn = init_db(config.paths.state_db)
    job_id = JOB_ALIASES.get(args.job, args.job) if args.job else None
    runs = list_job_runs(conn, job_id=job_id, limit=args.limit)
    for run in runs:
        result = run.get("result") or {}
        log_event(
            logger,
            logging.INFO,
            "job_run",
            job_id=run["job_id"],
            trigger=run["trigger"],
            status=run["status"],
            started_at=run["started_at"],
            finished_at=run["finished_at"],
            inserted=result.get("inserted", 0) if isinstance(result, dict) else 0,
            error=run["error"] or "",
        )
    log_event(logger, logging.INFO, "job_runs_listed", count=len(runs))
    return 0


def _cmd_db_migrate(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = _load(args, logger)
    if config is None:
        return 1
    init_db(config.paths.state_db)
    log_event(logger, logging.INFO, "db_migrated", path=config.paths.state_db)
    return 0


def _cmd_serve(args: argparse.Namespace, logger: logging.Logger) -> int:
    log_event(logger, logging.INFO, "admin_serve", host=args.host, port=args.port)
    uvicorn.run("ecowire.admin:app", host=args.host, port=args.port, log_level="info")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ecowire", description="EcoWire ingestion CLI")
    parser.add_argument(
        "--config",
        dest="config",
        default=None,
        help="Path to config.yml (defaults to EW_CONFIG_PATH or built-in defaults)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    sources_parser = subparsers.add_parser("sources", help="Manage sources")
    sources_subparsers = sources_parser.add_subparsers(dest="sources_command", required=True)

    sources_seed = sources_subparsers.add_parser("seed", help="Upsert the default sources")
    sources_seed.set_defaults(func=_cmd_sources_seed)

    sources_import = sources_subparsers.add_parser("import", help="Import sources from YAML")
    sources_import.add_argument("path", help="Path to sources YAML file")
    sources_import.set_defaults(func=_cmd_sources_import)

    sources_export = sources_subparsers.add_parser("export", help="Export sources to YAML")
    sources_export.add_argument("--out", default=None, help="Output YAML path (stdout if omitted)")
    sources_export.set_defaults(func=_cmd_sources_export)

    sources_list = sources_subparsers.add_parser("list", help="List sources")
    sources_list.add_argument("--kind", choices=list(SOURCE_KINDS), default=None)
    sources_list.add_argument(
        "--active-only", action="store_true", help="Hide deactivated sources"
    )
    sources_list.set_defaults(func=_cmd_sources_list)

    sources_add = sources_subparsers.add_parser("add", help="Add or update a source")
    sources_add.add_argument("--name", required=True, help="Source name")
    sources_add.add_argument("--url", required=True, help="Source URL")
    sources_add.add_argument("--kind", choices=list(SOURCE_KINDS), default="feed")
    sources_add.add_argument("--category", default="General")
    sources_add.set_defaults(func=_cmd_sources_add)

    sources_deactivate = sources_subparsers.add_parser("deactivate", help="Deactivate a source")
    sources_deactivate.add_argument("source_id", help="Source id")
    sources_deactivate.set_defaults(func=_cmd_sources_deactivate)

    jobs_parser = subparsers.add_parser("jobs", help="Scheduled job commands")
    jobs_subparsers = jobs_parser.add_subparsers(dest="jobs_command", required=True)

    jobs_run = jobs_subparsers.add_parser("run", help="Run a job now")
    jobs_run.add_argument(
        "job",
        help=f"Job id, alias ({', '.join(sorted(JOB_ALIASES))}) or '{ALL_JOBS}'",
    )
    jobs_run.set_defaults(func=_cmd_jobs_run)

    jobs_status = jobs_subparsers.add_parser("status", help="Show job schedules and last runs")
    jobs_status.set_defaults(func=_cmd_jobs_status)

    jobs_history = jobs_subparsers.add_parser("history", help="List recent job runs")
    jobs_history.add_argument("--job", default=None, help="Only runs of this job")
    jobs_history.add_argument("--limit", type=int, default=20, help="Number of runs to show")
    jobs_history.set_defaults(func=_cmd_jobs_history)

    db_parser = subparsers.add_parser("db", help="Database maintenance")
    db_subparsers = db_parser.add_subparsers(dest="db_command", required=True)

    db_migrate = db_subparsers.add_parser("migrate", help="Apply database migrations")
    db_migrate.set_defaults(func=_cmd_db_migrate)

    serve_parser = subparsers.add_parser("serve", help="Serve the admin API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8080)
    serve_parser.set_defaults(func=_cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = _setup_logging()
    return args.func(args, logger)


if __name__ == "__main__":
    raise SystemExit(main())
