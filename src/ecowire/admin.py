from __future__ import annotations

import logging
import os
import sqlite3
import threading
from datetime import datetime, timezone
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel

from .config import Config, ConfigError, load_config
from .jobs import build_scheduler
from .registry import add_source, deactivate_source, seed_sources
from .scheduler import JobScheduler, UnknownJobError
from .storage import get_store_counts, init_db, list_sources
from .utils import configure_logging, log_event

app = FastAPI(title="EcoWire Admin API")

ADMIN_COOKIE_NAME = "ew_admin_token"

_SCHEDULER_LOCK = threading.Lock()


def _require_admin_token(request: Request) -> None:
    token = os.environ.get("EW_ADMIN_TOKEN")
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


def _scheduler_enabled() -> bool:
    return os.environ.get("EW_SCHEDULER_ENABLED", "").strip().lower() in {"1", "true", "yes", "on"}


def _get_config() -> Config:
    try:
        return load_config()
    except ConfigError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


def _get_conn() -> sqlite3.Connection:
    return init_db(_get_config().paths.state_db)


def get_scheduler() -> JobScheduler:
    with _SCHEDULER_LOCK:
        scheduler = getattr(app.state, "scheduler", None)
        if scheduler is None:
            scheduler = build_scheduler(_get_config())
            app.state.scheduler = scheduler
        return scheduler


class JobRunRequest(BaseModel):
    job: str


class SourceRequest(BaseModel):
    name: str
    url: str
    kind: str = "feed"
    category: str = "General"
    options: dict[str, Any] | None = None


@app.on_event("startup")
def _startup() -> None:
    logger = configure_logging("ecowire.admin")
    try:
        config = load_config()
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return
    conn = init_db(config.paths.state_db)
    try:
        seed_sources(conn)
    finally:
        conn.close()
    scheduler = get_scheduler()
    if _scheduler_enabled():
        scheduler.start()


@app.on_event("shutdown")
def _shutdown() -> None:
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        scheduler.shutdown(wait=True)
        app.state.scheduler = None


@app.get("/")
def root() -> dict[str, str]:
    return {"service": "EcoWire Admin API"}


@app.get("/health")
def health() -> dict[str, object]:
    return {
        "ok": True,
        "version": _get_version(),
        "time": datetime.now(tz=timezone.utc).isoformat(),
    }


@app.get("/jobs")
def jobs_status() -> list[dict[str, object]]:
    return get_scheduler().status()


@app.post("/jobs/run")
def jobs_run(payload: JobRunRequest, _: None = Depends(_require_admin_token)) -> dict[str, object]:
    logger = logging.getLogger("ecowire.admin")
    scheduler = get_scheduler()
    try:
        results = scheduler.run_manually(payload.job)
    except UnknownJobError as exc:
        raise HTTPException(status_code=404, detail="job_not_found") from exc
    log_event(logger, logging.INFO, "manual_run", job=payload.job, jobs=",".join(results))
    return {"job": payload.job, "results": results}


@app.get("/sources")
def sources_list(kind: str | None = None, active_only: bool = False) -> list[dict[str, object]]:
    conn = _get_conn()
    try:
        sources = list_sources(conn, kind=kind, active_only=active_only)
    finally:
        conn.close()
    return [_source_dict(source) for source in sources]


@app.post("/sources")
def sources_create(
    payload: SourceRequest, _: None = Depends(_require_admin_token)
) -> dict[str, object]:
    conn = _get_conn()
    try:
        source = add_source(
            conn,
            name=payload.name,
            url=payload.url,
            kind=payload.kind,
            category=payload.category,
            options=payload.options,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    finally:
        conn.close()
    return _source_dict(source)


@app.post("/sources/seed")
def sources_seed(_: None = Depends(_require_admin_token)) -> dict[str, object]:
    conn = _get_conn()
    try:
        seeded = seed_sources(conn)
    finally:
        conn.close()
    return {"seeded": len(seeded)}


@app.post("/sources/{source_id}/deactivate")
def sources_deactivate(
    source_id: str, _: None = Depends(_require_admin_token)
) -> dict[str, object]:
    conn = _get_conn()
    try:
        source = deactivate_source(conn, source_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="source_not_found") from exc
    finally:
        conn.close()
    return _source_dict(source)


@app.get("/stats")
def stats() -> dict[str, object]:
    conn = _get_conn()
    try:
        return get_store_counts(conn)
    finally:
        conn.close()


def _source_dict(source) -> dict[str, object]:
    return {
        "id": source.id,
        "name": source.name,
        "url": source.url,
        "kind": source.kind,
        "category": source.category,
        "active": source.active,
        "last_fetched": source.last_fetched,
        "options": source.options,
    }


def _get_version() -> str:
    try:
        from importlib.metadata import version

        return version("ecowire")
    except Exception:  # noqa: BLE001
        return "unknown"
