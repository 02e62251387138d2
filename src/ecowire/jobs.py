from __future__ import annotations

import logging
import time
from typing import Any, Callable

from .collectors import (
    CatalogCollector,
    Collector,
    FeedCollector,
    MetricCollector,
    run_sources,
)
from .config import Config
from .models import CollectedItem, JobResult, Source
from .notify import Notifier, build_notifier
from .retention import prune
from .scheduler import JobScheduler
from .storage import get_last_job_run, init_db, list_sources, mark_source_fetched, record_job_run
from .trending import reclassify
from .upsert import UpsertCounts, UpsertEngine
from .utils import utc_now_iso

FEED_INGESTION = "feed_ingestion"
METRIC_INGESTION = "metric_ingestion"
CATALOG_SCRAPE = "catalog_scrape"
RETENTION_CLEANUP = "retention_cleanup"

JOB_DESCRIPTIONS = {
    FEED_INGESTION: "Collect environmental news from syndicated feeds",
    METRIC_INGESTION: "Collect environmental metrics and city weather readings",
    CATALOG_SCRAPE: "Refresh eco-product catalog prices and stock",
    RETENTION_CLEANUP: "Prune stale content, metric readings and catalog items",
}

JOB_ALIASES = {
    "rss": FEED_INGESTION,
    "data": METRIC_INGESTION,
    "scraping": CATALOG_SCRAPE,
    "cleanup": RETENTION_CLEANUP,
}

STATUS_OK = "ok"
STATUS_PARTIAL = "partial"


class JobRunLog:
    """Persists job runs; opens its own connection per call."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path

    def record(self, result: JobResult, trigger: str, error: str | None) -> None:
        conn = init_db(self.db_path)
        try:
            record_job_run(
                conn,
                job_id=result.job_id,
                trigger=trigger,
                started_at=result.started_at or utc_now_iso(),
                finished_at=result.finished_at,
                status=result.status,
                result=result.to_dict(),
                error=error,
            )
        finally:
            conn.close()

    def last_run(self, job_id: str) -> dict[str, Any] | None:
        conn = init_db(self.db_path)
        try:
            return get_last_job_run(conn, job_id)
        finally:
            conn.close()


def run_collection(
    job_id: str,
    collector: Collector,
    conn: Any,
    *,
    delay_seconds: float,
    logger: logging.Logger,
    sleep: Callable[[float], None] = time.sleep,
    should_stop: Callable[[], bool] | None = None,
) -> tuple[JobResult, UpsertCounts]:
    """Collect every active source of the collector's family and upsert.

    The job is ``partial`` when at least one source failed; sources whose
    provider lacks configuration are listed but do not count as failures.
    """
    engine = UpsertEngine(conn)
    totals = UpsertCounts()
    sources = list_sources(conn, kind=collector.kind, active_only=True)

    def handle_items(source: Source, items: list[CollectedItem]) -> None:
        totals.add(engine.upsert_many(items))
        mark_source_fetched(conn, source.id, utc_now_iso())

    outcomes = run_sources(
        collector,
        sources,
        delay_seconds=delay_seconds,
        handle_items=handle_items,
        logger=logger,
        sleep=sleep,
        should_stop=should_stop,
    )
    failed = [outcome for outcome in outcomes if outcome.status == "error"]
    result = JobResult(
        job_id=job_id,
        status=STATUS_PARTIAL if failed else STATUS_OK,
        inserted=totals.inserted,
        updated=totals.updated,
        skipped=totals.skipped,
        failed=totals.failed,
        sources_total=len(sources),
        sources_failed=len(failed),
        errors=[f"{outcome.source_name}: {outcome.error}" for outcome in failed],
        details={
            "sources_processed": len(outcomes),
            "sources_unconfigured": [
                outcome.source_name for outcome in outcomes if outcome.status == "unconfigured"
            ],
        },
    )
    return result, totals


class PipelineJobs:
    """The four job bodies, each opening its own store connection."""

    def __init__(
        self,
        config: Config,
        *,
        notifier: Notifier | None = None,
        collectors: dict[str, Collector] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        should_stop: Callable[[], bool] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.notifier = notifier
        self.sleep = sleep
        self.should_stop = should_stop
        self.logger = logger or logging.getLogger("ecowire.jobs")
        self.collectors: dict[str, Collector] = {
            "feed": FeedCollector(config),
            "metric": MetricCollector(config, sleep=sleep),
            "catalog": CatalogCollector(config),
        }
        self.collectors.update(collectors or {})

    def feed_ingestion(self) -> JobResult:
        conn = init_db(self.config.paths.state_db)
        try:
            result, totals = run_collection(
                FEED_INGESTION,
                self.collectors["feed"],
                conn,
                delay_seconds=self.config.feeds.inter_source_delay_seconds,
                logger=self.logger,
                sleep=self.sleep,
                should_stop=self.should_stop,
            )
            result.details["trending"] = reclassify(conn, self.config.trending)
        finally:
            conn.close()
        if self.notifier is not None and totals.inserted_content:
            self.notifier.notify(totals.inserted_content)
        return result

    def metric_ingestion(self) -> JobResult:
        return self._collect_only(
            METRIC_INGESTION, "metric", self.config.metrics.inter_source_delay_seconds
        )

    def catalog_scrape(self) -> JobResult:
        return self._collect_only(
            CATALOG_SCRAPE, "catalog", self.config.catalog.inter_source_delay_seconds
        )

    def retention_cleanup(self) -> JobResult:
        conn = init_db(self.config.paths.state_db)
        try:
            deleted = prune(conn, self.config.retention)
        finally:
            conn.close()
        return JobResult(job_id=RETENTION_CLEANUP, status=STATUS_OK, details={"deleted": deleted})

    def _collect_only(self, job_id: str, kind: str, delay_seconds: float) -> JobResult:
        conn = init_db(self.config.paths.state_db)
        try:
            result, _ = run_collection(
                job_id,
                self.collectors[kind],
                conn,
                delay_seconds=delay_seconds,
                logger=self.logger,
                sleep=self.sleep,
                should_stop=self.should_stop,
            )
        finally:
            conn.close()
        return result

    def bodies(self) -> dict[str, Callable[[], JobResult]]:
        return {
            FEED_INGESTION: self.feed_ingestion,
            METRIC_INGESTION: self.metric_ingestion,
            CATALOG_SCRAPE: self.catalog_scrape,
            RETENTION_CLEANUP: self.retention_cleanup,
        }


def build_scheduler(
    config: Config,
    *,
    notifier: Notifier | None = None,
    collectors: dict[str, Collector] | None = None,
    sleep: Callable[[float], None] = time.sleep,
    record_runs: bool = True,
) -> JobScheduler:
    scheduler = JobScheduler(
        timezone=config.app.timezone,
        recorder=JobRunLog(config.paths.state_db) if record_runs else None,
        logger=logging.getLogger("ecowire.scheduler"),
        aliases=JOB_ALIASES,
        run_last=[RETENTION_CLEANUP],
    )
    if notifier is None:
        notifier = build_notifier(config.notify)
    jobs = PipelineJobs(
        config,
        notifier=notifier,
        collectors=collectors,
        sleep=sleep,
        should_stop=scheduler.stopping,
    )
    for job_id, body in jobs.bodies().items():
        schedule = config.jobs.schedules.get(job_id)
        if not schedule:
            continue
        scheduler.register(job_id, schedule, body, JOB_DESCRIPTIONS[job_id])
    return scheduler
