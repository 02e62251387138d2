from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Protocol

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from .models import JobResult
from .utils import isoformat_utc, log_event, utc_now, utc_now_iso

ALREADY_RUNNING = "already_running"
FAILED = "failed"
ALL_JOBS = "all"


class UnknownJobError(KeyError):
    pass


class RunRecorder(Protocol):
    def record(self, result: JobResult, trigger: str, error: str | None) -> None: ...

    def last_run(self, job_id: str) -> dict[str, Any] | None: ...


@dataclass
class JobState:
    job_id: str
    schedule: str
    description: str
    is_running: bool = False
    last_run_at: str | None = None
    next_run_at: str | None = None
    last_status: str | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "schedule": self.schedule,
            "description": self.description,
            "is_running": self.is_running,
            "last_run_at": self.last_run_at,
            "next_run_at": self.next_run_at,
            "last_status": self.last_status,
            "last_error": self.last_error,
        }


@dataclass
class _Job:
    state: JobState
    trigger: CronTrigger
    body: Callable[[], JobResult]
    guard: threading.Lock = field(default_factory=threading.Lock)


class JobScheduler:
    """Named jobs on independent cron schedules, each with a run guard.

    ``tick`` is the single execution path for scheduled and manual runs. A
    tick that finds its job already running returns immediately and changes
    nothing.
    """

    def __init__(
        self,
        timezone: str = "UTC",
        recorder: RunRecorder | None = None,
        logger: logging.Logger | None = None,
        aliases: dict[str, str] | None = None,
        run_last: Iterable[str] = (),
    ) -> None:
        self.timezone = timezone
        self.recorder = recorder
        self.logger = logger or logging.getLogger("ecowire.scheduler")
        self.aliases = dict(aliases or {})
        self.run_last = list(run_last)
        self.stop_event = threading.Event()
        self._jobs: dict[str, _Job] = {}
        self._state_lock = threading.Lock()
        self._background: BackgroundScheduler | None = None

    def register(
        self,
        job_id: str,
        schedule: str,
        body: Callable[[], JobResult],
        description: str = "",
    ) -> JobState:
        if job_id in self._jobs:
            raise ValueError(f"job {job_id} is already registered")
        try:
            trigger = CronTrigger.from_crontab(schedule, timezone=self.timezone)
        except ValueError as exc:
            raise ValueError(f"invalid schedule for {job_id}: {schedule!r}: {exc}") from exc
        state = JobState(job_id=job_id, schedule=schedule, description=description)
        job = _Job(state=state, trigger=trigger, body=body)
        state.next_run_at = self._next_fire(job)
        if self.recorder is not None:
            last = self.recorder.last_run(job_id)
            if last:
                state.last_run_at = last.get("started_at")
                state.last_status = last.get("status")
                state.last_error = last.get("error")
        self._jobs[job_id] = job
        return state

    def job_ids(self) -> list[str]:
        return list(self._jobs)

    def resolve(self, name: str) -> str:
        job_id = self.aliases.get(name, name)
        if job_id not in self._jobs:
            raise UnknownJobError(name)
        return job_id

    def tick(self, job_id: str, trigger: str = "schedule") -> JobResult:
        job = self._jobs.get(job_id)
        if job is None:
            raise UnknownJobError(job_id)
        if not job.guard.acquire(blocking=False):
            log_event(self.logger, logging.INFO, "job_already_running", job_id=job_id, trigger=trigger)
            return JobResult(job_id=job_id, status=ALREADY_RUNNING)

        state = job.state
        error: str | None = None
        started_at = utc_now_iso()
        try:
            with self._state_lock:
                state.is_running = True
                state.last_run_at = started_at
            log_event(self.logger, logging.INFO, "job_started", job_id=job_id, trigger=trigger)
            try:
                result = job.body()
            except Exception as exc:  # noqa: BLE001
                error = f"{type(exc).__name__}: {exc}"
                log_event(self.logger, logging.ERROR, "job_failed", job_id=job_id, error=error)
                result = JobResult(job_id=job_id, status=FAILED, errors=[error])
            result.started_at = started_at
            result.finished_at = utc_now_iso()
            if error is None and result.errors:
                error = result.errors[-1]
            log_event(
                self.logger,
                logging.INFO,
                "job_finished",
                job_id=job_id,
                trigger=trigger,
                status=result.status,
                inserted=result.inserted,
                updated=result.updated,
                skipped=result.skipped,
                failed=result.failed,
                sources_failed=result.sources_failed,
            )
        finally:
            with self._state_lock:
                state.is_running = False
                state.next_run_at = self._next_fire(job)
            job.guard.release()

        with self._state_lock:
            state.last_status = result.status
            state.last_error = error
        self._record(result, trigger, error)
        return result

    def run_manually(self, name: str) -> dict[str, Any]:
        """Run one job, or every job for ``all``, through the guarded path."""
        if name == ALL_JOBS:
            ordered = [job_id for job_id in self._jobs if job_id not in self.run_last]
            ordered += [job_id for job_id in self.run_last if job_id in self._jobs]
            return {
                job_id: self.tick(job_id, trigger="manual").to_dict() for job_id in ordered
            }
        job_id = self.resolve(name)
        return {job_id: self.tick(job_id, trigger="manual").to_dict()}

    def status(self) -> list[dict[str, Any]]:
        with self._state_lock:
            return [job.state.to_dict() for job in self._jobs.values()]

    def start(self) -> None:
        if self._background is not None:
            return
        background = BackgroundScheduler(
            timezone=self.timezone,
            job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 300},
        )
        for job_id, job in self._jobs.items():
            background.add_job(
                self.tick,
                trigger=job.trigger,
                args=[job_id],
                id=job_id,
                name=job.state.description or job_id,
                replace_existing=True,
            )
        background.start()
        self._background = background
        for job_id, job in self._jobs.items():
            log_event(
                self.logger,
                logging.INFO,
                "job_scheduled",
                job_id=job_id,
                schedule=job.state.schedule,
                next_run_at=job.state.next_run_at,
            )

    def stopping(self) -> bool:
        return self.stop_event.is_set()

    def shutdown(self, wait: bool = True) -> None:
        self.stop_event.set()
        if self._background is not None:
            self._background.shutdown(wait=wait)
            self._background = None
        log_event(self.logger, logging.INFO, "scheduler_stopped", wait=wait)

    def _next_fire(self, job: _Job, now: datetime | None = None) -> str | None:
        next_fire = job.trigger.get_next_fire_time(None, now or utc_now())
        return isoformat_utc(next_fire) if next_fire else None

    def _record(self, result: JobResult, trigger: str, error: str | None) -> None:
        if self.recorder is None:
            return
        try:
            self.recorder.record(result, trigger, error)
        except Exception as exc:  # noqa: BLE001
            log_event(
                self.logger,
                logging.ERROR,
                "job_record_failed",
                job_id=result.job_id,
                error=str(exc),
            )
