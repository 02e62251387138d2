from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Protocol

from ..models import CollectedItem, Source
from ..utils import log_event, utc_now_iso


class CollectorError(RuntimeError):
    """Unrecoverable failure collecting from one source."""


class FetchError(CollectorError):
    def __init__(self, message: str, http_status: int | None = None) -> None:
        super().__init__(message)
        self.http_status = http_status


class ParseError(CollectorError):
    pass


class CollectorNotConfigured(CollectorError):
    """Raised when a collector family lacks credentials or settings."""


class Collector(Protocol):
    kind: str

    def start_pass(self, now_iso: str) -> None: ...

    def collect(self, source: Source) -> list[CollectedItem]: ...


class BaseCollector:
    kind = ""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger(f"ecowire.collectors.{self.kind or 'base'}")
        self.pass_started_at: str | None = None

    def start_pass(self, now_iso: str) -> None:
        self.pass_started_at = now_iso

    def pass_time(self) -> str:
        if self.pass_started_at is None:
            self.pass_started_at = utc_now_iso()
        return self.pass_started_at

    def collect(self, source: Source) -> list[CollectedItem]:
        raise NotImplementedError


@dataclass
class SourceOutcome:
    source_id: str
    source_name: str
    status: str
    items: list[CollectedItem] = field(default_factory=list)
    error: str | None = None


def run_sources(
    collector: Collector,
    sources: Iterable[Source],
    *,
    delay_seconds: float,
    handle_items: Callable[[Source, list[CollectedItem]], None],
    logger: logging.Logger,
    sleep: Callable[[float], None] = time.sleep,
    should_stop: Callable[[], bool] | None = None,
) -> list[SourceOutcome]:
    """Collect from each source in turn, isolating failures per source.

    ``delay_seconds`` is slept between consecutive sources of the family.
    ``handle_items`` receives each successful source's items; an exception
    there is treated like a collection failure for that source.
    """
    outcomes: list[SourceOutcome] = []
    collector.start_pass(utc_now_iso())
    source_list = list(sources)
    for index, source in enumerate(source_list):
        if should_stop is not None and should_stop():
            log_event(
                logger,
                logging.INFO,
                "collection_stopped",
                kind=collector.kind,
                remaining=len(source_list) - index,
            )
            break
        if index > 0 and delay_seconds > 0:
            sleep(delay_seconds)
        try:
            items = collector.collect(source)
            handle_items(source, items)
        except CollectorNotConfigured as exc:
            log_event(
                logger,
                logging.WARNING,
                "collector_unconfigured",
                kind=collector.kind,
                source_id=source.id,
                source_name=source.name,
                error=str(exc),
            )
            outcomes.append(
                SourceOutcome(source.id, source.name, status="unconfigured", error=str(exc))
            )
            continue
        except CollectorError as exc:
            log_event(
                logger,
                logging.ERROR,
                "source_fetch_failed",
                kind=collector.kind,
                source_id=source.id,
                source_name=source.name,
                error=str(exc),
            )
            outcomes.append(SourceOutcome(source.id, source.name, status="error", error=str(exc)))
            continue
        except Exception as exc:  # noqa: BLE001
            log_event(
                logger,
                logging.ERROR,
                "source_failed",
                kind=collector.kind,
                source_id=source.id,
                source_name=source.name,
                error=repr(exc),
            )
            outcomes.append(SourceOutcome(source.id, source.name, status="error", error=repr(exc)))
            continue
        outcomes.append(SourceOutcome(source.id, source.name, status="ok", items=items))
    return outcomes
