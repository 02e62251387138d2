from .base import (
    BaseCollector,
    Collector,
    CollectorError,
    CollectorNotConfigured,
    FetchError,
    ParseError,
    SourceOutcome,
    run_sources,
)
from .catalog import CatalogCollector
from .feeds import FeedCollector
from .metrics import MetricCollector

__all__ = [
    "BaseCollector",
    "CatalogCollector",
    "Collector",
    "CollectorError",
    "CollectorNotConfigured",
    "FeedCollector",
    "FetchError",
    "MetricCollector",
    "ParseError",
    "SourceOutcome",
    "run_sources",
]
