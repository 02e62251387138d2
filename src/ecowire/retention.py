from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from .config import RetentionConfig
from .storage import delete_catalog_before, delete_content_before, delete_metrics_before
from .utils import isoformat_utc, log_event, utc_now


def prune(
    conn: Any,
    config: RetentionConfig,
    now: datetime | None = None,
    logger: logging.Logger | None = None,
) -> dict[str, int]:
    logger = logger or logging.getLogger("ecowire.retention")
    now = now or utc_now()

    def cutoff(days: int) -> str:
        return isoformat_utc(now - timedelta(days=days))

    content_deleted = delete_content_before(conn, cutoff(config.content_days))

    # High-cardinality types use the short horizon; everything else only when
    # an aggregate horizon is configured.
    high_types = list(config.high_cardinality_metric_types)
    metrics_deleted = delete_metrics_before(
        conn,
        cutoff(config.high_cardinality_metric_days),
        include_types=high_types,
    )
    if config.aggregate_metric_days > 0:
        metrics_deleted += delete_metrics_before(
            conn,
            cutoff(config.aggregate_metric_days),
            exclude_types=high_types,
        )

    catalog_deleted = delete_catalog_before(conn, cutoff(config.catalog_days))

    counts = {
        "content": content_deleted,
        "metrics": metrics_deleted,
        "catalog": catalog_deleted,
    }
    log_event(logger, logging.INFO, "retention_pruned", **counts)
    return counts
