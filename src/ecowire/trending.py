from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from .config import TrendingConfig
from .models import ContentRecord
from .storage import list_content_since, reset_trending_before, set_content_trending
from .utils import isoformat_utc, log_event, utc_now


def matches_keywords(record: ContentRecord, keywords: list[str]) -> bool:
    text = f"{record.title} {record.body}".lower()
    return any(keyword.lower() in text for keyword in keywords if keyword)


def reclassify(
    conn: Any,
    config: TrendingConfig,
    now: datetime | None = None,
    logger: logging.Logger | None = None,
) -> dict[str, int]:
    """Recompute the trending flag for recent content.

    The newest ``max_candidates`` records published inside the window are
    marked when they match a keyword. Trending records that have aged out of
    the window are reset on every pass.
    """
    logger = logger or logging.getLogger("ecowire.trending")
    cutoff = isoformat_utc((now or utc_now()) - timedelta(days=config.window_days))

    candidates = list_content_since(conn, cutoff, config.max_candidates)
    matched = [
        record.id
        for record in candidates
        if record.id is not None and not record.trending and matches_keywords(record, config.keywords)
    ]
    marked = set_content_trending(conn, matched)
    reset = reset_trending_before(conn, cutoff)

    log_event(
        logger,
        logging.INFO,
        "trending_reclassified",
        cutoff=cutoff,
        evaluated=len(candidates),
        marked=marked,
        reset=reset,
    )
    return {"evaluated": len(candidates), "marked": marked, "reset": reset}
