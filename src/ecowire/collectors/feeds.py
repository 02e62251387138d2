from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable
from urllib.parse import urljoin, urlsplit

import feedparser

from ..config import Config
from ..models import ENTITY_CONTENT, CollectedItem, Source
from ..utils import (
    estimate_read_minutes,
    extract_published_at,
    log_event,
    make_excerpt,
    normalize_url,
)
from .base import BaseCollector, ParseError
from .fetch import fetch_url


@dataclass(frozen=True)
class EntryDecision:
    decision: str
    reason: str | None
    source_key: str | None
    title: str


def _entry_body(entry: Any) -> str:
    content = entry.get("content")
    if content:
        first = content[0]
        value = first.get("value") if hasattr(first, "get") else None
        if value:
            return str(value)
    return str(entry.get("summary") or entry.get("description") or "")


def _entry_tags(entry: Any) -> list[str]:
    tags: list[str] = []
    for tag in entry.get("tags") or []:
        term = tag.get("term") if hasattr(tag, "get") else tag
        if term and str(term).strip() and str(term).strip() not in tags:
            tags.append(str(term).strip())
    return tags


def evaluate_entry(
    entry: Any,
    source: Source,
    config: Config,
    fetched_at: str,
) -> tuple[EntryDecision, CollectedItem | None]:
    title = (entry.get("title") or "").strip() or "Untitled"
    link = entry.get("link") or ""
    if not link:
        links = entry.get("links") or []
        alternates = [item.get("href") for item in links if item.get("rel", "alternate") == "alternate"]
        link = next((href for href in alternates if href), "")
    if not link:
        return EntryDecision("SKIP", "missing_url", None, title), None
    link = urljoin(source.url, link.strip())
    if not urlsplit(link).netloc:
        return EntryDecision("SKIP", "unresolvable_url", None, title), None

    source_key = normalize_url(
        link,
        strip_tracking_params=config.feeds.strip_tracking_params,
        tracking_params=config.feeds.tracking_params,
    )
    body = _entry_body(entry)
    published_at, _ = extract_published_at(entry, fetched_at)
    payload = {
        "title": title,
        "body": body,
        "excerpt": make_excerpt(body),
        "category": source.category,
        "author": (entry.get("author") or "").strip() or source.name,
        "published_at": published_at,
        "source_name": source.name,
        "source_key": source_key,
        "tags": _entry_tags(entry),
        "estimated_read_minutes": estimate_read_minutes(body),
    }
    item = CollectedItem(kind=ENTITY_CONTENT, payload=payload, source_id=source.id)
    return EntryDecision("ACCEPT", None, source_key, title), item


class FeedCollector(BaseCollector):
    kind = "feed"

    def __init__(
        self,
        config: Config,
        logger: logging.Logger | None = None,
        fetcher: Callable[..., tuple[int, bytes]] = fetch_url,
    ) -> None:
        super().__init__(logger)
        self.config = config
        self.fetcher = fetcher

    def collect(self, source: Source) -> list[CollectedItem]:
        headers = source.options.get("http_headers") if source.options else None
        _, content = self.fetcher(
            source.url,
            self.config.http,
            headers=headers if isinstance(headers, dict) else None,
        )
        parsed = feedparser.parse(content)
        entries = list(parsed.entries or [])
        if parsed.bozo:
            if not entries:
                raise ParseError(f"malformed feed: {parsed.bozo_exception}")
            log_event(
                self.logger,
                logging.WARNING,
                "feed_parse_warning",
                source_id=source.id,
                error=str(parsed.bozo_exception),
            )

        fetched_at = self.pass_time()
        limit = self.config.feeds.max_items_per_source
        items: list[CollectedItem] = []
        skipped_missing_url = 0
        for entry in entries[:limit] if limit else entries:
            decision, item = evaluate_entry(entry, source, self.config, fetched_at)
            if item is None:
                if decision.reason in ("missing_url", "unresolvable_url"):
                    skipped_missing_url += 1
                continue
            items.append(item)

        log_event(
            self.logger,
            logging.INFO,
            "source_parsed",
            source_id=source.id,
            source_name=source.name,
            found_count=len(entries),
            accepted_count=len(items),
            skipped_missing_url=skipped_missing_url,
        )
        return items
