from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from .models import (
    ENTITY_CATALOG,
    ENTITY_CONTENT,
    ENTITY_METRIC,
    INSERTED,
    SKIPPED,
    UPDATED,
    CollectedItem,
)
from .scoring import categorize_product, sustainability_score
from .storage import (
    find_catalog_item_id,
    find_content_id,
    insert_catalog_item,
    insert_content,
    insert_metric,
    update_catalog_observation,
)
from .utils import log_event

KeyFn = Callable[[dict[str, Any]], tuple[Any, ...]]


@dataclass(frozen=True)
class EntityPolicy:
    """How one entity kind is matched against stored records.

    ``update`` is None for kinds whose stored records are immutable, in which
    case a match is a skip. ``key`` is None for append-only kinds.
    """

    kind: str
    key: KeyFn | None
    find: Callable[[Any, tuple[Any, ...]], int | None] | None
    insert: Callable[[Any, dict[str, Any]], int]
    update: Callable[[Any, int, dict[str, Any]], None] | None = None


@dataclass
class UpsertCounts:
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    inserted_content: list[dict[str, Any]] = field(default_factory=list)

    def add(self, other: "UpsertCounts") -> None:
        self.inserted += other.inserted
        self.updated += other.updated
        self.skipped += other.skipped
        self.failed += other.failed
        self.inserted_content.extend(other.inserted_content)


def _content_key(payload: dict[str, Any]) -> tuple[Any, ...]:
    source_key = str(payload.get("source_key") or "").strip()
    if not source_key:
        raise ValueError("content payload has no source_key")
    return (source_key,)


def _catalog_key(payload: dict[str, Any]) -> tuple[Any, ...]:
    name = str(payload.get("name") or "").strip()
    brand = str(payload.get("brand") or "").strip()
    if not name or not brand:
        raise ValueError("catalog payload needs both name and brand")
    return (name, brand)


def _insert_catalog(conn: Any, payload: dict[str, Any]) -> int:
    record = dict(payload)
    record.setdefault("category", categorize_product(record["name"]))
    record["sustainability_score"] = sustainability_score(record["name"], record["brand"])
    return insert_catalog_item(conn, record)


def _update_catalog(conn: Any, item_id: int, payload: dict[str, Any]) -> None:
    update_catalog_observation(
        conn,
        item_id,
        price=payload.get("price"),
        in_stock=bool(payload.get("in_stock", True)),
    )


DEFAULT_POLICIES: tuple[EntityPolicy, ...] = (
    EntityPolicy(
        kind=ENTITY_CONTENT,
        key=_content_key,
        find=lambda conn, key: find_content_id(conn, key[0]),
        insert=insert_content,
    ),
    EntityPolicy(
        kind=ENTITY_CATALOG,
        key=_catalog_key,
        find=lambda conn, key: find_catalog_item_id(conn, key[0], key[1]),
        insert=_insert_catalog,
        update=_update_catalog,
    ),
    EntityPolicy(kind=ENTITY_METRIC, key=None, find=None, insert=insert_metric),
)


class UpsertEngine:
    """Single write path from collected items into the store."""

    def __init__(
        self,
        conn: Any,
        logger: logging.Logger | None = None,
        policies: Iterable[EntityPolicy] = DEFAULT_POLICIES,
    ) -> None:
        self.conn = conn
        self.logger = logger or logging.getLogger("ecowire.upsert")
        self.policies = {policy.kind: policy for policy in policies}

    def register(self, policy: EntityPolicy) -> None:
        self.policies[policy.kind] = policy

    def upsert(self, item: CollectedItem) -> str:
        policy = self.policies.get(item.kind)
        if policy is None:
            raise ValueError(f"no upsert policy for entity kind {item.kind!r}")
        payload = item.payload
        if policy.key is None or policy.find is None:
            policy.insert(self.conn, payload)
            return INSERTED
        key = policy.key(payload)
        existing_id = policy.find(self.conn, key)
        if existing_id is None:
            policy.insert(self.conn, payload)
            return INSERTED
        if policy.update is None:
            return SKIPPED
        policy.update(self.conn, existing_id, payload)
        return UPDATED

    def upsert_many(self, items: Iterable[CollectedItem]) -> UpsertCounts:
        counts = UpsertCounts()
        for item in items:
            try:
                outcome = self.upsert(item)
            except (sqlite3.Error, ValueError, KeyError, TypeError) as exc:
                if isinstance(exc, sqlite3.Error):
                    self.conn.rollback()
                log_event(
                    self.logger,
                    logging.WARNING,
                    "item_persist_failed",
                    kind=item.kind,
                    source_id=item.source_id,
                    error=str(exc),
                )
                counts.failed += 1
                continue
            if outcome == INSERTED:
                counts.inserted += 1
                if item.kind == ENTITY_CONTENT:
                    counts.inserted_content.append(dict(item.payload))
            elif outcome == UPDATED:
                counts.updated += 1
            else:
                counts.skipped += 1
        return counts
