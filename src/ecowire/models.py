from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

SOURCE_KINDS = ("feed", "metric", "catalog")

ENTITY_CONTENT = "content"
ENTITY_METRIC = "metric"
ENTITY_CATALOG = "catalog"

INSERTED = "inserted"
UPDATED = "updated"
SKIPPED = "skipped"


@dataclass(frozen=True)
class Source:
    id: str
    name: str
    url: str
    kind: str
    category: str
    active: bool
    last_fetched: str | None
    options: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ContentRecord:
    id: int | None
    title: str
    body: str
    excerpt: str
    category: str
    author: str
    published_at: str
    source_name: str
    source_key: str
    trending: bool
    featured: bool
    tags: list[str]
    estimated_read_minutes: int
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class MetricRecord:
    id: int | None
    metric_type: str
    value: float
    unit: str
    region: str
    source: str
    recorded_at: str


@dataclass(frozen=True)
class CatalogItem:
    id: int | None
    name: str
    brand: str
    category: str
    price: float | None
    rating: float | None
    sustainability_score: int
    in_stock: bool
    featured: bool
    description: str | None
    image_url: str | None
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class CollectedItem:
    """A single observation produced by a collector, before persistence.

    ``kind`` selects the upsert policy; ``payload`` carries the entity fields
    using the storage column names.
    """

    kind: str
    payload: dict[str, Any]
    source_id: str | None = None


@dataclass
class JobResult:
    job_id: str
    status: str
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    sources_total: int = 0
    sources_failed: int = 0
    errors: list[str] = field(default_factory=list)
    started_at: str | None = None
    finished_at: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "status": self.status,
            "inserted": self.inserted,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
            "sources_total": self.sources_total,
            "sources_failed": self.sources_failed,
            "errors": list(self.errors),
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "details": dict(self.details),
        }
