from __future__ import annotations

import json
import sqlite3
import uuid
from typing import Any, Iterable

from .db import connect_db
from .models import CatalogItem, ContentRecord, MetricRecord, Source
from .utils import json_dumps, utc_now_iso

_SOURCE_COLUMNS = "id, name, url, kind, category, active, last_fetched_at, options_json"
_CONTENT_COLUMNS = (
    "id, title, body, excerpt, category, author, published_at, source_name, source_key, "
    "trending, featured, tags_json, estimated_read_minutes, created_at, updated_at"
)
_CATALOG_COLUMNS = (
    "id, name, brand, category, price, rating, sustainability_score, in_stock, featured, "
    "description, image_url, created_at, updated_at"
)


def init_db(path: str | None = None) -> sqlite3.Connection:
    return connect_db(path)


def upsert_source(
    conn: Any,
    *,
    name: str,
    url: str,
    kind: str,
    category: str,
    options: dict[str, object] | None = None,
    active: bool | None = None,
) -> Source:
    now = utc_now_iso()
    existing = get_source_by_url(conn, url)
    if existing is None:
        conn.execute(
            """
            INSERT INTO sources
                (id, name, url, kind, category, active, options_json, last_fetched_at,
                 created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, NULL, ?, ?)
            """,
            (
                str(uuid.uuid4()),
                name,
                url,
                kind,
                category,
                0 if active is False else 1,
                json_dumps(options) if options else None,
                now,
                now,
            ),
        )
    else:
        conn.execute(
            """
            UPDATE sources
            SET name = ?, kind = ?, category = ?, options_json = ?, active = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                name,
                kind,
                category,
                json_dumps(options) if options else _options_json(existing),
                (1 if active else 0) if active is not None else (1 if existing.active else 0),
                now,
                existing.id,
            ),
        )
    conn.commit()
    source = get_source_by_url(conn, url)
    assert source is not None
    return source


def _options_json(source: Source) -> str | None:
    return json_dumps(source.options) if source.options else None


def set_source_active(conn: Any, source_id: str, active: bool) -> bool:
    cursor = conn.execute(
        "UPDATE sources SET active = ?, updated_at = ? WHERE id = ?",
        (1 if active else 0, utc_now_iso(), source_id),
    )
    conn.commit()
    return cursor.rowcount == 1


def mark_source_fetched(conn: Any, source_id: str, fetched_at: str) -> None:
    conn.execute(
        "UPDATE sources SET last_fetched_at = ?, updated_at = ? WHERE id = ?",
        (fetched_at, utc_now_iso(), source_id),
    )
    conn.commit()


def get_source(conn: Any, source_id: str) -> Source | None:
    row = conn.execute(
        f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE id = ?", (source_id,)
    ).fetchone()
    return _row_to_source(row) if row else None


def get_source_by_url(conn: Any, url: str) -> Source | None:
    row = conn.execute(
        f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE url = ?", (url,)
    ).fetchone()
    return _row_to_source(row) if row else None


def list_sources(
    conn: Any, kind: str | None = None, active_only: bool = True
) -> list[Source]:
    clauses = []
    params: list[object] = []
    if kind:
        clauses.append("kind = ?")
        params.append(kind)
    if active_only:
        clauses.append("active = 1")
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    cursor = conn.execute(
        f"SELECT {_SOURCE_COLUMNS} FROM sources {where} ORDER BY created_at, name",
        tuple(params),
    )
    return [_row_to_source(row) for row in cursor.fetchall()]


def find_content_id(conn: Any, source_key: str) -> int | None:
    row = conn.execute(
        "SELECT id FROM content_records WHERE source_key = ?", (source_key,)
    ).fetchone()
    return int(row[0]) if row else None


def get_content_by_key(conn: Any, source_key: str) -> ContentRecord | None:
    row = conn.execute(
        f"SELECT {_CONTENT_COLUMNS} FROM content_records WHERE source_key = ?",
        (source_key,),
    ).fetchone()
    return _row_to_content(row) if row else None


def insert_content(conn: Any, payload: dict[str, Any]) -> int:
    now = utc_now_iso()
    cursor = conn.execute(
        """
        INSERT INTO content_records
            (title, body, excerpt, category, author, published_at, source_name, source_key,
             trending, featured, tags_json, estimated_read_minutes, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, 0, ?, ?, ?, ?)
        """,
        (
            payload["title"],
            payload.get("body") or "",
            payload.get("excerpt") or "",
            payload.get("category") or "General",
            payload.get("author") or "",
            payload["published_at"],
            payload["source_name"],
            payload["source_key"],
            json_dumps(list(payload.get("tags") or [])),
            int(payload.get("estimated_read_minutes") or 1),
            now,
            now,
        ),
    )
    conn.commit()
    return int(cursor.lastrowid)


def list_content_since(conn: Any, since_iso: str, limit: int) -> list[ContentRecord]:
    cursor = conn.execute(
        f"""
        SELECT {_CONTENT_COLUMNS}
        FROM content_records
        WHERE published_at >= ?
        ORDER BY published_at DESC, id DESC
        LIMIT ?
        """,
        (since_iso, limit),
    )
    return [_row_to_content(row) for row in cursor.fetchall()]


def list_recent_content(conn: Any, limit: int = 3) -> list[ContentRecord]:
    cursor = conn.execute(
        f"SELECT {_CONTENT_COLUMNS} FROM content_records ORDER BY created_at DESC, id DESC LIMIT ?",
        (limit,),
    )
    return [_row_to_content(row) for row in cursor.fetchall()]


def set_content_trending(conn: Any, record_ids: Iterable[int]) -> int:
    ids = list(record_ids)
    if not ids:
        return 0
    now = utc_now_iso()
    cursor = conn.executemany(
        "UPDATE content_records SET trending = 1, updated_at = ? WHERE id = ? AND trending = 0",
        [(now, record_id) for record_id in ids],
    )
    conn.commit()
    return cursor.rowcount


def reset_trending_before(conn: Any, cutoff_iso: str) -> int:
    cursor = conn.execute(
        """
        UPDATE content_records
        SET trending = 0, updated_at = ?
        WHERE trending = 1 AND published_at < ?
        """,
        (utc_now_iso(), cutoff_iso),
    )
    conn.commit()
    return cursor.rowcount


def set_content_featured(conn: Any, source_key: str, featured: bool) -> bool:
    cursor = conn.execute(
        "UPDATE content_records SET featured = ?, updated_at = ? WHERE source_key = ?",
        (1 if featured else 0, utc_now_iso(), source_key),
    )
    conn.commit()
    return cursor.rowcount == 1


def delete_content_before(conn: Any, cutoff_iso: str) -> int:
    cursor = conn.execute(
        """
        DELETE FROM content_records
        WHERE published_at < ? AND trending = 0 AND featured = 0
        """,
        (cutoff_iso,),
    )
    conn.commit()
    return cursor.rowcount


def insert_metric(conn: Any, payload: dict[str, Any]) -> int:
    cursor = conn.execute(
        """
        INSERT INTO metric_records (metric_type, value, unit, region, source, recorded_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (
            payload["metric_type"],
            float(payload["value"]),
            payload.get("unit") or "",
            payload.get("region") or "global",
            payload.get("source") or "",
            payload["recorded_at"],
        ),
    )
    conn.commit()
    return int(cursor.lastrowid)


def list_metrics(conn: Any, metric_type: str | None = None) -> list[MetricRecord]:
    if metric_type:
        cursor = conn.execute(
            """
            SELECT id, metric_type, value, unit, region, source, recorded_at
            FROM metric_records WHERE metric_type = ? ORDER BY recorded_at DESC, id DESC
            """,
            (metric_type,),
        )
    else:
        cursor = conn.execute(
            """
            SELECT id, metric_type, value, unit, region, source, recorded_at
            FROM metric_records ORDER BY recorded_at DESC, id DESC
            """
        )
    return [_row_to_metric(row) for row in cursor.fetchall()]


def delete_metrics_before(
    conn: Any,
    cutoff_iso: str,
    *,
    include_types: list[str] | None = None,
    exclude_types: list[str] | None = None,
) -> int:
    clauses = ["recorded_at < ?"]
    params: list[object] = [cutoff_iso]
    if include_types is not None:
        if not include_types:
            return 0
        clauses.append(f"metric_type IN ({', '.join('?' for _ in include_types)})")
        params.extend(include_types)
    if exclude_types:
        clauses.append(f"metric_type NOT IN ({', '.join('?' for _ in exclude_types)})")
        params.extend(exclude_types)
    cursor = conn.execute(
        f"DELETE FROM metric_records WHERE {' AND '.join(clauses)}", tuple(params)
    )
    conn.commit()
    return cursor.rowcount


def find_catalog_item_id(conn: Any, name: str, brand: str) -> int | None:
    row = conn.execute(
        "SELECT id FROM catalog_items WHERE name = ? AND brand = ?", (name, brand)
    ).fetchone()
    return int(row[0]) if row else None


def get_catalog_item(conn: Any, name: str, brand: str) -> CatalogItem | None:
    row = conn.execute(
        f"SELECT {_CATALOG_COLUMNS} FROM catalog_items WHERE name = ? AND brand = ?",
        (name, brand),
    ).fetchone()
    return _row_to_catalog(row) if row else None


def insert_catalog_item(conn: Any, payload: dict[str, Any]) -> int:
    now = utc_now_iso()
    cursor = conn.execute(
        """
        INSERT INTO catalog_items
            (name, brand, category, price, rating, sustainability_score, in_stock, featured,
             description, image_url, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, 0, ?, ?, ?, ?)
        """,
        (
            payload["name"],
            payload["brand"],
            payload.get("category") or "General",
            payload.get("price"),
            payload.get("rating"),
            int(payload["sustainability_score"]),
            1 if payload.get("in_stock", True) else 0,
            payload.get("description"),
            payload.get("image_url"),
            now,
            now,
        ),
    )
    conn.commit()
    return int(cursor.lastrowid)


def update_catalog_observation(
    conn: Any, item_id: int, *, price: float | None, in_stock: bool
) -> bool:
    assignments = ["in_stock = ?", "updated_at = ?"]
    params: list[Any] = [1 if in_stock else 0, utc_now_iso()]
    if price is not None:
        assignments.insert(0, "price = ?")
        params.insert(0, price)
    cursor = conn.execute(
        f"UPDATE catalog_items SET {', '.join(assignments)} WHERE id = ?",
        (*params, item_id),
    )
    conn.commit()
    return cursor.rowcount == 1


def delete_catalog_before(conn: Any, cutoff_iso: str) -> int:
    cursor = conn.execute(
        """
        DELETE FROM catalog_items
        WHERE updated_at < ? AND in_stock = 0 AND featured = 0
        """,
        (cutoff_iso,),
    )
    conn.commit()
    return cursor.rowcount


def record_job_run(
    conn: Any,
    *,
    job_id: str,
    trigger: str,
    started_at: str,
    finished_at: str | None,
    status: str,
    result: dict[str, object] | None,
    error: str | None,
) -> int:
    cursor = conn.execute(
        """
        INSERT INTO job_runs (job_id, trigger, started_at, finished_at, status, result_json, error)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            job_id,
            trigger,
            started_at,
            finished_at,
            status,
            json_dumps(result) if result is not None else None,
            error,
        ),
    )
    conn.commit()
    return int(cursor.lastrowid)


def list_job_runs(conn: Any, job_id: str | None = None, limit: int = 20) -> list[dict[str, object]]:
    if job_id:
        cursor = conn.execute(
            """
            SELECT id, job_id, trigger, started_at, finished_at, status, result_json, error
            FROM job_runs WHERE job_id = ? ORDER BY started_at DESC, id DESC LIMIT ?
            """,
            (job_id, limit),
        )
    else:
        cursor = conn.execute(
            """
            SELECT id, job_id, trigger, started_at, finished_at, status, result_json, error
            FROM job_runs ORDER BY started_at DESC, id DESC LIMIT ?
            """,
            (limit,),
        )
    return [_row_to_job_run(row) for row in cursor.fetchall()]


def get_last_job_run(conn: Any, job_id: str) -> dict[str, object] | None:
    runs = list_job_runs(conn, job_id=job_id, limit=1)
    return runs[0] if runs else None


def count_table(conn: Any, table: str, where: str | None = None) -> int:
    sql = f"SELECT COUNT(*) FROM {table}"
    if where:
        sql += f" WHERE {where}"
    row = conn.execute(sql).fetchone()
    return int(row[0]) if row else 0


def get_store_counts(conn: Any) -> dict[str, object]:
    return {
        "content_records": count_table(conn, "content_records"),
        "trending_records": count_table(conn, "content_records", "trending = 1"),
        "active_sources": count_table(conn, "sources", "active = 1"),
        "metric_records": count_table(conn, "metric_records"),
        "catalog_items": count_table(conn, "catalog_items"),
        "recent_content": [
            {
                "title": record.title,
                "source_name": record.source_name,
                "published_at": record.published_at,
                "created_at": record.created_at,
            }
            for record in list_recent_content(conn, limit=3)
        ],
    }


def _row_to_source(row: tuple) -> Source:
    options = _load_json(row[7], {})
    return Source(
        id=row[0],
        name=row[1],
        url=row[2],
        kind=row[3],
        category=row[4],
        active=bool(row[5]),
        last_fetched=row[6],
        options=options if isinstance(options, dict) else {},
    )


def _row_to_content(row: tuple) -> ContentRecord:
    tags = _load_json(row[11], [])
    return ContentRecord(
        id=row[0],
        title=row[1],
        body=row[2],
        excerpt=row[3],
        category=row[4],
        author=row[5],
        published_at=row[6],
        source_name=row[7],
        source_key=row[8],
        trending=bool(row[9]),
        featured=bool(row[10]),
        tags=list(tags) if isinstance(tags, list) else [],
        estimated_read_minutes=int(row[12]),
        created_at=row[13],
        updated_at=row[14],
    )


def _row_to_metric(row: tuple) -> MetricRecord:
    return MetricRecord(
        id=row[0],
        metric_type=row[1],
        value=float(row[2]),
        unit=row[3],
        region=row[4],
        source=row[5],
        recorded_at=row[6],
    )


def _row_to_catalog(row: tuple) -> CatalogItem:
    return CatalogItem(
        id=row[0],
        name=row[1],
        brand=row[2],
        category=row[3],
        price=row[4],
        rating=row[5],
        sustainability_score=int(row[6]),
        in_stock=bool(row[7]),
        featured=bool(row[8]),
        description=row[9],
        image_url=row[10],
        created_at=row[11],
        updated_at=row[12],
    )


def _row_to_job_run(row: tuple) -> dict[str, object]:
    return {
        "id": row[0],
        "job_id": row[1],
        "trigger": row[2],
        "started_at": row[3],
        "finished_at": row[4],
        "status": row[5],
        "result": _load_json(row[6], None),
        "error": row[7],
    }


def _load_json(value: str | None, default: object) -> object:
    if not value:
        return default
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return default
