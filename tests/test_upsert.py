import sqlite3

import pytest

from ecowire.models import ENTITY_CATALOG, ENTITY_CONTENT, ENTITY_METRIC, CollectedItem
from ecowire.storage import count_table, get_catalog_item, get_content_by_key, init_db, list_metrics
from ecowire.upsert import EntityPolicy, UpsertEngine


def _content(key, title="Wind record"):
    return CollectedItem(
        kind=ENTITY_CONTENT,
        payload={
            "title": title,
            "body": "Wind energy output hit a record.",
            "excerpt": "",
            "category": "Renewable Energy",
            "author": "Desk",
            "published_at": "2024-05-01T00:00:00+00:00",
            "source_name": "Desk",
            "source_key": key,
            "tags": ["wind"],
            "estimated_read_minutes": 1,
        },
    )


def _product(price, in_stock=True):
    return CollectedItem(
        kind=ENTITY_CATALOG,
        payload={
            "name": "Bamboo Plates",
            "brand": "EcoWare",
            "price": price,
            "rating": 4.6,
            "in_stock": in_stock,
            "description": "Plates",
            "image_url": None,
        },
    )


def test_content_is_inserted_once_then_skipped(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    engine = UpsertEngine(conn)

    assert engine.upsert(_content("https://example.com/a")) == "inserted"
    assert engine.upsert(_content("https://example.com/a", title="Changed")) == "skipped"

    assert count_table(conn, "content_records") == 1
    assert get_content_by_key(conn, "https://example.com/a").title == "Wind record"


def test_catalog_observation_updates_price_in_place(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    engine = UpsertEngine(conn)

    assert engine.upsert(_product(45.99)) == "inserted"
    original = get_catalog_item(conn, "Bamboo Plates", "EcoWare")
    assert engine.upsert(_product(39.99, in_stock=False)) == "updated"

    assert count_table(conn, "catalog_items") == 1
    item = get_catalog_item(conn, "Bamboo Plates", "EcoWare")
    assert item.price == 39.99
    assert item.in_stock is False
    assert item.id == original.id
    assert item.created_at == original.created_at
    assert item.sustainability_score == original.sustainability_score


def test_catalog_observation_without_price_keeps_known_price(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    engine = UpsertEngine(conn)

    engine.upsert(_product(45.99))
    assert engine.upsert(_product(None, in_stock=False)) == "updated"

    item = get_catalog_item(conn, "Bamboo Plates", "EcoWare")
    assert item.price == 45.99
    assert item.in_stock is False


def test_catalog_insert_derives_category_and_score(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    UpsertEngine(conn).upsert(_product(45.99))
    item = get_catalog_item(conn, "Bamboo Plates", "EcoWare")
    assert item.category == "Home & Garden"
    # eco + bamboo
    assert item.sustainability_score == 80


def test_metrics_always_insert(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    engine = UpsertEngine(conn)
    reading = CollectedItem(
        kind=ENTITY_METRIC,
        payload={
            "metric_type": "co2_concentration",
            "value": 421.4,
            "unit": "ppm",
            "region": "global",
            "source": "Mauna Loa Observatory",
            "recorded_at": "2024-05-01T00:00:00+00:00",
        },
    )
    assert engine.upsert(reading) == "inserted"
    assert engine.upsert(reading) == "inserted"
    assert len(list_metrics(conn, "co2_concentration")) == 2


def test_upsert_many_counts_and_isolates_failures(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    engine = UpsertEngine(conn)
    broken = CollectedItem(kind=ENTITY_CONTENT, payload={"title": "No key"})

    counts = engine.upsert_many(
        [_content("https://example.com/a"), broken, _content("https://example.com/a"), _product(1.0)]
    )

    assert (counts.inserted, counts.updated, counts.skipped, counts.failed) == (2, 0, 1, 1)
    assert [record["source_key"] for record in counts.inserted_content] == ["https://example.com/a"]


def test_database_error_is_rolled_back_and_counted(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))

    def failing_insert(conn, payload):
        raise sqlite3.IntegrityError("UNIQUE constraint failed")

    engine = UpsertEngine(conn)
    engine.register(
        EntityPolicy(kind=ENTITY_METRIC, key=None, find=None, insert=failing_insert)
    )
    counts = engine.upsert_many([CollectedItem(kind=ENTITY_METRIC, payload={})])
    assert counts.failed == 1


def test_unknown_kind_rejected(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    with pytest.raises(ValueError):
        UpsertEngine(conn).upsert(CollectedItem(kind="podcast", payload={}))


def test_malformed_metric_value_fails_only_that_item(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    engine = UpsertEngine(conn)

    def reading(value):
        return CollectedItem(
            kind=ENTITY_METRIC,
            source_id="m1",
            payload={
                "metric_type": "co2_concentration",
                "value": value,
                "unit": "ppm",
                "recorded_at": "2024-05-01T00:00:00+00:00",
            },
        )

    counts = engine.upsert_many([reading(None), reading(421.4)])

    assert (counts.inserted, counts.failed) == (1, 1)
    assert [record.value for record in list_metrics(conn, "co2_concentration")] == [421.4]
