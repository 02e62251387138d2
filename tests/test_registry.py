import pytest
import yaml

from ecowire.config import ConfigError
from ecowire.registry import (
    DEFAULT_SOURCES,
    add_source,
    deactivate_source,
    export_sources,
    load_sources_file,
    seed_sources,
)
from ecowire.storage import get_source_by_url, init_db, list_sources, mark_source_fetched


def test_seed_is_idempotent_by_url(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    first = seed_sources(conn)
    second = seed_sources(conn)

    assert len(first) == len(DEFAULT_SOURCES)
    assert [source.id for source in first] == [source.id for source in second]
    assert len(list_sources(conn, active_only=False)) == len(DEFAULT_SOURCES)
    assert len(list_sources(conn, kind="feed")) == 8


def test_reseed_preserves_deactivation_and_last_fetched(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    seed_sources(conn)
    source = get_source_by_url(conn, "https://e360.yale.edu/feed")
    assert source is not None
    mark_source_fetched(conn, source.id, "2024-03-01T00:00:00+00:00")
    deactivate_source(conn, source.id)

    seed_sources(conn)

    reseeded = get_source_by_url(conn, "https://e360.yale.edu/feed")
    assert reseeded.id == source.id
    assert reseeded.active is False
    assert reseeded.last_fetched == "2024-03-01T00:00:00+00:00"


def test_seed_updates_name_and_category(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    seed_sources(conn, [{"name": "Old", "url": "https://example.com/feed", "category": "A"}])
    seed_sources(conn, [{"name": "New", "url": "https://example.com/feed", "category": "B"}])
    sources = list_sources(conn)
    assert [(source.name, source.category) for source in sources] == [("New", "B")]


def test_add_source_validates_kind_and_url(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    with pytest.raises(ValueError):
        add_source(conn, name="Bad", url="https://example.com/feed", kind="podcast")
    with pytest.raises(ValueError):
        add_source(conn, name="Bad", url="ftp://example.com/feed")
    source = add_source(conn, name="Good", url="https://example.com/feed", category="Policy")
    assert source.active is True
    assert source.kind == "feed"


def test_deactivate_unknown_source_raises(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    with pytest.raises(KeyError):
        deactivate_source(conn, "missing")


def test_sources_yaml_round_trip(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    seed_sources(conn)
    out = tmp_path / "sources.yml"
    export_sources(conn, str(out))

    definitions = load_sources_file(str(out))
    assert len(definitions) == len(DEFAULT_SOURCES)
    weather = [item for item in definitions if item["name"] == "OpenWeatherMap"][0]
    assert weather["options"] == {"provider": "openweather"}

    other = init_db(str(tmp_path / "other.sqlite3"))
    seed_sources(other, definitions)
    assert len(list_sources(other, active_only=False)) == len(DEFAULT_SOURCES)


def test_load_sources_file_rejects_non_list(tmp_path):
    path = tmp_path / "sources.yml"
    path.write_text(yaml.safe_dump({"sources": {"name": "x"}}), encoding="utf-8")
    with pytest.raises(ConfigError):
        load_sources_file(str(path))
