import random

import pytest

from ecowire.collectors.base import CollectorNotConfigured, FetchError, ParseError
from ecowire.collectors.metrics import MetricCollector
from ecowire.config import load_config
from ecowire.models import ENTITY_METRIC, Source


def _source(url, options=None, name="Metrics"):
    return Source(
        id="m1",
        name=name,
        url=url,
        kind="metric",
        category="Climate",
        active=True,
        last_fetched=None,
        options=options or {},
    )


def test_simulated_readings_share_one_recorded_at():
    collector = MetricCollector(load_config(), rng=random.Random(7))
    collector.start_pass("2024-05-01T12:00:00+00:00")

    items = collector.collect(_source("simulated:renewable_energy_share"))

    assert [item.payload["region"] for item in items] == [
        "global",
        "north_america",
        "europe",
        "asia",
        "africa",
    ]
    assert {item.payload["recorded_at"] for item in items} == {"2024-05-01T12:00:00+00:00"}
    assert all(item.kind == ENTITY_METRIC for item in items)
    europe = [item for item in items if item.payload["region"] == "europe"][0]
    assert 41.0 <= europe.payload["value"] <= 43.0
    assert europe.payload["unit"] == "%"
    assert europe.payload["source"] == "Metrics"


def test_recorded_at_not_rederived_within_a_pass():
    collector = MetricCollector(load_config(), rng=random.Random(1))
    collector.start_pass("2024-05-01T12:00:00+00:00")
    first = collector.collect(_source("simulated:co2_concentration"))
    second = collector.collect(_source("simulated:sea_level_rise"))
    assert first[0].payload["recorded_at"] == second[0].payload["recorded_at"]

    collector.start_pass("2024-05-01T18:00:00+00:00")
    third = collector.collect(_source("simulated:co2_concentration"))
    assert third[0].payload["recorded_at"] == "2024-05-01T18:00:00+00:00"


def test_unknown_simulated_series_is_unconfigured():
    collector = MetricCollector(load_config())
    with pytest.raises(CollectorNotConfigured):
        collector.collect(_source("simulated:ocean_ph"))


def test_weather_without_api_key_is_unconfigured():
    calls = []
    collector = MetricCollector(load_config(), fetcher=lambda url, http: calls.append(url))
    with pytest.raises(CollectorNotConfigured):
        collector.collect(
            _source("https://api.openweathermap.org/data/2.5/weather", {"provider": "openweather"})
        )
    assert calls == []


def test_weather_skips_failing_city_and_sleeps_between_cities(monkeypatch):
    monkeypatch.setenv("EW_OPENWEATHER_API_KEY", "secret")
    sleeps = []

    def fetcher(url, http):
        if "lat=51.5074" in url:
            raise FetchError("HTTP 500", http_status=500)
        return {"main": {"temp": 18.5}}

    collector = MetricCollector(load_config(), fetcher=fetcher, sleep=sleeps.append)
    collector.start_pass("2024-05-01T12:00:00+00:00")
    items = collector.collect(
        _source("https://api.openweathermap.org/data/2.5/weather", {"provider": "openweather"})
    )

    assert [item.payload["region"] for item in items] == ["New York", "Tokyo", "Sydney", "São Paulo"]
    assert {item.payload["metric_type"] for item in items} == {"city_temperature"}
    assert len(sleeps) == 4


def test_weather_all_cities_failing_raises(monkeypatch):
    monkeypatch.setenv("EW_OPENWEATHER_API_KEY", "secret")

    def fetcher(url, http):
        return {"weather": []}

    collector = MetricCollector(load_config(), fetcher=fetcher, sleep=lambda _: None)
    with pytest.raises(FetchError):
        collector.collect(
            _source("https://api.openweathermap.org/data/2.5/weather", {"provider": "openweather"})
        )


def test_json_readings_are_validated():
    good = {"readings": [{"metric_type": "ocean_ph", "value": 8.05, "unit": "pH"}]}
    collector = MetricCollector(load_config(), fetcher=lambda url, http: good)
    items = collector.collect(_source("https://data.example.com/readings.json"))
    assert items[0].payload["metric_type"] == "ocean_ph"
    assert items[0].payload["region"] == "global"

    bad = {"readings": [{"metric_type": "ocean_ph", "value": "high"}]}
    collector = MetricCollector(load_config(), fetcher=lambda url, http: bad)
    with pytest.raises(ParseError):
        collector.collect(_source("https://data.example.com/readings.json"))
