from __future__ import annotations

import logging
import os
import random
import time
from typing import Any, Callable
from urllib.parse import urlencode

import jsonschema

from ..config import Config
from ..models import ENTITY_METRIC, CollectedItem, Source
from ..utils import log_event
from .base import BaseCollector, CollectorError, CollectorNotConfigured, FetchError, ParseError
from .fetch import fetch_json

SIMULATED_SCHEME = "simulated:"

READINGS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["readings"],
    "properties": {
        "readings": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["metric_type", "value"],
                "properties": {
                    "metric_type": {"type": "string", "minLength": 1},
                    "value": {"type": "number"},
                    "unit": {"type": "string"},
                    "region": {"type": "string"},
                },
            },
        }
    },
}

WEATHER_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["main"],
    "properties": {
        "main": {
            "type": "object",
            "required": ["temp"],
            "properties": {"temp": {"type": "number"}},
        }
    },
}


def _validate(payload: Any, schema: dict[str, Any], url: str) -> None:
    try:
        jsonschema.validate(payload, schema)
    except jsonschema.ValidationError as exc:
        raise ParseError(f"unexpected payload from {url}: {exc.message}") from exc


def provider_for(source: Source) -> str:
    provider = (source.options or {}).get("provider")
    if provider:
        return str(provider)
    if source.url.startswith(SIMULATED_SCHEME):
        return "simulated"
    return "json"


class MetricCollector(BaseCollector):
    """Current readings for configured metric types and regions.

    Every item of a pass carries the same ``recorded_at``: the time the pass
    started.
    """

    kind = "metric"

    def __init__(
        self,
        config: Config,
        logger: logging.Logger | None = None,
        fetcher: Callable[..., Any] = fetch_json,
        rng: random.Random | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        super().__init__(logger)
        self.config = config
        self.fetcher = fetcher
        self.rng = rng or random.Random()
        self.sleep = sleep

    def collect(self, source: Source) -> list[CollectedItem]:
        provider = provider_for(source)
        if provider == "simulated":
            return self._collect_simulated(source)
        if provider == "openweather":
            return self._collect_weather(source)
        if provider == "json":
            return self._collect_json(source)
        raise CollectorNotConfigured(f"unknown metric provider {provider!r}")

    def _item(self, source: Source, metric_type: str, value: float, unit: str, region: str) -> CollectedItem:
        return CollectedItem(
            kind=ENTITY_METRIC,
            payload={
                "metric_type": metric_type,
                "value": value,
                "unit": unit,
                "region": region,
                "source": source.name,
                "recorded_at": self.pass_time(),
            },
            source_id=source.id,
        )

    def _collect_simulated(self, source: Source) -> list[CollectedItem]:
        metric_type = source.url[len(SIMULATED_SCHEME):] if source.url.startswith(
            SIMULATED_SCHEME
        ) else str(source.options.get("metric_type") or "")
        series = self.config.metrics.simulated.get(metric_type)
        if not series:
            raise CollectorNotConfigured(f"no simulated series configured for {metric_type!r}")
        baseline = float(series.get("baseline", 0.0))
        jitter = float(series.get("jitter", 0.0))
        unit = str(series.get("unit", ""))
        region_baselines = series.get("region_baselines") or {}
        items = []
        for region in series.get("regions") or ["global"]:
            base = float(region_baselines.get(region, baseline))
            value = round(base + self.rng.uniform(-jitter / 2, jitter / 2), 3)
            items.append(self._item(source, metric_type, value, unit, str(region)))
        return items

    def _collect_weather(self, source: Source) -> list[CollectedItem]:
        env_name = self.config.metrics.weather_api_key_env
        api_key = os.environ.get(env_name, "").strip()
        if not api_key:
            raise CollectorNotConfigured(f"{env_name} is not set")
        cities = self.config.metrics.weather_cities
        items: list[CollectedItem] = []
        errors: list[str] = []
        for index, city in enumerate(cities):
            if index > 0:
                self.sleep(self.config.metrics.inter_source_delay_seconds)
            query = urlencode(
                {"lat": city["lat"], "lon": city["lon"], "appid": api_key, "units": "metric"}
            )
            try:
                payload = self.fetcher(f"{source.url}?{query}", self.config.http)
                _validate(payload, WEATHER_SCHEMA, source.url)
            except CollectorError as exc:
                log_event(
                    self.logger,
                    logging.WARNING,
                    "weather_city_failed",
                    source_id=source.id,
                    city=city.get("name"),
                    error=str(exc),
                )
                errors.append(str(exc))
                continue
            items.append(
                self._item(
                    source,
                    "city_temperature",
                    float(payload["main"]["temp"]),
                    "°C",
                    str(city.get("name")),
                )
            )
        if cities and not items:
            raise FetchError(f"all weather lookups failed: {errors[0] if errors else 'unknown'}")
        return items

    def _collect_json(self, source: Source) -> list[CollectedItem]:
        payload = self.fetcher(source.url, self.config.http)
        _validate(payload, READINGS_SCHEMA, source.url)
        return [
            self._item(
                source,
                str(reading["metric_type"]),
                float(reading["value"]),
                str(reading.get("unit") or ""),
                str(reading.get("region") or "global"),
            )
            for reading in payload["readings"]
        ]
