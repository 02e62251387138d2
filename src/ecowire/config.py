from __future__ import annotations

import copy
import os
from dataclasses import dataclass
from typing import Any

import yaml

from .db import get_state_db_path


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class AppConfig:
    name: str
    timezone: str


@dataclass(frozen=True)
class PathsConfig:
    state_db: str


@dataclass(frozen=True)
class HttpConfig:
    timeout_seconds: int
    user_agent: str
    max_retries: int
    backoff_seconds: float


@dataclass(frozen=True)
class FeedsConfig:
    max_items_per_source: int
    inter_source_delay_seconds: float
    strip_tracking_params: bool
    tracking_params: list[str]


@dataclass(frozen=True)
class MetricsConfig:
    inter_source_delay_seconds: float
    simulated: dict[str, dict[str, Any]]
    weather_cities: list[dict[str, Any]]
    weather_api_key_env: str


@dataclass(frozen=True)
class CatalogConfig:
    max_items_per_source: int
    inter_source_delay_seconds: float


@dataclass(frozen=True)
class TrendingConfig:
    window_days: int
    max_candidates: int
    keywords: list[str]


@dataclass(frozen=True)
class RetentionConfig:
    content_days: int
    high_cardinality_metric_days: int
    high_cardinality_metric_types: list[str]
    aggregate_metric_days: int
    catalog_days: int


@dataclass(frozen=True)
class JobsConfig:
    schedules: dict[str, str]
    run_on_start: list[str]


@dataclass(frozen=True)
class NotifyConfig:
    webhook_url: str
    timeout_seconds: int


@dataclass(frozen=True)
class Config:
    app: AppConfig
    paths: PathsConfig
    http: HttpConfig
    feeds: FeedsConfig
    metrics: MetricsConfig
    catalog: CatalogConfig
    trending: TrendingConfig
    retention: RetentionConfig
    jobs: JobsConfig
    notify: NotifyConfig


DEFAULT_CONFIG: dict[str, Any] = {
    "app": {
        "name": "EcoWire",
        "timezone": "UTC",
    },
    "paths": {
        "state_db": "",
    },
    "http": {
        "timeout_seconds": 20,
        "user_agent": "EcoWire/0.1",
        "max_retries": 2,
        "backoff_seconds": 2.0,
    },
    "feeds": {
        "max_items_per_source": 20,
        "inter_source_delay_seconds": 2.0,
        "strip_tracking_params": True,
        "tracking_params": [
            "utm_source",
            "utm_medium",
            "utm_campaign",
            "utm_term",
            "utm_content",
        ],
    },
    "metrics": {
        "inter_source_delay_seconds": 1.0,
        "simulated": {
            "global_temperature_anomaly": {
                "baseline": 1.28,
                "jitter": 0.1,
                "unit": "°C",
                "regions": ["global"],
            },
            "co2_concentration": {
                "baseline": 421.44,
                "jitter": 2.0,
                "unit": "ppm",
                "regions": ["global"],
            },
            "renewable_energy_share": {
                "baseline": 32.8,
                "jitter": 2.0,
                "unit": "%",
                "regions": ["global", "north_america", "europe", "asia", "africa"],
                "region_baselines": {
                    "north_america": 28.0,
                    "europe": 42.0,
                    "asia": 31.0,
                    "africa": 24.0,
                },
            },
            "sea_level_rise": {
                "baseline": 21.0,
                "jitter": 1.0,
                "unit": "cm",
                "regions": ["global"],
            },
            "arctic_sea_ice_extent": {
                "baseline": 4.92,
                "jitter": 0.5,
                "unit": "million_km2",
                "regions": ["arctic"],
            },
        },
        "weather_cities": [
            {"name": "New York", "lat": 40.7128, "lon": -74.006},
            {"name": "London", "lat": 51.5074, "lon": -0.1278},
            {"name": "Tokyo", "lat": 35.6762, "lon": 139.6503},
            {"name": "Sydney", "lat": -33.8688, "lon": 151.2093},
            {"name": "São Paulo", "lat": -23.5505, "lon": -46.6333},
        ],
        "weather_api_key_env": "EW_OPENWEATHER_API_KEY",
    },
    "catalog": {
        "max_items_per_source": 25,
        "inter_source_delay_seconds": 2.0,
    },
    "trending": {
        "window_days": 7,
        "max_candidates": 10,
        "keywords": [
            "climate change",
            "renewable energy",
            "sustainability",
            "carbon",
            "solar",
            "wind energy",
            "electric vehicle",
            "green technology",
            "biodiversity",
            "conservation",
            "pollution",
            "recycling",
        ],
    },
    "retention": {
        "content_days": 90,
        "high_cardinality_metric_days": 30,
        "high_cardinality_metric_types": ["city_temperature"],
        "aggregate_metric_days": 0,
        "catalog_days": 30,
    },
    "jobs": {
        "schedules": {
            "feed_ingestion": "0 */4 * * *",
            "metric_ingestion": "0 */6 * * *",
            "catalog_scrape": "0 2 * * *",
            "retention_cleanup": "0 3 * * *",
        },
        "run_on_start": ["feed_ingestion", "metric_ingestion"],
    },
    "notify": {
        "webhook_url": "",
        "timeout_seconds": 10,
    },
}

# Mappings whose keys are user-defined rather than fixed by the schema.
_OPEN_MAPPINGS = {"config.metrics.simulated", "config.jobs.schedules"}


def load_config(path: str | None = None) -> Config:
    raw = load_raw_config(path)
    errors = validate_config(raw)
    if errors:
        raise ConfigError("Invalid config: " + "; ".join(errors))
    return _build_config(raw)


def load_raw_config(path: str | None = None) -> dict[str, Any]:
    merged = copy.deepcopy(DEFAULT_CONFIG)
    path = path or os.environ.get("EW_CONFIG_PATH")
    if path:
        overrides = _read_yaml(path)
        if not isinstance(overrides, dict):
            raise ConfigError(f"{path} must contain a mapping")
        merged = _deep_merge(merged, overrides)
    webhook = os.environ.get("EW_NOTIFY_WEBHOOK_URL")
    if webhook:
        merged["notify"]["webhook_url"] = webhook
    return merged


def validate_config(cfg: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    _validate_dict(cfg, DEFAULT_CONFIG, "config", errors)
    return errors


def _read_yaml(path: str) -> Any:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            return yaml.safe_load(handle) or {}
    except FileNotFoundError as exc:
        raise ConfigError(f"config file not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"config file is not valid YAML: {path}: {exc}") from exc


def _deep_merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _validate_dict(value: dict[str, Any], schema: dict[str, Any], path: str, errors: list[str]) -> None:
    if not isinstance(value, dict):
        errors.append(f"{path} must be an object")
        return
    if path in _OPEN_MAPPINGS:
        return
    for key in value.keys():
        if key not in schema:
            errors.append(f"unknown {path}.{key}")
    for key, default in schema.items():
        if key not in value:
            errors.append(f"missing {path}.{key}")
            continue
        _validate_value(value[key], default, f"{path}.{key}", errors)


def _validate_value(value: Any, default: Any, path: str, errors: list[str]) -> None:
    if isinstance(default, dict):
        _validate_dict(value, default, path, errors)
        return
    if isinstance(default, list):
        if not isinstance(value, list):
            errors.append(f"{path} must be a list")
            return
        if default:
            sample = default[0]
            for item in value:
                if not isinstance(item, type(sample)):
                    errors.append(f"{path} must be a list of {type(sample).__name__}")
                    break
        return
    if isinstance(default, bool):
        if not isinstance(value, bool):
            errors.append(f"{path} must be a boolean")
        return
    if isinstance(default, int):
        if isinstance(value, bool) or not isinstance(value, int):
            errors.append(f"{path} must be an integer")
        elif value < 0:
            errors.append(f"{path} must not be negative")
        return
    if isinstance(default, float):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            errors.append(f"{path} must be a number")
        elif value < 0:
            errors.append(f"{path} must not be negative")
        return
    if isinstance(default, str):
        if not isinstance(value, str):
            errors.append(f"{path} must be a string")
        return


def _build_config(cfg: dict[str, Any]) -> Config:
    app_cfg = cfg["app"]
    http_cfg = cfg["http"]
    feeds_cfg = cfg["feeds"]
    metrics_cfg = cfg["metrics"]
    catalog_cfg = cfg["catalog"]
    trending_cfg = cfg["trending"]
    retention_cfg = cfg["retention"]
    jobs_cfg = cfg["jobs"]
    notify_cfg = cfg["notify"]

    return Config(
        app=AppConfig(name=str(app_cfg["name"]), timezone=str(app_cfg["timezone"])),
        paths=PathsConfig(state_db=str(cfg["paths"]["state_db"] or get_state_db_path())),
        http=HttpConfig(
            timeout_seconds=int(http_cfg["timeout_seconds"]),
            user_agent=str(http_cfg["user_agent"]),
            max_retries=int(http_cfg["max_retries"]),
            backoff_seconds=float(http_cfg["backoff_seconds"]),
        ),
        feeds=FeedsConfig(
            max_items_per_source=int(feeds_cfg["max_items_per_source"]),
            inter_source_delay_seconds=float(feeds_cfg["inter_source_delay_seconds"]),
            strip_tracking_params=bool(feeds_cfg["strip_tracking_params"]),
            tracking_params=list(feeds_cfg["tracking_params"]),
        ),
        metrics=MetricsConfig(
            inter_source_delay_seconds=float(metrics_cfg["inter_source_delay_seconds"]),
            simulated=dict(metrics_cfg["simulated"]),
            weather_cities=list(metrics_cfg["weather_cities"]),
            weather_api_key_env=str(metrics_cfg["weather_api_key_env"]),
        ),
        catalog=CatalogConfig(
            max_items_per_source=int(catalog_cfg["max_items_per_source"]),
            inter_source_delay_seconds=float(catalog_cfg["inter_source_delay_seconds"]),
        ),
        trending=TrendingConfig(
            window_days=int(trending_cfg["window_days"]),
            max_candidates=int(trending_cfg["max_candidates"]),
            keywords=[str(keyword) for keyword in trending_cfg["keywords"]],
        ),
        retention=RetentionConfig(
            content_days=int(retention_cfg["content_days"]),
            high_cardinality_metric_days=int(retention_cfg["high_cardinality_metric_days"]),
            high_cardinality_metric_types=list(retention_cfg["high_cardinality_metric_types"]),
            aggregate_metric_days=int(retention_cfg["aggregate_metric_days"]),
            catalog_days=int(retention_cfg["catalog_days"]),
        ),
        jobs=JobsConfig(
            schedules={str(key): str(value) for key, value in jobs_cfg["schedules"].items()},
            run_on_start=[str(job_id) for job_id in jobs_cfg["run_on_start"]],
        ),
        notify=NotifyConfig(
            webhook_url=str(notify_cfg["webhook_url"]),
            timeout_seconds=int(notify_cfg["timeout_seconds"]),
        ),
    )
