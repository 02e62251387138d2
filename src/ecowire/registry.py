from __future__ import annotations

import logging
from typing import Any, Iterable
from urllib.parse import urlparse

import yaml

from .config import ConfigError
from .models import SOURCE_KINDS, Source
from .storage import get_source, list_sources, set_source_active, upsert_source
from .utils import log_event

DEFAULT_SOURCES: tuple[dict[str, Any], ...] = (
    {
        "name": "NASA Climate Change",
        "url": "https://climate.nasa.gov/rss/news.rss",
        "kind": "feed",
        "category": "Climate Science",
    },
    {
        "name": "EPA News",
        "url": "https://www.epa.gov/newsreleases/rss.xml",
        "kind": "feed",
        "category": "Policy",
    },
    {
        "name": "Environmental News Network",
        "url": "https://www.enn.com/rss",
        "kind": "feed",
        "category": "General",
    },
    {
        "name": "Yale Environment 360",
        "url": "https://e360.yale.edu/feed",
        "kind": "feed",
        "category": "Research",
    },
    {
        "name": "Green Building Advisor",
        "url": "https://www.greenbuildingadvisor.com/rss.xml",
        "kind": "feed",
        "category": "Green Building",
    },
    {
        "name": "Renewable Energy World",
        "url": "https://www.renewableenergyworld.com/feed/",
        "kind": "feed",
        "category": "Renewable Energy",
    },
    {
        "name": "Environmental Defense Fund",
        "url": "https://www.edf.org/rss.xml",
        "kind": "feed",
        "category": "Conservation",
    },
    {
        "name": "CleanTechnica",
        "url": "https://cleantechnica.com/feed/",
        "kind": "feed",
        "category": "Clean Technology",
    },
    {
        "name": "NASA GISS",
        "url": "simulated:global_temperature_anomaly",
        "kind": "metric",
        "category": "Climate",
    },
    {
        "name": "Mauna Loa Observatory",
        "url": "simulated:co2_concentration",
        "kind": "metric",
        "category": "Atmosphere",
    },
    {
        "name": "IEA Renewable Energy Statistics",
        "url": "simulated:renewable_energy_share",
        "kind": "metric",
        "category": "Energy",
    },
    {
        "name": "NOAA Sea Level Trends",
        "url": "simulated:sea_level_rise",
        "kind": "metric",
        "category": "Oceans",
    },
    {
        "name": "NSIDC Sea Ice Index",
        "url": "simulated:arctic_sea_ice_extent",
        "kind": "metric",
        "category": "Cryosphere",
    },
    {
        "name": "OpenWeatherMap",
        "url": "https://api.openweathermap.org/data/2.5/weather",
        "kind": "metric",
        "category": "Weather",
        "options": {"provider": "openweather"},
    },
    {
        "name": "Sample Eco Catalog",
        "url": "sample:eco-products",
        "kind": "catalog",
        "category": "Eco Products",
    },
)

_SCHEMES = {"http", "https", "simulated", "sample"}


def validate_source_definition(definition: dict[str, Any]) -> dict[str, Any]:
    name = str(definition.get("name") or "").strip()
    if not name:
        raise ValueError("name is required")
    url = str(definition.get("url") or "").strip()
    if not url:
        raise ValueError("url is required")
    scheme = urlparse(url).scheme.lower()
    if scheme not in _SCHEMES:
        raise ValueError(f"unsupported url scheme for {url}")
    kind = str(definition.get("kind") or "feed").strip().lower()
    if kind not in SOURCE_KINDS:
        raise ValueError(f"kind must be one of {', '.join(SOURCE_KINDS)}")
    options = definition.get("options") or {}
    if not isinstance(options, dict):
        raise ValueError("options must be a mapping")
    active = definition.get("active")
    return {
        "name": name,
        "url": url,
        "kind": kind,
        "category": str(definition.get("category") or "General").strip() or "General",
        "options": options,
        "active": None if active is None else bool(active),
    }


def seed_sources(
    conn: Any,
    sources: Iterable[dict[str, Any]] | None = None,
    logger: logging.Logger | None = None,
) -> list[Source]:
    """Upsert each definition by url.

    Safe to run on every start: sources already present keep their id,
    ``last_fetched`` and active flag unless the definition sets ``active``.
    """
    logger = logger or logging.getLogger("ecowire.registry")
    seeded = []
    for definition in DEFAULT_SOURCES if sources is None else sources:
        clean = validate_source_definition(definition)
        seeded.append(upsert_source(conn, **clean))
    log_event(logger, logging.INFO, "sources_seeded", count=len(seeded))
    return seeded


def add_source(
    conn: Any,
    *,
    name: str,
    url: str,
    kind: str = "feed",
    category: str = "General",
    options: dict[str, Any] | None = None,
) -> Source:
    clean = validate_source_definition(
        {"name": name, "url": url, "kind": kind, "category": category, "options": options}
    )
    clean["active"] = True
    return upsert_source(conn, **clean)


def deactivate_source(conn: Any, source_id: str) -> Source:
    if not set_source_active(conn, source_id, False):
        raise KeyError(source_id)
    source = get_source(conn, source_id)
    assert source is not None
    return source


def load_sources_file(path: str) -> list[dict[str, Any]]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except FileNotFoundError as exc:
        raise ConfigError(f"sources file not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"sources file is not valid YAML: {path}: {exc}") from exc
    if isinstance(data, dict):
        data = data.get("sources") or []
    if not isinstance(data, list):
        raise ConfigError(f"{path} must contain a list of sources")
    for index, item in enumerate(data):
        if not isinstance(item, dict):
            raise ConfigError(f"{path}: sources[{index}] must be a mapping")
    return data


def export_sources(conn: Any, path: str | None = None) -> str:
    sources = list_sources(conn, active_only=False)
    payload = {
        "sources": [
            {
                "name": source.name,
                "url": source.url,
                "kind": source.kind,
                "category": source.category,
                "active": source.active,
                **({"options": source.options} if source.options else {}),
            }
            for source in sources
        ]
    }
    text = yaml.safe_dump(payload, sort_keys=False, allow_unicode=True)
    if path:
        with open(path, "w", encoding="utf-8") as handle:
            handle.write(text)
    return text
