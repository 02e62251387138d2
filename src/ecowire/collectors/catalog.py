from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable

import jsonschema
from bs4 import BeautifulSoup

from ..config import Config
from ..models import ENTITY_CATALOG, CollectedItem, Source
from ..utils import log_event
from .base import BaseCollector, CollectorNotConfigured, ParseError
from .fetch import fetch_url

SAMPLE_SCHEME = "sample:"

SAMPLE_PRODUCTS: dict[str, list[dict[str, Any]]] = {
    "eco-products": [
        {
            "name": "Bamboo Fiber Dinner Plates Set",
            "brand": "EcoWare",
            "price": 45.99,
            "rating": 4.6,
            "description": "Biodegradable dinner plates made from 100% bamboo fiber",
            "image_url": "/images/bamboo-plates.jpg",
            "in_stock": True,
        },
        {
            "name": "Solar Powered Phone Charger",
            "brand": "SunPower",
            "price": 89.99,
            "rating": 4.3,
            "description": "Portable solar charger with high efficiency panels",
            "image_url": "/images/solar-charger.jpg",
            "in_stock": True,
        },
        {
            "name": "Organic Cotton Bed Sheets",
            "brand": "PureSleep",
            "price": 159.99,
            "rating": 4.8,
            "description": "GOTS certified organic cotton sheets",
            "image_url": "/images/organic-sheets.jpg",
            "in_stock": False,
        },
        {
            "name": "Reusable Beeswax Food Wraps",
            "brand": "WrapGreen",
            "price": 24.99,
            "rating": 4.5,
            "description": "Natural alternative to plastic wrap",
            "image_url": "/images/beeswax-wraps.jpg",
            "in_stock": True,
        },
        {
            "name": "LED Smart Light Bulbs",
            "brand": "EcoLite",
            "price": 34.99,
            "rating": 4.4,
            "description": "Energy efficient smart LED bulbs",
            "image_url": "/images/led-bulbs.jpg",
            "in_stock": True,
        },
    ]
}

PRODUCTS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["products"],
    "properties": {
        "products": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name", "brand"],
                "properties": {
                    "name": {"type": "string", "minLength": 1},
                    "brand": {"type": "string", "minLength": 1},
                    "price": {"type": ["number", "null"]},
                    "rating": {"type": ["number", "null"]},
                    "in_stock": {"type": "boolean"},
                    "description": {"type": ["string", "null"]},
                    "image_url": {"type": ["string", "null"]},
                    "category": {"type": "string"},
                },
            },
        }
    },
}

DEFAULT_SELECTORS = {
    "product_card": ".product-card",
    "name": ".product-name",
    "brand": ".brand-name",
    "price": ".price",
    "rating": ".rating",
    "image": "img",
}

_NUMBER_RE = re.compile(r"\d+(?:[.,]\d+)?")


def parse_number(text: str | None) -> float | None:
    if not text:
        return None
    match = _NUMBER_RE.search(text.replace(",", ""))
    if not match:
        return None
    return float(match.group(0))


def parse_products_html(html: str | bytes, selectors: dict[str, str]) -> list[dict[str, Any]]:
    soup = BeautifulSoup(html, "html.parser")
    products: list[dict[str, Any]] = []
    for card in soup.select(selectors["product_card"]):
        name_el = card.select_one(selectors["name"])
        brand_el = card.select_one(selectors["brand"])
        name = name_el.get_text(" ", strip=True) if name_el else ""
        brand = brand_el.get_text(" ", strip=True) if brand_el else ""
        if not name or not brand:
            continue
        price_el = card.select_one(selectors["price"])
        rating_el = card.select_one(selectors["rating"])
        image_el = card.select_one(selectors["image"])
        out_of_stock = "out-of-stock" in (card.get("class") or []) or card.get(
            "data-in-stock"
        ) == "false"
        products.append(
            {
                "name": name,
                "brand": brand,
                "price": parse_number(price_el.get_text(" ", strip=True)) if price_el else None,
                "rating": parse_number(rating_el.get_text(" ", strip=True)) if rating_el else None,
                "description": None,
                "image_url": image_el.get("src") if image_el else None,
                "in_stock": not out_of_stock,
            }
        )
    return products


def provider_for(source: Source) -> str:
    provider = (source.options or {}).get("provider")
    if provider:
        return str(provider)
    if source.url.startswith(SAMPLE_SCHEME):
        return "sample"
    return "html"


class CatalogCollector(BaseCollector):
    kind = "catalog"

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
        provider = provider_for(source)
        if provider == "sample":
            products = self._sample_products(source)
        elif provider == "json":
            products = self._json_products(source)
        elif provider == "html":
            products = self._html_products(source)
        else:
            raise CollectorNotConfigured(f"unknown catalog provider {provider!r}")

        limit = self.config.catalog.max_items_per_source
        if limit:
            products = products[:limit]
        log_event(
            self.logger,
            logging.INFO,
            "catalog_parsed",
            source_id=source.id,
            source_name=source.name,
            provider=provider,
            product_count=len(products),
        )
        return [
            CollectedItem(kind=ENTITY_CATALOG, payload=_product_payload(product), source_id=source.id)
            for product in products
        ]

    def _sample_products(self, source: Source) -> list[dict[str, Any]]:
        name = source.url[len(SAMPLE_SCHEME):] if source.url.startswith(SAMPLE_SCHEME) else ""
        products = SAMPLE_PRODUCTS.get(name)
        if products is None:
            raise CollectorNotConfigured(f"no sample catalog named {name!r}")
        return [dict(product) for product in products]

    def _json_products(self, source: Source) -> list[dict[str, Any]]:
        _, content = self.fetcher(
            source.url, self.config.http, headers={"Accept": "application/json"}
        )
        try:
            payload = json.loads(content.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ParseError(f"invalid JSON from {source.url}: {exc}") from exc
        try:
            jsonschema.validate(payload, PRODUCTS_SCHEMA)
        except jsonschema.ValidationError as exc:
            raise ParseError(f"unexpected payload from {source.url}: {exc.message}") from exc
        return list(payload["products"])

    def _html_products(self, source: Source) -> list[dict[str, Any]]:
        selectors = dict(DEFAULT_SELECTORS)
        configured = (source.options or {}).get("selectors")
        if isinstance(configured, dict):
            selectors.update({str(k): str(v) for k, v in configured.items()})
        _, content = self.fetcher(source.url, self.config.http)
        try:
            return parse_products_html(content, selectors)
        except ValueError as exc:
            raise ParseError(f"invalid selectors for {source.url}: {exc}") from exc


def _product_payload(product: dict[str, Any]) -> dict[str, Any]:
    payload = {
        "name": str(product["name"]).strip(),
        "brand": str(product["brand"]).strip(),
        "price": product.get("price"),
        "rating": product.get("rating"),
        "in_stock": bool(product.get("in_stock", True)),
        "description": product.get("description"),
        "image_url": product.get("image_url"),
    }
    if product.get("category"):
        payload["category"] = str(product["category"])
    return payload
