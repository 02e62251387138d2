from __future__ import annotations

import calendar
import dataclasses
import json
import logging
import math
import os
import re
import sys
from datetime import date, datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from pathlib import Path
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from bs4 import BeautifulSoup

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

DEFAULT_TRACKING_PARAMS = [
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
    "fbclid",
    "gclid",
]


def log_event(logger: logging.Logger, level: int, event: str, **fields: Any) -> None:
    parts = [f"event={event}"]
    for key, value in fields.items():
        parts.append(f"{key}={value}")
    logger.log(level, " ".join(parts))


def configure_logging(logger_name: str, default_level: str = "INFO") -> logging.Logger:
    level_name = os.environ.get("EW_LOG_LEVEL", default_level).upper()
    root = logging.getLogger()
    if not root.handlers:
        root.setLevel(getattr(logging, level_name, logging.INFO))
    _ensure_stdout_handler(level_name)
    _maybe_add_file_handler(level_name)
    _apply_log_overrides()
    return logging.getLogger(logger_name)


def _apply_log_overrides() -> None:
    overrides = os.environ.get("EW_LOG_LEVELS", "")
    if not overrides:
        return
    for item in overrides.split(","):
        if not item.strip() or "=" not in item:
            continue
        name, level = item.split("=", 1)
        logger = logging.getLogger(name.strip())
        logger.setLevel(getattr(logging, level.strip().upper(), logging.INFO))


def _maybe_add_file_handler(level_name: str) -> None:
    log_path = os.environ.get("EW_LOG_FILE")
    if not log_path:
        return
    root = logging.getLogger()
    for handler in root.handlers:
        if isinstance(handler, logging.FileHandler) and handler.baseFilename == os.path.abspath(
            log_path
        ):
            return
    log_dir = os.path.dirname(log_path)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    handler = logging.FileHandler(log_path)
    handler.setLevel(getattr(logging, level_name, logging.INFO))
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)


def _ensure_stdout_handler(level_name: str) -> None:
    root = logging.getLogger()
    for handler in root.handlers:
        if isinstance(handler, logging.StreamHandler) and handler.stream is sys.stdout:
            return
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level_name, logging.INFO))
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)


def json_dumps(value: Any) -> str:
    return json.dumps(value, default=_json_default, sort_keys=True)


def _json_default(value: Any) -> Any:
    if dataclasses.is_dataclass(value):
        return dataclasses.asdict(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return isoformat_utc(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, (set, tuple)):
        return list(value)
    return str(value)


def normalize_url(
    url: str,
    strip_tracking_params: bool = True,
    tracking_params: list[str] | None = None,
) -> str:
    if not url:
        return url
    split = urlsplit(url.strip())
    scheme = split.scheme.lower() if split.scheme else "http"
    netloc = split.netloc.lower()
    path = split.path or "/"
    query_params = parse_qsl(split.query, keep_blank_values=True)
    if strip_tracking_params:
        tracking_set = {
            param.lower() for param in (tracking_params or DEFAULT_TRACKING_PARAMS)
        }
        query_params = [
            (key, value)
            for key, value in query_params
            if key.lower() not in tracking_set
        ]
    query = urlencode(sorted(query_params)) if query_params else ""
    return urlunsplit((scheme, netloc, path, query, ""))


def strip_html(text: str | None) -> str:
    if not text:
        return ""
    if "<" not in text:
        return _collapse_whitespace(text)
    soup = BeautifulSoup(text, "html.parser")
    return _collapse_whitespace(soup.get_text(" ", strip=True))


def _collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def make_excerpt(body: str | None, max_sentences: int = 2, min_sentence_length: int = 20) -> str:
    cleaned = strip_html(body)
    sentences = [
        sentence.strip()
        for sentence in re.split(r"[.!?]+", cleaned)
        if len(sentence.strip()) > min_sentence_length
    ]
    excerpt = ". ".join(sentences[:max_sentences])
    if len(sentences) > max_sentences:
        excerpt += "..."
    return excerpt


def estimate_read_minutes(body: str | None, words_per_minute: int = 200) -> int:
    words = strip_html(body).split()
    return max(1, math.ceil(len(words) / words_per_minute))


def _normalize_datetime(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_date_value(value: Any) -> datetime | None:
    if value is None:
        return None
    if hasattr(value, "tm_year"):
        return datetime.fromtimestamp(calendar.timegm(value), tz=timezone.utc)
    if isinstance(value, datetime):
        return _normalize_datetime(value)
    if isinstance(value, str):
        try:
            parsed = parsedate_to_datetime(value)
            return _normalize_datetime(parsed)
        except (TypeError, ValueError):
            try:
                parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
                return _normalize_datetime(parsed)
            except ValueError:
                return None
    return None


def extract_published_at(entry: Any, fetched_at: str) -> tuple[str, str]:
    published = _parse_date_value(entry.get("published_parsed") or entry.get("published"))
    if published:
        return isoformat_utc(published), "published"
    updated = _parse_date_value(entry.get("updated_parsed") or entry.get("updated"))
    if updated:
        return isoformat_utc(updated), "modified"
    return fetched_at, "guessed"


def isoformat_utc(value: datetime) -> str:
    return _normalize_datetime(value).replace(microsecond=0).isoformat()


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc).replace(microsecond=0)


def utc_now_iso() -> str:
    return isoformat_utc(utc_now())
