from __future__ import annotations

import json
import time
from http.client import HTTPException
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from ..config import HttpConfig
from .base import FetchError, ParseError


def fetch_url(
    url: str,
    http: HttpConfig,
    headers: dict[str, str] | None = None,
    sleep=time.sleep,
) -> tuple[int, bytes]:
    request_headers = {"User-Agent": http.user_agent}
    request_headers.update({str(k): str(v) for k, v in (headers or {}).items()})
    attempt = 0
    while True:
        try:
            request = Request(url, headers=request_headers)
            with urlopen(request, timeout=http.timeout_seconds) as response:
                status = response.getcode()
                content = response.read()
        except HTTPError as exc:
            raise FetchError(f"HTTP {exc.code} for {url}", http_status=exc.code) from exc
        except (URLError, HTTPException, TimeoutError, ConnectionError) as exc:
            if attempt >= http.max_retries:
                raise FetchError(f"fetch failed for {url}: {exc}") from exc
            attempt += 1
            sleep(http.backoff_seconds * attempt)
            continue
        if not content:
            raise FetchError(f"empty response from {url}", http_status=status)
        return status, content


def fetch_json(url: str, http: HttpConfig, headers: dict[str, str] | None = None) -> Any:
    _, content = fetch_url(
        url, http, headers={"Accept": "application/json", **(headers or {})}
    )
    try:
        return json.loads(content.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ParseError(f"invalid JSON from {url}: {exc}") from exc
