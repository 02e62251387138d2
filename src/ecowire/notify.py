from __future__ import annotations

import logging
import threading
from http.client import HTTPException
from typing import Any, Protocol
from urllib.error import URLError
from urllib.request import Request, urlopen

from .config import NotifyConfig
from .utils import json_dumps, log_event


class Notifier(Protocol):
    def notify(self, records: list[dict[str, Any]]) -> None: ...


class WebhookNotifier:
    """POSTs newly inserted content to a webhook without waiting on it."""

    def __init__(self, url: str, timeout_seconds: int = 10, logger: logging.Logger | None = None) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds
        self.logger = logger or logging.getLogger("ecowire.notify")

    def notify(self, records: list[dict[str, Any]]) -> threading.Thread | None:
        if not records:
            return None
        thread = threading.Thread(
            target=self._send,
            args=(list(records),),
            name="ecowire-notify",
            daemon=True,
        )
        thread.start()
        return thread

    def _send(self, records: list[dict[str, Any]]) -> None:
        body = json_dumps(
            {
                "event": "content_inserted",
                "count": len(records),
                "records": [
                    {
                        "title": record.get("title"),
                        "source_name": record.get("source_name"),
                        "source_key": record.get("source_key"),
                        "category": record.get("category"),
                        "published_at": record.get("published_at"),
                        "excerpt": record.get("excerpt"),
                    }
                    for record in records
                ],
            }
        ).encode("utf-8")
        request = Request(
            self.url,
            data=body,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urlopen(request, timeout=self.timeout_seconds) as response:
                status = response.getcode()
        except (URLError, HTTPException, TimeoutError, ConnectionError) as exc:
            log_event(self.logger, logging.WARNING, "notify_failed", url=self.url, error=str(exc))
            return
        log_event(
            self.logger,
            logging.INFO,
            "notify_sent",
            url=self.url,
            status=status,
            count=len(records),
        )


def build_notifier(config: NotifyConfig) -> WebhookNotifier | None:
    if not config.webhook_url:
        return None
    return WebhookNotifier(config.webhook_url, timeout_seconds=config.timeout_seconds)
