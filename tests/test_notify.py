import json
from http.client import IncompleteRead
from urllib.error import URLError

from ecowire import notify
from ecowire.config import NotifyConfig
from ecowire.notify import WebhookNotifier, build_notifier


class _Response:
    def __init__(self, status=200):
        self.status = status

    def getcode(self):
        return self.status

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def test_build_notifier_requires_url():
    assert build_notifier(NotifyConfig(webhook_url="", timeout_seconds=5)) is None
    notifier = build_notifier(NotifyConfig(webhook_url="https://hooks.example.com/ew", timeout_seconds=5))
    assert isinstance(notifier, WebhookNotifier)
    assert notifier.timeout_seconds == 5


def test_webhook_posts_inserted_records(monkeypatch):
    sent = []

    def fake_urlopen(request, timeout):
        sent.append((request, timeout))
        return _Response()

    monkeypatch.setattr(notify, "urlopen", fake_urlopen)
    notifier = WebhookNotifier("https://hooks.example.com/ew", timeout_seconds=3)

    thread = notifier.notify(
        [{"title": "Wind record", "source_name": "Desk", "source_key": "https://example.com/a"}]
    )
    thread.join(5)

    request, timeout = sent[0]
    assert timeout == 3
    assert request.get_method() == "POST"
    body = json.loads(request.data.decode("utf-8"))
    assert body["event"] == "content_inserted"
    assert body["count"] == 1
    assert body["records"][0]["title"] == "Wind record"


def test_webhook_failure_is_logged_not_raised(monkeypatch, caplog):
    def failing_urlopen(request, timeout):
        raise URLError("connection refused")

    monkeypatch.setattr(notify, "urlopen", failing_urlopen)
    notifier = WebhookNotifier("https://hooks.example.com/ew")

    with caplog.at_level("WARNING", logger="ecowire.notify"):
        notifier.notify([{"title": "Wind record"}]).join(5)

    assert "event=notify_failed" in caplog.text


def test_truncated_webhook_response_is_logged_not_raised(monkeypatch, caplog):
    def truncated_urlopen(request, timeout):
        raise IncompleteRead(b"")

    monkeypatch.setattr(notify, "urlopen", truncated_urlopen)
    notifier = WebhookNotifier("https://hooks.example.com/ew")

    with caplog.at_level("WARNING", logger="ecowire.notify"):
        notifier.notify([{"title": "Wind record"}]).join(5)

    assert "event=notify_failed" in caplog.text


def test_empty_batch_sends_nothing():
    assert WebhookNotifier("https://hooks.example.com/ew").notify([]) is None
