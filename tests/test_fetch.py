from http.client import IncompleteRead
from urllib.error import HTTPError, URLError

import pytest

from ecowire.collectors import fetch
from ecowire.collectors.base import FetchError, ParseError
from ecowire.collectors.fetch import fetch_json, fetch_url
from ecowire.config import HttpConfig

HTTP = HttpConfig(timeout_seconds=5, user_agent="EcoWire/Test", max_retries=2, backoff_seconds=1.5)


class _Response:
    def __init__(self, body, status=200):
        self.body = body
        self.status = status

    def getcode(self):
        return self.status

    def read(self):
        return self.body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def _scripted_urlopen(outcomes, calls):
    def fake_urlopen(request, timeout):
        calls.append((request, timeout))
        outcome = outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    return fake_urlopen


def test_fetch_sends_user_agent_and_timeout(monkeypatch):
    calls = []
    monkeypatch.setattr(fetch, "urlopen", _scripted_urlopen([_Response(b"<rss/>")], calls))

    status, content = fetch_url("https://example.com/rss", HTTP, headers={"Accept": "text/xml"})

    assert (status, content) == (200, b"<rss/>")
    request, timeout = calls[0]
    assert timeout == 5
    assert request.get_header("User-agent") == "EcoWire/Test"
    assert request.get_header("Accept") == "text/xml"


@pytest.mark.parametrize(
    "error",
    [URLError("connection refused"), TimeoutError("timed out"), IncompleteRead(b"")],
)
def test_transient_errors_retry_with_linear_backoff(monkeypatch, error):
    calls = []
    sleeps = []
    monkeypatch.setattr(fetch, "urlopen", _scripted_urlopen([error, error, error], calls))

    with pytest.raises(FetchError) as excinfo:
        fetch_url("https://example.com/rss", HTTP, sleep=sleeps.append)

    assert len(calls) == 3
    assert sleeps == [1.5, 3.0]
    assert excinfo.value.http_status is None


def test_retry_then_success_returns_content(monkeypatch):
    calls = []
    sleeps = []
    outcomes = [URLError("reset"), _Response(b"ok")]
    monkeypatch.setattr(fetch, "urlopen", _scripted_urlopen(outcomes, calls))

    assert fetch_url("https://example.com/rss", HTTP, sleep=sleeps.append) == (200, b"ok")
    assert sleeps == [1.5]


def test_http_error_fails_without_retry(monkeypatch):
    calls = []
    sleeps = []
    error = HTTPError("https://example.com/rss", 503, "Service Unavailable", hdrs=None, fp=None)
    monkeypatch.setattr(fetch, "urlopen", _scripted_urlopen([error], calls))

    with pytest.raises(FetchError) as excinfo:
        fetch_url("https://example.com/rss", HTTP, sleep=sleeps.append)

    assert excinfo.value.http_status == 503
    assert len(calls) == 1
    assert sleeps == []


def test_empty_body_is_a_fetch_error(monkeypatch):
    monkeypatch.setattr(fetch, "urlopen", _scripted_urlopen([_Response(b"", status=204)], []))

    with pytest.raises(FetchError) as excinfo:
        fetch_url("https://example.com/rss", HTTP)

    assert excinfo.value.http_status == 204


def test_fetch_json_decodes_payload(monkeypatch):
    calls = []
    monkeypatch.setattr(fetch, "urlopen", _scripted_urlopen([_Response(b'{"ppm": 421.4}')], calls))

    assert fetch_json("https://api.example.com/co2", HTTP) == {"ppm": 421.4}
    assert calls[0][0].get_header("Accept") == "application/json"


def test_fetch_json_rejects_invalid_json(monkeypatch):
    monkeypatch.setattr(fetch, "urlopen", _scripted_urlopen([_Response(b"<html>oops</html>")], []))

    with pytest.raises(ParseError):
        fetch_json("https://api.example.com/co2", HTTP)
