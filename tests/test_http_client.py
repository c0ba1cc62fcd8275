from __future__ import annotations

import pytest
import requests

import http_client
from config import DiscogsSettings
from http_client import discogs_headers, http_get_with_retry, http_patch_with_retry


class FakeResponse:
    def __init__(self, status=200, headers=None) -> None:
        self.status_code = status
        self.headers = headers or {}

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Client Error", response=self)


class ScriptedSession:
    def __init__(self, *outcomes) -> None:
        self.outcomes = list(outcomes)
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture
def sleeps(monkeypatch):
    recorded = []
    monkeypatch.setattr(http_client.time, "sleep", recorded.append)
    return recorded


def test_discogs_headers_user_agent_and_token() -> None:
    settings = DiscogsSettings(token="tok", app_name="vinyl-catalog", app_version="2.1",
                               contact="me@example.com", app_url="https://example.com")

    headers = discogs_headers(settings)

    assert headers["User-Agent"] == "vinyl-catalog/2.1 (+https://example.com; contact: me@example.com)"
    assert headers["Authorization"] == "Discogs token=tok"


def test_discogs_headers_without_token() -> None:
    headers = discogs_headers(DiscogsSettings(app_name="", app_version=""))

    assert headers["User-Agent"] == "vinyl-catalog"
    assert "Authorization" not in headers


def test_transient_status_is_retried(sleeps) -> None:
    session = ScriptedSession(FakeResponse(503), FakeResponse(200))

    r = http_get_with_retry("https://api.test/x", session=session)

    assert r.status_code == 200
    assert len(session.calls) == 2
    assert len(sleeps) == 1


def test_retry_after_header_is_honoured(sleeps) -> None:
    session = ScriptedSession(FakeResponse(429, {"Retry-After": "3"}), FakeResponse(200))

    http_get_with_retry("https://api.test/x", session=session)

    assert 3 <= sleeps[0] <= 4


def test_client_error_is_not_retried(sleeps) -> None:
    session = ScriptedSession(FakeResponse(404))

    with pytest.raises(requests.HTTPError):
        http_get_with_retry("https://api.test/x", session=session)

    assert len(session.calls) == 1
    assert sleeps == []


def test_gives_up_after_last_attempt(sleeps) -> None:
    session = ScriptedSession(*[FakeResponse(500)] * 3)

    with pytest.raises(requests.HTTPError):
        http_get_with_retry("https://api.test/x", session=session, tries=3)

    assert len(session.calls) == 3
    assert len(sleeps) == 2


def test_connection_errors_are_retried(sleeps) -> None:
    session = ScriptedSession(requests.ConnectionError("reset"), FakeResponse(200))

    r = http_patch_with_retry("https://api.test/x", json_data={"a": 1}, session=session)

    assert r.status_code == 200
    method, _, kwargs = session.calls[-1]
    assert method == "PATCH"
    assert kwargs["json"] == {"a": 1}
