"""
Tests for the rate-limit key function and the 429 handler.
"""
import json
from types import SimpleNamespace

from starlette.requests import Request

from catalog_sync.core.config import settings
from catalog_sync.core.rate_limit import get_client_ip, rate_limit_exceeded_handler


def make_request(headers=None, client=("10.0.0.9", 5000)):
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/api/trigger-sync",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
        "query_string": b"",
    }
    return Request(scope)


class TestClientIp:
    def test_forwarded_header_when_trusted(self, monkeypatch):
        monkeypatch.setattr(settings, "TRUST_PROXY_HEADERS", True)
        request = make_request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})
        assert get_client_ip(request) == "203.0.113.7"

    def test_forwarded_header_ignored_when_untrusted(self, monkeypatch):
        monkeypatch.setattr(settings, "TRUST_PROXY_HEADERS", False)
        request = make_request({"X-Forwarded-For": "203.0.113.7"})
        assert get_client_ip(request) == "10.0.0.9"

    def test_falls_back_to_peer(self, monkeypatch):
        monkeypatch.setattr(settings, "TRUST_PROXY_HEADERS", True)
        assert get_client_ip(make_request()) == "10.0.0.9"


class TestExceededHandler:
    def test_uses_limit_window_for_retry_after(self):
        exc = SimpleNamespace(
            detail="5 per 1 minute",
            limit=SimpleNamespace(limit=SimpleNamespace(get_expiry=lambda: 60)),
        )
        response = rate_limit_exceeded_handler(make_request(), exc)

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "60"
        body = json.loads(response.body)
        assert body["ok"] is False
        assert body["error"] == "rate_limit_exceeded"
        assert body["retry_after"] == 60

    def test_default_retry_after_without_limit(self):
        exc = SimpleNamespace(detail="5 per 1 minute", limit=None)
        response = rate_limit_exceeded_handler(make_request(), exc)
        assert response.headers["Retry-After"] == "60"
