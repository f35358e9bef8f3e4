"""
Tests for the forwarder HTTP surface.
"""

import pytest
import httpx
from fastapi.testclient import TestClient

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_forwarder.app.main import ForwarderService, inbound_key
from shared.config import get_config


class ScriptedUpstream:
    """Upstream double: maps URL to a response factory, records every call."""

    def __init__(self):
        self.routes = {}
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.calls.append(url)
        handler = self.routes.get(url)
        if handler is None:
            return httpx.Response(404, json={"error": 404})
        return handler(request)


class TestForwarderService:
    """Test cases for ForwarderService."""

    @pytest.fixture
    def upstream(self):
        return ScriptedUpstream()

    @pytest.fixture
    def delays(self):
        return []

    @pytest.fixture
    def service(self, upstream, delays):
        """Create ForwarderService backed by the scripted upstream."""
        async def record_sleep(delay: float):
            delays.append(delay)

        return ForwarderService(
            get_config(),
            transport=httpx.MockTransport(upstream),
            sleep=record_sleep,
        )

    @pytest.fixture
    def client(self, service):
        """Create test client."""
        with TestClient(service.app) as test_client:
            yield test_client

    def test_api_request_cached(self, client, upstream):
        """An API listing is fetched once, then served from cache."""
        upstream.routes["https://www.reddit.com/r/golang.json?limit=10"] = lambda request: httpx.Response(
            200, content=b'{"kind": "Listing", "data": {}}', headers={"Content-Type": "application/json"}
        )

        first = client.get("/api/r/golang.json?limit=10")
        second = client.get("/api/r/golang.json?limit=10")

        assert first.status_code == 200
        assert first.headers["x-cache"] == "MISS"
        assert second.status_code == 200
        assert second.headers["x-cache"] == "HIT"
        assert second.content == first.content == b'{"kind": "Listing", "data": {}}'
        assert second.headers["content-type"] == "application/json"
        assert second.headers["access-control-allow-origin"] == "*"
        assert upstream.calls == ["https://www.reddit.com/r/golang.json?limit=10"]

    def test_search_never_cached(self, client, upstream):
        """Identical search requests both reach upstream."""
        upstream.routes["https://www.reddit.com/search.json?q=golang"] = lambda request: httpx.Response(
            200, json={"data": {"children": []}}
        )

        responses = [client.get("/search/.json?q=golang") for _ in range(2)]

        assert [response.status_code for response in responses] == [200, 200]
        assert [response.headers["x-cache"] for response in responses] == ["NONE", "NONE"]
        assert len(upstream.calls) == 2

    def test_api_search_requires_query(self, client, upstream):
        """The API search endpoint rejects a missing q parameter."""
        response = client.get("/api/search.json")

        assert response.status_code == 400
        assert response.json() == {"error": "bad_request", "message": "Missing search query parameter"}
        assert response.headers["access-control-allow-origin"] == "*"
        assert upstream.calls == []

    def test_legacy_fallback(self, client, upstream):
        """Other paths go to the legacy host unchanged."""
        upstream.routes["https://old.reddit.com/r/golang/?count=25"] = lambda request: httpx.Response(
            200, text="<html>listing</html>", headers={"Content-Type": "text/html; charset=UTF-8"}
        )

        response = client.get("/r/golang/?count=25")

        assert response.status_code == 200
        assert response.text == "<html>listing</html>"
        assert response.headers["content-type"] == "text/html; charset=UTF-8"

    def test_upstream_errors_passed_through(self, client, upstream):
        """Non-throttling upstream errors keep their status and are not cached."""
        response = client.get("/api/r/missing.json")
        client.get("/api/r/missing.json")

        assert response.status_code == 404
        assert response.headers["x-cache"] == "MISS"
        assert len(upstream.calls) == 2

    def test_framing_headers_stripped(self, client, upstream):
        """Embedding restrictions are removed and CORS is added."""
        upstream.routes["https://www.reddit.com/r/golang.json"] = lambda request: httpx.Response(
            200,
            json={},
            headers={
                "X-Frame-Options": "SAMEORIGIN",
                "Content-Security-Policy": "frame-ancestors 'self'",
                "X-Custom": "kept",
            },
        )

        response = client.get("/api/r/golang.json")

        assert "x-frame-options" not in response.headers
        assert "content-security-policy" not in response.headers
        assert response.headers["x-custom"] == "kept"
        assert response.headers["access-control-allow-origin"] == "*"

    def test_rate_limit_exhausted(self, client, upstream, delays, service):
        """A persistently throttling upstream yields 429 with guidance."""
        upstream.routes["https://www.reddit.com/r/golang.json"] = lambda request: httpx.Response(429)

        response = client.get("/api/r/golang.json")

        assert response.status_code == 429
        assert response.headers["retry-after"] == "60"
        assert response.headers["x-cache"] == "MISS"
        assert response.headers["access-control-allow-origin"] == "*"
        body = response.json()
        assert body["error"] == "rate_limited"
        assert body["retry_after"] == 60
        assert "60 seconds" in body["message"]
        assert delays == [1.0, 2.0, 4.0]
        assert len(upstream.calls) == 4
        assert service.retry_states.size() == 0

    def test_connection_refused(self, client, upstream, delays):
        """Connection failures answer 502 after a single attempt."""
        def refuse(request):
            raise httpx.ConnectError("Connection refused", request=request)

        upstream.routes["https://www.reddit.com/r/golang.json"] = refuse

        response = client.get("/api/r/golang.json")

        assert response.status_code == 502
        assert response.json()["error"] == "upstream_unavailable"
        assert response.json()["message"]
        assert len(upstream.calls) == 1
        assert delays == []

    def test_timeout(self, client, upstream):
        """Upstream timeouts answer 504."""
        def stall(request):
            raise httpx.ReadTimeout("timed out", request=request)

        upstream.routes["https://www.reddit.com/r/golang.json"] = stall

        response = client.get("/api/r/golang.json")

        assert response.status_code == 504
        assert response.json()["error"] == "upstream_timeout"

    def test_redirect_followed(self, client, upstream, service):
        """A 302 is followed once and the target body returned as 200."""
        upstream.routes["https://www.reddit.com/r/old.json"] = lambda request: httpx.Response(
            302, headers={"Location": "https://www.reddit.com/r/new.json"}
        )
        upstream.routes["https://www.reddit.com/r/new.json"] = lambda request: httpx.Response(
            200, content=b'{"moved": true}', headers={"Content-Type": "application/json; charset=UTF-8"}
        )

        response = client.get("/api/r/old.json")

        assert response.status_code == 200
        assert response.content == b'{"moved": true}'
        assert response.headers["content-type"] == "application/json"
        assert service.cache.size() == 0

    @pytest.mark.parametrize("path", ["/api/r/golang.json", "/search/.json?q=go", "/r/golang/", "/", "/health"])
    def test_options_preflight(self, client, upstream, path):
        """OPTIONS is answered locally for every path."""
        response = client.options(path, headers={
            "Origin": "http://localhost:5173",
            "Access-Control-Request-Method": "GET",
        })

        assert response.status_code == 200
        assert response.content == b""
        assert response.headers["access-control-allow-origin"] == "*"
        assert upstream.calls == []

    def test_non_get_verbs_rejected(self, client, upstream):
        """Only GET is forwarded."""
        response = client.post("/api/r/golang.json", content=b"{}")

        assert response.status_code == 405
        assert response.json()["error"] == "method_not_allowed"
        assert response.headers["access-control-allow-origin"] == "*"
        assert upstream.calls == []

    def test_request_id_echoed(self, client, upstream):
        """Each response carries a correlation id."""
        response = client.get("/api/r/missing.json", headers={"X-Request-ID": "abc-123"})

        assert response.headers["x-request-id"] == "abc-123"

    def test_health(self, client, upstream):
        """Health is served locally with the cache size."""
        upstream.routes["https://www.reddit.com/r/golang.json"] = lambda request: httpx.Response(200, json={})
        client.get("/api/r/golang.json")

        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "forwarder"
        assert data["status"] == "ok"
        assert data["cache_size"] == 1
        assert upstream.calls == ["https://www.reddit.com/r/golang.json"]

    def test_stats(self, client):
        """Stats expose cache and retry bookkeeping."""
        response = client.get("/stats")

        assert response.status_code == 200
        data = response.json()
        assert data["cache_size"] == 0
        assert data["cache_ttl_seconds"] == 60
        assert data["retry_states"] == 0

    def test_metrics_endpoint(self, client, upstream):
        """Prometheus exposition includes forwarder counters."""
        client.get("/api/r/missing.json")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "text/plain" in response.headers["content-type"]
        assert "cache_events_total" in response.text
        assert "upstream_responses_total" in response.text


class TestInboundKey:
    """Test cases for inbound_key."""

    def test_path_and_query_verbatim(self):
        """Query strings are kept exactly as sent."""
        request = _request(b"/api/r/golang.json", b"limit=10&after=t3_x")

        assert inbound_key(request) == "/api/r/golang.json?limit=10&after=t3_x"

    def test_no_query(self):
        request = _request(b"/r/golang/", b"")

        assert inbound_key(request) == "/r/golang/"


def _request(raw_path: bytes, query: bytes):
    from starlette.requests import Request

    return Request({
        "type": "http",
        "method": "GET",
        "path": raw_path.decode(),
        "raw_path": raw_path,
        "query_string": query,
        "headers": [],
    })
