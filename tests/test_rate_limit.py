"""
forge-server — Rate Limiting Tests
====================================

What:  Tests for limiter selection, the sliding window and enforcement.
How:   Unit tests drive RateLimiter.hit() with explicit timestamps; HTTP tests
       go through the full middleware stack with an in-process client.

Test Strategy:
    ✅ Selection table, all six rows
    ✅ Sliding window allows, blocks and recovers
    ✅ Informational headers follow the header flags
    ✅ 429 envelope with Retry-After
    ✅ One shared global limiter, one local limiter per route
    ✅ Ignored local config is warned about
"""

import logging

import pytest

from forge_server.middleware.rate_limit import (
    RateLimiter,
    RateLimitScope,
    select_rate_limit,
)
from forge_server.responses import send_data_response
from forge_server.routing import Method, Route, RoutingGroup
from forge_server.schemas.options import RateLimitOptions


async def ok():
    return send_data_response({"ok": True})


class TestSelectRateLimit:
    @pytest.mark.parametrize(
        "global_enabled, disable_global, has_local, expected",
        [
            (False, False, True, RateLimitScope.LOCAL),
            (False, False, False, RateLimitScope.NONE),
            (False, True, True, RateLimitScope.LOCAL),
            (True, False, True, RateLimitScope.GLOBAL),
            (True, False, False, RateLimitScope.GLOBAL),
            (True, True, True, RateLimitScope.LOCAL),
            (True, True, False, RateLimitScope.NONE),
        ],
    )
    def test_selection_table(self, global_enabled, disable_global, has_local, expected):
        assert select_rate_limit(global_enabled, disable_global, has_local) is expected


class TestRateLimiter:
    def setup_method(self):
        self.limiter = RateLimiter(RateLimitOptions(window_ms=1000, max=2), name="test")

    def test_allows_up_to_max(self):
        assert self.limiter.hit("a", now=0.0).allowed
        decision = self.limiter.hit("a", now=0.1)
        assert decision.allowed
        assert decision.remaining == 0

    def test_blocks_over_max(self):
        self.limiter.hit("a", now=0.0)
        self.limiter.hit("a", now=0.1)
        decision = self.limiter.hit("a", now=0.2)
        assert not decision.allowed
        assert decision.remaining == 0
        assert decision.retry_after == 1

    def test_window_slides(self):
        self.limiter.hit("a", now=0.0)
        self.limiter.hit("a", now=0.5)
        assert not self.limiter.hit("a", now=0.9).allowed
        # The first hit has left the window
        assert self.limiter.hit("a", now=1.01).allowed

    def test_keys_are_independent(self):
        self.limiter.hit("a", now=0.0)
        self.limiter.hit("a", now=0.0)
        assert self.limiter.hit("b", now=0.0).allowed

    def test_reset_clears_counters(self):
        self.limiter.hit("a", now=0.0)
        self.limiter.hit("a", now=0.0)
        self.limiter.reset()
        assert self.limiter.hit("a", now=0.0).allowed

    def test_legacy_headers_by_default(self):
        headers = self.limiter.headers(self.limiter.hit("a", now=0.0))
        assert headers["X-RateLimit-Limit"] == "2"
        assert headers["X-RateLimit-Remaining"] == "1"
        assert "X-RateLimit-Reset" in headers
        assert "RateLimit-Limit" not in headers

    def test_standard_headers(self):
        limiter = RateLimiter(
            RateLimitOptions(window_ms=1000, max=3, standard_headers=True, legacy_headers=False)
        )
        headers = limiter.headers(limiter.hit("a", now=0.0))
        assert headers == {
            "RateLimit-Limit": "3",
            "RateLimit-Remaining": "2",
            "RateLimit-Reset": "1",
        }

    def test_no_headers_when_both_flags_off(self):
        limiter = RateLimiter(
            RateLimitOptions(window_ms=1000, max=3, standard_headers=False, legacy_headers=False)
        )
        assert limiter.headers(limiter.hit("a", now=0.0)) == {}


class TestRateLimitEnforcement:
    async def test_global_limit_returns_429_envelope(self, make_server, make_client):
        server = make_server(
            enable_global_rate_limiter=True,
            global_rate_limiter_options={"window_ms": 60_000, "max": 2},
        )
        server.apply_routes("", RoutingGroup("/", [Route(Method.GET, "/ping", [ok])]))
        client = make_client(server)

        assert (await client.get("/ping")).status_code == 200
        assert (await client.get("/ping")).status_code == 200
        response = await client.get("/ping")

        assert response.status_code == 429
        assert response.json() == {
            "success": False,
            "message": "Too many requests, please try again later.",
        }
        assert int(response.headers["Retry-After"]) >= 1

    async def test_global_limiter_shared_across_routes(self, make_server, make_client):
        server = make_server(
            enable_global_rate_limiter=True,
            global_rate_limiter_options={"window_ms": 60_000, "max": 2},
        )
        server.apply_routes("", RoutingGroup("", [
            Route(Method.GET, "/a", [ok]),
            Route(Method.GET, "/b", [ok]),
        ]))
        client = make_client(server)

        assert (await client.get("/a")).status_code == 200
        assert (await client.get("/b")).status_code == 200
        assert (await client.get("/a")).status_code == 429

    async def test_local_limiters_are_per_route(self, make_server, make_client):
        server = make_server(enable_global_rate_limiter=False)
        limit = RateLimitOptions(window_ms=60_000, max=1)
        server.apply_routes("", RoutingGroup("", [
            Route(Method.GET, "/a", [ok], rate_limit=limit),
            Route(Method.GET, "/b", [ok], rate_limit=limit),
        ]))
        client = make_client(server)

        assert (await client.get("/a")).status_code == 200
        assert (await client.get("/b")).status_code == 200
        assert (await client.get("/a")).status_code == 429
        assert (await client.get("/b")).status_code == 429

    async def test_opted_out_route_uses_local_limit(self, make_server, make_client):
        server = make_server(
            enable_global_rate_limiter=True,
            global_rate_limiter_options={"window_ms": 60_000, "max": 100},
        )
        server.apply_routes("", Route(
            Method.POST,
            "/login",
            [ok],
            disable_global_rate_limit=True,
            rate_limit=RateLimitOptions(window_ms=60_000, max=1, message="Slow down", status_code=503),
        ))
        client = make_client(server)

        assert (await client.post("/login")).status_code == 200
        response = await client.post("/login")
        assert response.status_code == 503
        assert response.json() == {"success": False, "message": "Slow down"}

    async def test_unlimited_route_never_blocked(self, make_server, make_client):
        server = make_server(enable_global_rate_limiter=False)
        server.apply_routes("", Route(Method.GET, "/free", [ok]))
        client = make_client(server)

        for _ in range(20):
            assert (await client.get("/free")).status_code == 200

    async def test_health_check_not_limited(self, make_server, make_client):
        server = make_server(
            enable_global_rate_limiter=True,
            global_rate_limiter_options={"window_ms": 60_000, "max": 1},
        )
        client = make_client(server)
        for _ in range(5):
            assert (await client.get("/health")).status_code == 200

    async def test_legacy_headers_on_allowed_response(self, make_server, make_client):
        server = make_server(enable_global_rate_limiter=False)
        server.apply_routes("", Route(
            Method.GET, "/h", [ok], rate_limit=RateLimitOptions(window_ms=60_000, max=5)
        ))
        response = await make_client(server).get("/h")
        assert response.headers["X-RateLimit-Limit"] == "5"
        assert response.headers["X-RateLimit-Remaining"] == "4"

    async def test_default_global_options_send_no_headers(self, make_server, make_client):
        server = make_server(enable_global_rate_limiter=True)
        server.apply_routes("", Route(Method.GET, "/h", [ok]))
        response = await make_client(server).get("/h")
        assert response.status_code == 200
        assert "X-RateLimit-Limit" not in response.headers
        assert "RateLimit-Limit" not in response.headers

    async def test_global_wins_over_local_config(self, make_server, make_client):
        server = make_server(
            enable_global_rate_limiter=True,
            global_rate_limiter_options={"window_ms": 60_000, "max": 100},
        )
        server.apply_routes("", Route(
            Method.GET, "/g", [ok], rate_limit=RateLimitOptions(window_ms=60_000, max=1)
        ))
        client = make_client(server)

        statuses = [(await client.get("/g")).status_code for _ in range(3)]
        assert statuses == [200, 200, 200]
        assert server.global_rate_limiter is not None


class TestRateLimitLogging:
    def test_ignored_local_config_warns(self, make_server, caplog):
        server = make_server(enable_global_rate_limiter=True)
        with caplog.at_level(logging.WARNING, logger="forge_server"):
            server.apply_routes("/api", Route(
                Method.GET, "/x", [ok], rate_limit=RateLimitOptions(max=1)
            ))
        assert "Cannot apply rate limit on path-'/api/x'" in caplog.text

    def test_local_limit_logged(self, make_server, caplog):
        server = make_server(enable_global_rate_limiter=False)
        with caplog.at_level(logging.INFO, logger="forge_server"):
            server.apply_routes("", Route(
                Method.GET, "/x", [ok], rate_limit=RateLimitOptions(window_ms=2000, max=3)
            ))
        assert "Custom rate limit enabled on path-'/x', at 3 hits per 2000 milliseconds." in caplog.text

    def test_global_disabled_logged(self, make_server, caplog):
        with caplog.at_level(logging.INFO, logger="forge_server"):
            server = make_server(enable_global_rate_limiter=False)
        assert server.global_rate_limiter is None
        assert "Global rate limiting is disabled" in caplog.text
