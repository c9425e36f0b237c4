"""
forge-server — Rate Limiting
==============================

What:  Per-client sliding window limiters, the rule that picks which limiter
       guards a route, and the middleware that enforces the pick.
How:   The shell decides at registration time which limiter (if any) applies
       to each route and records it in a RateLimitRegistry. The middleware
       resolves the matched route per request and consults its limiter.

Selection table (evaluated once per route):

    global enabled │ route opts out │ local config │ applied
    ───────────────┼────────────────┼──────────────┼──────────────────────────
    no             │ -              │ yes          │ local
    no             │ -              │ no           │ none
    yes            │ no             │ yes          │ global (local ignored, warned)
    yes            │ no             │ no           │ global
    yes            │ yes            │ yes          │ local
    yes            │ yes            │ no           │ none

Algorithm: Sliding Window Counter
    1. Each client key gets a deque of hit timestamps
    2. On each hit, drop timestamps older than the window
    3. If remaining count >= max, reject
    4. Otherwise record the timestamp and allow

    Counters live in process memory and are lost on restart.
"""

import logging
import math
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Dict, Iterator, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import BaseRoute, Match

from forge_server.exceptions import RateLimitExceededError
from forge_server.responses import handle_error_response
from forge_server.schemas.options import RateLimitOptions

logger = logging.getLogger(__name__)

# Prune inactive keys every N recorded hits
_CLEANUP_EVERY = 1000


class RateLimitScope(str, Enum):
    NONE = "none"
    GLOBAL = "global"
    LOCAL = "local"


def select_rate_limit(
    global_enabled: bool,
    disable_global: bool,
    has_local: bool,
) -> RateLimitScope:
    """Apply the selection table above to one route."""
    if global_enabled and not disable_global:
        return RateLimitScope.GLOBAL
    if has_local:
        return RateLimitScope.LOCAL
    return RateLimitScope.NONE


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_after: float  # seconds until the oldest hit leaves the window
    retry_after: int  # whole seconds, meaningful when not allowed


class RateLimiter:
    """
    In-memory sliding window limiter keyed by client identity.

    Thread Safety:
        hit() holds a lock around the prune-compare-record step, so two
        concurrent hits from the same client can never both take the last slot.
        Nothing in hit() awaits, so under asyncio the step is also atomic.
    """

    def __init__(self, options: RateLimitOptions, name: str = "limiter"):
        self.options = options
        self.name = name
        self._window = options.window_ms / 1000.0
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()
        self._recorded = 0

    def hit(self, key: str, now: Optional[float] = None) -> RateLimitDecision:
        now = time.monotonic() if now is None else now
        window_start = now - self._window
        with self._lock:
            timestamps = self._hits[key]
            while timestamps and timestamps[0] <= window_start:
                timestamps.popleft()

            if len(timestamps) >= self.options.max:
                reset_after = timestamps[0] + self._window - now
                return RateLimitDecision(
                    allowed=False,
                    limit=self.options.max,
                    remaining=0,
                    reset_after=reset_after,
                    retry_after=max(1, math.ceil(reset_after)),
                )

            timestamps.append(now)
            self._recorded += 1
            if self._recorded % _CLEANUP_EVERY == 0:
                self._cleanup_inactive_keys(window_start)

            return RateLimitDecision(
                allowed=True,
                limit=self.options.max,
                remaining=self.options.max - len(timestamps),
                reset_after=timestamps[0] + self._window - now,
                retry_after=0,
            )

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()

    def _cleanup_inactive_keys(self, window_start: float) -> None:
        inactive = [
            key for key, timestamps in self._hits.items()
            if not timestamps or timestamps[-1] <= window_start
        ]
        for key in inactive:
            del self._hits[key]
        if inactive:
            logger.debug("%s: cleaned up %d inactive client entries", self.name, len(inactive))

    def headers(self, decision: RateLimitDecision) -> Dict[str, str]:
        """Informational headers for a decision, per the header flags."""
        headers: Dict[str, str] = {}
        reset_seconds = max(0, math.ceil(decision.reset_after))
        if self.options.standard_headers:
            headers["RateLimit-Limit"] = str(decision.limit)
            headers["RateLimit-Remaining"] = str(decision.remaining)
            headers["RateLimit-Reset"] = str(reset_seconds)
        if self.options.legacy_headers:
            headers["X-RateLimit-Limit"] = str(decision.limit)
            headers["X-RateLimit-Remaining"] = str(decision.remaining)
            headers["X-RateLimit-Reset"] = str(math.ceil(time.time() + reset_seconds))
        return headers


class RateLimitRegistry:
    """Transport route → limiter guarding it. Filled in as routes are registered."""

    def __init__(self) -> None:
        self._limiters: Dict[int, RateLimiter] = {}
        self._routes: Dict[int, BaseRoute] = {}

    def register(self, route: BaseRoute, limiter: RateLimiter) -> None:
        self._limiters[id(route)] = limiter
        self._routes[id(route)] = route

    def get(self, route: BaseRoute) -> Optional[RateLimiter]:
        return self._limiters.get(id(route))

    def __len__(self) -> int:
        return len(self._limiters)

    def __iter__(self) -> Iterator[BaseRoute]:
        return iter(self._routes.values())


def client_key(request: Request) -> str:
    return request.client.host if request.client else "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Enforces the limiter recorded for the matched route.

    Requests that match no registered route, or a route without a limiter
    (the health check, for one), pass through untouched.

    Response on rate limit:
        status:  the limiter's status_code (429 by default)
        body:    {"success": false, "message": <limiter message>}
        headers: Retry-After plus the limiter's informational headers
    """

    def __init__(self, app, registry: RateLimitRegistry, **kwargs):
        super().__init__(app, **kwargs)
        self.registry = registry

    def _limiter_for(self, request: Request) -> Optional[RateLimiter]:
        if not len(self.registry):
            return None
        for route in request.app.router.routes:
            match, _ = route.matches(request.scope)
            if match is Match.FULL:
                return self.registry.get(route)
        return None

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        limiter = self._limiter_for(request)
        if limiter is None:
            return await call_next(request)

        key = client_key(request)
        decision = limiter.hit(key)
        headers = limiter.headers(decision)

        if not decision.allowed:
            logger.warning(
                "Rate limit exceeded for %s on %s %s (%s: %d hits per %d ms)",
                key,
                request.method,
                request.url.path,
                limiter.name,
                limiter.options.max,
                limiter.options.window_ms,
            )
            response = handle_error_response(
                RateLimitExceededError(
                    retry_after=decision.retry_after,
                    message=limiter.options.message,
                    status_code=limiter.options.status_code,
                )
            )
            response.headers["Retry-After"] = str(decision.retry_after)
            response.headers.update(headers)
            return response

        response = await call_next(request)
        response.headers.update(headers)
        return response
