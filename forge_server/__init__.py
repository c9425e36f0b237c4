"""
forge-server — Reusable HTTP Server Shell
===========================================

What: Package root. Re-exports the pieces application code builds on.
How:  Application teams declare a routing tree, hand it to a ServerApp and
      start it. Cross-cutting policies (CORS, security headers, rate limits,
      health check) are applied by the shell, not by each route.

Architecture Note:

    ┌─────────────────────────────────────┐
    │      Routing tree (declarations)    │  ← Route / RoutingGroup
    ├─────────────────────────────────────┤
    │      ServerApp (shell, lifecycle)   │  ← flatten, limiter selection
    ├─────────────────────────────────────┤
    │      Middleware adapters            │  ← CORS, security, rate limit
    ├─────────────────────────────────────┤
    │      FastAPI / uvicorn (transport)  │
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"

from forge_server.exceptions import (  # noqa: E402
    ConfigurationError,
    ForgeServerError,
    HTTPError,
    NotFoundError,
    ServerStateError,
    ServiceUnavailableError,
    ValidationError,
)
from forge_server.responses import (  # noqa: E402
    forward_data_response,
    forward_error_response,
    handle_error_response,
    send_data_response,
)
from forge_server.routing import Method, Route, RoutingGroup  # noqa: E402
from forge_server.schemas.options import RateLimitOptions, ServerOptions  # noqa: E402
from forge_server.server import ServerApp, ServerState  # noqa: E402

__all__ = [
    "__version__",
    "ConfigurationError",
    "ForgeServerError",
    "HTTPError",
    "Method",
    "NotFoundError",
    "RateLimitOptions",
    "Route",
    "RoutingGroup",
    "ServerApp",
    "ServerOptions",
    "ServerState",
    "ServerStateError",
    "ServiceUnavailableError",
    "ValidationError",
    "forward_data_response",
    "forward_error_response",
    "handle_error_response",
    "send_data_response",
]
