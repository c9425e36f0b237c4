"""
forge-server — Server Shell
=============================

What:  ServerApp wraps a FastAPI transport and a uvicorn listener, applies the
       cross-cutting policies once, and turns routing trees into endpoints.
How:   Construction assembles the middleware stack in execution order and
       creates the FastAPI app with it. apply_routes() flattens a tree and
       registers each route with the rate limiter chosen for it. start() and
       stop() drive the listener.

Lifecycle:
    CONSTRUCTED ──apply_routes──▶ ROUTES_APPLIED ──start──▶ LISTENING ──stop──▶ CLOSED
         │                              ▲                      │  ▲
         └────────────start─────────────┼──────────────────────┘  │
                                        └──────apply_routes───────┘

    apply_routes() is accepted in every state but CLOSED. CLOSED is terminal.
    start()/stop() must not overlap; the owner serializes them.

Middleware stack (outermost first):
    access log → JSON body parser → file upload? → CORS? → security headers* →
    rate limit → handler errors → router

Usage:
    server = ServerApp(ServerOptions(enable_global_rate_limiter=True, port=8080))
    server.apply_routes("/api", api_tree)
    await server.start()
    ...
    await server.stop()
"""

import asyncio
import logging
import socket
from enum import Enum
from typing import Any, List, Mapping, Optional, Union

import pydantic
import uvicorn
from fastapi import Depends, FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.routing import APIRoute
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware import Middleware
from starlette.requests import Request

from forge_server.exceptions import (
    ConfigurationError,
    HTTPError,
    RateLimitExceededError,
    ServerStartError,
    ServerStateError,
    ValidationError,
)
from forge_server.middleware.body_parser import JSONBodyParserMiddleware
from forge_server.middleware.cors import enable_cors
from forge_server.middleware.errors import HandlerErrorMiddleware
from forge_server.middleware.file_upload import FileUploadMiddleware
from forge_server.middleware.logging import RequestLoggingMiddleware
from forge_server.middleware.rate_limit import (
    RateLimiter,
    RateLimitMiddleware,
    RateLimitRegistry,
    RateLimitScope,
    select_rate_limit,
)
from forge_server.middleware.security_headers import apply_security_headers
from forge_server.responses import handle_error_response
from forge_server.routes.health import build_health_endpoint
from forge_server.routing import ResolvedRoute, RoutingNode, flatten
from forge_server.schemas.options import RateLimitOptions, ServerOptions

logger = logging.getLogger(__name__)

_STARTUP_POLL_INTERVAL = 0.01


class ServerState(str, Enum):
    CONSTRUCTED = "constructed"
    ROUTES_APPLIED = "routes_applied"
    LISTENING = "listening"
    CLOSED = "closed"


def _resolve_options(options: Union[ServerOptions, Mapping[str, Any]]) -> ServerOptions:
    if isinstance(options, ServerOptions):
        return options
    try:
        return ServerOptions.model_validate(options)
    except pydantic.ValidationError as e:
        raise ConfigurationError(
            f"Invalid server options: {e.error_count()} error(s)",
            context={"errors": e.errors(include_url=False)},
        ) from e


class ServerApp:
    """
    One HTTP server: transport, policies, routes and listener.

    Attributes:
        options:              the validated ServerOptions
        logger:               logger named after the server
        security_middleware:  names of installed security protections, in order
        global_rate_limiter:  the shared limiter, or None when disabled
    """

    def __init__(self, options: Union[ServerOptions, Mapping[str, Any]]):
        self.options = _resolve_options(options)
        self.server_name = self.options.server_name
        self.logger = logger.getChild(self.server_name.lower())
        self._state = ServerState.CONSTRUCTED
        self._port = self.options.port
        self._http_server: Optional[uvicorn.Server] = None
        self._serve_task: Optional[asyncio.Task] = None
        self._rate_limits = RateLimitRegistry()
        self._resolved_routes: List[ResolvedRoute] = []

        self.logger.info("%s Details :-", self.server_name)

        health = self.options.health_check
        stack: List[Middleware] = [
            Middleware(
                RequestLoggingMiddleware,
                skip_paths=() if health.disable else (health.resolved_path,),
            ),
            Middleware(JSONBodyParserMiddleware, limit=self.options.json_body_limit),
        ]
        if self.options.enable_file_upload:
            stack.append(Middleware(FileUploadMiddleware, options=self.options.file_upload))
            self.logger.info("File upload enabled.")

        # Global rate limit
        self.global_rate_limit_enabled = self.options.enable_global_rate_limiter
        self.global_rate_limiter: Optional[RateLimiter] = None
        if self.global_rate_limit_enabled:
            global_options = self.options.resolved_global_rate_limit
            self.global_rate_limiter = RateLimiter(global_options, name="global")
            self.logger.info(
                "Rate limit enabled on each route, %d hits per %d milliseconds.",
                global_options.max,
                global_options.window_ms,
            )
        else:
            self.logger.info("Global rate limiting is disabled")

        if not self.options.cors.disable:
            enable_cors(stack, self.options.cors.options)

        self.security_middleware = apply_security_headers(stack, self.options.security_headers)

        stack.append(Middleware(RateLimitMiddleware, registry=self._rate_limits))
        stack.append(Middleware(HandlerErrorMiddleware))
        self.logger.info("End of %s Details", self.server_name)

        self._app = FastAPI(
            title=self.server_name,
            version=self.options.version,
            middleware=stack,
        )
        self._app.state.file_upload_enabled = self.options.enable_file_upload
        self._register_exception_handlers()

        if health.disable:
            self.logger.warning("Health check route is disabled on server: %s", self.server_name)
        else:
            self._app.add_api_route(
                health.resolved_path,
                build_health_endpoint(self.options.version, self.logger),
                methods=["GET"],
                tags=["Health"],
            )
            self.logger.info(
                "Added health check route %s on server: %s",
                health.resolved_path,
                self.server_name,
            )

    # ── Exception handlers ─────────────────────────────────────────────────

    def _register_exception_handlers(self) -> None:
        log = self.logger

        async def handle_http_error(request: Request, exc: HTTPError):
            log.warning(
                "%s %s failed with %d: %s | Context: %s",
                request.method,
                request.url.path,
                exc.status_code,
                exc.message,
                exc.context,
            )
            response = handle_error_response(exc)
            if isinstance(exc, RateLimitExceededError):
                response.headers["Retry-After"] = str(exc.retry_after)
            return response

        async def handle_starlette_http_exception(request: Request, exc: StarletteHTTPException):
            response = handle_error_response(exc)
            if exc.headers:
                response.headers.update(exc.headers)
            return response

        async def handle_request_validation_error(request: Request, exc: RequestValidationError):
            # Client input stays in the log, never in the response
            log.warning(
                "%s %s failed request validation: %s",
                request.method,
                request.url.path,
                exc.errors(),
            )
            fields = [".".join(str(part) for part in error.get("loc", ())) for error in exc.errors()]
            return handle_error_response(
                ValidationError(
                    "Request validation failed",
                    context={"fields": fields},
                )
            )

        self._app.add_exception_handler(HTTPError, handle_http_error)
        self._app.add_exception_handler(StarletteHTTPException, handle_starlette_http_exception)
        self._app.add_exception_handler(RequestValidationError, handle_request_validation_error)

    # ── Routes ─────────────────────────────────────────────────────────────

    def apply_routes(self, route_url: str, routing: RoutingNode) -> List[ResolvedRoute]:
        """
        Register every route in `routing` under `route_url`.

        Returns:
            The resolved routes, in declaration order.

        Raises:
            ServerStateError if the server is closed.
            ConfigurationError if the tree contains an unknown node type.
        """
        if self._state is ServerState.CLOSED:
            raise ServerStateError(
                f"Cannot apply routes: server {self.server_name} is closed"
            )

        resolved = flatten(routing, route_url)
        for route in resolved:
            self._register(route)
        self._resolved_routes.extend(resolved)

        # Routes added after the docs were first served must show up in them
        self._app.openapi_schema = None
        if self._state is ServerState.CONSTRUCTED:
            self._state = ServerState.ROUTES_APPLIED
        return resolved

    def _limiter_for(self, route: ResolvedRoute) -> Optional[RateLimiter]:
        scope = select_rate_limit(
            self.global_rate_limit_enabled,
            route.disable_global_rate_limit,
            route.rate_limit is not None,
        )
        if scope is RateLimitScope.GLOBAL:
            if route.rate_limit is not None:
                self.logger.warning(
                    "Cannot apply rate limit on path-'%s' as global rate limit is not disabled on the path.",
                    route.path,
                )
            return self.global_rate_limiter
        if scope is RateLimitScope.LOCAL:
            return self._local_rate_limit(route.rate_limit, route.path)
        return None

    def _local_rate_limit(self, options: RateLimitOptions, path: str) -> RateLimiter:
        self.logger.info(
            "Custom rate limit enabled on path-'%s', at %d hits per %d milliseconds.",
            path,
            options.max,
            options.window_ms,
        )
        return RateLimiter(options, name=f"local:{path}")

    def _register(self, route: ResolvedRoute) -> None:
        limiter = self._limiter_for(route)
        self._app.add_api_route(
            route.path,
            route.endpoint,
            methods=sorted(route.verbs),
            dependencies=[Depends(handler, use_cache=False) for handler in route.dependencies],
        )
        registered = self._app.router.routes[-1]
        if limiter is not None:
            self._rate_limits.register(registered, limiter)
        self.logger.debug(
            "Registered %s %s (rate limit: %s)",
            route.method.value,
            route.path,
            limiter.name if limiter else "none",
        )

    # ── Lifecycle ──────────────────────────────────────────────────────────

    def _bind_socket(self) -> socket.socket:
        host = self.options.host
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, self.options.port))
        except OSError:
            sock.close()
            raise
        sock.set_inheritable(True)
        return sock

    async def start(self) -> None:
        """
        Bind the configured port and start serving.

        Resolves once the listener accepts connections.

        Raises:
            OSError on bind failure (port in use, permission denied).
            ServerStateError if already listening or closed.
            ServerStartError if the listener exits during startup.
        """
        if self._state is ServerState.CLOSED:
            raise ServerStateError(
                f"Server {self.server_name} is closed and cannot be restarted"
            )
        if self._state is ServerState.LISTENING:
            raise ServerStateError(f"Server {self.server_name} is already listening")

        try:
            sock = self._bind_socket()
        except OSError as e:
            self.logger.error(
                "Could not bind %s:%d for %s: %s",
                self.options.host,
                self.options.port,
                self.server_name,
                e,
            )
            raise
        self._port = sock.getsockname()[1]

        config = uvicorn.Config(
            self._app,
            log_config=None,
            access_log=False,
            lifespan="off",
        )
        server = uvicorn.Server(config)
        task = asyncio.create_task(server.serve(sockets=[sock]))

        while not server.started:
            if task.done():
                sock.close()
                task.result()
                raise ServerStartError(
                    f"{self.server_name} stopped before accepting connections"
                )
            await asyncio.sleep(_STARTUP_POLL_INTERVAL)

        self._http_server = server
        self._serve_task = task
        self._state = ServerState.LISTENING
        self.logger.info("%s STARTED ON PORT : %d", self.server_name.upper(), self._port)

    async def stop(self) -> None:
        """
        Drain in-flight requests and release the port.

        A server that was never started, or is already closed, is left as is;
        the call is logged and returns normally.

        Raises:
            Whatever the listener raised while closing (logged first).
        """
        if self._http_server is None or self._serve_task is None:
            self.logger.error("Cannot close because server is not initialized")
            return

        server, task = self._http_server, self._serve_task
        server.should_exit = True
        try:
            await task
        except Exception:
            self.logger.error(
                "Error while closing the server: %s", self.server_name, exc_info=True
            )
            raise
        finally:
            self._http_server = None
            self._serve_task = None
            self._state = ServerState.CLOSED

        self.logger.info("%s CLOSED ON PORT : %d", self.server_name.upper(), self._port)

    # ── Accessors ──────────────────────────────────────────────────────────

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def app(self) -> FastAPI:
        """The FastAPI transport, e.g. for httpx.ASGITransport in tests."""
        return self._app

    @property
    def http_server(self) -> uvicorn.Server:
        if self._http_server is not None:
            return self._http_server
        raise ServerStateError("Cannot get server instance as it is not initialized")

    @property
    def port(self) -> int:
        """The configured port, or the port actually bound once listening."""
        return self._port

    @property
    def routes(self) -> List[ResolvedRoute]:
        return list(self._resolved_routes)

    @property
    def api_routes(self) -> List[APIRoute]:
        return [r for r in self._app.router.routes if isinstance(r, APIRoute)]
