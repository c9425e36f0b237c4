"""
forge-server — Exception Hierarchy
====================================

What:  Application-specific exceptions for the server shell and for route handlers.
How:   Shell errors (configuration, lifecycle) propagate to the caller that owns
       the ServerApp. HTTP errors carry a status code and a client-safe message;
       the response envelope helpers turn them into `{success: false, message}`.

Exception Hierarchy:
    ForgeServerError (base)
    ├── ConfigurationError        → construction aborted
    ├── ServerStateError          → illegal lifecycle transition
    ├── ServerStartError          → listener never came up
    └── HTTPError                 → carries its own status
        ├── ValidationError          → 400 Bad Request
        ├── NotFoundError            → 404 Not Found
        ├── RateLimitExceededError   → 429 Too Many Requests
        ├── FileStorageError         → 500 Internal Server Error
        ├── DatabaseError            → 500 Internal Server Error
        └── ServiceUnavailableError  → 503 Service Unavailable

Bind failures are not wrapped: the OSError raised by the socket layer reaches
the caller of ServerApp.start() unchanged.
"""

from typing import Any, Dict, Optional


class ForgeServerError(Exception):
    """
    Base exception for all forge-server errors.

    Attributes:
        message:  Human-readable description
        context:  Additional debug info (logged, never returned to clients)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ConfigurationError(ForgeServerError):
    """Raised when server options are structurally invalid (bad port, unknown keys, empty handler chain)."""


class ServerStateError(ForgeServerError):
    """
    Raised on an illegal lifecycle transition.

    Examples: starting a server that is already listening, restarting a closed
    server, registering routes on a closed server, reading the listener handle
    before start().
    """


class ServerStartError(ForgeServerError):
    """Raised when the listener exits during startup without a socket error."""


class HTTPError(ForgeServerError):
    """
    A handler failure that declares the status the client should see.

    What:    The typed counterpart of a `{status, message}` error object.
    When:    Raised inside handler chains; converted by handle_error_response.
    HTTP:    `status_code` (default 500) with `message` as the client message.
    """

    status_code: int = 500

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
        if status_code is not None:
            self.status_code = status_code

    @property
    def status(self) -> int:
        return self.status_code


class ValidationError(HTTPError):
    """
    Raised when client input fails validation.

    HTTP: 400 Bad Request
    """

    status_code = 400

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class NotFoundError(HTTPError):
    """Raised when a requested resource does not exist. HTTP: 404 Not Found"""

    status_code = 404

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class RateLimitExceededError(HTTPError):
    """
    Raised when a client exceeds a rate limit.

    HTTP:    429 Too Many Requests (or the limiter's configured status)
    Carries: retry_after, the seconds until the oldest hit leaves the window
    """

    status_code = 429

    def __init__(
        self,
        retry_after: int = 1,
        message: str = "Too many requests, please try again later.",
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, status_code=status_code, context=ctx)
        self.retry_after = retry_after


class FileStorageError(HTTPError):
    """Raised when an uploaded file cannot be written. HTTP: 500"""

    def __init__(
        self,
        message: str = "File storage operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DatabaseError(HTTPError):
    """
    Raised when the database collaborator cannot serve a request.

    The client message is always generic; query text and driver errors only
    ever go to the server log through `context`.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ServiceUnavailableError(HTTPError):
    """HTTP: 503 Service Unavailable"""

    status_code = 503

    def __init__(
        self,
        message: str = "Service Unavailable",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
