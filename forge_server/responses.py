"""
forge-server — Response Envelope Helpers
==========================================

What:  The two response shapes every handler uses.
How:   Each helper returns a ready-to-send Starlette response; handlers simply
       `return send_data_response(...)` or `return handle_error_response(exc)`.

Shapes:
    Wrapped (own API):
        success → {"success": true, "data": <payload>}
        error   → {"success": false, "message": "<text>"}
    Forwarding (proxying another service's shape):
        success → <payload> as-is
        error   → {"message": "<text>"}

Status selection for errors:
    HTTPError                                     → its own status and message
    Starlette HTTPException                       → status_code and detail
    any other exception                           → 500, generic message
    mapping with a numeric "status"               → that status and message
    anything else                                 → 400, generic message

Unexpected exceptions never reach the client verbatim; only the generic
message is sent. Callers log the detail.
"""

from collections.abc import Mapping
from typing import Any, Optional, Tuple

from fastapi.encoders import jsonable_encoder
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import JSONResponse, Response

from forge_server.exceptions import HTTPError

# Status codes for responses
OK_STATUS_CODE = 200
CREATED_STATUS_CODE = 201
ACCEPTED_STATUS_CODE = 202
NO_CONTENT_STATUS_CODE = 204
BAD_REQUEST_STATUS_CODE = 400
UNAUTHORIZED_STATUS_CODE = 401
NOT_FOUND_STATUS_CODE = 404
SERVER_ERROR_STATUS_CODE = 500
BAD_GATEWAY_STATUS_CODE = 502
SERVICE_UNAVAILABLE_STATUS_CODE = 503

SUCCESS_CODES = frozenset({200, 201, 202, 203, 204, 205, 207, 208, 226})

# Responses with these statuses must not carry a body
_BODYLESS_CODES = frozenset({204, 205})

GENERIC_ERROR_MESSAGE = "Some error occurred. Please try again after some time."


def _coerce_status(value: Any) -> Optional[int]:
    """A valid HTTP status code, or None for anything else."""
    if isinstance(value, bool):
        return None
    try:
        status = int(value)
    except (TypeError, ValueError):
        return None
    return status if 100 <= status <= 599 else None


def _error_status_and_message(error: Any) -> Tuple[int, str]:
    if isinstance(error, HTTPError):
        return error.status_code, error.message
    if isinstance(error, StarletteHTTPException):
        return error.status_code, str(error.detail)
    if isinstance(error, BaseException):
        return SERVER_ERROR_STATUS_CODE, GENERIC_ERROR_MESSAGE
    if isinstance(error, Mapping) and error.get("status"):
        status = _coerce_status(error["status"])
        if status is not None:
            return status, str(error.get("message") or GENERIC_ERROR_MESSAGE)
    return BAD_REQUEST_STATUS_CODE, GENERIC_ERROR_MESSAGE


def _success_response(content: Any, status_code: int) -> Response:
    if status_code not in SUCCESS_CODES:
        raise ValueError(
            f"{status_code} is not a success status code. Allowed: {sorted(SUCCESS_CODES)}"
        )
    if status_code in _BODYLESS_CODES:
        return Response(status_code=status_code)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(content))


def handle_error_response(error: Any) -> JSONResponse:
    """
    Build the wrapped error response: {"success": false, "message": "..."}.

    Args:
        error: an exception, or a `{"status": int, "message": str}` mapping
    """
    status_code, message = _error_status_and_message(error)
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message},
    )


def send_data_response(data: Any, status_code: int = OK_STATUS_CODE) -> Response:
    """
    Build the wrapped success response: {"success": true, "data": <data>}.

    Args:
        data:        anything `jsonable_encoder` understands
        status_code: one of SUCCESS_CODES (default 200)

    Raises:
        ValueError if status_code is not a success code
    """
    return _success_response({"success": True, "data": data}, status_code)


def forward_error_response(error: Any) -> JSONResponse:
    """Same status selection as handle_error_response, body is just {"message": "..."}."""
    status_code, message = _error_status_and_message(error)
    return JSONResponse(status_code=status_code, content={"message": message})


def forward_data_response(data: Any, status_code: int = OK_STATUS_CODE) -> Response:
    """Send `data` as the whole body, without the success envelope."""
    return _success_response(data, status_code)
