"""
forge-server — JSON Body Parser Middleware
============================================

What:  Parses JSON request bodies once, up front, for every route.
How:   For requests whose Content-Type is application/json (or a +json type):
       1. Reject a declared or actual body larger than `limit` → 413
       2. Reject a body that is not valid JSON → 400
       3. Store the parsed document on `request.state.body` ({} when empty)

       Non-JSON requests pass through; `request.state.body` is left unset.
       The raw body remains readable by FastAPI body parameters downstream.
"""

import json
import logging

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from forge_server.exceptions import HTTPError, ValidationError
from forge_server.responses import handle_error_response

logger = logging.getLogger(__name__)

_BODYLESS_METHODS = {"GET", "HEAD", "OPTIONS"}


def is_json_content_type(content_type: str) -> bool:
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type == "application/json" or media_type.endswith("+json")


class PayloadTooLargeError(HTTPError):
    status_code = 413

    def __init__(self, limit: int):
        super().__init__(
            message=f"Request body exceeds the {limit} byte limit",
            context={"limit": limit},
        )


class JSONBodyParserMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, limit: int = 102_400, **kwargs):
        super().__init__(app, **kwargs)
        self.limit = limit

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.method in _BODYLESS_METHODS or not is_json_content_type(
            request.headers.get("content-type", "")
        ):
            return await call_next(request)

        declared = request.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > self.limit:
            return handle_error_response(PayloadTooLargeError(self.limit))

        body = await request.body()
        if len(body) > self.limit:
            return handle_error_response(PayloadTooLargeError(self.limit))

        if not body.strip():
            request.state.body = {}
            return await call_next(request)

        try:
            request.state.body = json.loads(body)
        except (ValueError, RecursionError) as e:
            logger.warning(
                "Malformed JSON body on %s %s: %s", request.method, request.url.path, e
            )
            return handle_error_response(ValidationError("Malformed JSON in request body"))

        return await call_next(request)
