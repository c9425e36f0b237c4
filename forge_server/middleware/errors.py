"""
forge-server — Handler Error Middleware
=========================================

What:  Last line of defence around every handler chain.
How:   Any exception escaping a route (after FastAPI's own exception handlers
       had their chance) is logged with its traceback and answered with a
       500 error envelope carrying only the generic message.

The server keeps serving: an exception here never propagates to uvicorn.
"""

import logging

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from forge_server.responses import handle_error_response

logger = logging.getLogger(__name__)


class HandlerErrorMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            logger.error(
                "Unhandled error on %s %s: %s",
                request.method,
                request.url.path,
                exc,
                exc_info=True,
            )
            return handle_error_response(exc)
