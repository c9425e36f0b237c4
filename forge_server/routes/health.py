"""
forge-server — Health Check Route
===================================

What:  Liveness endpoint for load balancers and container probes.
How:   Answers {"success": true, "data": {"version", "date"}}. If building the
       status fails, the error is logged and the probe gets
       503 {"success": false, "message": "Service Unavailable"}; the handler
       itself never raises.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from starlette.responses import Response

from forge_server.exceptions import ServiceUnavailableError
from forge_server.responses import handle_error_response, send_data_response

logger = logging.getLogger(__name__)


def health_status(version: str) -> Dict[str, Any]:
    return {"version": version, "date": datetime.now(timezone.utc)}


def build_health_endpoint(
    version: str,
    log: Optional[logging.Logger] = None,
    status_provider: Optional[Callable[[str], Dict[str, Any]]] = None,
):
    """
    Create the health-check endpoint for one server.

    Args:
        version:          reported in the payload
        log:              logger for failures (defaults to this module's)
        status_provider:  builds the payload (health_status when None); any
                          exception it raises is answered with 503
    """
    log = log or logger

    async def health_check() -> Response:
        try:
            provider = status_provider or health_status
            return send_data_response(provider(version))
        except Exception:
            log.error("Health check error", exc_info=True)
            return handle_error_response(ServiceUnavailableError("Service Unavailable"))

    return health_check
