"""
forge-server — Example API
============================

A minimal routing tree showing how application routes are declared. The
entrypoint mounts it at the server root.
"""

import logging

from starlette.responses import Response

from forge_server.responses import handle_error_response, send_data_response
from forge_server.routing import Method, Route, RoutingGroup

logger = logging.getLogger(__name__)


async def get_example() -> Response:
    try:
        return send_data_response({"message": "Powered By Forge Cli tool"})
    except Exception as error:
        logger.critical("Example route failed", exc_info=True)
        return handle_error_response(error)


example_route = Route(method=Method.GET, path="/", handlers=[get_example])

example_routing = RoutingGroup(url="", children=[example_route])
