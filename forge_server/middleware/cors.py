"""
forge-server — CORS Adapter
=============================

What:  Installs Starlette's CORSMiddleware on the stack being built.
How:   Maps CorsOptions onto CORSMiddleware arguments; with no options every
       origin is allowed for the common methods.

CORS is governed only by `cors.disable`; `security_headers.disable_all` does
not touch it.
"""

import logging
from typing import List, Optional

from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware

from forge_server.schemas.options import CorsOptions

logger = logging.getLogger(__name__)


def enable_cors(stack: List[Middleware], options: Optional[CorsOptions] = None) -> None:
    options = options or CorsOptions()
    stack.append(
        Middleware(
            CORSMiddleware,
            allow_origins=options.allow_origins,
            allow_origin_regex=options.allow_origin_regex,
            allow_methods=options.allow_methods,
            allow_headers=options.allow_headers,
            expose_headers=options.expose_headers,
            allow_credentials=options.allow_credentials,
            max_age=options.max_age,
        )
    )
    logger.info("CORS enabled.")
