"""
forge-server — Process Entrypoint
===================================

What:  Boots one ServerApp (plus the database pool when configured) from
       environment settings and keeps it running until SIGTERM/SIGINT.
How:   Application owns both resources. boot_up() connects the database,
       mounts the example routing tree at the root and starts listening;
       graceful_shutdown() closes the listener, then the pool.

Lifecycle:
    Startup:
    1. Load Settings (fail fast on invalid environment)
    2. Initialize logging
    3. Connect the database pool (when DATABASE_URL is set)
    4. Start listening

    Shutdown (signal, or a boot failure):
    1. Stop accepting requests, drain in-flight ones
    2. Dispose the database pool
    3. Log and exit

Run:
    forge-server                 (console script)
    python -m forge_server
"""

import asyncio
import logging
import signal
import sys
from typing import Optional

from forge_server.config import Settings
from forge_server.database import DatabaseService
from forge_server.routes.example import example_routing
from forge_server.server import ServerApp

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging(level: str = "INFO") -> None:
    """
    Configure process-wide logging.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s
    """
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def create_server(settings: Settings) -> ServerApp:
    """Build the server described by `settings` with the example routes mounted."""
    server = ServerApp(settings.server_options())
    server.apply_routes("", example_routing)
    return server


# ══════════════════════════════════════════════════════════════════════════
# Application
# ══════════════════════════════════════════════════════════════════════════

class Application:
    def __init__(self, settings: Settings):
        self.settings = settings
        self.server = create_server(settings)
        database_options = settings.database_options()
        self.database: Optional[DatabaseService] = (
            DatabaseService(database_options) if database_options else None
        )
        self._shutdown = asyncio.Event()

    async def boot_up(self) -> bool:
        """
        Connect the database and start the server.

        Returns:
            True once listening. False if any step failed; by then everything
            already started has been shut down again.
        """
        try:
            if self.database is not None:
                await self.database.connect()
            await self.server.start()
            return True
        except Exception as e:
            logger.critical("Error while booting up server: %s", e, exc_info=True)
            await self.graceful_shutdown()
            return False

    async def graceful_shutdown(self) -> None:
        """Stop the server, then the database pool. Logs failures, never raises."""
        logger.critical("Shutting down %s gracefully...", self.settings.server_name)
        try:
            await self.server.stop()
        except Exception:
            logger.critical("Error while closing the server", exc_info=True)
        if self.database is not None:
            try:
                await self.database.shutdown()
            except Exception:
                logger.critical("Error while closing the database pool", exc_info=True)
        logger.critical("Shutdown complete.")

    def request_shutdown(self) -> None:
        self._shutdown.set()

    async def run(self) -> int:
        if not await self.boot_up():
            return 1

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
            except NotImplementedError:
                # Windows event loops have no signal handler support
                logger.debug("Signal handler for %s not supported", sig.name)

        await self._shutdown.wait()
        logger.critical("Termination signal received.")
        await self.graceful_shutdown()
        return 0


def main() -> None:
    settings = Settings()
    setup_logging(settings.log_level)
    sys.exit(asyncio.run(Application(settings).run()))


if __name__ == "__main__":
    main()
