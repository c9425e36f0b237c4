"""
forge-server — Test Configuration (conftest.py)
=================================================

What:  Shared pytest fixtures for the whole suite.
How:   pytest auto-discovers conftest.py; every fixture is function-scoped so
       each test gets a fresh server, limiter state and client.

Fixture Hierarchy:
    ├── make_server:     factory building a ServerApp from option overrides
    ├── server:          default ServerApp (global rate limit off)
    ├── make_client:     factory wrapping any ServerApp in an httpx AsyncClient
    ├── client:          AsyncClient bound to `server`
    └── mock_connection: AsyncMock standing in for a SQLAlchemy AsyncConnection
"""

from typing import Any, AsyncGenerator, Callable, Dict, List
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from forge_server.server import ServerApp


@pytest.fixture
def make_server() -> Callable[..., ServerApp]:
    """
    Build a ServerApp from keyword overrides.

    Usage:
        server = make_server(enable_global_rate_limiter=True, port=0)
    """

    def _make(**overrides: Any) -> ServerApp:
        options: Dict[str, Any] = {"enable_global_rate_limiter": False, "port": 0}
        options.update(overrides)
        return ServerApp(options)

    return _make


@pytest.fixture
def server(make_server) -> ServerApp:
    return make_server()


@pytest_asyncio.fixture
async def make_client() -> AsyncGenerator[Callable[[ServerApp], AsyncClient], None]:
    """Wrap a ServerApp in an in-process httpx client. Clients are closed on teardown."""
    clients: List[AsyncClient] = []

    def _make(app_server: ServerApp) -> AsyncClient:
        transport = ASGITransport(app=app_server.app)
        client = AsyncClient(transport=transport, base_url="http://testserver")
        clients.append(client)
        return client

    yield _make

    for client in clients:
        await client.aclose()


@pytest_asyncio.fixture
async def client(server, make_client) -> AsyncClient:
    return make_client(server)


@pytest.fixture
def mock_connection():
    """
    Mock async connection for DatabaseService.run_transaction.

    begin() returns a transaction mock whose commit/rollback are awaitable.
    """
    transaction = MagicMock()
    transaction.commit = AsyncMock()
    transaction.rollback = AsyncMock()

    connection = MagicMock()
    connection.begin = AsyncMock(return_value=transaction)
    connection.close = AsyncMock()
    connection.execute = AsyncMock()
    connection.transaction = transaction
    return connection
