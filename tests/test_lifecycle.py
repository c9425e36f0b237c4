"""
forge-server — Lifecycle Tests
================================

What:  Tests for start/stop against a real uvicorn listener.
How:   Servers bind 127.0.0.1 on an ephemeral port (port=0) and are queried
       with a real httpx client over TCP.

Test Strategy:
    ✅ start → serve → stop
    ✅ stop on a never-started or closed server is a logged no-op
    ✅ closed servers refuse restart and new routes
    ✅ bind failures surface as OSError
    ✅ listener handle only exists while listening
"""

import logging
import socket

import httpx
import pytest

from forge_server.exceptions import ServerStateError
from forge_server.responses import send_data_response
from forge_server.routing import Method, Route
from forge_server.server import ServerApp, ServerState


async def ok():
    return send_data_response({"ok": True})


def local_server(**overrides) -> ServerApp:
    options = {"enable_global_rate_limiter": False, "host": "127.0.0.1", "port": 0}
    options.update(overrides)
    return ServerApp(options)


class TestStartStop:
    async def test_serves_until_stopped(self):
        server = local_server()
        server.apply_routes("", Route(Method.GET, "/ping", [ok]))
        await server.start()
        try:
            assert server.state is ServerState.LISTENING
            assert server.port > 0
            assert server.http_server.started

            async with httpx.AsyncClient(base_url=f"http://127.0.0.1:{server.port}") as client:
                health = await client.get("/health")
                ping = await client.get("/ping")
            assert health.status_code == 200
            assert ping.json() == {"success": True, "data": {"ok": True}}
        finally:
            await server.stop()

        assert server.state is ServerState.CLOSED

    async def test_start_without_routes(self):
        server = local_server()
        await server.start()
        assert server.state is ServerState.LISTENING
        await server.stop()

    async def test_start_twice_rejected(self):
        server = local_server()
        await server.start()
        try:
            with pytest.raises(ServerStateError, match="already listening"):
                await server.start()
        finally:
            await server.stop()

    async def test_port_released_after_stop(self):
        server = local_server()
        await server.start()
        port = server.port
        await server.stop()

        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(("127.0.0.1", port))

    async def test_started_and_closed_logged(self, caplog):
        server = local_server(server_name="Billing")
        with caplog.at_level(logging.INFO):
            await server.start()
            await server.stop()
        assert f"BILLING STARTED ON PORT : {server.port}" in caplog.text
        assert f"BILLING CLOSED ON PORT : {server.port}" in caplog.text


class TestClosedServer:
    async def test_stop_on_never_started_is_noop(self, caplog):
        server = local_server()
        with caplog.at_level(logging.ERROR):
            await server.stop()
        assert "Cannot close because server is not initialized" in caplog.text
        assert server.state is ServerState.CONSTRUCTED

    async def test_second_stop_is_noop(self, caplog):
        server = local_server()
        await server.start()
        await server.stop()
        with caplog.at_level(logging.ERROR):
            await server.stop()
        assert "Cannot close because server is not initialized" in caplog.text
        assert server.state is ServerState.CLOSED

    async def test_restart_after_close_rejected(self):
        server = local_server()
        await server.start()
        await server.stop()
        with pytest.raises(ServerStateError, match="cannot be restarted"):
            await server.start()

    async def test_apply_routes_after_close_rejected(self):
        server = local_server()
        await server.start()
        await server.stop()
        with pytest.raises(ServerStateError):
            server.apply_routes("", Route(Method.GET, "/late", [ok]))

    async def test_routes_applied_while_listening(self):
        server = local_server()
        await server.start()
        try:
            server.apply_routes("", Route(Method.GET, "/late", [ok]))
            async with httpx.AsyncClient(base_url=f"http://127.0.0.1:{server.port}") as client:
                assert (await client.get("/late")).status_code == 200
        finally:
            await server.stop()


class TestListenerAccess:
    def test_http_server_before_start(self):
        server = local_server()
        with pytest.raises(ServerStateError, match="not initialized"):
            server.http_server

    async def test_http_server_after_stop(self):
        server = local_server()
        await server.start()
        await server.stop()
        with pytest.raises(ServerStateError):
            server.http_server


class TestBindFailure:
    async def test_port_in_use_raises_os_error(self, caplog):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as occupied:
            occupied.bind(("127.0.0.1", 0))
            occupied.listen(1)
            port = occupied.getsockname()[1]

            server = local_server(port=port)
            with caplog.at_level(logging.ERROR):
                with pytest.raises(OSError):
                    await server.start()

        assert server.state is ServerState.CONSTRUCTED
        assert "Could not bind" in caplog.text
