"""
Unit tests for HealthCheckServer.

Test Coverage:
    - Disabled server when port is None
    - Readiness transitions with transport state and error state
    - Liveness goes unhealthy once the heartbeat is stale
    - Real HTTP endpoints on a dynamically assigned port
"""

import time

import aiohttp
import pytest

from sensemaker.common.health import HealthCheckServer


class TestStatus:
    def test_starts_not_ready(self):
        server = HealthCheckServer(port=0, worker_name="task-worker")

        assert server.is_ready is False
        assert server.actual_port is None

    def test_ready_follows_transport(self):
        server = HealthCheckServer(port=0)

        server.set_ready(transport_connected=True)
        assert server.is_ready is True

        server.set_ready(transport_connected=False)
        assert server.is_ready is False

    def test_error_blocks_readiness(self):
        server = HealthCheckServer(port=0)
        server.set_error("engine factory missing")

        server.set_ready(transport_connected=True)

        assert server.is_ready is False

    @pytest.mark.asyncio
    async def test_disabled_server_is_noop(self):
        server = HealthCheckServer(port=None)

        await server.start()

        assert server.actual_port is None
        await server.stop()


class TestEndpoints:
    @pytest.mark.asyncio
    async def test_live_and_ready(self):
        server = HealthCheckServer(port=0, worker_name="task-worker", host="127.0.0.1")
        await server.start()

        try:
            base = f"http://127.0.0.1:{server.actual_port}"
            async with aiohttp.ClientSession() as session:
                async with session.get(f"{base}/health/live") as resp:
                    assert resp.status == 200
                    assert (await resp.json())["status"] == "alive"

                async with session.get(f"{base}/health/ready") as resp:
                    assert resp.status == 503
                    assert (await resp.json())["reasons"] == ["transport_disconnected"]

                server.set_ready(transport_connected=True)
                async with session.get(f"{base}/health/ready") as resp:
                    assert resp.status == 200
                    assert (await resp.json())["worker"] == "task-worker"
        finally:
            await server.stop()

        assert server.actual_port is None

    @pytest.mark.asyncio
    async def test_stale_heartbeat(self):
        server = HealthCheckServer(port=0, heartbeat_timeout_seconds=0.01)
        server.record_heartbeat()
        time.sleep(0.02)

        response = await server.handle_liveness(None)

        assert response.status == 503

    @pytest.mark.asyncio
    async def test_error_state_reported(self):
        server = HealthCheckServer(port=0)
        server.set_error("bad config")

        response = await server.handle_readiness(None)

        assert response.status == 503
