"""
Health check endpoints for queue workers.

Provides Kubernetes-compatible health check endpoints:
- /health/live - Liveness probe (is the worker's event loop responsive?)
- /health/ready - Readiness probe (is the worker connected and consuming?)

Usage:
    health_server = HealthCheckServer(port=8080, worker_name="task-worker")
    await health_server.start()
    health_server.set_ready(transport_connected=True)
    ...
    await health_server.stop()
"""

import logging
import time
from datetime import UTC, datetime

from aiohttp import web

logger = logging.getLogger(__name__)


class HealthCheckServer:
    """
    HTTP server for liveness and readiness probes.

    Readiness returns 200 only while the transport is connected and no
    startup error has been recorded; otherwise 503. Liveness returns 503
    once the worker's heartbeat is older than ``heartbeat_timeout_seconds``
    (0 disables the check).
    """

    def __init__(
        self,
        port: int | None = 8080,
        worker_name: str = "worker",
        host: str = "0.0.0.0",
        heartbeat_timeout_seconds: float = 0.0,
    ):
        self.port = port
        self.host = host
        self.worker_name = worker_name
        self._enabled = port is not None
        self._ready = False
        self._transport_connected = False
        self._error_message: str | None = None
        self._started_at = datetime.now(UTC)
        self._heartbeat_timeout_seconds = heartbeat_timeout_seconds
        self._last_heartbeat: float | None = None
        self._runner: web.AppRunner | None = None
        self._actual_port: int | None = None

    def set_ready(self, transport_connected: bool) -> None:
        old_ready = self._ready
        self._transport_connected = transport_connected
        self._ready = transport_connected and self._error_message is None

        if old_ready != self._ready:
            logger.info(
                f"Readiness status changed: {old_ready} -> {self._ready}",
                extra={"worker_name": self.worker_name, "transport_connected": transport_connected},
            )

    def set_error(self, error_message: str) -> None:
        """Record a startup/configuration error; the worker stays alive but not ready."""
        self._error_message = error_message
        self._ready = False
        logger.error(
            f"Health check error state set: {error_message}",
            extra={"worker_name": self.worker_name},
        )

    def record_heartbeat(self) -> None:
        self._last_heartbeat = time.monotonic()

    async def handle_liveness(self, request: web.Request) -> web.Response:
        uptime_seconds = int((datetime.now(UTC) - self._started_at).total_seconds())

        if self._heartbeat_timeout_seconds > 0 and self._last_heartbeat is not None:
            staleness = time.monotonic() - self._last_heartbeat
            if staleness > self._heartbeat_timeout_seconds:
                logger.warning(
                    "Liveness check failed: heartbeat stale",
                    extra={
                        "worker_name": self.worker_name,
                        "staleness_seconds": round(staleness, 1),
                    },
                )
                return web.json_response(
                    {
                        "status": "unhealthy",
                        "reason": "heartbeat_stale",
                        "worker": self.worker_name,
                        "uptime_seconds": uptime_seconds,
                    },
                    status=503,
                )

        return web.json_response(
            {
                "status": "alive",
                "worker": self.worker_name,
                "uptime_seconds": uptime_seconds,
                "timestamp": datetime.now(UTC).isoformat(),
            }
        )

    async def handle_readiness(self, request: web.Request) -> web.Response:
        checks = {"transport_connected": self._transport_connected}

        if self._error_message:
            return web.json_response(
                {
                    "status": "error",
                    "worker": self.worker_name,
                    "error": self._error_message,
                    "checks": checks,
                },
                status=503,
            )

        if self._ready:
            return web.json_response(
                {"status": "ready", "worker": self.worker_name, "checks": checks}
            )

        return web.json_response(
            {
                "status": "not_ready",
                "worker": self.worker_name,
                "reasons": ["transport_disconnected"],
                "checks": checks,
            },
            status=503,
        )

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health/live", self.handle_liveness)
        app.router.add_get("/health/ready", self.handle_readiness)
        return app

    async def start(self) -> None:
        """Start listening. Port 0 picks a free port; bind failures disable the server."""
        if not self._enabled or self._runner is not None:
            return

        runner = web.AppRunner(self.create_app())
        await runner.setup()
        site = web.TCPSite(runner, self.host, self.port)
        try:
            await site.start()
        except OSError as e:
            logger.warning(
                "Could not start health check server, continuing without it",
                extra={"worker_name": self.worker_name, "port": self.port, "error": str(e)},
            )
            await runner.cleanup()
            return

        self._runner = runner
        server = getattr(site, "_server", None)
        if server is not None and server.sockets:
            self._actual_port = server.sockets[0].getsockname()[1]
        else:
            self._actual_port = self.port

        logger.info(
            "Health check server started",
            extra={"worker_name": self.worker_name, "port": self._actual_port},
        )

    async def stop(self) -> None:
        if self._runner is None:
            return
        await self._runner.cleanup()
        self._runner = None
        self._actual_port = None
        logger.info("Health check server stopped", extra={"worker_name": self.worker_name})

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def actual_port(self) -> int | None:
        return self._actual_port


__all__ = ["HealthCheckServer"]
