"""Health check and metrics endpoints."""

import logging
import time
from typing import Optional, Tuple

from aiohttp import web, web_request
from aiohttp.web_response import Response

from .orchestrator import BatchOrchestrator

logger = logging.getLogger(__name__)


class HealthMonitor:
    """Read-only view over the exporter for operational probes."""

    def __init__(self, orchestrator: BatchOrchestrator, export_timeout_seconds: float):
        self.orchestrator = orchestrator
        self.export_timeout_seconds = export_timeout_seconds

    def check_sink(self) -> Optional[str]:
        if not self.orchestrator.sink.is_connected():
            return "Kinesis client is not connected to the stream"
        return None

    def check_export_timeout(self) -> Optional[str]:
        time_from_last_export = time.time() - self.orchestrator.state.last_export_time
        exceeded = time_from_last_export > self.export_timeout_seconds

        logger.debug(
            f"isExportTimeoutExceeded {exceeded}, timeFromLastExport: {time_from_last_export:.1f}s"
        )
        if exceeded:
            return (
                f"Time from the last export {time_from_last_export:.1f}s exceeded limit "
                f"{self.export_timeout_seconds}s."
            )
        return None

    def check(self) -> Tuple[bool, str]:
        """Return ``(healthy, message)``."""
        error = self.check_sink() or self.check_export_timeout()
        if error:
            return False, error
        return True, "ok"

    def refresh_queue_gauges(self):
        """Publish the current dispatch queue depth of every connection."""
        metrics = self.orchestrator.metrics
        for index, size in self.orchestrator.pool.queue_sizes().items():
            metrics.requests_queue_size.labels(str(index)).set(size)


class HealthCheckHandler:
    """Health check HTTP handler."""

    def __init__(self, monitor: HealthMonitor):
        self.monitor = monitor

    async def healthcheck(self, request: web_request.Request) -> Response:
        healthy, message = self.monitor.check()

        if healthy:
            return web.Response(text=message, status=200)

        logger.warning(f"Health check failed: {message}")
        return web.Response(text=f"Health check failed: {message}", status=500)

    async def metrics(self, request: web_request.Request) -> Response:
        self.monitor.refresh_queue_gauges()
        metrics = self.monitor.orchestrator.metrics

        return web.Response(
            body=metrics.render(),
            status=200,
            headers={'Content-Type': metrics.content_type}
        )


def create_app(monitor: HealthMonitor) -> web.Application:
    """Build the aiohttp application serving /healthcheck and /metrics."""
    app = web.Application()

    handler = HealthCheckHandler(monitor)
    app.router.add_get('/healthcheck', handler.healthcheck)
    app.router.add_get('/metrics', handler.metrics)

    return app


class HealthCheckServer:
    """HTTP server for health check endpoints."""

    def __init__(self, monitor: HealthMonitor, host: str = "0.0.0.0", port: int = 3000):
        self.monitor = monitor
        self.host = host
        self.port = port
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None

    async def start(self):
        """Start the health check server."""
        self.runner = web.AppRunner(create_app(self.monitor))
        await self.runner.setup()

        self.site = web.TCPSite(self.runner, self.host, self.port)
        await self.site.start()

        logger.info(f"Health check server started on http://{self.host}:{self.port}")

    async def stop(self):
        """Stop the health check server."""
        if self.site:
            await self.site.stop()

        if self.runner:
            await self.runner.cleanup()

        logger.info("Health check server stopped")
