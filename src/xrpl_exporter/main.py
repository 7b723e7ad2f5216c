"""XRPL Exporter Service - ordered export of XRP Ledger history to Kinesis."""

import asyncio
import logging
import os
import signal
import sys
from typing import Optional

from .checkpoint import PositionStore
from .clients.kinesis_client import KinesisSink
from .config.aws_config import AWSClientManager
from .config.settings import XRPLExporterConfig, load_config
from .connection_pool import ConnectionPool
from .errors import FatalExporterError
from .health import HealthCheckServer, HealthMonitor
from .ledger_fetcher import LedgerFetcher
from .metrics import ExporterMetrics
from .orchestrator import BatchOrchestrator
from .utils.logging import setup_logging


logger = logging.getLogger(__name__)


class XRPLExporterService:
    """Wires the exporter components together and runs them."""

    def __init__(self, config: XRPLExporterConfig, metrics: Optional[ExporterMetrics] = None):
        self.config = config
        self.metrics = metrics or ExporterMetrics()
        self._shutdown_event = asyncio.Event()

        exporter_config = config.exporter
        aws_client_manager = AWSClientManager(config.aws)

        self.pool = ConnectionPool(
            node_urls=exporter_config.endpoints,
            connections_count=exporter_config.connections_count,
            max_connection_concurrency=exporter_config.max_connection_concurrency,
            metrics=self.metrics,
            ws_timeout_seconds=exporter_config.ws_timeout_seconds
        )
        self.sink = KinesisSink(aws_client_manager, config.kinesis)
        self.position_store = PositionStore(
            config.checkpoint,
            aws_client_manager if config.checkpoint.storage_type == "s3" else None
        )
        self.orchestrator = BatchOrchestrator(
            config=exporter_config,
            pool=self.pool,
            fetcher=LedgerFetcher(self.metrics),
            sink=self.sink,
            position_store=self.position_store,
            metrics=self.metrics
        )
        self.health_server: Optional[HealthCheckServer] = None
        if config.health.enabled:
            self.health_server = HealthCheckServer(
                HealthMonitor(self.orchestrator, exporter_config.export_timeout_seconds),
                host=config.health.host,
                port=config.health.port
            )

        logger.info("XRPL Exporter Service initialized")

    async def start(self):
        """Connect, resume and export until shutdown or a fatal error."""
        logger.info("Fetching XRPL transactions...")

        export_task: Optional[asyncio.Task] = None
        shutdown_task: Optional[asyncio.Task] = None

        try:
            await self.pool.connect_first_available()
            await self.sink.connect()
            await self.orchestrator.initialize()

            if self.health_server:
                await self.health_server.start()

            self._setup_signal_handlers()

            export_task = asyncio.create_task(self.orchestrator.run_forever())
            shutdown_task = asyncio.create_task(self._shutdown_event.wait())

            await asyncio.wait(
                [export_task, shutdown_task],
                return_when=asyncio.FIRST_COMPLETED
            )

            if export_task.done():
                # Only a fatal error ends the export loop on its own
                export_task.result()
        finally:
            logger.info("Shutting down XRPL Exporter Service")
            self.orchestrator.stop()
            if shutdown_task:
                shutdown_task.cancel()

            if export_task and not export_task.done():
                export_task.cancel()
                try:
                    await export_task
                except asyncio.CancelledError:
                    pass

            if self.health_server:
                await self.health_server.stop()
            await self.pool.close()

            logger.info("XRPL Exporter Service stopped")

    def _setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum):
            logger.info(f"Received signal {signum}, initiating shutdown")
            self._shutdown_event.set()

        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, signal_handler, signum)


async def main():
    """Main entry point."""
    config_file = os.getenv("CONFIG_FILE", "config/local.yaml")
    config = load_config(config_file)
    setup_logging(config.logging)

    service = XRPLExporterService(config)

    try:
        await service.start()
    except FatalExporterError as e:
        logger.critical(f"Fatal error, exiting: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Service failed: {e}", exc_info=True)
        sys.exit(1)


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
