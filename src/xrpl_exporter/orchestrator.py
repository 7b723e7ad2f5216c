"""Catch-up loop: fetch, validate, export and checkpoint ledger batches."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .checkpoint import Checkpoint, PositionStore
from .clients.kinesis_client import KinesisSink
from .config.settings import ExporterConfig
from .connection_pool import ConnectionPool, connection_send
from .errors import FatalExporterError, NodeRequestError
from .ledger_fetcher import FetchedLedger, LedgerFetcher
from .metrics import ExporterMetrics
from .utils.logging import log_with_context
from .validation import check_all_transactions_valid

logger = logging.getLogger(__name__)

PRIMARY_KEY = "primaryKey"


@dataclass
class ExportState:
    """Mutable export state, written only by the control loop."""
    checkpoint: Checkpoint
    # Starts at process start so a fresh exporter is healthy while catching up
    last_export_time: float = field(default_factory=time.time)


class BatchOrchestrator:
    """
    Drives the export of ledgers from the checkpoint up to the safe ceiling.

    A cycle reads the validated head, subtracts the confirmation depth and
    exports every ledger from the checkpoint up to that ceiling in batches of
    ``send_batch_size``. Each batch is fetched concurrently across the pool,
    validated, published and only then checkpointed. Cycles repeat every
    ``poll_interval_seconds``; a failed cycle moves the pool to the next
    endpoint.
    """

    def __init__(
        self,
        config: ExporterConfig,
        pool: ConnectionPool,
        fetcher: LedgerFetcher,
        sink: KinesisSink,
        position_store: PositionStore,
        metrics: ExporterMetrics,
        state: Optional[ExportState] = None
    ):
        self.config = config
        self.pool = pool
        self.fetcher = fetcher
        self.sink = sink
        self.position_store = position_store
        self.metrics = metrics
        self.state = state or ExportState(checkpoint=Checkpoint(block_number=config.start_ledger))

        self._stop_event = asyncio.Event()
        self.stats = {
            "cycles": 0,
            "failed_cycles": 0,
            "batches_exported": 0,
            "ledgers_exported": 0
        }

    async def initialize(self):
        """Resume from the stored position or store the configured start."""
        last_position = await self.position_store.get_last_position()

        if last_position:
            self.state.checkpoint = last_position
            logger.info(f"Resuming export from position {last_position.to_dict()}")
        else:
            await self.position_store.save_position(self.state.checkpoint)
            logger.info(f"Initialized exporter with initial position {self.state.checkpoint.to_dict()}")

        self.metrics.last_exported_ledger.set(self.state.checkpoint.block_number)

    async def run_forever(self):
        """
        Run cycles until stopped.

        Raises:
            FatalExporterError: validation failed or no endpoint is left.
        """
        while not self._stop_event.is_set():
            try:
                await self.run_cycle()
            except FatalExporterError:
                raise
            except Exception as e:
                self.stats["failed_cycles"] += 1
                logger.error(f"Export cycle failed on {self.pool.current_url}: {e}", exc_info=True)
                await self._failover()

            logger.info(f"Progressed to position {self.state.checkpoint.to_dict()}")

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.config.poll_interval_seconds)
            except asyncio.TimeoutError:
                pass

        logger.info("Export loop stopped")

    def stop(self):
        self._stop_event.set()

    async def run_cycle(self) -> Dict[str, Any]:
        """Export every ledger from the checkpoint up to the current ceiling."""
        if not self.pool.connections:
            raise NodeRequestError("No live connections")

        self.stats["cycles"] += 1
        ceiling = await self._fetch_ceiling()
        self.metrics.current_ledger.set(ceiling)

        start = self.state.checkpoint.block_number
        logger.info(f"Fetching transfers for interval {start}:{ceiling}")

        cycle_stats = {"start": start, "ceiling": ceiling, "batches": 0, "ledgers": 0}
        requests: List[asyncio.Task] = []

        while self.state.checkpoint.block_number + len(requests) <= ceiling:
            ledger_index = self.state.checkpoint.block_number + len(requests)
            requests.append(asyncio.create_task(
                self.fetcher.fetch(self.pool.for_ledger(ledger_index), ledger_index)
            ))

            if len(requests) >= self.config.send_batch_size or ledger_index == ceiling:
                try:
                    ledgers = await asyncio.gather(*requests)
                except BaseException:
                    for task in requests:
                        task.cancel()
                    raise

                await self._export_batch(ledgers)
                cycle_stats["batches"] += 1
                cycle_stats["ledgers"] += len(ledgers)
                requests = []

        return cycle_stats

    async def _fetch_ceiling(self) -> int:
        result = await connection_send(self.pool.connections[0], self.metrics, {
            'command': 'ledger',
            'ledger_index': 'validated',
            'transactions': False,
            'expand': False
        })
        return int(result['ledger']['ledger_index']) - self.config.confirmations

    async def _export_batch(self, ledgers: List[FetchedLedger]):
        """Validate, publish and checkpoint one contiguous batch."""
        first = self.state.checkpoint.block_number

        for offset, fetched in enumerate(ledgers):
            if fetched.ledger_index != first + offset:
                raise NodeRequestError(
                    f"Requested ledger {first + offset} but received {fetched.ledger_index}"
                )

        check_all_transactions_valid(ledgers)

        records = [
            {
                'ledger': fetched.ledger,
                'transactions': fetched.transactions,
                PRIMARY_KEY: fetched.ledger_index
            }
            for fetched in ledgers
        ]

        log_with_context(
            logger, logging.INFO,
            f"Flushing ledgers {records[0][PRIMARY_KEY]}:{records[-1][PRIMARY_KEY]}",
            first_ledger=records[0][PRIMARY_KEY],
            last_ledger=records[-1][PRIMARY_KEY],
            transactions=sum(len(fetched.transactions) for fetched in ledgers)
        )
        await self.sink.send_data_with_key(records, PRIMARY_KEY)

        self.state.last_export_time = time.time()
        self.state.checkpoint = Checkpoint(block_number=first + len(records))
        await self.position_store.save_position(self.state.checkpoint)
        self.metrics.last_exported_ledger.set(self.state.checkpoint.block_number)

        self.stats["batches_exported"] += 1
        self.stats["ledgers_exported"] += len(records)

    async def _failover(self):
        """Drop the current connections and move to the next endpoint."""
        try:
            await self.pool.create_connections()
        except FatalExporterError:
            raise
        except Exception as e:
            # The next cycle finds no connections and fails over again
            logger.error(f"Could not connect to {self.pool.current_url}: {e}")
