"""Pytest configuration and shared fixtures."""

from typing import Dict, Optional
from unittest.mock import AsyncMock, Mock

import pytest
from prometheus_client import CollectorRegistry

from xrpl_exporter.checkpoint import Checkpoint
from xrpl_exporter.config.settings import ExporterConfig
from xrpl_exporter.connection_pool import Connection, ConnectionPool, DispatchQueue
from xrpl_exporter.ledger_fetcher import LedgerFetcher
from xrpl_exporter.metrics import ExporterMetrics
from xrpl_exporter.orchestrator import BatchOrchestrator, ExportState

from .fakes import FakeRippledClient, MemoryPositionStore


@pytest.fixture
def metrics() -> ExporterMetrics:
    """Metrics bound to a throwaway registry."""
    return ExporterMetrics(registry=CollectorRegistry())


@pytest.fixture
def make_connection(metrics):
    """Factory wrapping a client into a pool connection."""
    def _make(client, index: int = 0, concurrency: int = 10) -> Connection:
        return Connection(client=client, queue=DispatchQueue(concurrency), index=index)
    return _make


@pytest.fixture
def fetcher(metrics) -> LedgerFetcher:
    return LedgerFetcher(metrics)


@pytest.fixture
def exporter_config() -> ExporterConfig:
    return ExporterConfig(
        node_urls="wss://node-a,wss://node-b",
        send_batch_size=30,
        connections_count=2,
        max_connection_concurrency=10,
        start_ledger=32570,
        confirmations=20,
        export_timeout_seconds=300,
        poll_interval_seconds=0
    )


@pytest.fixture
def mock_sink():
    """Kinesis sink double recording published batches."""
    sink = Mock()
    sink.batches = []

    async def _send(records, key_field):
        sink.batches.append([record[key_field] for record in records])

    sink.send_data_with_key = AsyncMock(side_effect=_send)
    sink.is_connected = Mock(return_value=True)
    sink.connect = AsyncMock()
    return sink


@pytest.fixture
def build_orchestrator(exporter_config, metrics, fetcher, mock_sink):
    """Factory for an orchestrator over fake nodes, one per endpoint."""
    def _build(clients_by_url: Dict[str, FakeRippledClient], checkpoint: int = 32570,
               store: Optional[MemoryPositionStore] = None, config: Optional[ExporterConfig] = None):
        config = config or exporter_config
        pool = ConnectionPool(
            node_urls=config.endpoints,
            connections_count=config.connections_count,
            max_connection_concurrency=config.max_connection_concurrency,
            metrics=metrics,
            client_factory=lambda url: clients_by_url[url]
        )
        return BatchOrchestrator(
            config=config,
            pool=pool,
            fetcher=fetcher,
            sink=mock_sink,
            position_store=store or MemoryPositionStore(),
            metrics=metrics,
            state=ExportState(checkpoint=Checkpoint(block_number=checkpoint))
        )
    return _build
