"""Prometheus metrics for the exporter."""

import logging
from typing import Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

# Response times are observed in milliseconds
RESPONSE_TIME_BUCKETS = (5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000)


class ExporterMetrics:
    """
    Metric set of one exporter process.

    Each instance owns its registry so several exporters (or tests) can live
    in the same interpreter without clashing on metric names.
    """

    content_type = CONTENT_TYPE_LATEST

    def __init__(self, registry: Optional[CollectorRegistry] = None, namespace: str = "xrpl_exporter"):
        self.registry = registry if registry is not None else CollectorRegistry()

        self.requests_counter = Counter(
            'requests',
            'Requests sent to rippled nodes',
            ['connection'],
            namespace=namespace,
            registry=self.registry
        )

        self.requests_response_time = Histogram(
            'response_time_ms',
            'Response time of rippled requests in milliseconds, queue wait included',
            ['connection'],
            namespace=namespace,
            buckets=RESPONSE_TIME_BUCKETS,
            registry=self.registry
        )

        self.requests_queue_size = Gauge(
            'requests_queue_size',
            'Requests waiting for a free slot on a connection',
            ['connection'],
            namespace=namespace,
            registry=self.registry
        )

        self.downloaded_transactions_counter = Counter(
            'downloaded_transactions',
            'Transactions downloaded',
            namespace=namespace,
            registry=self.registry
        )

        self.downloaded_ledgers_counter = Counter(
            'downloaded_ledgers',
            'Ledgers downloaded',
            namespace=namespace,
            registry=self.registry
        )

        self.current_ledger = Gauge(
            'current_ledger',
            'Highest ledger index allowed for export in the current cycle',
            namespace=namespace,
            registry=self.registry
        )

        self.last_exported_ledger = Gauge(
            'last_exported_ledger',
            'Checkpoint position after the last exported batch',
            namespace=namespace,
            registry=self.registry
        )

    def render(self) -> bytes:
        """Text exposition of every metric in the registry."""
        return generate_latest(self.registry)
