"""Connection pool with per-connection dispatch queues and endpoint failover."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .clients.rippled_ws import RippledClient
from .errors import EndpointsExhaustedError, NodeRequestError
from .metrics import ExporterMetrics

logger = logging.getLogger(__name__)


class DispatchQueue:
    """
    Bounded-concurrency gate in front of one connection.

    At most ``concurrency`` calls run at once; the rest wait and are admitted
    in arrival order.
    """

    def __init__(self, concurrency: int):
        self.concurrency = concurrency
        self._semaphore = asyncio.Semaphore(concurrency)
        self._waiting = 0
        self._running = 0

    @property
    def size(self) -> int:
        """Number of calls waiting for admission."""
        return self._waiting

    @property
    def pending(self) -> int:
        """Number of calls currently running."""
        return self._running

    async def run(self, func: Callable[[], Any]):
        """Run ``func()`` once a slot is free and return its result."""
        self._waiting += 1
        try:
            await self._semaphore.acquire()
        finally:
            self._waiting -= 1

        self._running += 1
        try:
            return await func()
        finally:
            self._running -= 1
            self._semaphore.release()


@dataclass
class Connection:
    """One live session to the current endpoint."""
    client: RippledClient
    queue: DispatchQueue
    index: int

    @property
    def label(self) -> str:
        return str(self.index)


async def connection_send(connection: Connection, metrics: ExporterMetrics, params: Dict[str, Any]):
    """
    Send one request through the connection's dispatch queue.

    ``params`` holds the rippled ``command`` and its arguments. The session's
    result or error is returned unchanged.
    """
    metrics.requests_counter.labels(connection.label).inc()
    start_time = time.monotonic()

    arguments = dict(params)
    command = arguments.pop('command')

    result = await connection.queue.run(
        lambda: connection.client.request(command, **arguments)
    )

    metrics.requests_response_time.labels(connection.label).observe(
        (time.monotonic() - start_time) * 1000
    )
    return result


class ConnectionPool:
    """
    Owns the sessions to the endpoint currently in use.

    Endpoints are consumed front to back. Every call to ``create_connections``
    drops the current group and opens a new one to the next endpoint; once the
    list is empty the pool raises ``EndpointsExhaustedError``.
    """

    def __init__(
        self,
        node_urls: List[str],
        connections_count: int,
        max_connection_concurrency: int,
        metrics: ExporterMetrics,
        ws_timeout_seconds: float = 10.0,
        client_factory: Optional[Callable[[str], RippledClient]] = None
    ):
        self._node_urls = list(node_urls)
        self.connections_count = connections_count
        self.max_connection_concurrency = max_connection_concurrency
        self.metrics = metrics
        self._client_factory = client_factory or (
            lambda url: RippledClient(url, timeout=ws_timeout_seconds)
        )

        self.connections: List[Connection] = []
        self.current_url: Optional[str] = None

    @property
    def remaining_endpoints(self) -> int:
        return len(self._node_urls)

    def __len__(self) -> int:
        return len(self.connections)

    def for_ledger(self, ledger_index: int) -> Connection:
        """Round-robin connection choice by ledger index."""
        return self.connections[ledger_index % len(self.connections)]

    async def create_connections(self):
        """Replace the current connection group with one to the next endpoint."""
        await self.close()

        if not self._node_urls:
            # No more endpoints to try; the process has to be restarted
            raise EndpointsExhaustedError("All node URLs returned errors")

        self.current_url = self._node_urls.pop(0)
        logger.info(f"Using {self.current_url} as rippled endpoint")

        connections = []
        try:
            for index in range(self.connections_count):
                client = self._client_factory(self.current_url)
                await client.connect()

                connections.append(Connection(
                    client=client,
                    queue=DispatchQueue(self.max_connection_concurrency),
                    index=index
                ))
        except Exception:
            for connection in connections:
                await connection.client.close()
            raise

        self.connections = connections

    async def connect_first_available(self):
        """
        Open a connection group to the first endpoint that accepts it.

        Unreachable endpoints are skipped in order.

        Raises:
            EndpointsExhaustedError: no endpoint could be connected.
        """
        while True:
            try:
                await self.create_connections()
                return
            except NodeRequestError as e:
                logger.error(f"Could not connect to {self.current_url}: {e}")

    async def close(self):
        """Close and forget every current connection."""
        connections, self.connections = self.connections, []

        for connection in connections:
            try:
                await connection.client.close()
            except Exception as e:
                logger.warning(f"Error closing connection {connection.index}: {e}")

    def queue_sizes(self) -> Dict[int, int]:
        """Waiting request count per connection index."""
        return {c.index: c.queue.size for c in self.connections}
