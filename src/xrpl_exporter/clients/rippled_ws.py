"""rippled WebSocket client for ledger and transaction queries."""

import asyncio
import itertools
import json
import logging
from typing import Any, Dict, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..errors import NodeNotFoundError, NodeRequestError

logger = logging.getLogger(__name__)

# Error codes rippled uses for objects it does not have
NOT_FOUND_ERRORS = frozenset(['txnNotFound'])


class RippledClient:
    """
    Request/response client for the rippled WebSocket API.

    One instance is one session to one node. Requests are multiplexed over the
    socket and matched to responses by their ``id``; every request is bounded
    by ``timeout`` seconds.
    """

    def __init__(self, url: str, timeout: float = 10.0):
        self.url = url
        self.timeout = timeout
        self.websocket = None

        self._ids = itertools.count(1)
        self._pending: Dict[int, asyncio.Future] = {}
        self._reader_task: Optional[asyncio.Task] = None

    @property
    def is_connected(self) -> bool:
        return (
            self.websocket is not None
            and self._reader_task is not None
            and not self._reader_task.done()
        )

    async def connect(self):
        """Open the WebSocket session and start reading responses."""
        logger.debug(f"Connecting to rippled at {self.url}")

        try:
            self.websocket = await websockets.connect(
                self.url,
                open_timeout=self.timeout,
                ping_interval=20,
                ping_timeout=10,
                close_timeout=10,
                max_size=None,  # Expanded ledgers can be tens of MB
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            raise NodeRequestError(f"Could not connect to {self.url}: {e}") from e

        self._reader_task = asyncio.create_task(self._receive_loop())

    async def close(self):
        """Close the session and fail any request still waiting."""
        if self._reader_task:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None

        if self.websocket is not None:
            try:
                await self.websocket.close()
            except WebSocketException as e:
                logger.debug(f"Error closing socket to {self.url}: {e}")
            self.websocket = None

        self._fail_pending(NodeRequestError(f"Connection to {self.url} closed"))

    async def request(self, command: str, **params) -> Dict[str, Any]:
        """
        Send one command and wait for its result.

        Returns:
            The ``result`` object of a successful response.

        Raises:
            NodeNotFoundError: the node does not have the requested object.
            NodeRequestError: any other error response, a timeout or a closed socket.
        """
        if not self.is_connected:
            raise NodeRequestError(f"Not connected to {self.url}")

        request_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        message = {"id": request_id, "command": command, **params}

        try:
            await self.websocket.send(json.dumps(message))
            return await asyncio.wait_for(future, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise NodeRequestError(
                f"{command} request to {self.url} timed out after {self.timeout}s",
                "timeout"
            ) from e
        except ConnectionClosed as e:
            raise NodeRequestError(f"Connection to {self.url} closed: {e}") from e
        finally:
            self._pending.pop(request_id, None)

    async def _receive_loop(self):
        """Dispatch incoming messages to the waiting requests."""
        try:
            async for raw_message in self.websocket:
                self._handle_message(raw_message)
        except ConnectionClosed as e:
            logger.warning(f"Connection to {self.url} closed: {e}")
        finally:
            self._fail_pending(NodeRequestError(f"Connection to {self.url} lost"))

    def _handle_message(self, raw_message):
        try:
            data = json.loads(raw_message)
        except ValueError:
            logger.warning(f"Discarding non-JSON message from {self.url}")
            return

        if not isinstance(data, dict):
            logger.warning(f"Discarding non-object message from {self.url}")
            return

        future = self._pending.get(data.get("id"))
        if future is None or future.done():
            # Unsolicited stream message or a request that already timed out
            return

        if data.get("status") == "error" or "error" in data:
            future.set_exception(self._error_from_response(data))
        else:
            future.set_result(data.get("result", {}))

    @staticmethod
    def _error_from_response(data: Dict[str, Any]) -> NodeRequestError:
        error_code = data.get("error", "unknown")
        message = data.get("error_message") or error_code

        if error_code in NOT_FOUND_ERRORS:
            return NodeNotFoundError(message, error_code)
        return NodeRequestError(message, error_code)

    def _fail_pending(self, error: Exception):
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()
