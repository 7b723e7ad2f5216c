"""Per-ledger download with an adaptive fetch strategy."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .connection_pool import Connection, connection_send
from .errors import LedgerNotClosedError, NodeNotFoundError
from .metrics import ExporterMetrics

logger = logging.getLogger(__name__)

# Above this many transactions a ledger is downloaded one transaction at a time
LARGE_LEDGER_THRESHOLD = 200


@dataclass
class FetchedLedger:
    """A closed ledger header and its ordered transactions."""
    ledger: Dict[str, Any]
    transactions: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def ledger_index(self) -> int:
        return int(self.ledger['ledger_index'])


class LedgerFetcher:
    """
    Downloads one ledger and its transactions.

    Strategy depends on the size of the ledger:

    - no transactions: the header request is enough;
    - up to ``LARGE_LEDGER_THRESHOLD`` transactions: one expanded ``ledger``
      request returns everything in a single round trip;
    - larger ledgers: one ``tx`` request per hash, all in flight at once and
      bounded only by the connection's dispatch queue. Transactions the node
      reports as not found are dropped.
    """

    def __init__(self, metrics: ExporterMetrics, large_ledger_threshold: int = LARGE_LEDGER_THRESHOLD):
        self.metrics = metrics
        self.large_ledger_threshold = large_ledger_threshold

    async def fetch(self, connection: Connection, ledger_index: int) -> FetchedLedger:
        """Fetch ledger ``ledger_index`` over ``connection``."""
        result = await connection_send(connection, self.metrics, {
            'command': 'ledger',
            'ledger_index': int(ledger_index),
            'transactions': True,
            'expand': False
        })
        ledger = result['ledger']
        self._ensure_closed(ledger, ledger_index)

        hashes = ledger.get('transactions') or []

        if not hashes:
            fetched = FetchedLedger(ledger=ledger, transactions=[])
        elif len(hashes) > self.large_ledger_threshold:
            logger.info(
                f"<<< MANY TXS at ledger {ledger_index}: [[ {len(hashes)} ]], processing per-tx..."
            )
            fetched = FetchedLedger(
                ledger=ledger,
                transactions=await self._fetch_per_transaction(connection, ledger_index, hashes)
            )
        else:
            fetched = FetchedLedger(
                ledger=ledger,
                transactions=await self._fetch_expanded(connection, ledger_index)
            )

        self.metrics.downloaded_transactions_counter.inc(len(fetched.transactions))
        self.metrics.downloaded_ledgers_counter.inc()
        return fetched

    async def _fetch_expanded(self, connection: Connection, ledger_index: int) -> List[Dict[str, Any]]:
        result = await connection_send(connection, self.metrics, {
            'command': 'ledger',
            'ledger_index': int(ledger_index),
            'transactions': True,
            'expand': True
        })
        self._ensure_closed(result['ledger'], ledger_index)

        return result['ledger'].get('transactions') or []

    async def _fetch_per_transaction(
        self,
        connection: Connection,
        ledger_index: int,
        hashes: List[str]
    ) -> List[Dict[str, Any]]:
        # gather() keeps the order of the hash list regardless of arrival order
        transactions = await asyncio.gather(*[
            self._fetch_transaction(connection, ledger_index, tx_hash)
            for tx_hash in hashes
        ])

        return [tx for tx in transactions if tx is not None]

    async def _fetch_transaction(
        self,
        connection: Connection,
        ledger_index: int,
        tx_hash: str
    ) -> Optional[Dict[str, Any]]:
        try:
            return await connection_send(connection, self.metrics, {
                'command': 'tx',
                'transaction': tx_hash,
                'min_ledger': int(ledger_index),
                'max_ledger': int(ledger_index)
            })
        except NodeNotFoundError:
            logger.debug(f"Transaction {tx_hash} not found in ledger {ledger_index}, skipping")
            return None

    @staticmethod
    def _ensure_closed(ledger: Dict[str, Any], ledger_index: int):
        if ledger.get('closed') is not True:
            raise LedgerNotClosedError(f"Ledger {ledger_index} is not closed")
