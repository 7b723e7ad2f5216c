"""Finality and completeness checks run on every batch before export."""

import logging
from typing import Iterable

from .errors import FinalityViolationError, IncompleteTransactionError
from .ledger_fetcher import FetchedLedger

logger = logging.getLogger(__name__)


def check_all_transactions_valid(ledgers: Iterable[FetchedLedger]):
    """
    Refuse a batch holding data that is not final or not fully expanded.

    Raises:
        FinalityViolationError: a transaction carries ``validated: false``.
        IncompleteTransactionError: a transaction has neither ``meta`` nor
            ``metaData``.
    """
    for fetched in ledgers:
        for index, transaction in enumerate(fetched.transactions):
            tx_hash = transaction.get('hash')

            if 'validated' in transaction and not transaction['validated']:
                message = (
                    f"Transaction {tx_hash} at index {index} in block "
                    f"{fetched.ledger_index} is not validated. Aborting."
                )
                logger.error(message)
                raise FinalityViolationError(message)

            if 'meta' not in transaction and 'metaData' not in transaction:
                message = (
                    f"Transaction {tx_hash} at index {index} in block "
                    f"{fetched.ledger_index} is missing 'meta' field. Aborting."
                )
                logger.error(message)
                raise IncompleteTransactionError(message)
