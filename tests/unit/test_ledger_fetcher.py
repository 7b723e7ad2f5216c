"""Tests for the adaptive ledger fetch strategy."""

import pytest

from xrpl_exporter.errors import LedgerNotClosedError, NodeRequestError
from xrpl_exporter.ledger_fetcher import LARGE_LEDGER_THRESHOLD

from ..fakes import FakeRippledClient, make_ledger


@pytest.mark.unit
class TestLedgerFetcher:
    """Test LedgerFetcher strategies."""

    async def test_empty_ledger_needs_no_secondary_request(self, fetcher, make_connection):
        client = FakeRippledClient(ledgers={100: make_ledger(100, 0)})

        fetched = await fetcher.fetch(make_connection(client), 100)

        assert fetched.transactions == []
        assert fetched.ledger_index == 100
        assert len(client.calls) == 1
        assert client.calls[0] == ('ledger', {
            'ledger_index': 100, 'transactions': True, 'expand': False
        })

    async def test_small_ledger_uses_one_expanded_request(self, fetcher, make_connection):
        ledger = make_ledger(200, 5)
        client = FakeRippledClient(ledgers={200: ledger})

        fetched = await fetcher.fetch(make_connection(client), 200)

        ledger_calls = client.commands('ledger')
        assert len(ledger_calls) == 2
        assert ledger_calls[1]['expand'] is True
        assert client.commands('tx') == []
        assert [tx['hash'] for tx in fetched.transactions] == [tx['hash'] for tx in ledger['transactions']]
        # The header keeps the hash list of the first request
        assert fetched.ledger['transactions'][0] == ledger['transactions'][0]['hash']

    async def test_threshold_ledger_still_uses_expanded_request(self, fetcher, make_connection):
        client = FakeRippledClient(ledgers={300: make_ledger(300, LARGE_LEDGER_THRESHOLD)})

        fetched = await fetcher.fetch(make_connection(client), 300)

        assert len(fetched.transactions) == LARGE_LEDGER_THRESHOLD
        assert client.commands('tx') == []

    async def test_large_ledger_fetches_per_transaction_in_order(self, fetcher, make_connection):
        ledger = make_ledger(400, 250)
        hashes = [tx['hash'] for tx in ledger['transactions']]
        # Earlier transactions answer later
        delays = {tx_hash: (len(hashes) - i) * 0.0001 for i, tx_hash in enumerate(hashes)}
        client = FakeRippledClient(ledgers={400: ledger}, tx_delays=delays)

        fetched = await fetcher.fetch(make_connection(client, concurrency=50), 400)

        tx_calls = client.commands('tx')
        assert len(tx_calls) == 250
        assert sorted(call['transaction'] for call in tx_calls) == sorted(hashes)
        assert all(call['min_ledger'] == 400 and call['max_ledger'] == 400 for call in tx_calls)
        assert [tx['hash'] for tx in fetched.transactions] == hashes
        assert len(client.commands('ledger')) == 1

    async def test_large_ledger_drops_missing_transactions(self, fetcher, make_connection):
        ledger = make_ledger(500, 210)
        hashes = [tx['hash'] for tx in ledger['transactions']]
        missing = {hashes[0], hashes[100], hashes[-1]}
        client = FakeRippledClient(ledgers={500: ledger}, missing_txs=missing)

        fetched = await fetcher.fetch(make_connection(client), 500)

        assert len(client.commands('tx')) == 210
        assert [tx['hash'] for tx in fetched.transactions] == [h for h in hashes if h not in missing]

    async def test_large_ledger_propagates_other_errors(self, fetcher, make_connection):
        ledger = make_ledger(600, 201)
        failing = ledger['transactions'][7]['hash']
        client = FakeRippledClient(ledgers={600: ledger}, failing_txs={failing})

        with pytest.raises(NodeRequestError) as exc_info:
            await fetcher.fetch(make_connection(client), 600)

        assert exc_info.value.error_code == "internal"

    async def test_unclosed_ledger_is_a_request_fault(self, fetcher, make_connection):
        client = FakeRippledClient(ledgers={700: make_ledger(700, 3, closed=False)})

        with pytest.raises(LedgerNotClosedError):
            await fetcher.fetch(make_connection(client), 700)

        assert len(client.calls) == 1

    async def test_counts_downloads(self, fetcher, make_connection, metrics):
        client = FakeRippledClient(ledgers={800: make_ledger(800, 4), 801: make_ledger(801, 0)})
        connection = make_connection(client)

        await fetcher.fetch(connection, 800)
        await fetcher.fetch(connection, 801)

        assert metrics.registry.get_sample_value('xrpl_exporter_downloaded_ledgers_total') == 2
        assert metrics.registry.get_sample_value('xrpl_exporter_downloaded_transactions_total') == 4
        assert metrics.registry.get_sample_value(
            'xrpl_exporter_requests_total', {'connection': '0'}
        ) == 3
