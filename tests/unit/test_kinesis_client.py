"""Tests for the Kinesis sink."""

import json
from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError

from xrpl_exporter.clients.kinesis_client import MAX_BYTES_PER_CALL, MAX_BYTES_PER_RECORD, KinesisSink
from xrpl_exporter.config.settings import KinesisConfig
from xrpl_exporter.errors import FatalExporterError, RecordTooLargeError, SinkError


def ok_response(count):
    return {'FailedRecordCount': 0, 'Records': [{'SequenceNumber': str(i), 'ShardId': 'shard-0'} for i in range(count)]}


@pytest.fixture
def kinesis_client():
    client = Mock()
    client.describe_stream_summary.return_value = {
        'StreamDescriptionSummary': {'StreamStatus': 'ACTIVE'}
    }
    client.put_records.side_effect = lambda StreamName, Records: ok_response(len(Records))
    return client


@pytest.fixture
def sink(kinesis_client):
    manager = Mock()
    manager.kinesis_client = kinesis_client
    config = KinesisConfig(
        stream_name="test-xrpl-ledgers",
        max_retries=3,
        initial_backoff_seconds=0.001,
        max_backoff_seconds=0.01
    )
    return KinesisSink(manager, config)


def sent_keys(call):
    return [entry['PartitionKey'] for entry in call.kwargs['Records']]


@pytest.mark.unit
class TestKinesisSink:
    """Test KinesisSink."""

    async def test_connect(self, sink, kinesis_client):
        assert not sink.is_connected()

        await sink.connect()

        assert sink.is_connected()
        kinesis_client.describe_stream_summary.assert_called_once_with(StreamName="test-xrpl-ledgers")

    async def test_connect_failure(self, sink, kinesis_client):
        kinesis_client.describe_stream_summary.side_effect = ClientError(
            {'Error': {'Code': 'ResourceNotFoundException', 'Message': 'missing'}},
            'DescribeStreamSummary'
        )

        with pytest.raises(SinkError):
            await sink.connect()

        assert not sink.is_connected()

    async def test_records_keyed_in_order(self, sink, kinesis_client):
        records = [{'ledger': {'ledger_index': str(i)}, 'transactions': [], 'primaryKey': i}
                   for i in range(32570, 32581)]

        await sink.send_data_with_key(records, 'primaryKey')

        call = kinesis_client.put_records.call_args
        assert call.kwargs['StreamName'] == "test-xrpl-ledgers"
        assert sent_keys(call) == [str(i) for i in range(32570, 32581)]
        assert json.loads(call.kwargs['Records'][0]['Data']) == records[0]
        assert sink.is_connected()
        assert sink.stats['total_records'] == 11
        assert sink.stats['batches_sent'] == 1

    async def test_empty_batch_is_not_sent(self, sink, kinesis_client):
        await sink.send_data_with_key([], 'primaryKey')

        kinesis_client.put_records.assert_not_called()

    async def test_resends_only_rejected_records(self, sink, kinesis_client):
        responses = [
            {
                'FailedRecordCount': 1,
                'Records': [
                    {'SequenceNumber': '1'},
                    {'ErrorCode': 'ProvisionedThroughputExceededException', 'ErrorMessage': 'slow down'},
                    {'SequenceNumber': '3'},
                ]
            },
            ok_response(1),
        ]
        kinesis_client.put_records.side_effect = lambda StreamName, Records: responses.pop(0)

        await sink.send_data_with_key([{'primaryKey': k} for k in (1, 2, 3)], 'primaryKey')

        calls = kinesis_client.put_records.call_args_list
        assert [sent_keys(call) for call in calls] == [['1', '2', '3'], ['2']]

    async def test_exhausted_retries_raise(self, sink, kinesis_client):
        kinesis_client.put_records.side_effect = lambda StreamName, Records: {
            'FailedRecordCount': len(Records),
            'Records': [{'ErrorCode': 'InternalFailure', 'ErrorMessage': 'boom'} for _ in Records]
        }
        sink._connected = True

        with pytest.raises(SinkError):
            await sink.send_data_with_key([{'primaryKey': 1}], 'primaryKey')

        assert kinesis_client.put_records.call_count == 3
        assert not sink.is_connected()
        assert sink.stats['failed_batches'] == 1

    async def test_large_batches_are_chunked(self, sink, kinesis_client):
        await sink.send_data_with_key([{'primaryKey': k} for k in range(1200)], 'primaryKey')

        sizes = [len(call.kwargs['Records']) for call in kinesis_client.put_records.call_args_list]
        assert sizes == [500, 500, 200]

    async def test_requests_stay_under_byte_limit(self, sink, kinesis_client):
        # 30 ledgers of ~300 KB each: about 9 MB in total
        records = [{'primaryKey': 32570 + i, 'ledger': {'blob': 'x' * 300_000}} for i in range(30)]

        await sink.send_data_with_key(records, 'primaryKey')

        calls = kinesis_client.put_records.call_args_list
        request_bytes = [
            sum(len(entry['Data']) + len(entry['PartitionKey']) for entry in call.kwargs['Records'])
            for call in calls
        ]
        assert len(calls) == 2
        assert all(size <= MAX_BYTES_PER_CALL for size in request_bytes)
        assert [key for call in calls for key in sent_keys(call)] == [str(32570 + i) for i in range(30)]

    async def test_oversized_record_is_fatal(self, sink, kinesis_client):
        records = [{'primaryKey': 1}, {'primaryKey': 2, 'ledger': {'blob': 'x' * MAX_BYTES_PER_RECORD}}]

        with pytest.raises(RecordTooLargeError) as exc_info:
            await sink.send_data_with_key(records, 'primaryKey')

        assert isinstance(exc_info.value, FatalExporterError)
        kinesis_client.put_records.assert_not_called()
