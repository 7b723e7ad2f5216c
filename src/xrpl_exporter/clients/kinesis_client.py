"""AWS Kinesis sink for exported ledger batches."""

import asyncio
import json
import logging
from typing import Any, Dict, Iterator, List

from botocore.exceptions import BotoCoreError, ClientError

from ..config.aws_config import AWSClientManager
from ..config.settings import KinesisConfig
from ..errors import RecordTooLargeError, SinkError
from ..utils.retry import exponential_backoff

logger = logging.getLogger(__name__)

# PutRecords limits: records per call, bytes per call, bytes per record.
# Sizes count the data blob plus the partition key.
MAX_RECORDS_PER_CALL = 500
MAX_BYTES_PER_CALL = 5 * 1024 * 1024
MAX_BYTES_PER_RECORD = 1024 * 1024


class PartialBatchFailure(Exception):
    """Some records of a PutRecords call were rejected."""


class KinesisSink:
    """
    Publishes batches of records to one Kinesis stream.

    Each record is sent with its key field as partition key. Records rejected
    by a PutRecords call are retried with exponential backoff; a batch that
    still has rejected records after the last attempt raises ``SinkError``.
    """

    def __init__(self, aws_client_manager: AWSClientManager, config: KinesisConfig):
        self.aws_client_manager = aws_client_manager
        self.config = config
        self.stream_name = config.stream_name

        self._connected = False

        self.stats = {
            'total_records': 0,
            'total_bytes': 0,
            'batches_sent': 0,
            'failed_batches': 0
        }

        logger.info(f"Initialized KinesisSink for stream {self.stream_name}")

    def is_connected(self) -> bool:
        return self._connected

    async def connect(self):
        """Verify the stream is reachable."""
        kinesis_client = self.aws_client_manager.kinesis_client

        try:
            summary = await asyncio.get_running_loop().run_in_executor(
                None,
                lambda: kinesis_client.describe_stream_summary(StreamName=self.stream_name)
            )
        except (ClientError, BotoCoreError) as e:
            self._connected = False
            raise SinkError(f"Kinesis stream {self.stream_name} is not reachable: {e}") from e

        status = summary['StreamDescriptionSummary']['StreamStatus']
        logger.info(f"Connected to Kinesis stream {self.stream_name} ({status})")
        self._connected = True

    async def send_data_with_key(self, records: List[Dict[str, Any]], key_field: str):
        """
        Publish ``records`` in order, partitioned by ``record[key_field]``.

        Records are sent in as many PutRecords calls as the per-call record
        and byte limits require.

        Raises:
            RecordTooLargeError: a single record is over the Kinesis record limit.
            SinkError: the batch could not be fully published.
        """
        if not records:
            return

        entries = [
            {
                'Data': json.dumps(record, separators=(',', ':')).encode('utf-8'),
                'PartitionKey': str(record[key_field])
            }
            for record in records
        ]

        for entry in entries:
            if _entry_size(entry) > MAX_BYTES_PER_RECORD:
                raise RecordTooLargeError(
                    f"Record {entry['PartitionKey']} is {_entry_size(entry)} bytes, "
                    f"above the {MAX_BYTES_PER_RECORD} byte Kinesis record limit"
                )

        try:
            for chunk in _chunk_entries(entries):
                await exponential_backoff(
                    _PutRecordsCall(self, chunk),
                    max_attempts=self.config.max_retries,
                    initial_delay=self.config.initial_backoff_seconds,
                    max_delay=self.config.max_backoff_seconds,
                    exceptions=(ClientError, BotoCoreError, PartialBatchFailure)
                )
        except (ClientError, BotoCoreError, PartialBatchFailure) as e:
            self._connected = False
            self.stats['failed_batches'] += 1
            raise SinkError(f"Failed to publish {len(records)} records to {self.stream_name}: {e}") from e

        self._connected = True
        self.stats['total_records'] += len(entries)
        self.stats['total_bytes'] += sum(len(entry['Data']) for entry in entries)
        self.stats['batches_sent'] += 1

    async def _put_records(self, entries: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Send ``entries`` once and return the ones Kinesis rejected."""
        kinesis_client = self.aws_client_manager.kinesis_client

        response = await asyncio.get_running_loop().run_in_executor(
            None,
            lambda: kinesis_client.put_records(
                StreamName=self.stream_name,
                Records=entries
            )
        )

        if not response.get('FailedRecordCount'):
            return []

        failed = []
        for entry, result in zip(entries, response.get('Records', [])):
            if 'ErrorCode' in result:
                logger.warning(
                    f"Record {entry['PartitionKey']} failed: {result.get('ErrorCode')} - "
                    f"{result.get('ErrorMessage')}"
                )
                failed.append(entry)
        return failed


def _entry_size(entry: Dict[str, Any]) -> int:
    return len(entry['Data']) + len(entry['PartitionKey'].encode('utf-8'))


def _chunk_entries(entries: List[Dict[str, Any]]) -> Iterator[List[Dict[str, Any]]]:
    """Split ``entries`` in order into groups within the PutRecords limits."""
    chunk: List[Dict[str, Any]] = []
    chunk_bytes = 0

    for entry in entries:
        size = _entry_size(entry)
        if chunk and (len(chunk) >= MAX_RECORDS_PER_CALL or chunk_bytes + size > MAX_BYTES_PER_CALL):
            yield chunk
            chunk, chunk_bytes = [], 0

        chunk.append(entry)
        chunk_bytes += size

    if chunk:
        yield chunk


class _PutRecordsCall:
    """
    Retryable PutRecords call.

    Each attempt only resends the entries rejected by the previous one.
    """

    def __init__(self, sink: KinesisSink, entries: List[Dict[str, Any]]):
        self.sink = sink
        self.remaining = entries

    async def __call__(self):
        self.remaining = await self.sink._put_records(self.remaining)

        if self.remaining:
            raise PartialBatchFailure(f"{len(self.remaining)} records rejected")
