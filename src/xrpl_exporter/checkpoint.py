"""Position store for resumable exports."""

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from botocore.exceptions import ClientError

from .config.aws_config import AWSClientManager
from .config.settings import CheckpointConfig
from .utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)


@dataclass
class Checkpoint:
    """Next ledger index to fetch."""
    block_number: int

    def to_dict(self) -> Dict[str, Any]:
        return {"blockNumber": self.block_number}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Checkpoint":
        return cls(block_number=int(data["blockNumber"]))


class PositionStore:
    """
    Persists the export checkpoint to S3 or to a local JSON file.

    A missing checkpoint reads as ``None``. Any other failure propagates: the
    exporter must not continue past a batch whose position was not stored.
    """

    FILE_NAME = "position.json"

    def __init__(self, config: CheckpointConfig, aws_client_manager: Optional[AWSClientManager] = None):
        self.config = config
        self.storage_type = config.storage_type
        self.aws_client_manager = aws_client_manager

        if self.storage_type == "s3" and aws_client_manager is None:
            raise ValueError("S3 position store needs an AWS client manager")

        logger.info(f"PositionStore initialized with storage: {self.storage_type}")

    @property
    def local_path(self) -> str:
        return os.path.join(self.config.local_directory, self.FILE_NAME)

    async def get_last_position(self) -> Optional[Checkpoint]:
        """Get the stored checkpoint, or None if nothing was saved yet."""
        if self.storage_type == "s3":
            data = await self._get_from_s3()
        else:
            data = await self._get_from_local()

        if data is None:
            return None
        return Checkpoint.from_dict(data)

    async def save_position(self, checkpoint: Checkpoint):
        """Persist ``checkpoint``."""
        payload = json.dumps(checkpoint.to_dict())

        if self.storage_type == "s3":
            await self._save_to_s3(payload)
        else:
            await self._save_to_local(payload)

        logger.debug(f"Position saved: {payload}")

    async def _get_from_s3(self) -> Optional[Dict[str, Any]]:
        s3_client = self.aws_client_manager.s3_client

        try:
            # Use asyncio executor for blocking S3 call
            response = await asyncio.get_running_loop().run_in_executor(
                None,
                lambda: s3_client.get_object(
                    Bucket=self.config.s3_bucket,
                    Key=self.config.s3_key
                )
            )
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') in ('NoSuchKey', '404'):
                logger.info(f"No existing checkpoint at s3://{self.config.s3_bucket}/{self.config.s3_key}")
                return None
            raise

        return json.loads(response['Body'].read().decode('utf-8'))

    @retry_with_backoff(max_attempts=3, initial_delay=0.5, max_delay=5.0, exceptions=(ClientError,))
    async def _save_to_s3(self, payload: str):
        s3_client = self.aws_client_manager.s3_client

        await asyncio.get_running_loop().run_in_executor(
            None,
            lambda: s3_client.put_object(
                Bucket=self.config.s3_bucket,
                Key=self.config.s3_key,
                Body=payload.encode('utf-8'),
                ContentType='application/json'
            )
        )

    async def _get_from_local(self) -> Optional[Dict[str, Any]]:
        if not os.path.exists(self.local_path):
            logger.info(f"No existing local checkpoint at {self.local_path}")
            return None

        with open(self.local_path, 'r') as f:
            return json.load(f)

    async def _save_to_local(self, payload: str):
        os.makedirs(self.config.local_directory, exist_ok=True)

        # Atomic replace; readers never see a partial file
        tmp_path = self.local_path + ".tmp"
        with open(tmp_path, 'w') as f:
            f.write(payload)
        os.replace(tmp_path, self.local_path)
