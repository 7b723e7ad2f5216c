"""AWS-specific configuration and client setup."""

import boto3
from botocore.config import Config
import logging

from .settings import AWSConfig

logger = logging.getLogger(__name__)


class AWSClientManager:
    """Manages AWS client instances with proper configuration."""

    def __init__(self, aws_config: AWSConfig):
        self.config = aws_config
        self._kinesis_client = None
        self._s3_client = None

        # Configure boto3 with retry and timeout settings
        self._boto_config = Config(
            region_name=aws_config.region,
            retries={
                'max_attempts': 3,
                'mode': 'adaptive'
            },
            max_pool_connections=50,
            connect_timeout=10,
            read_timeout=30
        )

    def _create_client(self, service_name: str):
        if self.config.endpoint_url:
            # LocalStack configuration for local development
            client = boto3.client(
                service_name,
                endpoint_url=self.config.endpoint_url,
                aws_access_key_id='test',
                aws_secret_access_key='test',
                region_name=self.config.region
            )
            logger.info(f"Created LocalStack {service_name} client: {self.config.endpoint_url}")
        else:
            client = boto3.client(service_name, config=self._boto_config)
            logger.info(f"Created AWS {service_name} client in region: {self.config.region}")

        return client

    @property
    def kinesis_client(self):
        """Get or create Kinesis client."""
        if self._kinesis_client is None:
            self._kinesis_client = self._create_client('kinesis')
        return self._kinesis_client

    @property
    def s3_client(self):
        """Get or create S3 client."""
        if self._s3_client is None:
            self._s3_client = self._create_client('s3')
        return self._s3_client
