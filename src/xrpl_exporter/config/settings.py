"""Configuration settings for the XRPL exporter service."""

import os
import yaml
from dataclasses import dataclass, fields
from typing import List, Optional

from ..errors import ConfigError


@dataclass
class ExporterConfig:
    """Ledger export configuration."""
    node_urls: str = "wss://s2.ripple.com"  # Comma separated, tried in order
    send_batch_size: int = 30
    connections_count: int = 1
    max_connection_concurrency: int = 10
    ws_timeout_seconds: float = 10.0
    start_ledger: int = 32570
    # Although we ask for the last validated ledger, nodes sometimes return
    # ledgers that are neither validated nor closed. 20 ledgers is roughly
    # one to two minutes.
    confirmations: int = 20
    export_timeout_seconds: float = 300.0
    poll_interval_seconds: float = 1.0

    @property
    def endpoints(self) -> List[str]:
        """Endpoint list in failover order."""
        return [url.strip() for url in self.node_urls.split(",") if url.strip()]


@dataclass
class AWSConfig:
    """AWS configuration."""
    region: str = "us-east-1"
    endpoint_url: Optional[str] = None  # For LocalStack


@dataclass
class KinesisConfig:
    """Kinesis configuration."""
    stream_name: str = "xrpl-ledgers"
    max_retries: int = 3
    initial_backoff_seconds: float = 0.5
    max_backoff_seconds: float = 10.0


@dataclass
class CheckpointConfig:
    """Checkpoint configuration."""
    storage_type: str = "local"  # "s3" or "local"
    local_directory: str = "./checkpoints"
    s3_bucket: Optional[str] = None
    s3_key: str = "xrpl-exporter/position.json"


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    format: str = "json"
    output: str = "stdout"


@dataclass
class HealthConfig:
    """Health check configuration."""
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 3000


@dataclass
class XRPLExporterConfig:
    """Main configuration for the XRPL exporter service."""
    exporter: ExporterConfig
    aws: AWSConfig
    kinesis: KinesisConfig
    checkpoint: CheckpointConfig
    logging: LoggingConfig
    health: HealthConfig


def load_config(config_file: str) -> XRPLExporterConfig:
    """Load configuration from YAML file."""

    # Load YAML file
    with open(config_file, 'r') as f:
        config_data = yaml.safe_load(f) or {}

    # Environment variable substitution
    config_data = _substitute_env_vars(config_data)

    return build_config(config_data)


def build_config(config_data: dict) -> XRPLExporterConfig:
    """Create and validate configuration objects from a plain mapping."""
    config = XRPLExporterConfig(
        exporter=_build_section(ExporterConfig, config_data.get('exporter')),
        aws=_build_section(AWSConfig, config_data.get('aws')),
        kinesis=_build_section(KinesisConfig, config_data.get('kinesis')),
        checkpoint=_build_section(CheckpointConfig, config_data.get('checkpoint')),
        logging=_build_section(LoggingConfig, config_data.get('logging')),
        health=_build_section(HealthConfig, config_data.get('health'))
    )

    _validate(config)
    return config


def _build_section(section_cls, data: Optional[dict]):
    """Instantiate one config dataclass, coercing substituted strings."""
    data = data or {}
    known = {f.name: f for f in fields(section_cls)}

    unknown = set(data) - set(known)
    if unknown:
        raise ConfigError(f"Unknown {section_cls.__name__} keys: {sorted(unknown)}")

    values = {}
    for name, value in data.items():
        if value is None or value == "":
            # Unset environment variable without default; keep dataclass default
            continue
        values[name] = _coerce(name, value, known[name].type)

    return section_cls(**values)


def _coerce(name: str, value, field_type):
    """Convert a YAML or environment value to the declared field type."""
    try:
        if field_type in (int, 'int'):
            return int(value)
        if field_type in (float, 'float'):
            return float(value)
        if field_type in (bool, 'bool'):
            if isinstance(value, bool):
                return value
            return str(value).strip().lower() in ('1', 'true', 'yes', 'on')
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {name}: {value!r}") from e

    return value


def _validate(config: XRPLExporterConfig):
    """Reject values the exporter cannot run with."""
    exporter = config.exporter

    if not exporter.endpoints:
        raise ConfigError("At least one node URL is required")

    for name in ('send_batch_size', 'connections_count', 'max_connection_concurrency'):
        if getattr(exporter, name) < 1:
            raise ConfigError(f"{name} must be positive")

    if exporter.confirmations < 0:
        raise ConfigError("confirmations must not be negative")

    if config.checkpoint.storage_type not in ('s3', 'local'):
        raise ConfigError(f"Unknown checkpoint storage: {config.checkpoint.storage_type}")

    if config.checkpoint.storage_type == 's3' and not config.checkpoint.s3_bucket:
        raise ConfigError("checkpoint.s3_bucket is required for s3 storage")


def _substitute_env_vars(data):
    """Recursively substitute environment variables in configuration."""
    if isinstance(data, dict):
        return {key: _substitute_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_vars(item) for item in data]
    elif isinstance(data, str) and data.startswith('${') and data.endswith('}'):
        # Extract environment variable name and default value
        env_spec = data[2:-1]  # Remove ${ and }

        if ':' in env_spec:
            env_name, default_value = env_spec.split(':', 1)
        else:
            env_name, default_value = env_spec, None

        return os.getenv(env_name, default_value)
    else:
        return data
