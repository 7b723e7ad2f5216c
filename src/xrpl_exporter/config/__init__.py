"""Configuration loading for the XRPL exporter."""

from .settings import (
    AWSConfig,
    CheckpointConfig,
    ExporterConfig,
    HealthConfig,
    KinesisConfig,
    LoggingConfig,
    XRPLExporterConfig,
    build_config,
    load_config,
)

__all__ = [
    "AWSConfig",
    "CheckpointConfig",
    "ExporterConfig",
    "HealthConfig",
    "KinesisConfig",
    "LoggingConfig",
    "XRPLExporterConfig",
    "build_config",
    "load_config",
]
