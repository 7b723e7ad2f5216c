"""Clients for the rippled node and the Kinesis sink."""

from .kinesis_client import KinesisSink
from .rippled_ws import RippledClient

__all__ = ["KinesisSink", "RippledClient"]
