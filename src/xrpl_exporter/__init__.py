"""
XRPL Exporter - ordered, resumable export of XRP Ledger history.

This package reads closed, validated ledgers from rippled nodes and publishes
them in ledger-index order to a Kinesis stream, checkpointing its position
after every batch.
"""

__version__ = "1.0.0"
__author__ = "XRPL Exporter Team"
