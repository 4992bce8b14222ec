"""
Load-generation benchmark for ZooKeeper.

This package creates (and optionally reads back) a configurable number of
znodes across a fixed pool of worker threads sharing one session, and reports
throughput and latency for every phase.
"""

from .main import main

__all__ = ["main"]
