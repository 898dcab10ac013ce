"""
Stream service abstraction for shardtail.

This module provides a pluggable backend interface for partitioned logs:
- AWS Kinesis Data Streams
- In-memory (for testing)

The tailing core only needs three operations: list the shards of a stream,
obtain a shard iterator, and read a batch of records at an iterator.

Invariants:
    - Records are returned in shard order
    - Cursors are opaque and owned by one poller at a time
    - Errors carry a retryable flag

How to change safely:
    - New backends must implement the StreamService protocol
    - Map backend errors onto the StreamServiceError hierarchy
"""

from .base import (
    ExpiredIteratorError,
    GetRecordsResult,
    Record,
    Shard,
    StreamAccessDeniedError,
    StreamConnectionError,
    StreamNotFoundError,
    StreamService,
    StreamServiceError,
    StreamTimeoutError,
    ThroughputExceededError,
    create_stream_service,
)
from .kinesis import KinesisStreamService
from .memory import InMemoryStreamService

__all__ = [
    # Protocol and types
    "StreamService",
    "Shard",
    "Record",
    "GetRecordsResult",
    "StreamServiceError",
    "StreamNotFoundError",
    "StreamAccessDeniedError",
    "StreamConnectionError",
    "StreamTimeoutError",
    "ThroughputExceededError",
    "ExpiredIteratorError",
    # Factory
    "create_stream_service",
    # Implementations
    "KinesisStreamService",
    "InMemoryStreamService",
]
