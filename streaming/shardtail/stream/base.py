"""
Base protocol and types for the stream service abstraction.

This module defines the StreamService protocol that all backends must
implement, along with the shard, record and error types the tailing core
depends on.

Invariants:
    - A cursor is an opaque string issued by the service
    - get_records returns records in shard order
    - A None next_cursor means the shard is closed
    - Service errors say whether retrying can help

How to change safely:
    - Protocol changes require updating all implementations
    - Keep the core depending only on list_shards, get_shard_iterator
      and get_records
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import (
    List,
    Optional,
    Protocol,
    runtime_checkable,
    TYPE_CHECKING,
)
import logging

from ..config import IteratorPolicy

if TYPE_CHECKING:
    from ..config import KinesisConfig

logger = logging.getLogger(__name__)


class StreamServiceError(Exception):
    """Base exception for stream service operations."""

    retryable = False


class StreamNotFoundError(StreamServiceError):
    """The stream (or shard) does not exist."""
    pass


class StreamAccessDeniedError(StreamServiceError):
    """The caller is not allowed to perform the operation."""
    pass


class StreamConnectionError(StreamServiceError):
    """Connection to the service failed."""

    retryable = True


class StreamTimeoutError(StreamServiceError):
    """The service did not answer in time."""

    retryable = True


class ThroughputExceededError(StreamServiceError):
    """The shard's read throughput was exceeded."""

    retryable = True


class ExpiredIteratorError(StreamServiceError):
    """The shard iterator is no longer valid.

    Not retryable with the same cursor; a new one has to be resolved.
    """
    pass


@dataclass(frozen=True)
class Shard:
    """One partition of a stream.

    Attributes:
        shard_id: Shard identifier, e.g. "shardId-000000000001"
    """
    shard_id: str

    def __str__(self) -> str:
        return self.shard_id


@dataclass(frozen=True)
class Record:
    """A record read from a shard.

    Attributes:
        data: Payload bytes
        sequence_number: Service-assigned sequence number within the shard
        partition_key: Partition key the producer used
        shard_id: Shard the record was read from
        arrival: Approximate arrival time, when the service reports one
    """
    data: bytes
    sequence_number: str
    partition_key: str = ""
    shard_id: str = ""
    arrival: Optional[datetime] = None

    def __str__(self) -> str:
        return f"Record(shard={self.shard_id}, seq={self.sequence_number})"


@dataclass
class GetRecordsResult:
    """One batch returned by get_records.

    Attributes:
        records: Records in shard order
        next_cursor: Cursor for the next call, None when the shard is closed
        millis_behind_latest: How far the cursor is behind the shard tip
    """
    records: List[Record] = field(default_factory=list)
    next_cursor: Optional[str] = None
    millis_behind_latest: Optional[int] = None


@runtime_checkable
class StreamService(Protocol):
    """Protocol for stream service backends.

    The tailing core relies on three operations:
    - list_shards: the shard set of a stream (DescribeStream)
    - get_shard_iterator: an initial cursor for a shard
    - get_records: a batch of records plus the next cursor

    Example:
        >>> service = KinesisStreamService(config)
        >>> await service.connect()
        >>> shards = await service.list_shards("my-stream")
        >>> cursor = await service.get_shard_iterator(
        ...     "my-stream", shards[0].shard_id, IteratorPolicy.TRIM_HORIZON
        ... )
        >>> result = await service.get_records(cursor)
    """

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the service.

        Raises:
            StreamConnectionError: If connection fails
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the client."""
        ...

    @abstractmethod
    async def list_shards(self, stream_name: str) -> List[Shard]:
        """List every shard of the stream.

        Raises:
            StreamNotFoundError: If the stream does not exist
            StreamServiceError: For other failures
        """
        ...

    @abstractmethod
    async def get_shard_iterator(
        self,
        stream_name: str,
        shard_id: str,
        policy: IteratorPolicy,
        timestamp: Optional[datetime] = None,
        sequence_number: Optional[str] = None,
    ) -> str:
        """Obtain an initial cursor for a shard.

        Args:
            stream_name: Stream name
            shard_id: Shard to read
            policy: Where to start reading
            timestamp: Start instant (AT_TIMESTAMP only)
            sequence_number: Start sequence number (AT/AFTER_SEQUENCE_NUMBER only)

        Raises:
            StreamServiceError: If the iterator cannot be obtained
        """
        ...

    @abstractmethod
    async def get_records(
        self,
        cursor: str,
        limit: Optional[int] = None,
    ) -> GetRecordsResult:
        """Fetch the batch of records at the cursor.

        Raises:
            ExpiredIteratorError: If the cursor expired
            ThroughputExceededError: If the shard is throttled
            StreamServiceError: For other failures
        """
        ...


def create_stream_service(config: "KinesisConfig") -> StreamService:
    """Factory function to create the Kinesis stream service.

    Args:
        config: Kinesis session configuration

    Returns:
        StreamService implementation
    """
    from .kinesis import KinesisStreamService

    return KinesisStreamService(config)
