"""
In-memory stream service implementation for testing.

This module provides a simple in-memory backend for:
- Unit tests
- Integration tests
- Local development without AWS

Invariants:
    - All data is lost on process exit
    - Provides the same ordering guarantees as Kinesis within a shard
    - Every call is recorded so tests can assert on it

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with the StreamService protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import hashlib
import itertools
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Deque, Dict, List, Optional, Tuple
import logging

from ..config import IteratorPolicy
from .base import (
    ExpiredIteratorError,
    GetRecordsResult,
    Record,
    Shard,
    StreamConnectionError,
    StreamNotFoundError,
    StreamServiceError,
)

logger = logging.getLogger(__name__)


@dataclass
class InMemoryShard:
    """In-memory shard storage."""
    shard_id: str
    records: List[Record] = field(default_factory=list)
    closed: bool = False


class InMemoryStreamService:
    """In-memory implementation of StreamService for testing.

    Attributes:
        batch_limit: Maximum records returned per get_records call
        latency: Seconds every call waits before answering
        calls: Every operation performed, as (operation, stream or shard) tuples

    Example:
        >>> service = InMemoryStreamService({"orders": 2})
        >>> service.put_record("orders", b"hello", shard_id="shardId-000000000000")
        >>> await service.connect()
        >>> shards = await service.list_shards("orders")
    """

    def __init__(
        self,
        streams: Optional[Dict[str, int]] = None,
        batch_limit: Optional[int] = None,
        latency: float = 0.0,
    ) -> None:
        """Initialize the in-memory service.

        Args:
            streams: Stream name to shard count
            batch_limit: Maximum records per get_records call
            latency: Simulated round-trip time in seconds
        """
        self.batch_limit = batch_limit
        self.latency = latency
        self.calls: List[Tuple[str, str]] = []
        self.iterator_requests: List[
            Tuple[str, IteratorPolicy, Optional[datetime], Optional[str]]
        ] = []
        self._streams: Dict[str, Dict[str, InMemoryShard]] = {}
        self._iterators: Dict[str, Tuple[str, str, int]] = {}
        self._failures: Dict[Tuple[str, Optional[str]], Deque[Exception]] = defaultdict(deque)
        self._sequence = itertools.count(1)
        self._tokens = itertools.count(1)
        self._connected = False

        for name, shard_count in (streams or {}).items():
            self.create_stream(name, shard_count)

    @property
    def is_connected(self) -> bool:
        """Whether connected (always true after connect())."""
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryStreamService connected")

    async def close(self) -> None:
        """Disconnect; stored records are kept."""
        self._connected = False
        self._iterators.clear()
        logger.debug("InMemoryStreamService closed")

    # Stream service protocol

    async def list_shards(self, stream_name: str) -> List[Shard]:
        await self._call("list_shards", stream_name, None)
        stream = self._get_stream(stream_name)
        return [Shard(shard_id=shard_id) for shard_id in stream]

    async def get_shard_iterator(
        self,
        stream_name: str,
        shard_id: str,
        policy: IteratorPolicy,
        timestamp: Optional[datetime] = None,
        sequence_number: Optional[str] = None,
    ) -> str:
        await self._call("get_shard_iterator", shard_id, shard_id)
        self.iterator_requests.append((shard_id, policy, timestamp, sequence_number))

        shard = self._get_stream(stream_name).get(shard_id)
        if shard is None:
            raise StreamNotFoundError(f"Shard {shard_id} not found in stream {stream_name}")

        if policy is IteratorPolicy.TRIM_HORIZON:
            position = 0
        elif policy is IteratorPolicy.LATEST:
            position = len(shard.records)
        elif policy is IteratorPolicy.AT_TIMESTAMP:
            if timestamp is None:
                raise StreamServiceError("Timestamp is required for AT_TIMESTAMP")
            position = next(
                (i for i, r in enumerate(shard.records) if r.arrival and r.arrival >= timestamp),
                len(shard.records),
            )
        else:
            if not sequence_number:
                raise StreamServiceError(
                    f"StartingSequenceNumber is required for {policy.value}"
                )
            index = next(
                (i for i, r in enumerate(shard.records) if r.sequence_number == sequence_number),
                None,
            )
            if index is None:
                raise StreamServiceError(
                    f"Sequence number {sequence_number} not found in {shard_id}"
                )
            position = index + 1 if policy is IteratorPolicy.AFTER_SEQUENCE_NUMBER else index

        return self._issue(stream_name, shard_id, position)

    async def get_records(
        self,
        cursor: str,
        limit: Optional[int] = None,
    ) -> GetRecordsResult:
        location = self._iterators.get(cursor)
        shard_id = location[1] if location else None
        await self._call("get_records", shard_id or cursor, shard_id)

        if location is None:
            raise ExpiredIteratorError(f"Iterator {cursor} has expired or is unknown")

        stream_name, shard_id, position = location
        shard = self._get_stream(stream_name)[shard_id]

        bounds = [n for n in (limit, self.batch_limit) if n]
        end = len(shard.records)
        if bounds:
            end = min(end, position + min(bounds))

        records = shard.records[position:end]
        if shard.closed and end >= len(shard.records):
            next_cursor = None
        else:
            next_cursor = self._issue(stream_name, shard_id, end)

        return GetRecordsResult(
            records=list(records),
            next_cursor=next_cursor,
            millis_behind_latest=0 if end >= len(shard.records) else None,
        )

    # Testing helpers

    def create_stream(self, stream_name: str, shard_count: int) -> List[str]:
        """Create a stream with shard ids shardId-000000000000 and up."""
        shards = {}
        for i in range(shard_count):
            shard_id = f"shardId-{i:012d}"
            shards[shard_id] = InMemoryShard(shard_id=shard_id)
        self._streams[stream_name] = shards
        return list(shards)

    def put_record(
        self,
        stream_name: str,
        data: bytes,
        shard_id: Optional[str] = None,
        partition_key: str = "",
        arrival: Optional[datetime] = None,
    ) -> Record:
        """Append a record (testing helper).

        The shard is picked by hashing the partition key unless given.
        """
        stream = self._get_stream(stream_name)
        if shard_id is None:
            shard_id = self._shard_for_key(stream_name, partition_key)
        shard = stream[shard_id]
        if shard.closed:
            raise StreamServiceError(f"Shard {shard_id} is closed")

        record = Record(
            data=data,
            sequence_number=f"{next(self._sequence):056d}",
            partition_key=partition_key,
            shard_id=shard_id,
            arrival=arrival or datetime.now(timezone.utc),
        )
        shard.records.append(record)
        return record

    def close_shard(self, stream_name: str, shard_id: str) -> None:
        """Mark a shard closed; readers see a None next cursor at its end."""
        self._get_stream(stream_name)[shard_id].closed = True

    def expire_iterators(self) -> None:
        """Invalidate every cursor issued so far."""
        self._iterators.clear()

    def inject_failure(
        self,
        operation: str,
        exception: Exception,
        shard_id: Optional[str] = None,
        times: int = 1,
    ) -> None:
        """Make the next ``times`` calls of an operation raise ``exception``.

        Args:
            operation: "list_shards", "get_shard_iterator" or "get_records"
            exception: Exception to raise
            shard_id: Restrict the failure to one shard (None matches any)
            times: How many calls fail
        """
        for _ in range(times):
            self._failures[(operation, shard_id)].append(exception)

    def call_count(self, operation: str, shard_id: Optional[str] = None) -> int:
        """Number of recorded calls of an operation, optionally per shard."""
        return sum(
            1 for op, target in self.calls
            if op == operation and (shard_id is None or target == shard_id)
        )

    def get_all_records(self, stream_name: str) -> List[Record]:
        """Get all records for a stream, shard by shard (testing helper)."""
        records = []
        for shard in self._get_stream(stream_name).values():
            records.extend(shard.records)
        return records

    # Internals

    async def _call(self, operation: str, target: str, shard_id: Optional[str]) -> None:
        if not self._connected:
            raise StreamConnectionError("Not connected")

        self.calls.append((operation, target))
        await asyncio.sleep(self.latency)

        for key in ((operation, shard_id), (operation, None)):
            pending = self._failures.get(key)
            if pending:
                raise pending.popleft()

    def _get_stream(self, stream_name: str) -> Dict[str, InMemoryShard]:
        stream = self._streams.get(stream_name)
        if stream is None:
            raise StreamNotFoundError(f"Stream {stream_name} not found")
        return stream

    def _issue(self, stream_name: str, shard_id: str, position: int) -> str:
        token = f"{shard_id}:{position}:{next(self._tokens)}"
        self._iterators[token] = (stream_name, shard_id, position)
        return token

    def _shard_for_key(self, stream_name: str, key: str) -> str:
        """Get shard id for a key using consistent hashing."""
        shard_ids = list(self._get_stream(stream_name))
        hash_bytes = hashlib.md5(key.encode("utf-8")).digest()
        hash_int = int.from_bytes(hash_bytes[:4], "big")
        return shard_ids[hash_int % len(shard_ids)]
