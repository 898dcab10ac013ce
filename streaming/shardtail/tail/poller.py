"""
Shard poller: one shard's read loop.

Each poller owns exactly one cursor. It fetches a batch at the cursor, writes
every payload to the fan-in sink in service order, replaces the cursor with
the one the service returned, and sleeps the poll interval.

States:
    RESOLVING -> POLLING     resolve() obtained the initial cursor
    RESOLVING -> TERMINATED  resolve() failed (CursorError)
    POLLING   -> TERMINATED  fetch failed (FetchError), the shard closed
                             (ShardClosedError), or the sink was closed

Invariants:
    - The cursor is read and written only by its poller
    - Records of one shard reach the sink in shard order
    - With the default RetryConfig the first fetch error is fatal

How to change safely:
    - Keep the sink write ahead of the cursor replacement so a failed fetch
      never skips records already returned
    - Any retry behavior must stay opt-in through RetryConfig
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum

from ..config import RetryConfig
from ..errors import FetchError, ShardClosedError, TailError
from ..stream.base import (
    ExpiredIteratorError,
    GetRecordsResult,
    Shard,
    StreamService,
    StreamServiceError,
)
from .resolver import CursorResolver
from .sink import FanInSink, SinkClosedError

logger = logging.getLogger(__name__)


class PollerState(Enum):
    """Lifecycle of a shard poller."""

    RESOLVING = "resolving"
    POLLING = "polling"
    TERMINATED = "terminated"


class ShardPoller:
    """Reads one shard and writes its payloads to the fan-in sink.

    Attributes:
        shard: Shard this poller reads
        state: Current lifecycle state
        records_emitted: Payloads written to the sink
        fetch_count: GetRecords calls made
        last_sequence_number: Sequence number of the last emitted record
        error: Error that terminated the poller, if any

    Example:
        >>> poller = ShardPoller(shard, resolver, service, sink, poll_interval=1.0)
        >>> await poller.resolve()
        >>> task = asyncio.create_task(poller.run())
    """

    def __init__(
        self,
        shard: Shard,
        resolver: CursorResolver,
        service: StreamService,
        sink: FanInSink,
        poll_interval: float = 3.0,
        limit: int | None = None,
        retry: RetryConfig | None = None,
    ) -> None:
        """Initialize the poller.

        Args:
            shard: Shard to read
            resolver: Resolver for the initial (and any replacement) cursor
            service: Stream service to fetch from
            sink: Fan-in sink to write payloads to
            poll_interval: Seconds to sleep between fetches
            limit: Maximum records per fetch
            retry: Retry policy (fail-fast when omitted)
        """
        self.shard = shard
        self.resolver = resolver
        self.service = service
        self.sink = sink
        self.poll_interval = poll_interval
        self.limit = limit
        self.retry = retry or RetryConfig()

        self.state = PollerState.RESOLVING
        self.records_emitted = 0
        self.fetch_count = 0
        self.last_sequence_number: str | None = None
        self.error: BaseException | None = None
        self._cursor: str | None = None

    @property
    def shard_id(self) -> str:
        return self.shard.shard_id

    @property
    def cursor(self) -> str | None:
        """The position the next fetch reads from."""
        return self._cursor

    async def resolve(self) -> None:
        """Obtain the initial cursor.

        Raises:
            CursorError: If the iterator cannot be obtained
        """
        if self.state is not PollerState.RESOLVING:
            raise RuntimeError(f"Poller for {self.shard_id} already resolved")

        try:
            self._cursor = await self.resolver.resolve(self.shard)
        except TailError as e:
            self.state = PollerState.TERMINATED
            self.error = e
            raise

        self.state = PollerState.POLLING

    async def run(self) -> None:
        """Poll the shard until the sink closes or a fetch fails.

        Raises:
            FetchError: If a fetch fails and retries (if any) are exhausted
            ShardClosedError: If the service reports the shard closed
        """
        if self.state is not PollerState.POLLING:
            raise RuntimeError(f"Poller for {self.shard_id} is {self.state.value}, not polling")

        logger.info("Polling shard", extra={"shard": self.shard_id})

        try:
            while True:
                if self.sink.closed:
                    raise SinkClosedError("sink is closed")

                result = await self._fetch()

                for record in result.records:
                    await self.sink.put(record.data)
                    self.records_emitted += 1
                    self.last_sequence_number = record.sequence_number

                if result.next_cursor is None:
                    raise ShardClosedError(self.shard_id)

                self._cursor = result.next_cursor
                await asyncio.sleep(self.poll_interval)

        except SinkClosedError:
            logger.debug("Sink closed, poller stopping", extra={"shard": self.shard_id})
        except Exception as e:
            self.error = e
            raise
        finally:
            self.state = PollerState.TERMINATED

    async def _fetch(self) -> GetRecordsResult:
        """Fetch one batch, retrying per the retry policy."""
        attempt = 0
        while True:
            self.fetch_count += 1
            try:
                result = await self.service.get_records(self._cursor, limit=self.limit)
            except StreamServiceError as e:
                attempt += 1
                expired = isinstance(e, ExpiredIteratorError)
                if attempt > self.retry.max_retries or not (e.retryable or expired):
                    raise FetchError(
                        f"Failed reading from shard {self.shard_id}: {e}",
                        shard_id=self.shard_id,
                        attempts=attempt,
                    ) from e

                logger.warning(
                    "Shard fetch failed, retrying",
                    extra={
                        "shard": self.shard_id,
                        "attempt": attempt,
                        "max_retries": self.retry.max_retries,
                        "error": str(e),
                    },
                )
                if expired:
                    self._cursor = await self.resolver.resume_after(
                        self.shard, self.last_sequence_number
                    )
                else:
                    await asyncio.sleep(self.retry.delay_for(attempt))
                continue

            logger.debug(
                "Fetched batch",
                extra={
                    "shard": self.shard_id,
                    "records": len(result.records),
                    "millis_behind_latest": result.millis_behind_latest,
                },
            )
            return result
