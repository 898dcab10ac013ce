"""
Fan-in sink: many shard pollers write, one consumer reads.

Invariants:
    - Payloads from one producer are delivered in the order written
    - Closing never drops buffered payloads; get() drains them first
    - With capacity 0 the sink is unbounded and put() never waits
"""

from __future__ import annotations

import asyncio
import logging

logger = logging.getLogger(__name__)

_CLOSED = object()


class SinkClosedError(Exception):
    """Raised by put() once the sink has been closed."""
    pass


class FanInSink:
    """Multi-producer single-consumer payload queue.

    Capacity bounds the number of payloads buffered at once. A bounded sink
    suspends producers while it is full; an unbounded sink trades memory
    growth for never blocking them.

    Example:
        >>> sink = FanInSink()
        >>> await sink.put(b"hello")
        >>> sink.close()
        >>> await sink.get()
        b'hello'
        >>> await sink.get() is None
        True
    """

    def __init__(self, capacity: int = 0) -> None:
        """Initialize the sink.

        Args:
            capacity: Maximum buffered payloads (0 means unbounded)
        """
        if capacity < 0:
            raise ValueError("capacity must not be negative")
        self.capacity = capacity
        # The queue itself is unbounded so the close marker always fits;
        # capacity is enforced with a semaphore.
        self._queue: asyncio.Queue = asyncio.Queue()
        self._slots = asyncio.Semaphore(capacity) if capacity else None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        """Number of buffered payloads."""
        return self._queue.qsize() - (1 if self._closed else 0)

    async def put(self, payload: bytes) -> None:
        """Write a payload, waiting for capacity when bounded.

        Raises:
            SinkClosedError: If the sink is closed
        """
        if self._closed:
            raise SinkClosedError("sink is closed")

        if self._slots is not None:
            await self._slots.acquire()
            if self._closed:
                self._slots.release()
                raise SinkClosedError("sink is closed")

        self._queue.put_nowait(payload)

    async def get(self) -> bytes | None:
        """Read the next payload.

        Returns:
            The next payload, or None once the sink is closed and drained
        """
        item = await self._queue.get()
        if item is _CLOSED:
            # Leave the marker in place for any later get()
            self._queue.put_nowait(_CLOSED)
            return None

        if self._slots is not None:
            self._slots.release()
        return item

    def close(self) -> None:
        """Stop accepting payloads; idempotent."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)
        logger.debug("Sink closed", extra={"buffered": self.qsize()})
