"""
Error types for shardtail.

This module defines the exceptions that terminate a tailing run:
- TailError: Base exception
- ConfigError: Invalid configuration (bad start time, bad duration)
- DiscoveryError: Stream could not be described
- CursorError: Shard iterator could not be obtained
- FetchError: A shard poll failed
- ShardClosedError: A shard returned no next cursor

Invariants:
    - All errors inherit from TailError
    - Every TailError maps to exit code 1 in the CLI
    - Service errors are chained with ``from`` when wrapped
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class TailError(Exception):
    """Base exception for all shardtail errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "TAIL_ERROR"
        self.details = details or {}


class ConfigError(TailError):
    """Configuration could not be resolved.

    Raised when:
    - The start time is not RFC3339
    - A duration cannot be parsed
    - Option values are out of range
    """

    def __init__(self, message: str, option: Optional[str] = None) -> None:
        super().__init__(message, code="CONFIG_ERROR", details={"option": option})
        self.option = option


class DiscoveryError(TailError):
    """The stream could not be described.

    Raised when:
    - The stream does not exist
    - The caller is not allowed to describe it
    - The stream has no shards
    """

    def __init__(self, message: str, stream_name: str) -> None:
        super().__init__(
            message,
            code="DISCOVERY_ERROR",
            details={"stream_name": stream_name},
        )
        self.stream_name = stream_name


class CursorError(TailError):
    """A shard iterator could not be obtained."""

    def __init__(self, message: str, shard_id: str) -> None:
        super().__init__(message, code="CURSOR_ERROR", details={"shard_id": shard_id})
        self.shard_id = shard_id


class FetchError(TailError):
    """Reading records from a shard failed.

    Covers expired iterators, throttling and network faults once the
    configured retries (if any) are exhausted.
    """

    def __init__(self, message: str, shard_id: str, attempts: int = 1) -> None:
        super().__init__(
            message,
            code="FETCH_ERROR",
            details={"shard_id": shard_id, "attempts": attempts},
        )
        self.shard_id = shard_id
        self.attempts = attempts


class ShardClosedError(FetchError):
    """The service returned no next cursor: the shard has been closed.

    A run has no successful end, so a closed shard is treated like any
    other fetch failure.
    """

    def __init__(self, shard_id: str) -> None:
        super().__init__(f"Shard {shard_id} is closed", shard_id=shard_id)
        self.code = "SHARD_CLOSED"
