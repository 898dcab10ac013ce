"""
Cursor resolution for shard pollers.

Invariants:
    - The timestamp is sent only for AT_TIMESTAMP
    - AT_TIMESTAMP without a start time resolves from the Unix epoch
    - Failures surface as CursorError carrying the shard id
"""

from __future__ import annotations

import logging

from ..config import IteratorPolicy, TailConfig
from ..errors import CursorError
from ..stream.base import Shard, StreamService, StreamServiceError

logger = logging.getLogger(__name__)


class CursorResolver:
    """Obtains initial cursors from the stream service.

    One resolver serves every shard of the run; the policy, timestamp and
    sequence number come from the configuration and are applied uniformly.

    Example:
        >>> resolver = CursorResolver(service, config)
        >>> cursor = await resolver.resolve(Shard("shardId-000000000000"))
    """

    def __init__(self, service: StreamService, config: TailConfig) -> None:
        self.service = service
        self.stream_name = config.stream_name
        self.policy = config.iterator_policy
        self.timestamp = config.effective_start_time
        self.sequence_number = config.sequence_number

    async def resolve(self, shard: Shard) -> str:
        """Resolve the initial cursor for a shard.

        Raises:
            CursorError: If the service cannot issue an iterator
        """
        return await self._get_iterator(
            shard,
            self.policy,
            timestamp=self.timestamp,
            sequence_number=self.sequence_number,
        )

    async def resume_after(self, shard: Shard, sequence_number: str | None) -> str:
        """Resolve a replacement cursor after an expired one.

        Reads from just after the last record seen, or applies the configured
        policy again when nothing has been read yet.

        Raises:
            CursorError: If the service cannot issue an iterator
        """
        if sequence_number is None:
            return await self.resolve(shard)
        return await self._get_iterator(
            shard,
            IteratorPolicy.AFTER_SEQUENCE_NUMBER,
            sequence_number=sequence_number,
        )

    async def _get_iterator(
        self,
        shard: Shard,
        policy: IteratorPolicy,
        timestamp=None,
        sequence_number=None,
    ) -> str:
        try:
            cursor = await self.service.get_shard_iterator(
                self.stream_name,
                shard.shard_id,
                policy,
                timestamp=timestamp,
                sequence_number=sequence_number,
            )
        except StreamServiceError as e:
            raise CursorError(
                f"Could not get iterator for shard {shard.shard_id}: {e}",
                shard_id=shard.shard_id,
            ) from e

        logger.debug(
            "Resolved shard iterator",
            extra={"shard": shard.shard_id, "iterator_type": policy.value},
        )
        return cursor
