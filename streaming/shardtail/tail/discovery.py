"""Stream discovery: the shard set, queried once at startup."""

from __future__ import annotations

import logging

from ..errors import DiscoveryError
from ..stream.base import Shard, StreamService, StreamServiceError

logger = logging.getLogger(__name__)


async def discover_shards(service: StreamService, stream_name: str) -> list[Shard]:
    """List the shards of a stream.

    Not retried: a failure here means the stream is missing or inaccessible,
    which is a configuration problem.

    Raises:
        DiscoveryError: If the stream cannot be described or has no shards
    """
    try:
        shards = await service.list_shards(stream_name)
    except StreamServiceError as e:
        raise DiscoveryError(
            f"Cannot describe stream. Please verify your stream is accessible.: {e}",
            stream_name=stream_name,
        ) from e

    if not shards:
        raise DiscoveryError(f"Stream {stream_name} has no shards", stream_name=stream_name)

    logger.info(
        f"Discovered {len(shards)} shards",
        extra={"stream": stream_name, "shards": [s.shard_id for s in shards]},
    )
    return list(shards)
