"""
AWS Kinesis stream service implementation.

This module provides the Kinesis Data Streams backend for the tailing core.
It uses aiobotocore for async operations.

Invariants:
    - ListShards is paginated until NextToken is exhausted
    - GetRecords is never wrapped in a timeout
    - botocore errors are mapped onto StreamServiceError subclasses

How to change safely:
    - Test with LocalStack (KINESIS_ENDPOINT_URL) before pointing at AWS
    - Keep the error mapping in _map_client_error exhaustive for the
      codes the poller treats as retryable
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from aiobotocore.session import get_session
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    ReadTimeoutError,
)

from ..config import IteratorPolicy
from .base import (
    ExpiredIteratorError,
    GetRecordsResult,
    Record,
    Shard,
    StreamAccessDeniedError,
    StreamConnectionError,
    StreamNotFoundError,
    StreamServiceError,
    StreamTimeoutError,
    ThroughputExceededError,
)

logger = logging.getLogger(__name__)

_RETRYABLE_THROTTLES = {
    "ProvisionedThroughputExceededException",
    "LimitExceededException",
    "KMSThrottlingException",
}

_ACCESS_DENIED = {
    "AccessDeniedException",
    "UnrecognizedClientException",
    "KMSAccessDeniedException",
}


def _map_client_error(error: Exception, operation: str) -> StreamServiceError:
    """Translate a botocore exception into a StreamServiceError."""
    if isinstance(error, ClientError):
        code = error.response.get("Error", {}).get("Code", "")
        message = f"Kinesis {operation} failed ({code}): {error}"
        if code == "ResourceNotFoundException":
            return StreamNotFoundError(message)
        if code == "ExpiredIteratorException":
            return ExpiredIteratorError(message)
        if code in _RETRYABLE_THROTTLES:
            return ThroughputExceededError(message)
        if code in _ACCESS_DENIED:
            return StreamAccessDeniedError(message)
        return StreamServiceError(message)

    if isinstance(error, (ReadTimeoutError, ConnectTimeoutError)):
        return StreamTimeoutError(f"Kinesis {operation} timed out: {error}")
    if isinstance(error, (EndpointConnectionError, ConnectionClosedError)):
        return StreamConnectionError(f"Failed to reach Kinesis endpoint: {error}")
    if isinstance(error, NoCredentialsError):
        return StreamAccessDeniedError(f"No AWS credentials found: {error}")
    return StreamServiceError(f"Kinesis {operation} failed: {error}")


class KinesisStreamService:
    """Kinesis Data Streams implementation of the StreamService protocol.

    Uses aiobotocore for async operations with AWS Kinesis.

    Attributes:
        config: Kinesis session configuration

    Example:
        >>> config = KinesisConfig(region="us-east-1")
        >>> service = KinesisStreamService(config)
        >>> await service.connect()
        >>> shards = await service.list_shards("my-stream")
    """

    def __init__(self, config: Any, client: Any = None) -> None:
        """Initialize the Kinesis stream service.

        Args:
            config: KinesisConfig instance
            client: Pre-built Kinesis client (the caller owns its lifecycle)
        """
        self.config = config
        self._session = None
        self._client_ctx = None
        self._client = client
        self._connected = client is not None
        # Shard of every live cursor; GetRecords responses do not name it
        self._cursor_shards: dict[str, str] = {}

    @property
    def is_connected(self) -> bool:
        """Whether connected to Kinesis."""
        return self._connected

    async def connect(self) -> None:
        """Create the boto session and client.

        Raises:
            StreamConnectionError: If the client cannot be created
        """
        if self._connected:
            return

        try:
            self._session = get_session()

            client_config = {
                "region_name": self.config.region,
            }

            if self.config.endpoint_url:
                client_config["endpoint_url"] = self.config.endpoint_url

            self._client_ctx = self._session.create_client("kinesis", **client_config)
            self._client = await self._client_ctx.__aenter__()
            self._connected = True

            logger.info(
                "Connected to Kinesis",
                extra={
                    "region": self.config.region,
                    "endpoint": self.config.endpoint_url or "AWS",
                },
            )

        except BotoCoreError as e:
            raise StreamConnectionError(f"Failed to create Kinesis client: {e}") from e

    async def close(self) -> None:
        """Close the Kinesis client if this service created it."""
        if self._client_ctx is not None:
            try:
                await self._client_ctx.__aexit__(None, None, None)
            except (BotoCoreError, OSError) as e:
                logger.warning(f"Error closing Kinesis client: {e}")
            self._client = None
            self._client_ctx = None

        self._session = None
        self._connected = False
        self._cursor_shards.clear()
        logger.debug("Kinesis connection closed")

    def _require_client(self) -> Any:
        if self._client is None:
            raise StreamConnectionError("Not connected to Kinesis")
        return self._client

    async def list_shards(self, stream_name: str) -> list[Shard]:
        """List all shards in the stream."""
        client = self._require_client()
        shards = []
        next_token = None

        try:
            while True:
                # StreamName and NextToken are mutually exclusive
                if next_token:
                    response = await client.list_shards(NextToken=next_token)
                else:
                    response = await client.list_shards(StreamName=stream_name)

                shards.extend(Shard(shard_id=s["ShardId"]) for s in response["Shards"])

                next_token = response.get("NextToken")
                if not next_token:
                    break
        except (ClientError, BotoCoreError) as e:
            raise _map_client_error(e, "ListShards") from e

        logger.debug(
            "Listed shards",
            extra={"stream": stream_name, "shards": len(shards)},
        )
        return shards

    async def get_shard_iterator(
        self,
        stream_name: str,
        shard_id: str,
        policy: IteratorPolicy,
        timestamp: datetime | None = None,
        sequence_number: str | None = None,
    ) -> str:
        """Obtain a shard iterator."""
        client = self._require_client()

        kwargs: dict[str, Any] = {
            "StreamName": stream_name,
            "ShardId": shard_id,
            "ShardIteratorType": policy.value,
        }
        if policy is IteratorPolicy.AT_TIMESTAMP and timestamp is not None:
            kwargs["Timestamp"] = timestamp
        if (
            policy in (IteratorPolicy.AT_SEQUENCE_NUMBER, IteratorPolicy.AFTER_SEQUENCE_NUMBER)
            and sequence_number
        ):
            kwargs["StartingSequenceNumber"] = sequence_number

        try:
            response = await client.get_shard_iterator(**kwargs)
        except (ClientError, BotoCoreError) as e:
            raise _map_client_error(e, "GetShardIterator") from e

        cursor = response["ShardIterator"]
        self._cursor_shards[cursor] = shard_id
        return cursor

    async def get_records(
        self,
        cursor: str,
        limit: int | None = None,
    ) -> GetRecordsResult:
        """Fetch one batch of records."""
        client = self._require_client()

        kwargs: dict[str, Any] = {"ShardIterator": cursor}
        if limit:
            kwargs["Limit"] = limit

        try:
            response = await client.get_records(**kwargs)
        except (ClientError, BotoCoreError) as e:
            mapped = _map_client_error(e, "GetRecords")
            if isinstance(mapped, ExpiredIteratorError):
                self._cursor_shards.pop(cursor, None)
            raise mapped from e

        shard_id = self._cursor_shards.pop(cursor, "")
        next_cursor = response.get("NextShardIterator")
        if next_cursor and shard_id:
            self._cursor_shards[next_cursor] = shard_id

        records = [
            Record(
                data=r["Data"],
                sequence_number=r["SequenceNumber"],
                partition_key=r.get("PartitionKey", ""),
                shard_id=shard_id,
                arrival=r.get("ApproximateArrivalTimestamp"),
            )
            for r in response.get("Records", [])
        ]

        return GetRecordsResult(
            records=records,
            next_cursor=next_cursor,
            millis_behind_latest=response.get("MillisBehindLatest"),
        )
