"""
Configuration management for shardtail.

Configuration is resolved once, up front, into immutable dataclasses that are
passed into the Orchestrator. Nothing here is process-wide state.

Sources:
    - Command-line flags (see main.py) for the tailing options
    - Environment variables for the service session and logging

Invariants:
    - All settings have defaults that match the command-line defaults
    - A bad start time fails before any network interaction
    - The start time only matters when the policy is AT_TIMESTAMP

How to change safely:
    - Add new settings with defaults that keep the fail-fast baseline
    - Keep parse_duration compatible with Go-style durations ("3s", "1m30s")
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum

from .errors import ConfigError

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Kinesis GetRecords accepts at most 10000 records per call
MAX_RECORDS_PER_GET = 10000


class IteratorPolicy(Enum):
    """Rule for choosing the initial cursor position in every shard."""

    TRIM_HORIZON = "TRIM_HORIZON"
    AT_SEQUENCE_NUMBER = "AT_SEQUENCE_NUMBER"
    AT_TIMESTAMP = "AT_TIMESTAMP"
    LATEST = "LATEST"
    # Only used internally to re-resolve an expired cursor
    AFTER_SEQUENCE_NUMBER = "AFTER_SEQUENCE_NUMBER"


# Policies a user may select
USER_POLICIES = (
    IteratorPolicy.TRIM_HORIZON,
    IteratorPolicy.AT_SEQUENCE_NUMBER,
    IteratorPolicy.AT_TIMESTAMP,
    IteratorPolicy.LATEST,
)


class SupervisorPolicy(Enum):
    """What a shard poller failure means for the whole run."""

    FAIL_FAST = "fail-fast"
    ISOLATE = "isolate"


_RFC3339_RE = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})[Tt](\d{2}):(\d{2}):(\d{2})(\.\d+)?([Zz]|[+-]\d{2}:\d{2})$"
)

_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_rfc3339(value: str) -> datetime:
    """Parse an RFC3339 timestamp such as ``2016-04-20T12:00:00+09:00``.

    Fractional seconds beyond microseconds are truncated.

    Args:
        value: Timestamp string

    Returns:
        Timezone-aware datetime

    Raises:
        ConfigError: If the string is not RFC3339
    """
    match = _RFC3339_RE.match(value.strip())
    if not match:
        raise ConfigError(
            f"parse time failed. -start-time format should be RFC3339 format.: {value!r}",
            option="start-time",
        )

    year, month, day, hour, minute, second, fraction, offset = match.groups()
    micros = int((fraction[1:] + "000000")[:6]) if fraction else 0

    if offset in ("Z", "z"):
        tz = timezone.utc
    else:
        sign = -1 if offset[0] == "-" else 1
        hours, minutes = int(offset[1:3]), int(offset[4:6])
        if hours > 23 or minutes > 59:
            raise ConfigError(f"invalid UTC offset in {value!r}", option="start-time")
        tz = timezone(sign * timedelta(hours=hours, minutes=minutes))

    try:
        return datetime(
            int(year), int(month), int(day),
            int(hour), int(minute), int(second),
            micros, tzinfo=tz,
        )
    except ValueError as e:
        raise ConfigError(
            f"parse time failed. -start-time is out of range: {value!r}: {e}",
            option="start-time",
        ) from e


def format_rfc3339(value: datetime) -> str:
    """Format a timezone-aware datetime as RFC3339."""
    offset = value.utcoffset()
    if offset is None:
        raise ValueError("cannot format a naive datetime as RFC3339")

    text = value.strftime("%Y-%m-%dT%H:%M:%S")
    if value.microsecond:
        text += f".{value.microsecond:06d}".rstrip("0")

    if not offset:
        return text + "Z"

    total = int(offset.total_seconds()) // 60
    sign = "-" if total < 0 else "+"
    hours, minutes = divmod(abs(total), 60)
    return f"{text}{sign}{hours:02d}:{minutes:02d}"


def parse_duration(value: str, option: str = "interval") -> float:
    """Parse a duration into seconds.

    Accepts Go-style durations (``3s``, ``500ms``, ``1m30s``) or a plain
    number of seconds (``2.5``).

    Raises:
        ConfigError: If the value cannot be parsed or is negative
    """
    text = value.strip()
    if not text:
        raise ConfigError(f"empty duration for -{option}", option=option)

    try:
        seconds = float(text)
    except ValueError:
        pos = 0
        seconds = 0.0
        for match in _DURATION_PART_RE.finditer(text):
            if match.start() != pos:
                break
            seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
            pos = match.end()
        if pos != len(text) or pos == 0:
            raise ConfigError(f"invalid duration {value!r} for -{option}", option=option)

    if seconds < 0:
        raise ConfigError(f"negative duration {value!r} for -{option}", option=option)
    return seconds


@dataclass(frozen=True)
class KinesisConfig:
    """AWS Kinesis session configuration.

    Attributes:
        region: AWS region
        endpoint_url: Custom endpoint URL (for LocalStack testing)
        max_records_per_get: Maximum records per GetRecords call
    """

    region: str = "ap-northeast-1"
    endpoint_url: str | None = None
    max_records_per_get: int = MAX_RECORDS_PER_GET

    @classmethod
    def from_env(cls) -> KinesisConfig:
        """Load configuration from environment variables."""
        return cls(
            region=os.getenv("AWS_REGION", os.getenv("AWS_DEFAULT_REGION", "ap-northeast-1")),
            endpoint_url=os.getenv("KINESIS_ENDPOINT_URL"),
            max_records_per_get=int(
                os.getenv("KINESIS_MAX_RECORDS", str(MAX_RECORDS_PER_GET))
            ),
        )


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy for shard fetches.

    The default (no retries) reproduces the fail-fast baseline: the first
    fetch error terminates the poller.

    Attributes:
        max_retries: Retries per fetch before giving up (0 disables retrying)
        base_delay: Backoff before the first retry, in seconds
        max_delay: Upper bound for the backoff, in seconds
    """

    max_retries: int = 0
    base_delay: float = 0.5
    max_delay: float = 10.0

    @property
    def enabled(self) -> bool:
        return self.max_retries > 0

    def delay_for(self, attempt: int) -> float:
        """Exponential backoff for the given retry attempt (1-based)."""
        return min(self.max_delay, self.base_delay * (2 ** max(attempt - 1, 0)))


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
        )


@dataclass(frozen=True)
class TailConfig:
    """Complete configuration for one tailing run.

    Attributes:
        stream_name: Target stream name
        iterator_policy: Initial cursor policy, applied to every shard
        start_time: Parsed start instant (AT_TIMESTAMP only)
        sequence_number: Starting sequence number (AT_SEQUENCE_NUMBER only)
        poll_interval: Seconds to wait between GetRecords calls per shard
        sink_capacity: Fan-in queue capacity (0 means unbounded)
        supervisor: Failure policy for shard pollers
        retry: Fetch retry policy
        kinesis: Service session configuration
        observability: Logging configuration
    """

    stream_name: str = "your-stream"
    iterator_policy: IteratorPolicy = IteratorPolicy.LATEST
    start_time: datetime | None = None
    sequence_number: str | None = None
    poll_interval: float = 3.0
    sink_capacity: int = 0
    supervisor: SupervisorPolicy = SupervisorPolicy.FAIL_FAST
    retry: RetryConfig = field(default_factory=RetryConfig)
    kinesis: KinesisConfig = field(default_factory=KinesisConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_options(
        cls,
        stream_name: str = "your-stream",
        iterator_type: str = "LATEST",
        interval: str = "3s",
        start_time: str = "",
        sequence_number: str | None = None,
        sink_capacity: int = 0,
        supervisor: str = "fail-fast",
        max_retries: int = 0,
        retry_base_delay: str = "500ms",
        retry_max_delay: str = "10s",
        kinesis: KinesisConfig | None = None,
        observability: ObservabilityConfig | None = None,
    ) -> TailConfig:
        """Resolve raw option strings into a validated configuration.

        The start time is parsed only when the policy is AT_TIMESTAMP.

        Raises:
            ConfigError: If any option is invalid
        """
        try:
            policy = IteratorPolicy(iterator_type.upper())
        except ValueError:
            policy = None
        if policy not in USER_POLICIES:
            choices = ", ".join(p.value for p in USER_POLICIES)
            raise ConfigError(
                f"invalid iterator type {iterator_type!r}. Choose from {choices}.",
                option="iterator-type",
            )

        try:
            supervisor_policy = SupervisorPolicy(supervisor.lower())
        except ValueError as e:
            raise ConfigError(
                f"invalid supervisor {supervisor!r}. Choose from fail-fast, isolate.",
                option="supervisor",
            ) from e

        start = None
        if policy is IteratorPolicy.AT_TIMESTAMP and start_time:
            start = parse_rfc3339(start_time)
        elif start_time:
            logger.warning(
                "Ignoring -start-time because iterator type is not AT_TIMESTAMP",
                extra={"iterator_type": policy.value},
            )

        config = cls(
            stream_name=stream_name,
            iterator_policy=policy,
            start_time=start,
            sequence_number=sequence_number or None,
            poll_interval=parse_duration(interval, "interval"),
            sink_capacity=sink_capacity,
            supervisor=supervisor_policy,
            retry=RetryConfig(
                max_retries=max_retries,
                base_delay=parse_duration(retry_base_delay, "retry-base-delay"),
                max_delay=parse_duration(retry_max_delay, "retry-max-delay"),
            ),
            kinesis=kinesis or KinesisConfig(),
            observability=observability or ObservabilityConfig(),
        )
        config.validate()
        return config

    @property
    def effective_start_time(self) -> datetime | None:
        """Timestamp sent with GetShardIterator.

        AT_TIMESTAMP without a start time falls back to the Unix epoch.
        Every other policy sends no timestamp.
        """
        if self.iterator_policy is not IteratorPolicy.AT_TIMESTAMP:
            return None
        return self.start_time or EPOCH

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ConfigError: If configuration is invalid.
        """
        if not self.stream_name:
            raise ConfigError("stream name is required", option="stream")
        if self.iterator_policy not in USER_POLICIES:
            raise ConfigError(
                f"iterator type {self.iterator_policy.value} cannot be configured",
                option="iterator-type",
            )
        if self.poll_interval < 0:
            raise ConfigError("poll interval must not be negative", option="interval")
        if self.sink_capacity < 0:
            raise ConfigError("sink capacity must not be negative", option="sink-capacity")
        if not 1 <= self.kinesis.max_records_per_get <= MAX_RECORDS_PER_GET:
            raise ConfigError(
                f"limit must be between 1 and {MAX_RECORDS_PER_GET}", option="limit"
            )
        if self.retry.max_retries < 0:
            raise ConfigError("max retries must not be negative", option="max-retries")

        if self.iterator_policy is IteratorPolicy.AT_TIMESTAMP and self.start_time is None:
            logger.warning(
                "AT_TIMESTAMP without -start-time reads from the Unix epoch",
                extra={"start_time": format_rfc3339(EPOCH)},
            )
        if (
            self.iterator_policy is IteratorPolicy.AT_SEQUENCE_NUMBER
            and not self.sequence_number
        ):
            logger.warning(
                "AT_SEQUENCE_NUMBER without -sequence-number; the service will reject it"
            )

    def log_config(self) -> None:
        """Log the resolved configuration."""
        logger.info(
            "Tail configuration loaded",
            extra={
                "stream": self.stream_name,
                "iterator_type": self.iterator_policy.value,
                "start_time": format_rfc3339(self.start_time) if self.start_time else None,
                "interval_seconds": self.poll_interval,
                "sink_capacity": self.sink_capacity,
                "supervisor": self.supervisor.value,
                "max_retries": self.retry.max_retries,
                "region": self.kinesis.region,
                "endpoint": self.kinesis.endpoint_url or "AWS",
            },
        )
