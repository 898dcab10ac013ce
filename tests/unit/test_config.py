"""
Unit tests for configuration resolution.

Tests cover:
- RFC3339 parsing and formatting
- Go-style duration parsing
- Option resolution and validation
- AT_TIMESTAMP epoch fallback
"""

from datetime import datetime, timedelta, timezone

import pytest

from streaming.shardtail.config import (
    EPOCH,
    IteratorPolicy,
    KinesisConfig,
    ObservabilityConfig,
    RetryConfig,
    SupervisorPolicy,
    TailConfig,
    format_rfc3339,
    parse_duration,
    parse_rfc3339,
)
from streaming.shardtail.errors import ConfigError


class TestRfc3339:
    """Tests for parse_rfc3339 / format_rfc3339."""

    @pytest.mark.parametrize(
        "text",
        [
            "2016-04-20T12:00:00+09:00",
            "2016-04-20T03:00:00Z",
            "2024-02-29T23:59:59.123456-05:30",
            "1999-12-31T00:00:00.5Z",
        ],
    )
    def test_round_trip_preserves_instant(self, text):
        """Parse then format yields an equivalent instant."""
        parsed = parse_rfc3339(text)
        formatted = format_rfc3339(parsed)

        assert parse_rfc3339(formatted) == parsed

    def test_offset_is_applied(self):
        """The UTC offset is honored."""
        parsed = parse_rfc3339("2016-04-20T12:00:00+09:00")

        assert parsed.utcoffset() == timedelta(hours=9)
        assert parsed == datetime(2016, 4, 20, 3, 0, tzinfo=timezone.utc)

    def test_lowercase_separators(self):
        """RFC3339 allows lowercase t and z."""
        assert parse_rfc3339("2016-04-20t03:00:00z") == parse_rfc3339("2016-04-20T03:00:00Z")

    def test_fraction_truncated_to_microseconds(self):
        """Nanosecond precision is truncated."""
        parsed = parse_rfc3339("2016-04-20T03:00:00.123456789Z")
        assert parsed.microsecond == 123456

    def test_format_utc_uses_z(self):
        assert format_rfc3339(EPOCH) == "1970-01-01T00:00:00Z"

    def test_format_negative_offset(self):
        value = datetime(2020, 1, 1, 8, 0, tzinfo=timezone(-timedelta(hours=7)))
        assert format_rfc3339(value) == "2020-01-01T08:00:00-07:00"

    def test_format_naive_rejected(self):
        with pytest.raises(ValueError):
            format_rfc3339(datetime(2020, 1, 1))

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "yesterday",
            "2016-04-20",
            "2016-04-20T12:00:00",
            "2016-04-20 12:00:00+09:00",
            "2016-13-20T12:00:00Z",
            "2016-02-30T12:00:00Z",
            "2016-04-20T25:00:00Z",
            "2016-04-20T12:00:00+24:00",
        ],
    )
    def test_invalid_strings_rejected(self, text):
        """Invalid timestamps raise ConfigError."""
        with pytest.raises(ConfigError) as exc_info:
            parse_rfc3339(text)
        assert exc_info.value.option == "start-time"


class TestParseDuration:
    """Tests for parse_duration."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("3s", 3.0),
            ("500ms", 0.5),
            ("1m30s", 90.0),
            ("1h", 3600.0),
            ("1.5s", 1.5),
            ("250us", 0.00025),
            ("2", 2.0),
            ("0.25", 0.25),
            ("0s", 0.0),
        ],
    )
    def test_valid_durations(self, text, expected):
        assert parse_duration(text) == pytest.approx(expected)

    @pytest.mark.parametrize("text", ["", "abc", "3x", "s", "3s foo", "-1s", "-2"])
    def test_invalid_durations(self, text):
        with pytest.raises(ConfigError):
            parse_duration(text)

    def test_option_name_in_error(self):
        with pytest.raises(ConfigError) as exc_info:
            parse_duration("nope", option="retry-max-delay")
        assert exc_info.value.option == "retry-max-delay"


class TestRetryConfig:
    """Tests for RetryConfig."""

    def test_default_is_fail_fast(self):
        assert RetryConfig().enabled is False

    def test_backoff_doubles_and_caps(self):
        retry = RetryConfig(max_retries=5, base_delay=0.5, max_delay=3.0)

        assert retry.delay_for(1) == 0.5
        assert retry.delay_for(2) == 1.0
        assert retry.delay_for(3) == 2.0
        assert retry.delay_for(4) == 3.0


class TestTailConfig:
    """Tests for TailConfig.from_options and validation."""

    def test_defaults(self):
        """Defaults match the command-line defaults."""
        config = TailConfig.from_options()

        assert config.stream_name == "your-stream"
        assert config.iterator_policy is IteratorPolicy.LATEST
        assert config.poll_interval == 3.0
        assert config.sink_capacity == 0
        assert config.supervisor is SupervisorPolicy.FAIL_FAST
        assert config.retry.max_retries == 0
        assert config.start_time is None

    def test_config_is_immutable(self):
        config = TailConfig.from_options()
        with pytest.raises(AttributeError):
            config.stream_name = "other"

    def test_at_timestamp_parses_start_time(self):
        config = TailConfig.from_options(
            iterator_type="AT_TIMESTAMP",
            start_time="2016-04-20T12:00:00+09:00",
        )

        assert config.start_time == parse_rfc3339("2016-04-20T12:00:00+09:00")
        assert config.effective_start_time == config.start_time

    def test_at_timestamp_invalid_start_time_fails(self):
        with pytest.raises(ConfigError):
            TailConfig.from_options(iterator_type="AT_TIMESTAMP", start_time="not-a-time")

    def test_start_time_ignored_for_other_policies(self):
        """A bad start time only matters with AT_TIMESTAMP."""
        config = TailConfig.from_options(iterator_type="LATEST", start_time="not-a-time")

        assert config.start_time is None
        assert config.effective_start_time is None

    def test_at_timestamp_without_start_time_uses_epoch(self):
        """Current behavior: AT_TIMESTAMP with no start time reads from the epoch."""
        config = TailConfig.from_options(iterator_type="AT_TIMESTAMP")

        assert config.start_time is None
        assert config.effective_start_time == EPOCH

    def test_iterator_type_case_insensitive(self):
        config = TailConfig.from_options(iterator_type="trim_horizon")
        assert config.iterator_policy is IteratorPolicy.TRIM_HORIZON

    @pytest.mark.parametrize("value", ["OLDEST", "AFTER_SEQUENCE_NUMBER"])
    def test_unknown_iterator_type(self, value):
        with pytest.raises(ConfigError) as exc_info:
            TailConfig.from_options(iterator_type=value)
        assert exc_info.value.option == "iterator-type"

    def test_interval_parsed(self):
        assert TailConfig.from_options(interval="250ms").poll_interval == pytest.approx(0.25)

    def test_supervisor_parsed(self):
        config = TailConfig.from_options(supervisor="isolate")
        assert config.supervisor is SupervisorPolicy.ISOLATE

    def test_unknown_supervisor(self):
        with pytest.raises(ConfigError):
            TailConfig.from_options(supervisor="restart")

    def test_retry_options_parsed(self):
        config = TailConfig.from_options(
            max_retries=3, retry_base_delay="100ms", retry_max_delay="2s"
        )
        assert config.retry.max_retries == 3
        assert config.retry.base_delay == pytest.approx(0.1)
        assert config.retry.max_delay == pytest.approx(2.0)

    def test_empty_stream_name_rejected(self):
        with pytest.raises(ConfigError):
            TailConfig.from_options(stream_name="")

    def test_negative_sink_capacity_rejected(self):
        with pytest.raises(ConfigError):
            TailConfig.from_options(sink_capacity=-1)

    def test_negative_retries_rejected(self):
        with pytest.raises(ConfigError):
            TailConfig.from_options(max_retries=-1)

    @pytest.mark.parametrize("limit", [0, 10001])
    def test_limit_out_of_range(self, limit):
        with pytest.raises(ConfigError):
            TailConfig.from_options(kinesis=KinesisConfig(max_records_per_get=limit))

    def test_sequence_number_kept(self):
        config = TailConfig.from_options(
            iterator_type="AT_SEQUENCE_NUMBER", sequence_number="0042"
        )
        assert config.sequence_number == "0042"


class TestEnvConfig:
    """Tests for environment-driven sections."""

    def test_kinesis_from_env(self, monkeypatch):
        monkeypatch.setenv("AWS_REGION", "eu-west-1")
        monkeypatch.setenv("KINESIS_ENDPOINT_URL", "http://localhost:4566")
        monkeypatch.setenv("KINESIS_MAX_RECORDS", "500")

        config = KinesisConfig.from_env()

        assert config.region == "eu-west-1"
        assert config.endpoint_url == "http://localhost:4566"
        assert config.max_records_per_get == 500

    def test_kinesis_region_falls_back(self, monkeypatch):
        monkeypatch.delenv("AWS_REGION", raising=False)
        monkeypatch.setenv("AWS_DEFAULT_REGION", "us-west-2")

        assert KinesisConfig.from_env().region == "us-west-2"

    def test_kinesis_default_region(self, monkeypatch):
        monkeypatch.delenv("AWS_REGION", raising=False)
        monkeypatch.delenv("AWS_DEFAULT_REGION", raising=False)

        assert KinesisConfig.from_env().region == "ap-northeast-1"

    def test_observability_from_env(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("LOG_FORMAT", "json")

        config = ObservabilityConfig.from_env()

        assert config.log_level == "DEBUG"
        assert config.log_format == "json"
