"""
Integration tests for the command-line entry point.

Tests cover:
- Flag parsing with one or two leading dashes
- Exit codes and stderr messages
- tail() end to end over the in-memory stream service
- Logging setup
"""

import asyncio
import io
import json
import logging

import pytest

from streaming.shardtail import main as cli
from streaming.shardtail.config import (
    IteratorPolicy,
    ObservabilityConfig,
    SupervisorPolicy,
    TailConfig,
)
from streaming.shardtail.errors import ConfigError, DiscoveryError, ShardClosedError, TailError
from streaming.shardtail.stream.base import StreamConnectionError
from streaming.shardtail.stream.memory import InMemoryStreamService
from streaming.shardtail.tail.output import StdoutWriter

SHARD0 = "shardId-000000000000"


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "AWS_REGION",
        "AWS_DEFAULT_REGION",
        "KINESIS_ENDPOINT_URL",
        "KINESIS_MAX_RECORDS",
        "LOG_LEVEL",
        "LOG_FORMAT",
    ):
        monkeypatch.delenv(name, raising=False)


class TestParser:
    """Tests for build_parser and config_from_args."""

    def test_defaults(self):
        args = cli.build_parser().parse_args([])
        config = cli.config_from_args(args)

        assert config.stream_name == "your-stream"
        assert config.iterator_policy is IteratorPolicy.LATEST
        assert config.poll_interval == 3.0
        assert config.start_time is None
        assert config.kinesis.region == "ap-northeast-1"
        assert config.supervisor is SupervisorPolicy.FAIL_FAST
        assert config.retry.max_retries == 0

    def test_single_dash_flags(self):
        args = cli.build_parser().parse_args([
            "-stream", "orders",
            "-region", "us-west-2",
            "-iterator-type", "AT_TIMESTAMP",
            "-interval", "500ms",
            "-start-time", "2016-04-20T12:00:00+09:00",
        ])
        config = cli.config_from_args(args)

        assert config.stream_name == "orders"
        assert config.kinesis.region == "us-west-2"
        assert config.iterator_policy is IteratorPolicy.AT_TIMESTAMP
        assert config.poll_interval == pytest.approx(0.5)
        assert config.start_time.isoformat() == "2016-04-20T12:00:00+09:00"

    def test_double_dash_flags(self):
        args = cli.build_parser().parse_args([
            "--stream", "orders",
            "--iterator-type", "TRIM_HORIZON",
            "--supervisor", "isolate",
            "--max-retries", "3",
            "--sink-capacity", "100",
            "--endpoint-url", "http://localhost:4566",
        ])
        config = cli.config_from_args(args)

        assert config.iterator_policy is IteratorPolicy.TRIM_HORIZON
        assert config.supervisor is SupervisorPolicy.ISOLATE
        assert config.retry.max_retries == 3
        assert config.sink_capacity == 100
        assert config.kinesis.endpoint_url == "http://localhost:4566"

    def test_region_from_env(self, monkeypatch):
        monkeypatch.setenv("AWS_REGION", "eu-west-1")

        args = cli.build_parser().parse_args([])

        assert args.region == "eu-west-1"

    def test_unknown_iterator_type_rejected(self):
        args = cli.build_parser().parse_args(["-iterator-type", "OLDEST"])

        with pytest.raises(ConfigError) as exc_info:
            cli.config_from_args(args)

        assert exc_info.value.option == "iterator-type"

    def test_unknown_supervisor_rejected(self):
        args = cli.build_parser().parse_args(["-supervisor", "retry-forever"])

        with pytest.raises(ConfigError) as exc_info:
            cli.config_from_args(args)

        assert exc_info.value.option == "supervisor"

    def test_start_time_ignored_for_other_policies(self):
        args = cli.build_parser().parse_args(["-start-time", "not-a-time"])
        config = cli.config_from_args(args)

        assert config.start_time is None

    def test_bad_interval(self):
        args = cli.build_parser().parse_args(["-interval", "soon"])

        with pytest.raises(ConfigError) as exc_info:
            cli.config_from_args(args)

        assert exc_info.value.option == "interval"


class TestMain:
    """Tests for main()."""

    def test_bad_start_time_exits_1(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            cli.main([
                "-stream", "orders",
                "-iterator-type", "AT_TIMESTAMP",
                "-start-time", "yesterday",
            ])

        assert exc_info.value.code == 1
        assert "yesterday" in capsys.readouterr().err

    def test_bad_iterator_type_exits_1(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["-stream", "orders", "-iterator-type", "OLDEST"])

        assert exc_info.value.code == 1
        assert "OLDEST" in capsys.readouterr().err

    def test_missing_stream_exits_1(self, monkeypatch, capsys):
        service = InMemoryStreamService({"orders": 1})
        monkeypatch.setattr(cli, "create_stream_service", lambda config: service)

        with pytest.raises(SystemExit) as exc_info:
            cli.main(["-stream", "missing"])

        captured = capsys.readouterr()
        assert exc_info.value.code == 1
        assert "missing" in captured.err
        assert captured.out == ""
        assert not service.is_connected

    def test_closed_stream_prints_records_and_exits_1(self, monkeypatch, capsys):
        """A closed shard is fatal: records are printed, then exit 1."""
        service = InMemoryStreamService({"orders": 1})
        service.put_record("orders", b"hello", shard_id=SHARD0)
        service.put_record("orders", b"world", shard_id=SHARD0)
        service.close_shard("orders", SHARD0)
        monkeypatch.setattr(cli, "create_stream_service", lambda config: service)

        with pytest.raises(SystemExit) as exc_info:
            cli.main([
                "-stream", "orders",
                "-iterator-type", "TRIM_HORIZON",
                "-interval", "0s",
            ])

        captured = capsys.readouterr()
        assert exc_info.value.code == 1
        assert captured.out == "hello\nworld\n"
        assert f"Shard {SHARD0} is closed" in captured.err

    def test_closed_stream_default_options_exits_1(self, monkeypatch, capsys):
        service = InMemoryStreamService({"orders": 1})
        service.close_shard("orders", SHARD0)
        monkeypatch.setattr(cli, "create_stream_service", lambda config: service)

        with pytest.raises(SystemExit) as exc_info:
            cli.main(["-stream", "orders", "-interval", "0s"])

        assert exc_info.value.code == 1
        assert capsys.readouterr().out == ""


class TestTail:
    """Tests for tail()."""

    @pytest.mark.asyncio
    async def test_writes_payloads_and_closes_service(self):
        service = InMemoryStreamService({"orders": 1})
        service.put_record("orders", b"a", shard_id=SHARD0)
        service.put_record("orders", b"b", shard_id=SHARD0)
        service.close_shard("orders", SHARD0)
        buffer = io.StringIO()
        config = TailConfig(
            stream_name="orders",
            iterator_policy=IteratorPolicy.TRIM_HORIZON,
            poll_interval=0,
        )

        with pytest.raises(ShardClosedError):
            await asyncio.wait_for(
                cli.tail(config, service=service, output=StdoutWriter(buffer)), timeout=2.0
            )

        assert buffer.getvalue() == "a\nb\n"
        assert not service.is_connected

    @pytest.mark.asyncio
    async def test_discovery_error_propagates(self):
        service = InMemoryStreamService({})
        config = TailConfig(stream_name="orders")

        with pytest.raises(DiscoveryError):
            await cli.tail(config, service=service, output=lambda payload: None)

        assert not service.is_connected

    @pytest.mark.asyncio
    async def test_connect_failure_is_session_error(self):
        class BrokenService(InMemoryStreamService):
            async def connect(self):
                raise StreamConnectionError("no credentials")

        with pytest.raises(TailError) as exc_info:
            await cli.tail(TailConfig(stream_name="orders"), service=BrokenService())

        assert exc_info.value.code == "SESSION_ERROR"
        assert "Could not create AWS session" in exc_info.value.message


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_text_format(self, capsys):
        cli.setup_logging(ObservabilityConfig(log_level="DEBUG", log_format="text"))
        logging.getLogger("shardtail.test").debug("hello text")

        err = capsys.readouterr().err
        assert "DEBUG" in err
        assert "hello text" in err

    def test_json_format(self, capsys):
        cli.setup_logging(ObservabilityConfig(log_level="INFO", log_format="json"))
        logging.getLogger("shardtail.test").info("hello json", extra={"shard": SHARD0})

        line = capsys.readouterr().err.strip().splitlines()[-1]
        payload = json.loads(line)
        assert payload["message"] == "hello json"
        assert payload["shard"] == SHARD0

    def test_quiets_aws_libraries(self):
        cli.setup_logging(ObservabilityConfig())

        assert logging.getLogger("botocore").level == logging.WARNING
        assert logging.getLogger("aiobotocore").level == logging.WARNING
