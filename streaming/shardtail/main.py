"""
shardtail - Main entry point.

Tails every shard of a Kinesis stream and prints each record payload as one
line on standard output. Logs go to standard error.

Usage:
    shardtail -stream <name> [-region <region>] [-iterator-type LATEST]
              [-interval 3s] [-start-time 2016-04-20T12:00:00+09:00]

Exit codes:
    0: Stopped by SIGINT/SIGTERM after writing buffered payloads
    1: Any fatal error (bad option, discovery, cursor or fetch failure,
       closed shard)

Logging is configured from LOG_LEVEL and LOG_FORMAT (json, text).
The AWS region and endpoint default to AWS_REGION and KINESIS_ENDPOINT_URL.

Invariants:
    - Configuration is fully resolved before any network call
    - Every TailError becomes exit code 1 with a message on stderr
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from dataclasses import replace
from typing import Callable, Sequence

import json_log_formatter

from .config import (
    KinesisConfig,
    ObservabilityConfig,
    SupervisorPolicy,
    TailConfig,
)
from .errors import TailError
from .stream import StreamService, StreamServiceError, create_stream_service
from .tail import Orchestrator, StdoutWriter

logger = logging.getLogger(__name__)


def setup_logging(config: ObservabilityConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Observability configuration
    """
    level = getattr(logging, config.log_level.upper(), logging.INFO)

    if config.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    # stderr, so stdout carries only record payloads
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("aiobotocore").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    """Build the command-line parser.

    Every option accepts one or two leading dashes (``-stream``/``--stream``).
    """
    kinesis_defaults = KinesisConfig.from_env()

    parser = argparse.ArgumentParser(
        prog="shardtail",
        description="Print records from every shard of a Kinesis stream",
        allow_abbrev=False,
    )
    parser.add_argument(
        "-stream", "--stream", default="your-stream", help="your stream name"
    )
    parser.add_argument(
        "-region", "--region",
        default=kinesis_defaults.region,
        help="the AWS region where your Kinesis Stream is.",
    )
    parser.add_argument(
        "-iterator-type", "--iterator-type",
        dest="iterator_type",
        default="LATEST",
        help="iterator type. Choose from TRIM_HORIZON, AT_SEQUENCE_NUMBER, "
        "AT_TIMESTAMP or LATEST (default).",
    )
    parser.add_argument(
        "-interval", "--interval",
        default="3s",
        help="duration to wait before the next GetRecords request (e.g. 3s, 500ms).",
    )
    parser.add_argument(
        "-start-time", "--start-time",
        dest="start_time",
        default="",
        help="timestamp to start reading. only enabled when iterator type is "
        "AT_TIMESTAMP. acceptable format is RFC3339, for example "
        "2016-04-20T12:00:00+09:00.",
    )
    parser.add_argument(
        "-sequence-number", "--sequence-number",
        dest="sequence_number",
        default=None,
        help="sequence number to start reading at. only enabled when iterator "
        "type is AT_SEQUENCE_NUMBER.",
    )
    parser.add_argument(
        "-endpoint-url", "--endpoint-url",
        dest="endpoint_url",
        default=kinesis_defaults.endpoint_url,
        help="custom Kinesis endpoint (e.g. LocalStack).",
    )
    parser.add_argument(
        "-limit", "--limit",
        type=int,
        default=kinesis_defaults.max_records_per_get,
        help="maximum records per GetRecords request.",
    )
    parser.add_argument(
        "-sink-capacity", "--sink-capacity",
        dest="sink_capacity",
        type=int,
        default=0,
        help="maximum buffered records before pollers wait (0 = unbounded).",
    )
    parser.add_argument(
        "-supervisor", "--supervisor",
        default=SupervisorPolicy.FAIL_FAST.value,
        help="fail-fast stops on any shard error; isolate keeps other shards running.",
    )
    parser.add_argument(
        "-max-retries", "--max-retries",
        dest="max_retries",
        type=int,
        default=0,
        help="retries for throttled or failed GetRecords calls (0 = fail fast).",
    )
    parser.add_argument(
        "-retry-base-delay", "--retry-base-delay",
        dest="retry_base_delay",
        default="500ms",
        help="backoff before the first retry.",
    )
    parser.add_argument(
        "-retry-max-delay", "--retry-max-delay",
        dest="retry_max_delay",
        default="10s",
        help="upper bound for the retry backoff.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    return parser


def config_from_args(
    args: argparse.Namespace,
    observability: ObservabilityConfig | None = None,
) -> TailConfig:
    """Resolve parsed arguments into a TailConfig.

    Raises:
        ConfigError: If any option is invalid
    """
    return TailConfig.from_options(
        stream_name=args.stream,
        iterator_type=args.iterator_type,
        interval=args.interval,
        start_time=args.start_time,
        sequence_number=args.sequence_number,
        sink_capacity=args.sink_capacity,
        supervisor=args.supervisor,
        max_retries=args.max_retries,
        retry_base_delay=args.retry_base_delay,
        retry_max_delay=args.retry_max_delay,
        kinesis=KinesisConfig(
            region=args.region,
            endpoint_url=args.endpoint_url,
            max_records_per_get=args.limit,
        ),
        observability=observability,
    )


async def tail(
    config: TailConfig,
    service: StreamService | None = None,
    output: Callable[[bytes], None] | None = None,
    handle_signals: bool = False,
) -> None:
    """Run one tailing session.

    Args:
        config: Run configuration
        service: Stream service (Kinesis from config.kinesis if omitted)
        output: Payload writer (stdout lines if omitted)
        handle_signals: Turn SIGINT/SIGTERM into a graceful shutdown

    Raises:
        TailError: On any fatal error
    """
    service = service or create_stream_service(config.kinesis)
    try:
        await service.connect()
    except StreamServiceError as e:
        raise TailError(f"Could not create AWS session: {e}", code="SESSION_ERROR") from e

    orchestrator = Orchestrator(config, service, output=output)

    loop = asyncio.get_running_loop()
    signals = (signal.SIGTERM, signal.SIGINT) if handle_signals else ()
    for sig in signals:
        loop.add_signal_handler(sig, orchestrator.request_shutdown)

    try:
        await orchestrator.run()
    finally:
        for sig in signals:
            loop.remove_signal_handler(sig)
        await service.close()


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    observability = ObservabilityConfig.from_env()
    if args.verbose:
        observability = replace(observability, log_level="DEBUG")
    setup_logging(observability)

    try:
        config = config_from_args(args, observability)
    except TailError as e:
        print(e.message, file=sys.stderr)
        sys.exit(1)

    config.log_config()

    try:
        asyncio.run(tail(config, output=StdoutWriter(), handle_signals=True))
    except TailError as e:
        print(e.message, file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        pass

    sys.exit(0)


if __name__ == "__main__":
    main()
