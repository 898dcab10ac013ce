"""
Orchestrator for a tailing run.

The Orchestrator wires discovery, cursor resolution, shard pollers and the
fan-in sink together, then spends the rest of the run draining the sink into
the output writer.

Invariants:
    - Discovery happens exactly once
    - Cursors are resolved one shard at a time, each before its poller starts
    - A cursor failure, or a fail-fast fetch failure during startup, stops
      pollers already started and ends the run before later shards are
      touched
    - The run never ends successfully: it returns only after shutdown is
      requested, otherwise it raises
    - Payloads buffered before a fatal failure are written before run() raises

How to change safely:
    - Parallelizing cursor resolution changes which shards start before a
      CursorError; keep it sequential unless startup time requires otherwise
"""

from __future__ import annotations

import logging
from typing import Callable

from ..config import TailConfig
from ..stream.base import StreamService
from .discovery import discover_shards
from .output import StdoutWriter
from .poller import ShardPoller
from .resolver import CursorResolver
from .sink import FanInSink
from .supervisor import Supervisor, create_supervisor

logger = logging.getLogger(__name__)


class Orchestrator:
    """Runs one tailing session over every shard of a stream.

    Attributes:
        config: Immutable run configuration
        service: Stream service collaborator
        sink: Fan-in sink shared by all pollers
        supervisor: Failure policy for the pollers
        pollers: Pollers created so far, in shard order
        records_written: Payloads handed to the output writer

    Example:
        >>> orchestrator = Orchestrator(config, service)
        >>> await orchestrator.run()  # Runs until shutdown or failure
    """

    def __init__(
        self,
        config: TailConfig,
        service: StreamService,
        output: Callable[[bytes], None] | None = None,
        sink: FanInSink | None = None,
        supervisor: Supervisor | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            config: Run configuration
            service: Connected stream service
            output: Called with every payload (stdout lines by default)
            sink: Fan-in sink (built from config.sink_capacity if omitted)
            supervisor: Supervisor (built from config.supervisor if omitted)
        """
        self.config = config
        self.service = service
        self.output = output or StdoutWriter()
        self.sink = sink or FanInSink(config.sink_capacity)
        self.supervisor = supervisor or create_supervisor(config.supervisor, self.sink)
        self.resolver = CursorResolver(service, config)
        self.pollers: list[ShardPoller] = []
        self.records_written = 0

    async def run(self) -> None:
        """Tail the stream until shutdown or failure.

        Raises:
            DiscoveryError: If the stream cannot be described
            CursorError: If a shard iterator cannot be obtained
            FetchError: If a shard fetch fails or a shard closes (after
                draining the sink)
        """
        shards = await discover_shards(self.service, self.config.stream_name)

        try:
            for shard in shards:
                # Closed by shutdown or by a fail-fast poller failure
                if self.sink.closed:
                    break

                poller = ShardPoller(
                    shard,
                    resolver=self.resolver,
                    service=self.service,
                    sink=self.sink,
                    poll_interval=self.config.poll_interval,
                    limit=self.config.kinesis.max_records_per_get,
                    retry=self.config.retry,
                )
                self.pollers.append(poller)
                await poller.resolve()
                self.supervisor.watch(poller)

            self.supervisor.seal()
            logger.info(
                "Started shard pollers",
                extra={"stream": self.config.stream_name, "pollers": len(self.pollers)},
            )

            await self._consume()
        finally:
            await self.supervisor.stop()

        error = self.supervisor.error
        if error is not None:
            raise error

    def request_shutdown(self) -> None:
        """Stop tailing; run() returns once buffered payloads are written."""
        logger.info("Shutdown requested")
        self.sink.close()

    async def _consume(self) -> None:
        while True:
            payload = await self.sink.get()
            if payload is None:
                break
            self.output(payload)
            self.records_written += 1

        logger.info("Sink drained", extra={"records": self.records_written})
