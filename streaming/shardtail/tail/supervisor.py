"""
Supervisors decide what a shard poller failure means for the run.

Policies:
    - fail-fast (default): the first failure closes the sink; the consumer
      drains what was already buffered and the run ends with that error
    - isolate: a failing shard stops alone; the others keep running and the
      run ends with the first failure once every poller has terminated

Invariants:
    - A failure is handled in the same step as the failing fetch, so under
      fail-fast no other shard writes to the sink after it
    - Once sealed, the sink is closed when the last poller terminates
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

from ..config import SupervisorPolicy
from .poller import ShardPoller
from .sink import FanInSink

logger = logging.getLogger(__name__)


class Supervisor(ABC):
    """Runs shard pollers as tasks and applies a failure policy.

    Subclasses implement shard_failed().

    Attributes:
        sink: Fan-in sink shared by the pollers
        failures: (shard_id, error) pairs in the order they happened
    """

    policy: SupervisorPolicy

    def __init__(self, sink: FanInSink) -> None:
        self.sink = sink
        self.failures: list[tuple[str, BaseException]] = []
        self._tasks: list[asyncio.Task] = []
        self._running = 0
        self._sealed = False

    @property
    def error(self) -> BaseException | None:
        """The failure that ends the run, if any."""
        return self.failures[0][1] if self.failures else None

    @property
    def running(self) -> int:
        """Number of pollers that have not terminated."""
        return self._running

    def watch(self, poller: ShardPoller) -> asyncio.Task:
        """Start a resolved poller as a supervised task."""
        self._running += 1
        task = asyncio.create_task(
            self._supervise(poller), name=f"poller-{poller.shard_id}"
        )
        self._tasks.append(task)
        return task

    def seal(self) -> None:
        """Declare that no more pollers will be started."""
        self._sealed = True
        self._maybe_close()

    async def stop(self) -> None:
        """Cancel every poller still running and wait for them."""
        for task in self._tasks:
            if not task.done():
                task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    @abstractmethod
    def shard_failed(self, poller: ShardPoller, error: Exception) -> None:
        """Apply the failure policy to a poller that raised."""
        ...

    async def _supervise(self, poller: ShardPoller) -> None:
        try:
            await poller.run()
        except Exception as e:
            self.failures.append((poller.shard_id, e))
            self.shard_failed(poller, e)
        finally:
            self._running -= 1
            self._maybe_close()

    def _maybe_close(self) -> None:
        if self._sealed and self._running == 0 and not self.sink.closed:
            logger.info("All shard pollers terminated")
            self.sink.close()


class FailFastSupervisor(Supervisor):
    """Any poller failure ends the whole run."""

    policy = SupervisorPolicy.FAIL_FAST

    def shard_failed(self, poller: ShardPoller, error: Exception) -> None:
        logger.error(
            "Shard poller failed, stopping all shards",
            extra={"shard": poller.shard_id, "error": str(error)},
        )
        self.sink.close()


class IsolatingSupervisor(Supervisor):
    """A poller failure stops only its own shard."""

    policy = SupervisorPolicy.ISOLATE

    def shard_failed(self, poller: ShardPoller, error: Exception) -> None:
        logger.error(
            "Shard poller failed, continuing with remaining shards",
            extra={
                "shard": poller.shard_id,
                "error": str(error),
                "remaining": self._running - 1,
            },
        )


def create_supervisor(policy: SupervisorPolicy, sink: FanInSink) -> Supervisor:
    """Factory function to create a supervisor for a policy.

    Raises:
        ValueError: If the policy is not supported
    """
    if policy == SupervisorPolicy.FAIL_FAST:
        return FailFastSupervisor(sink)
    elif policy == SupervisorPolicy.ISOLATE:
        return IsolatingSupervisor(sink)
    else:
        raise ValueError(f"Unsupported supervisor policy: {policy}")
