"""
Tailing core for shardtail.

This module reads every shard of a stream concurrently and merges the
payloads into one output sequence:
- discover_shards: the shard set, queried once
- CursorResolver: initial cursor per shard
- ShardPoller: one shard's fetch loop
- FanInSink: multi-producer single-consumer queue
- Supervisor: failure policy (fail-fast or isolate)
- Orchestrator: wires it all and drains the sink

Invariants:
    - Order within a shard is preserved; across shards it is arrival order
    - No payload written to the sink is dropped
"""

from .discovery import discover_shards
from .orchestrator import Orchestrator
from .output import StdoutWriter
from .poller import PollerState, ShardPoller
from .resolver import CursorResolver
from .sink import FanInSink, SinkClosedError
from .supervisor import (
    FailFastSupervisor,
    IsolatingSupervisor,
    Supervisor,
    create_supervisor,
)

__all__ = [
    "discover_shards",
    "CursorResolver",
    "ShardPoller",
    "PollerState",
    "FanInSink",
    "SinkClosedError",
    "Supervisor",
    "FailFastSupervisor",
    "IsolatingSupervisor",
    "create_supervisor",
    "StdoutWriter",
    "Orchestrator",
]
