"""
shardtail - Tail every shard of a Kinesis stream into one output.

This package discovers the shards of a stream, resolves a cursor per shard,
polls every shard concurrently and merges the payloads into a single
ordered-by-arrival sequence written to standard output.

Architecture:
    ┌──────────┐     ┌──────────────┐     ┌──────────────────┐
    │   CLI    │────▶│ Orchestrator │────▶│ Stream Discovery │
    └──────────┘     └──────┬───────┘     └──────────────────┘
                            │ per shard, sequentially
                            ▼
                     ┌──────────────┐
                     │   Cursor     │
                     │   Resolver   │
                     └──────┬───────┘
                            │
          ┌─────────────────┼─────────────────┐
          ▼                 ▼                 ▼
    ┌───────────┐     ┌───────────┐     ┌───────────┐
    │  Poller   │     │  Poller   │     │  Poller   │
    │ (shard 0) │     │ (shard 1) │     │ (shard N) │
    └─────┬─────┘     └─────┬─────┘     └─────┬─────┘
          └─────────────────┼─────────────────┘
                            ▼
                     ┌──────────────┐     ┌──────────┐
                     │ Fan-In Sink  │────▶│  stdout  │
                     └──────────────┘     └──────────┘

Invariants:
    - Shards are discovered once; there is no rebalancing
    - Each cursor is owned by exactly one poller
    - Order within a shard is preserved; across shards it is arrival order
    - By default any failure ends the run (fail-fast)

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
