"""
shardtail Test Suite.

This package contains:
- unit/: Unit tests (no external dependencies)
- integration/: Integration tests (in-memory stream service, CLI)
- e2e/: End-to-end tests (Kinesis API via LocalStack)
"""
