"""
Shared test fixtures for the shardmigrate library.

This module provides reusable test doubles:
- FakeCopyEngine / FakeVerifier: Record calls into a shared event log
- MigrationHarness: Engine and verifier factories plus a mock HTTP transport
- default_tables / default_source_tables: Sample shard schemas

Usage:
    from tests.fixtures import MigrationHarness, default_tables
"""

from tests.fixtures.engine import (
    FakeCopyEngine,
    FakeVerifier,
    MigrationHarness,
    default_source_tables,
    default_tables,
)

__all__ = [
    "FakeCopyEngine",
    "FakeVerifier",
    "MigrationHarness",
    "default_source_tables",
    "default_tables",
]
