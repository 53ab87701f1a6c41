"""
Shared pytest fixtures for the shardmigrate library tests.

This module provides:
- Configuration fixtures (migration_config, no_retry)
- Migrator fixtures (harness, metrics, tracer, migrator)
- OpenTelemetry metrics fixtures (metric_reader, meter_provider)
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader

from shardmigrate.exceptions import RetryConfig
from shardmigrate.metrics import InMemoryMetricsRecorder
from shardmigrate.models import JoinTable, MigrationConfig
from shardmigrate.observability import MockTracer
from shardmigrate.orchestrator import ShardMigrator
from shardmigrate.webhooks import WebhookSpec
from tests.fixtures import MigrationHarness

# =============================================================================
# Pytest Configuration
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for tests."""
    config.addinivalue_line("markers", "sqlite: marks tests that require SQLite (aiosqlite)")


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def migration_config() -> MigrationConfig:
    """
    Provide a valid configuration for shard 42.

    ``orders_link`` joins through ``orders.link_id`` and ``tenants`` is a
    primary-key table.
    """
    return MigrationConfig(
        sharding_key="tenant_id",
        sharding_value=42,
        source_db="shard_1",
        target_db="shard_2",
        joined_tables={"orders_link": (JoinTable("orders", "link_id"),)},
        ignored_tables=("^_",),
        primary_key_tables=("tenants",),
        cutover_lock=WebhookSpec("http://ops.test/lock", "lock-payload"),
        cutover_unlock=WebhookSpec("http://ops.test/unlock", "unlock-payload"),
    )


@pytest.fixture
def no_retry() -> RetryConfig:
    """Retry policy with a single attempt, so failing webhooks fail fast."""
    return RetryConfig(max_attempts=1)


# =============================================================================
# Migrator Fixtures
# =============================================================================


@pytest.fixture
def harness() -> MigrationHarness:
    """Provide fake engine and verifier factories sharing one event log."""
    return MigrationHarness()


@pytest.fixture
def metrics() -> InMemoryMetricsRecorder:
    return InMemoryMetricsRecorder()


@pytest.fixture
def tracer() -> MockTracer:
    return MockTracer()


@pytest_asyncio.fixture
async def migrator(
    migration_config: MigrationConfig,
    harness: MigrationHarness,
    metrics: InMemoryMetricsRecorder,
    tracer: MockTracer,
    no_retry: RetryConfig,
) -> AsyncGenerator[ShardMigrator, None]:
    """Provide a migrator wired to the harness, with its HTTP client closed afterwards."""
    client = harness.http_client()
    migrator = ShardMigrator(
        migration_config,
        harness.engine_factory,
        harness.verifier_factory,
        metrics=metrics,
        http_client=client,
        webhook_retry_config=no_retry,
        tracer=tracer,
    )
    yield migrator
    await client.aclose()


# =============================================================================
# OpenTelemetry Metrics Fixtures
# =============================================================================


@pytest.fixture
def metric_reader() -> InMemoryMetricReader:
    return InMemoryMetricReader()


@pytest.fixture
def meter_provider(metric_reader: InMemoryMetricReader) -> MeterProvider:
    return MeterProvider(metric_readers=[metric_reader])
