"""
Unit tests for the collaborator protocols.

Tests cover:
- Library implementations satisfying their runtime_checkable protocols
- Test doubles satisfying the engine and verifier protocols
- Objects missing required members being rejected
"""

import dataclasses

import pytest

from shardmigrate.error_sink import RaisingErrorHandler
from shardmigrate.filters import build_filters
from shardmigrate.metrics import InMemoryMetricsRecorder, OpenTelemetryMetricsRecorder
from shardmigrate.protocols import (
    CopyEngine,
    CursorConfig,
    ErrorHandler,
    MetricsRecorder,
    RowFilter,
    TableFilter,
    Throttler,
    Verifier,
    VerifierConfig,
)
from shardmigrate.schema import TableSchemaCache
from shardmigrate.throttle import PauseThrottler
from tests.fixtures import FakeCopyEngine, default_tables


class TestLibraryImplementations:
    def test_filters(self, migration_config):
        filters = build_filters(migration_config)

        assert isinstance(filters.table_filter, TableFilter)
        assert isinstance(filters.row_filter, RowFilter)

    def test_throttler(self):
        assert isinstance(PauseThrottler(), Throttler)

    def test_metrics_recorders(self):
        assert isinstance(InMemoryMetricsRecorder(), MetricsRecorder)
        assert isinstance(OpenTelemetryMetricsRecorder(42), MetricsRecorder)

    def test_error_handler(self):
        assert isinstance(RaisingErrorHandler(), ErrorHandler)


class TestDoubles:
    def test_fake_engine_is_copy_engine(self, migration_config):
        engine = FakeCopyEngine(
            migration_config,
            build_filters(migration_config),
            PauseThrottler(),
            events=[],
            tables=default_tables(),
            source_tables=[],
            failures={},
        )

        assert isinstance(engine, CopyEngine)

    def test_fake_verifier_is_verifier(self, harness, migration_config):
        filters = build_filters(migration_config)
        config = VerifierConfig(
            cursor_config=CursorConfig(
                db="shard_1",
                batch_size=10,
                read_retries=1,
                build_select=filters.row_filter.build_select,
            ),
            binlog_streamer=None,
            table_schema_cache=TableSchemaCache(),
            tables=[],
            source_db="shard_1",
            target_db="shard_2",
            database_rewrites={},
            table_rewrites={},
            ignored_tables=frozenset(),
            concurrency=1,
        )

        assert isinstance(harness.verifier_factory(config), Verifier)


class TestRejections:
    def test_incomplete_throttler(self):
        class OnlyThrottled:
            def throttled(self) -> bool:
                return False

        assert not isinstance(OnlyThrottled(), Throttler)

    def test_incomplete_verifier(self):
        class PreCutoverOnly:
            async def initialize(self) -> None:
                pass

            async def verify_before_cutover(self) -> None:
                pass

        assert not isinstance(PreCutoverOnly(), Verifier)


class TestConfigObjects:
    def test_cursor_config_frozen(self, migration_config):
        build_select = build_filters(migration_config).row_filter.build_select
        config = CursorConfig(db=None, batch_size=10, read_retries=1, build_select=build_select)

        with pytest.raises(dataclasses.FrozenInstanceError):
            config.batch_size = 20  # type: ignore[misc]
