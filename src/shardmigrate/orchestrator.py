"""
ShardMigrator - live migration of one shard with a write-locked cutover.

The migrator drives a copy engine, a verifier, a throttler and the operator's
lock webhooks through a fixed, forward-only sequence:

    1. Bulk copy in the background; wait until every row was copied once
    2. Pre-cutover verification (best effort)
    3. Wait for the throttler to clear
    4. Wait for the binlog streamer to catch up
    5. Lock the source shard (lock webhook)
    6. Disable throttling
    7. Flush and stop the binlog streamer, join the bulk copy
    8. Delta-copy joined tables
    9. Cutover verification (authoritative)
    10. Re-enable throttling
    11. Copy primary-key tables
    12. Unlock the source shard (unlock webhook)
    13. Record the CutoverTime timer

Construction-time failures (filters, configuration, engine and verifier
initialization) are raised to the caller. Any failure inside ``run()``,
including a verification reporting incorrect data, goes through the error
sink and ends the migration with ``MigrationAbortedError``. Nothing is rolled
back: a failure after step 5 leaves the source locked for an operator to
inspect.

Usage:
    >>> migrator = ShardMigrator(config, engine_factory, verifier_factory)
    >>> await migrator.initialize()
    >>> await migrator.start()
    >>> await migrator.run()
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any, NoReturn

import httpx

from shardmigrate.copy_task import CopyTask
from shardmigrate.error_sink import ErrorCallback, ErrorSink, exit_code_for
from shardmigrate.exceptions import (
    WEBHOOK_RETRY_CONFIG,
    CompositePrimaryKeyError,
    InvalidPhaseTransitionError,
    MigrationAbortedError,
    MigrationStateError,
    RetryConfig,
    VerificationFailedError,
)
from shardmigrate.filters import ShardFilters, build_filters
from shardmigrate.metrics import (
    CUTOVER_LOCK,
    CUTOVER_TIME,
    CUTOVER_UNLOCK,
    DELTA_COPY_JOINED_TABLES,
    VERIFY_BEFORE_CUTOVER,
    VERIFY_CUTOVER,
    InMemoryMetricsRecorder,
)
from shardmigrate.models import MigrationConfig, MigrationPhase, VerificationResult
from shardmigrate.observability import (
    ATTR_DATA_CORRECT,
    ATTR_PHASE,
    ATTR_SHARD_KEY,
    ATTR_SHARD_VALUE,
    ATTR_SOURCE_DB,
    ATTR_TABLE_COUNT,
    ATTR_TARGET_DB,
    Tracer,
    create_tracer,
)
from shardmigrate.protocols import (
    CopyEngine,
    CursorConfig,
    ErrorHandler,
    MetricsRecorder,
    Throttler,
    Verifier,
    VerifierConfig,
)
from shardmigrate.schema import TableSchema
from shardmigrate.throttle import LagThrottler, PauseThrottler, wait_for_throttle
from shardmigrate.validation import validate_config
from shardmigrate.webhooks import WebhookSpec

logger = logging.getLogger(__name__)

STAGE_SHARDING = "sharding"
STAGE_VERIFIER = "iterative_verifier"
STAGE_FERRY = "ferry"
STAGE_BINLOG = "binlog_streamer"

EngineFactory = Callable[[MigrationConfig, ShardFilters, Throttler], CopyEngine]
VerifierFactory = Callable[[VerifierConfig], Verifier]


class ShardMigrator:
    """
    Orchestrates the migration of one shard.

    The migrator is the only place that decides whether the migration
    continues or aborts. It owns the shard filters, the phase, the bulk copy
    task handle and the HTTP client used for the lock webhooks.

    Args:
        config: Migration configuration.
        engine_factory: Builds the copy engine from the config, the filters and
            the throttler. Called only after the configuration is valid.
        verifier_factory: Builds the verifier during ``start()``.
        throttler: Throttler shared with the engine. Defaults to a
            ``LagThrottler`` when ``config.throttle`` is set, otherwise to a
            ``PauseThrottler``.
        metrics: Metrics recorder. Defaults to an in-memory recorder.
        error_handler: Base handler wrapped by the error sink.
        error_callback: Callback invoked on abort; defaults to
            ``config.error_callback``.
        http_client: HTTP client for webhooks. One is created per run if omitted.
        webhook_retry_config: Retry policy for the lock, unlock and error webhooks.
        tracer: Optional custom Tracer instance.
        enable_tracing: Whether to enable OpenTelemetry tracing.

    Raises:
        ConfigurationError: If the filters cannot be built or the
            configuration is invalid. No engine has been created in that case.
    """

    def __init__(
        self,
        config: MigrationConfig,
        engine_factory: EngineFactory,
        verifier_factory: VerifierFactory,
        *,
        throttler: Throttler | None = None,
        metrics: MetricsRecorder | None = None,
        error_handler: ErrorHandler | None = None,
        error_callback: WebhookSpec | ErrorCallback | None = None,
        http_client: httpx.AsyncClient | None = None,
        webhook_retry_config: RetryConfig = WEBHOOK_RETRY_CONFIG,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._config = config

        self._filters = build_filters(config)
        validate_config(config, self._filters)

        self._owns_lag_throttler = False
        if throttler is None:
            if config.throttle is not None:
                throttler = LagThrottler(config.throttle, self._replication_lag)
                self._owns_lag_throttler = True
            else:
                throttler = PauseThrottler()
        self._throttler = throttler

        self._metrics: MetricsRecorder = metrics or InMemoryMetricsRecorder()
        self._error_sink = ErrorSink(
            error_handler,
            error_callback=error_callback or config.error_callback,
            http_client=http_client,
            retry_config=webhook_retry_config,
        )
        self._http_client = http_client
        self._retry_config = webhook_retry_config

        self._engine = engine_factory(config, self._filters, throttler)
        self._verifier_factory = verifier_factory
        self._verifier: Verifier | None = None
        self._copy_task: CopyTask | None = None
        self._started = False
        self._phase = MigrationPhase.CREATED

    @property
    def config(self) -> MigrationConfig:
        return self._config

    @property
    def filters(self) -> ShardFilters:
        return self._filters

    @property
    def engine(self) -> CopyEngine:
        return self._engine

    @property
    def verifier(self) -> Verifier | None:
        return self._verifier

    @property
    def throttler(self) -> Throttler:
        return self._throttler

    @property
    def error_sink(self) -> ErrorSink:
        return self._error_sink

    @property
    def copy_task(self) -> CopyTask | None:
        return self._copy_task

    @property
    def phase(self) -> MigrationPhase:
        return self._phase

    def _advance(self, target: MigrationPhase) -> None:
        if not self._phase.can_transition_to(target):
            raise InvalidPhaseTransitionError(self._phase, target)
        logger.debug("Migration phase %s -> %s", self._phase.value, target.value)
        self._phase = target

    def _span_attributes(self, **extra: Any) -> dict[str, Any]:
        attributes: dict[str, Any] = {
            ATTR_SHARD_KEY: self._config.sharding_key,
            ATTR_SHARD_VALUE: self._config.sharding_value,
            ATTR_PHASE: self._phase.value,
        }
        attributes.update(extra)
        return attributes

    async def _replication_lag(self) -> float:
        return await self._engine.replication_lag()

    async def initialize(self) -> None:
        """
        Initialize the copy engine (schema discovery, connections).

        Errors are raised to the caller unchanged.
        """
        if not self._phase.can_transition_to(MigrationPhase.INITIALIZED):
            raise InvalidPhaseTransitionError(self._phase, MigrationPhase.INITIALIZED)
        await self._engine.initialize()
        self._advance(MigrationPhase.INITIALIZED)

    async def start(self) -> None:
        """
        Start the copy engine and build the verifier.

        Errors are raised to the caller unchanged.
        """
        if self._phase != MigrationPhase.INITIALIZED or self._started:
            raise MigrationStateError(
                f"start() requires an initialized migrator, phase is {self._phase.value}"
            )

        await self._engine.start()

        self._verifier = self._build_verifier()
        await self._verifier.initialize()

        if self._owns_lag_throttler:
            assert isinstance(self._throttler, LagThrottler)
            await self._throttler.start()

        self._started = True

    def _build_verifier(self) -> Verifier:
        config = self._config
        engine = self._engine
        verifier_config = VerifierConfig(
            cursor_config=CursorConfig(
                db=engine.source_db,
                batch_size=config.data_iteration_batch_size,
                read_retries=config.db_read_retries,
                build_select=self._filters.row_filter.build_select,
            ),
            binlog_streamer=engine.binlog_streamer,
            table_schema_cache=engine.tables,
            tables=engine.tables.as_list(),
            source_db=engine.source_db,
            target_db=engine.target_db,
            database_rewrites=config.database_rewrites,
            table_rewrites=config.table_rewrites,
            ignored_tables=config.ignored_verification_tables,
            concurrency=config.effective_verifier_concurrency,
        )
        return self._verifier_factory(verifier_config)

    async def run(self) -> None:
        """
        Run the migration through cutover.

        Raises:
            MigrationStateError: If called before ``start()`` or more than once.
            MigrationAbortedError: If any phase failed.
        """
        if not self._started or self._phase != MigrationPhase.INITIALIZED:
            raise MigrationStateError(
                f"run() requires a started migrator, phase is {self._phase.value}"
            )

        owns_client = self._http_client is None
        client = self._http_client or httpx.AsyncClient(timeout=None)
        self._error_sink.http_client = client

        try:
            with self._tracer.span(
                "shardmigrate.run",
                self._span_attributes(
                    **{
                        ATTR_SOURCE_DB: self._config.source_db,
                        ATTR_TARGET_DB: self._config.target_db,
                    }
                ),
            ):
                await self._run_phases(client)
        finally:
            if self._copy_task is not None and not self._copy_task.joined:
                await self._copy_task.cancel()
            if self._owns_lag_throttler:
                assert isinstance(self._throttler, LagThrottler)
                await self._throttler.stop()
            if owns_client:
                await client.aclose()

        logger.info(
            "Migration of shard %s=%s completed",
            self._config.sharding_key,
            self._config.sharding_value,
        )

    async def _run_phases(self, client: httpx.AsyncClient) -> None:
        assert self._verifier is not None
        verifier = self._verifier
        config = self._config

        copy_task = CopyTask(self._engine.run)
        self._copy_task = copy_task
        copy_task.start()
        self._advance(MigrationPhase.COPYING)

        try:
            with self._tracer.span("shardmigrate.wait_row_copy", self._span_attributes()):
                await copy_task.wait_alongside(self._engine.wait_until_row_copy_is_complete())
        except Exception as e:
            await self._abort(STAGE_FERRY, e, "bulk copy failed, aborting run")
        logger.info("Row copy complete")

        try:
            with (
                self._metrics.measure(VERIFY_BEFORE_CUTOVER),
                self._tracer.span("shardmigrate.verify_before_cutover", self._span_attributes()),
            ):
                await verifier.verify_before_cutover()
        except Exception as e:
            await self._abort(
                STAGE_SHARDING, e, "pre-cutover verification encountered an error, aborting run"
            )
        copy_error = copy_task.failed()
        if isinstance(copy_error, Exception):
            await self._abort(
                STAGE_FERRY, copy_error, "bulk copy failed during pre-cutover verification"
            )
        self._advance(MigrationPhase.PRE_CUTOVER_VERIFIED)

        try:
            await copy_task.wait_alongside(wait_for_throttle(self._throttler))
        except Exception as e:
            await self._abort(STAGE_FERRY, e, "bulk copy failed while waiting for throttle")
        self._advance(MigrationPhase.THROTTLE_SYNCED)

        try:
            await copy_task.wait_alongside(self._engine.wait_until_binlog_streamer_catches_up())
        except Exception as e:
            if copy_task.failed() is e:
                await self._abort(STAGE_FERRY, e, "bulk copy failed during binlog catch-up")
            await self._abort(STAGE_BINLOG, e, "binlog streamer failed to catch up")
        self._advance(MigrationPhase.BINLOG_CAUGHT_UP)

        assert config.cutover_lock is not None and config.cutover_unlock is not None
        cutover_start = time.perf_counter()
        # The lock webhook must not return before all in-flight transactions
        # are complete and no more writes can reach the source.
        try:
            with (
                self._metrics.measure(CUTOVER_LOCK),
                self._tracer.span("shardmigrate.cutover.lock", self._span_attributes()),
            ):
                await config.cutover_lock.post(client, retry_config=self._retry_config)
        except Exception as e:
            await self._abort(STAGE_SHARDING, e, "locking failed, aborting run")
        self._advance(MigrationPhase.LOCKED)
        logger.info("Source shard %s locked", config.source_db)

        self._throttler.set_disabled(True)
        self._advance(MigrationPhase.THROTTLE_DISABLED)

        try:
            with self._tracer.span("shardmigrate.cutover.drain", self._span_attributes()):
                await self._engine.flush_binlog_and_stop_streaming()
                await copy_task.join()
        except Exception as e:
            await self._abort(STAGE_FERRY, e, "failed to stop streaming and join bulk copy")
        self._advance(MigrationPhase.DRAINED)

        try:
            with self._metrics.measure(DELTA_COPY_JOINED_TABLES):
                await self.delta_copy_joined_tables()
        except Exception as e:
            await self._abort(STAGE_SHARDING, e, "failed to delta-copy joined tables after locking")
        self._advance(MigrationPhase.JOINED_TABLES_COPIED)

        result: VerificationResult | None = None
        try:
            with (
                self._metrics.measure(VERIFY_CUTOVER),
                self._tracer.span("shardmigrate.verify_cutover", self._span_attributes()) as span,
            ):
                result = await verifier.verify_during_cutover()
                if span is not None:
                    span.set_attribute(ATTR_DATA_CORRECT, result.data_correct)
        except Exception as e:
            await self._abort(STAGE_VERIFIER, e, "verification encountered an error, aborting run")
        assert result is not None
        if not result.data_correct:
            await self._abort(
                STAGE_VERIFIER, VerificationFailedError(result), "verification failed, aborting run"
            )
        self._advance(MigrationPhase.CUTOVER_VERIFIED)

        self._throttler.set_disabled(False)
        self._advance(MigrationPhase.UNTHROTTLED)

        try:
            await self.copy_primary_key_tables()
        except Exception as e:
            await self._abort(STAGE_SHARDING, e, "copying primary key tables failed")
        self._advance(MigrationPhase.PK_TABLES_COPIED)

        try:
            with (
                self._metrics.measure(CUTOVER_UNLOCK),
                self._tracer.span("shardmigrate.cutover.unlock", self._span_attributes()),
            ):
                await config.cutover_unlock.post(client, retry_config=self._retry_config)
        except Exception as e:
            await self._abort(STAGE_SHARDING, e, "unlocking failed, aborting run")
        self._advance(MigrationPhase.UNLOCKED)
        logger.info("Source shard %s unlocked", config.source_db)

        self._metrics.timer(CUTOVER_TIME, time.perf_counter() - cutover_start)
        self._advance(MigrationPhase.DONE)

    async def _abort(self, stage: str, error: BaseException, message: str) -> NoReturn:
        if self._phase.holds_cutover_lock:
            logger.critical(
                "Source shard %s is still locked; manual unlock required",
                self._config.source_db,
            )
        phase = self._phase
        self._advance(MigrationPhase.ABORTED)
        await self._error_sink.fatal(stage, error, message=message, phase=phase.value)

    def _require_copy_joined(self, operation: str) -> None:
        if self._copy_task is None:
            raise MigrationStateError(f"{operation} requires the bulk copy to have run")
        self._copy_task.require_joined(operation)

    async def delta_copy_joined_tables(self) -> None:
        """
        Copy the joined tables again while the source is locked.

        Joined tables are not streamed, so they are copied in full (filtered
        to the shard) once writes have stopped.

        Raises:
            MigrationStateError: If the bulk copy has not been joined.
        """
        self._require_copy_joined("joined table delta copy")

        joined = self._config.joined_tables
        tables = [table for table in self._engine.tables.as_list() if table.name in joined]
        logger.info("Delta-copying %d joined tables", len(tables))
        with self._tracer.span(
            "shardmigrate.copy_joined_tables",
            self._span_attributes(**{ATTR_TABLE_COUNT: len(tables)}),
        ):
            await self._engine.run_standalone_data_copy(tables)

    async def copy_primary_key_tables(self) -> None:
        """
        Copy the primary-key tables.

        Attaches the primary-key table set to the shard filters, reloads the
        applicable tables from the source and copies those in the set. Every
        one of them must have a single-column primary key; otherwise nothing
        is copied.

        Raises:
            MigrationStateError: If the bulk copy has not been joined, or the
                primary-key tables were already attached.
            CompositePrimaryKeyError: If a primary-key table has a composite key.
        """
        self._require_copy_joined("primary key table copy")

        pk_tables = self._filters.attach_primary_key_tables(self._config.primary_key_tables)
        source_tables = await self._engine.load_tables(
            self._engine.source_db, self._filters.table_filter
        )

        tables: list[TableSchema] = []
        for table in source_tables.as_list():
            if table.name not in pk_tables:
                continue
            if len(table.pk_columns) != 1:
                raise CompositePrimaryKeyError(table.full_name, table.pk_columns)
            tables.append(table)

        if not tables:
            logger.warning("Found no primary key tables to copy")

        with self._tracer.span(
            "shardmigrate.copy_primary_key_tables",
            self._span_attributes(**{ATTR_TABLE_COUNT: len(tables)}),
        ):
            await self._engine.run_standalone_data_copy(tables)


async def run_migration(
    config: MigrationConfig,
    engine_factory: EngineFactory,
    verifier_factory: VerifierFactory,
    **kwargs: Any,
) -> int:
    """
    Build, start and run a migration, returning a process exit code.

    This is the single place that turns a migration outcome into an exit
    status; ``ShardMigrator`` itself never exits the process.

    Args:
        config: Migration configuration.
        engine_factory: Copy engine factory.
        verifier_factory: Verifier factory.
        **kwargs: Passed through to ``ShardMigrator``.

    Returns:
        0 on success, 2 for configuration errors, 1 otherwise.
    """
    try:
        migrator = ShardMigrator(config, engine_factory, verifier_factory, **kwargs)
        await migrator.initialize()
        await migrator.start()
        await migrator.run()
    except MigrationAbortedError as e:
        logger.info("Shard migration aborted in %s", e.stage)
        return exit_code_for(e)
    except Exception as e:
        logger.exception("Shard migration failed before running")
        return exit_code_for(e)
    return exit_code_for(None)


__all__ = [
    "STAGE_SHARDING",
    "STAGE_VERIFIER",
    "STAGE_FERRY",
    "STAGE_BINLOG",
    "EngineFactory",
    "VerifierFactory",
    "ShardMigrator",
    "run_migration",
]
