"""
shardmigrate - Live migration of a single shard between databases.

This library provides:
- Shard row and table filters (sharding key, joined tables, primary-key tables)
- Configuration validation before any engine is created
- A migrator that drives bulk copy, binlog streaming and verification through
  a write-locked cutover controlled by operator webhooks
- An error sink that logs, notifies an error callback and aborts the run
- Timing metrics and tracing through OpenTelemetry
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("shardmigrate")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from shardmigrate.copy_task import CopyTask
from shardmigrate.error_sink import ErrorCallback, ErrorSink, RaisingErrorHandler, exit_code_for
from shardmigrate.exceptions import (
    WEBHOOK_RETRY_CONFIG,
    CompositePrimaryKeyError,
    ConfigurationError,
    ErrorSeverity,
    InvalidIgnoredTablePatternError,
    InvalidPhaseTransitionError,
    MigrationAbortedError,
    MigrationStateError,
    PrimaryKeyTablesAlreadyAttachedError,
    RetryConfig,
    ShardMigrationError,
    VerificationFailedError,
    WebhookError,
)
from shardmigrate.filters import (
    ShardedRowFilter,
    ShardedTableFilter,
    ShardFilters,
    build_filters,
    compile_ignored_tables,
)
from shardmigrate.metrics import (
    CUTOVER_LOCK,
    CUTOVER_TIME,
    CUTOVER_UNLOCK,
    DELTA_COPY_JOINED_TABLES,
    VERIFY_BEFORE_CUTOVER,
    VERIFY_CUTOVER,
    InMemoryMetricsRecorder,
    MetricRecord,
    OpenTelemetryMetricsRecorder,
)
from shardmigrate.models import (
    JoinTable,
    MigrationConfig,
    MigrationPhase,
    ThrottleConfig,
    VerificationResult,
)
from shardmigrate.orchestrator import (
    STAGE_BINLOG,
    STAGE_FERRY,
    STAGE_SHARDING,
    STAGE_VERIFIER,
    EngineFactory,
    ShardMigrator,
    VerifierFactory,
    run_migration,
)
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
from shardmigrate.schema import TableSchema, TableSchemaCache, load_tables
from shardmigrate.throttle import LagThrottler, PauseThrottler, ThrottlerBase, wait_for_throttle
from shardmigrate.validation import validate_config
from shardmigrate.webhooks import WebhookSpec

__all__ = [
    # Version
    "__version__",
    # Migrator
    "ShardMigrator",
    "run_migration",
    "EngineFactory",
    "VerifierFactory",
    "STAGE_SHARDING",
    "STAGE_VERIFIER",
    "STAGE_FERRY",
    "STAGE_BINLOG",
    "CopyTask",
    # Configuration
    "MigrationConfig",
    "JoinTable",
    "ThrottleConfig",
    "WebhookSpec",
    "validate_config",
    # Models
    "MigrationPhase",
    "VerificationResult",
    "TableSchema",
    "TableSchemaCache",
    "load_tables",
    # Filters
    "ShardedRowFilter",
    "ShardedTableFilter",
    "ShardFilters",
    "build_filters",
    "compile_ignored_tables",
    # Protocols
    "CopyEngine",
    "Verifier",
    "Throttler",
    "MetricsRecorder",
    "ErrorHandler",
    "TableFilter",
    "RowFilter",
    "CursorConfig",
    "VerifierConfig",
    # Throttling
    "ThrottlerBase",
    "PauseThrottler",
    "LagThrottler",
    "wait_for_throttle",
    # Errors
    "ErrorSink",
    "ErrorCallback",
    "RaisingErrorHandler",
    "exit_code_for",
    "ErrorSeverity",
    "RetryConfig",
    "WEBHOOK_RETRY_CONFIG",
    "ShardMigrationError",
    "ConfigurationError",
    "InvalidIgnoredTablePatternError",
    "CompositePrimaryKeyError",
    "MigrationStateError",
    "InvalidPhaseTransitionError",
    "PrimaryKeyTablesAlreadyAttachedError",
    "WebhookError",
    "VerificationFailedError",
    "MigrationAbortedError",
    # Metrics
    "OpenTelemetryMetricsRecorder",
    "InMemoryMetricsRecorder",
    "MetricRecord",
    "VERIFY_BEFORE_CUTOVER",
    "CUTOVER_LOCK",
    "DELTA_COPY_JOINED_TABLES",
    "VERIFY_CUTOVER",
    "CUTOVER_UNLOCK",
    "CUTOVER_TIME",
]
