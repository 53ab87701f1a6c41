"""
Protocols for the collaborators of the shard migrator.

The migrator only orchestrates. Copying rows, streaming the binlog, comparing
source and target, measuring lag and recording metrics are done by the
objects described here, which are supplied by the caller.

Protocols:
- TableFilter / RowFilter: Table and row selection used by the engine and verifier
- CopyEngine: Bulk copy plus binlog streaming
- Verifier: Compares source and target rows
- Throttler: Gates copy progress
- MetricsRecorder: Timing metrics sink
- ErrorHandler: Base handler wrapped by the error sink

Value objects:
- CursorConfig / VerifierConfig: What the verifier factory receives
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from contextlib import AbstractContextManager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from sqlalchemy import Select

    from shardmigrate.models import VerificationResult
    from shardmigrate.schema import TableSchema, TableSchemaCache


@runtime_checkable
class TableFilter(Protocol):
    """Decides which databases and tables take part in the migration."""

    def apply_databases(self, databases: Iterable[str]) -> list[str]: ...

    def apply_tables(self, tables: Iterable[TableSchema]) -> list[TableSchema]: ...


@runtime_checkable
class RowFilter(Protocol):
    """Decides which rows of an applicable table belong to the shard."""

    def build_select(
        self,
        table: TableSchema,
        columns: Sequence[str],
        last_pk: Any,
        batch_size: int,
    ) -> Select: ...

    def applicable_event(self, table: TableSchema, values: Mapping[str, Any]) -> bool: ...


@runtime_checkable
class CopyEngine(Protocol):
    """
    Bulk copy and binlog streaming engine.

    ``run()`` performs the bulk copy and blocks until both the copy and the
    binlog streamer have stopped. It is run as a background task by the
    migrator. Connections to the source and target databases belong to the
    engine.
    """

    tables: TableSchemaCache
    source_db: Any
    target_db: Any
    binlog_streamer: Any

    async def initialize(self) -> None: ...

    async def start(self) -> None: ...

    async def run(self) -> None: ...

    async def wait_until_row_copy_is_complete(self) -> None: ...

    async def wait_until_binlog_streamer_catches_up(self) -> None: ...

    async def flush_binlog_and_stop_streaming(self) -> None: ...

    async def run_standalone_data_copy(self, tables: list[TableSchema]) -> None: ...

    async def load_tables(self, db: Any, table_filter: TableFilter) -> TableSchemaCache: ...

    async def replication_lag(self) -> float: ...


@runtime_checkable
class Verifier(Protocol):
    """Compares the shard's rows on source and target."""

    async def initialize(self) -> None: ...

    async def verify_before_cutover(self) -> None:
        """Best-effort pass while writes continue; raises on engine failure."""
        ...

    async def verify_during_cutover(self) -> VerificationResult:
        """Authoritative pass while the source is locked."""
        ...


@runtime_checkable
class Throttler(Protocol):
    """Gates copy progress; can be disabled while the source is locked."""

    @property
    def disabled(self) -> bool: ...

    def set_disabled(self, disabled: bool) -> None: ...

    def throttled(self) -> bool: ...


@runtime_checkable
class MetricsRecorder(Protocol):
    """Sink for named timing metrics."""

    def measure(self, name: str) -> AbstractContextManager[None]: ...

    def timer(self, name: str, seconds: float) -> None: ...


@runtime_checkable
class ErrorHandler(Protocol):
    """Base handler invoked once a run-time failure has been reported."""

    async def handle(self, stage: str, error: BaseException) -> None: ...


@dataclass(frozen=True)
class CursorConfig:
    """
    How the verifier reads rows from the source.

    Attributes:
        db: Source database handle owned by the engine.
        batch_size: Rows per read.
        read_retries: Retries for a failed read.
        build_select: Row selection, the same one used by the bulk copy.
    """

    db: Any
    batch_size: int
    read_retries: int
    build_select: Callable[..., Select]


@dataclass(frozen=True)
class VerifierConfig:
    """
    Everything a verifier factory needs to build a verifier.

    Attributes:
        cursor_config: How to read source rows.
        binlog_streamer: Live change stream used to track rows changed mid-verify.
        table_schema_cache: Shared cache of discovered tables.
        tables: Tables to verify.
        source_db: Source database handle.
        target_db: Target database handle.
        database_rewrites: Source -> target database names.
        table_rewrites: Source -> target table names.
        ignored_tables: Tables excluded from verification.
        concurrency: Tables verified in parallel.
    """

    cursor_config: CursorConfig
    binlog_streamer: Any
    table_schema_cache: TableSchemaCache
    tables: list[TableSchema]
    source_db: Any
    target_db: Any
    database_rewrites: Mapping[str, str]
    table_rewrites: Mapping[str, str]
    ignored_tables: frozenset[str]
    concurrency: int


__all__ = [
    "TableFilter",
    "RowFilter",
    "CopyEngine",
    "Verifier",
    "Throttler",
    "MetricsRecorder",
    "ErrorHandler",
    "CursorConfig",
    "VerifierConfig",
]
