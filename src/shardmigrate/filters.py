"""
Shard row and table filters.

Two predicate objects decide what a shard migration touches:

- ``ShardedTableFilter`` picks the source database and the tables that belong
  to the shard (tables carrying the sharding key, joined tables and, once
  attached, primary-key tables), minus tables matching an ignored pattern.
- ``ShardedRowFilter`` builds the paginated ``SELECT`` used by the bulk copy
  and the verifier, and decides whether a change-stream row belongs to the
  shard.

Both are built once by ``build_filters`` and held in a ``ShardFilters`` cell
owned by the migrator. The cell allows exactly one later mutation: attaching
the primary-key table set right before those tables are copied.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Any

from sqlalchemy import Select, column, select, union
from sqlalchemy import table as table_clause

from shardmigrate.exceptions import (
    InvalidIgnoredTablePatternError,
    PrimaryKeyTablesAlreadyAttachedError,
)

if TYPE_CHECKING:
    from sqlalchemy.sql.expression import TableClause

    from shardmigrate.models import JoinTable, MigrationConfig
    from shardmigrate.schema import TableSchema

logger = logging.getLogger(__name__)


def compile_ignored_tables(patterns: Iterable[str]) -> tuple[re.Pattern[str], ...]:
    """
    Compile ignored-table patterns.

    Args:
        patterns: Regular expressions matched against table names.

    Returns:
        The compiled patterns, in order.

    Raises:
        InvalidIgnoredTablePatternError: For the first pattern that fails to compile.
    """
    compiled = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern))
        except re.error as e:
            raise InvalidIgnoredTablePatternError(pattern, str(e)) from e
    return tuple(compiled)


def _table_clause(table: TableSchema) -> TableClause:
    return table_clause(table.name, *(column(name) for name in table.columns), schema=table.schema)


class ShardedRowFilter:
    """
    Selects the rows of one shard.

    Attributes:
        sharding_key: Column holding the shard identifier.
        sharding_value: Shard identifier to migrate.
        joined_tables: Tables without the sharding key, and how they join.
        primary_key_tables: Tables whose primary key equals the sharding value.
    """

    def __init__(
        self,
        sharding_key: str,
        sharding_value: int,
        joined_tables: Mapping[str, tuple[JoinTable, ...]],
        primary_key_tables: frozenset[str] = frozenset(),
    ) -> None:
        self.sharding_key = sharding_key
        self.sharding_value = sharding_value
        self.joined_tables = joined_tables
        self.primary_key_tables = primary_key_tables

    def build_select(
        self,
        table: TableSchema,
        columns: Sequence[str],
        last_pk: Any,
        batch_size: int,
    ) -> Select:
        """
        Build the next paginated batch query for a table.

        Args:
            table: Table to read.
            columns: Columns to select.
            last_pk: Primary key of the last row already read, or None.
            batch_size: Maximum rows to return.

        Returns:
            A SQLAlchemy ``Select`` ordered by primary key.
        """
        pk_name = table.primary_key
        if pk_name is None:
            raise ValueError(f"{table.full_name} needs a single-column primary key to be paginated")

        source = _table_clause(table)
        pk = source.c[pk_name]
        stmt = select(*(source.c[name] for name in columns))

        if table.name in self.primary_key_tables:
            stmt = stmt.where(pk == self.sharding_value)
        elif table.name in self.joined_tables:
            stmt = stmt.where(pk.in_(self._joined_ids(table)))
        else:
            stmt = stmt.where(source.c[self.sharding_key] == self.sharding_value)

        if last_pk is not None:
            stmt = stmt.where(pk > last_pk)

        return stmt.order_by(pk).limit(batch_size)

    def _joined_ids(self, table: TableSchema) -> Any:
        selects = []
        for join in self.joined_tables[table.name]:
            join_source = table_clause(
                join.table_name,
                column(join.join_column),
                column(self.sharding_key),
                schema=table.schema,
            )
            selects.append(
                select(join_source.c[join.join_column]).where(
                    join_source.c[self.sharding_key] == self.sharding_value
                )
            )
        if len(selects) == 1:
            return selects[0]
        return union(*selects)

    def applicable_event(self, table: TableSchema, values: Mapping[str, Any]) -> bool:
        """
        Decide whether a change-stream row image belongs to the shard.

        Joined tables are never streamed; they are copied again while the
        source is locked.

        Args:
            table: Table the row belongs to.
            values: Column name -> value for the row image.

        Returns:
            True if the change should be applied to the target.
        """
        if table.name in self.joined_tables:
            return False
        if table.name in self.primary_key_tables:
            pk_name = table.primary_key
            return pk_name is not None and values.get(pk_name) == self.sharding_value
        return values.get(self.sharding_key) == self.sharding_value


class ShardedTableFilter:
    """
    Selects the database and tables that belong to the shard.

    Attributes:
        sharding_key: Column holding the shard identifier.
        source_shard: The only database considered.
        joined_tables: Tables without the sharding key that are still copied.
        ignored_tables: Compiled patterns of tables to skip.
        primary_key_tables: Tables copied by primary key.
    """

    def __init__(
        self,
        sharding_key: str,
        source_shard: str,
        joined_tables: Mapping[str, tuple[JoinTable, ...]],
        ignored_tables: tuple[re.Pattern[str], ...],
        primary_key_tables: frozenset[str] = frozenset(),
    ) -> None:
        self.sharding_key = sharding_key
        self.source_shard = source_shard
        self.joined_tables = joined_tables
        self.ignored_tables = ignored_tables
        self.primary_key_tables = primary_key_tables

    def apply_databases(self, databases: Iterable[str]) -> list[str]:
        return [db for db in databases if db == self.source_shard]

    def apply_tables(self, tables: Iterable[TableSchema]) -> list[TableSchema]:
        applicable = []
        for table in tables:
            if self.is_ignored(table.name):
                continue
            if (
                table.name in self.primary_key_tables
                or table.name in self.joined_tables
                or table.has_column(self.sharding_key)
            ):
                applicable.append(table)
        return applicable

    def is_ignored(self, table_name: str) -> bool:
        return any(pattern.search(table_name) for pattern in self.ignored_tables)


class ShardFilters:
    """
    The row and table filters of one migration.

    Shared by reference with the copy engine and the verifier. The only
    mutation allowed after construction is ``attach_primary_key_tables``,
    which may be called once.
    """

    def __init__(self, row_filter: ShardedRowFilter, table_filter: ShardedTableFilter) -> None:
        self.row_filter = row_filter
        self.table_filter = table_filter
        self._pk_tables_attached = False

    @property
    def primary_key_tables_attached(self) -> bool:
        return self._pk_tables_attached

    def attach_primary_key_tables(self, names: Iterable[str]) -> frozenset[str]:
        """
        Make both filters aware of the primary-key tables.

        Args:
            names: Primary-key table names.

        Returns:
            The attached set.

        Raises:
            PrimaryKeyTablesAlreadyAttachedError: If called a second time.
        """
        if self._pk_tables_attached:
            raise PrimaryKeyTablesAlreadyAttachedError()

        pk_tables = frozenset(names)
        self.table_filter.primary_key_tables = pk_tables
        self.row_filter.primary_key_tables = pk_tables
        self._pk_tables_attached = True
        logger.debug("Attached %d primary key tables to shard filters", len(pk_tables))
        return pk_tables


def build_filters(config: MigrationConfig) -> ShardFilters:
    """
    Build the shard filters from configuration.

    Args:
        config: Migration configuration.

    Returns:
        The filter cell for the migration.

    Raises:
        InvalidIgnoredTablePatternError: If an ignored-table pattern is invalid.
    """
    ignored = compile_ignored_tables(config.ignored_tables)

    row_filter = ShardedRowFilter(
        sharding_key=config.sharding_key,
        sharding_value=config.sharding_value,
        joined_tables=config.joined_tables,
    )
    table_filter = ShardedTableFilter(
        sharding_key=config.sharding_key,
        source_shard=config.source_db,
        joined_tables=config.joined_tables,
        ignored_tables=ignored,
    )
    return ShardFilters(row_filter, table_filter)


__all__ = [
    "compile_ignored_tables",
    "ShardedRowFilter",
    "ShardedTableFilter",
    "ShardFilters",
    "build_filters",
]
