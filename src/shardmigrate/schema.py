"""
Table schema discovery.

``load_tables`` reads the table list, columns and primary keys of the source
database through SQLAlchemy's inspector and narrows them with a table filter.
Copy engines can delegate their ``load_tables`` to it; the orchestrator calls
it again (through the engine) when primary-key tables are attached.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import inspect

if TYPE_CHECKING:
    from sqlalchemy.engine import Connection
    from sqlalchemy.ext.asyncio import AsyncEngine

    from shardmigrate.protocols import TableFilter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TableSchema:
    """
    Columns and primary key of one table.

    Attributes:
        schema: Database (schema) the table lives in.
        name: Table name.
        columns: Column names in table order.
        pk_columns: Primary key column names, in key order.
    """

    schema: str
    name: str
    columns: tuple[str, ...]
    pk_columns: tuple[str, ...] = ()

    @property
    def full_name(self) -> str:
        return f"{self.schema}.{self.name}"

    @property
    def primary_key(self) -> str | None:
        """The primary key column, or None unless the key has exactly one column."""
        if len(self.pk_columns) == 1:
            return self.pk_columns[0]
        return None

    def has_column(self, column: str) -> bool:
        return column in self.columns


class TableSchemaCache(dict[str, TableSchema]):
    """Tables discovered on the source, keyed by ``schema.table``."""

    def __init__(self, tables: Iterable[TableSchema] = ()) -> None:
        super().__init__((table.full_name, table) for table in tables)

    def as_list(self) -> list[TableSchema]:
        """Return the tables sorted by full name."""
        return [self[name] for name in sorted(self)]

    def names(self) -> list[str]:
        return [table.name for table in self.as_list()]

    def get_table(self, schema: str, name: str) -> TableSchema | None:
        return self.get(f"{schema}.{name}")


async def load_tables(engine: AsyncEngine, table_filter: TableFilter) -> TableSchemaCache:
    """
    Discover the tables that pass the filter.

    Args:
        engine: Async engine connected to the source server.
        table_filter: Filter deciding which databases and tables apply.

    Returns:
        TableSchemaCache of the applicable tables.
    """
    async with engine.connect() as conn:
        tables = await conn.run_sync(_load_tables_sync, table_filter)
    logger.debug("Loaded %d applicable tables", len(tables))
    return tables


def _load_tables_sync(conn: Connection, table_filter: TableFilter) -> TableSchemaCache:
    inspector = inspect(conn)
    discovered: list[TableSchema] = []

    for schema in table_filter.apply_databases(inspector.get_schema_names()):
        for name in inspector.get_table_names(schema=schema):
            columns = tuple(column["name"] for column in inspector.get_columns(name, schema=schema))
            pk = inspector.get_pk_constraint(name, schema=schema)
            discovered.append(
                TableSchema(
                    schema=schema,
                    name=name,
                    columns=columns,
                    pk_columns=tuple(pk.get("constrained_columns") or ()),
                )
            )

    return TableSchemaCache(table_filter.apply_tables(discovered))


__all__ = ["TableSchema", "TableSchemaCache", "load_tables"]
