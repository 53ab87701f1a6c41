"""
Configuration validation.

``validate_config`` is the last check before any engine object is created.
It reports every problem it finds in one ``ConfigurationError`` and never
corrects a value.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from shardmigrate.exceptions import ConfigurationError

if TYPE_CHECKING:
    from shardmigrate.filters import ShardFilters
    from shardmigrate.models import MigrationConfig

logger = logging.getLogger(__name__)


def validate_config(config: MigrationConfig, filters: ShardFilters) -> None:
    """
    Check a migration configuration and the filters built from it.

    Args:
        config: Migration configuration.
        filters: Filters built from ``config``.

    Raises:
        ConfigurationError: Listing every violation found.
    """
    problems: list[str] = []

    if not config.sharding_key:
        problems.append("missing sharding key")
    if config.sharding_value is None:
        problems.append("missing sharding value")
    elif not _is_int(config.sharding_value):
        problems.append(f"sharding value must be an integer, got {config.sharding_value!r}")
    elif config.sharding_value < 0:
        problems.append("missing sharding value")
    if not config.source_db:
        problems.append("missing source database name")
    if not config.target_db:
        problems.append("missing target database name")

    if config.cutover_lock is None or not config.cutover_lock.uri:
        problems.append("missing cutover lock webhook")
    if config.cutover_unlock is None or not config.cutover_unlock.uri:
        problems.append("missing cutover unlock webhook")
    if config.error_callback is not None and not config.error_callback.uri:
        problems.append("error callback webhook has no uri")

    problems.extend(_check_bounds(config))

    for name, joins in config.joined_tables.items():
        if not joins:
            problems.append(f"joined table {name} has no join tables")
        for join in joins:
            if not join.table_name or not join.join_column:
                problems.append(f"joined table {name} has an incomplete join: {join}")

    both = set(config.joined_tables) & set(config.primary_key_tables)
    for name in sorted(both):
        problems.append(f"table {name} cannot be both a joined table and a primary key table")

    if config.database_rewrites != {config.source_db: config.target_db}:
        problems.append("database rewrites must map exactly the source to the target database")

    if filters.row_filter.sharding_key != config.sharding_key:
        problems.append("row filter was not built from this configuration")
    if filters.table_filter.source_shard != config.source_db:
        problems.append("table filter was not built from this configuration")
    if filters.primary_key_tables_attached:
        problems.append("primary key tables must not be attached before the migration runs")

    if problems:
        for problem in problems:
            logger.error("Invalid migration config: %s", problem)
        raise ConfigurationError(
            f"failed to validate config: {'; '.join(problems)}",
            problems=problems,
        )


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _check_bounds(config: MigrationConfig) -> list[str]:
    problems: list[str] = []
    bounds = (
        ("data_iteration_batch_size", config.data_iteration_batch_size, 1),
        ("db_read_retries", config.db_read_retries, 0),
        ("data_iteration_concurrency", config.data_iteration_concurrency, 1),
        ("verifier_iteration_concurrency", config.verifier_iteration_concurrency, 0),
    )
    for name, value, minimum in bounds:
        if not _is_int(value):
            problems.append(f"{name} must be an integer, got {value!r}")
        elif value < minimum:
            problems.append(f"{name} must be >= {minimum}, got {value}")
    return problems


__all__ = ["validate_config"]
