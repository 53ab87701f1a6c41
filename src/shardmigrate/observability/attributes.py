"""
Standard span attributes for shardmigrate.

Example:
    >>> from shardmigrate.observability.attributes import ATTR_SHARD_VALUE
    >>>
    >>> with tracer.span("shardmigrate.cutover.lock", {ATTR_SHARD_VALUE: 42}):
    ...     pass
"""

# =============================================================================
# Shard Attributes
# =============================================================================

ATTR_SHARD_KEY = "shardmigrate.shard.key"
"""Name of the sharding key column."""

ATTR_SHARD_VALUE = "shardmigrate.shard.value"
"""Sharding value being migrated."""

ATTR_SOURCE_DB = "shardmigrate.shard.source_db"
"""Source database name."""

ATTR_TARGET_DB = "shardmigrate.shard.target_db"
"""Target database name."""

# =============================================================================
# Cutover Attributes
# =============================================================================

ATTR_PHASE = "shardmigrate.cutover.phase"
"""Migration phase the span runs in."""

ATTR_STAGE = "shardmigrate.cutover.stage"
"""Stage tag reported to the error sink on failure."""

ATTR_TABLE_COUNT = "shardmigrate.cutover.table_count"
"""Number of tables handled by a standalone copy."""

ATTR_DATA_CORRECT = "shardmigrate.cutover.data_correct"
"""Outcome of the cutover verification."""


__all__ = [
    "ATTR_SHARD_KEY",
    "ATTR_SHARD_VALUE",
    "ATTR_SOURCE_DB",
    "ATTR_TARGET_DB",
    "ATTR_PHASE",
    "ATTR_STAGE",
    "ATTR_TABLE_COUNT",
    "ATTR_DATA_CORRECT",
]
