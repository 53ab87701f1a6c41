"""
Observability utilities for shardmigrate.

Tracing spans and standard span attributes used by the migrator.
"""

from shardmigrate.observability.attributes import (
    ATTR_DATA_CORRECT,
    ATTR_PHASE,
    ATTR_SHARD_KEY,
    ATTR_SHARD_VALUE,
    ATTR_SOURCE_DB,
    ATTR_STAGE,
    ATTR_TABLE_COUNT,
    ATTR_TARGET_DB,
)
from shardmigrate.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    Tracer,
    create_tracer,
)

__all__ = [
    "ATTR_DATA_CORRECT",
    "ATTR_PHASE",
    "ATTR_SHARD_KEY",
    "ATTR_SHARD_VALUE",
    "ATTR_SOURCE_DB",
    "ATTR_STAGE",
    "ATTR_TABLE_COUNT",
    "ATTR_TARGET_DB",
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
]
