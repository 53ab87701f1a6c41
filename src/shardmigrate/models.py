"""
Data models for shard migration.

Models in this module:

Enums:
    - MigrationPhase: Ordered, forward-only phases of a migration run

Configuration:
    - JoinTable: How a table without the sharding key joins to the shard
    - ThrottleConfig: Replication lag limits for the lag throttler
    - MigrationConfig: Complete configuration for migrating one shard

Results:
    - VerificationResult: Outcome of a verification pass
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from shardmigrate.webhooks import WebhookSpec


class MigrationPhase(Enum):
    """
    Phases of a shard migration.

    Phases are strictly ordered. Each phase can only be followed by the next
    one in declaration order, or by ABORTED. DONE and ABORTED are terminal.

        CREATED -> INITIALIZED -> COPYING -> PRE_CUTOVER_VERIFIED
        -> THROTTLE_SYNCED -> BINLOG_CAUGHT_UP -> LOCKED -> THROTTLE_DISABLED
        -> DRAINED -> JOINED_TABLES_COPIED -> CUTOVER_VERIFIED -> UNTHROTTLED
        -> PK_TABLES_COPIED -> UNLOCKED -> DONE

        Any non-terminal phase -> ABORTED
    """

    CREATED = "created"
    INITIALIZED = "initialized"
    COPYING = "copying"
    PRE_CUTOVER_VERIFIED = "pre_cutover_verified"
    THROTTLE_SYNCED = "throttle_synced"
    BINLOG_CAUGHT_UP = "binlog_caught_up"
    LOCKED = "locked"
    THROTTLE_DISABLED = "throttle_disabled"
    DRAINED = "drained"
    JOINED_TABLES_COPIED = "joined_tables_copied"
    CUTOVER_VERIFIED = "cutover_verified"
    UNTHROTTLED = "unthrottled"
    PK_TABLES_COPIED = "pk_tables_copied"
    UNLOCKED = "unlocked"
    DONE = "done"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (MigrationPhase.DONE, MigrationPhase.ABORTED)

    @property
    def successor(self) -> MigrationPhase | None:
        """
        The phase that follows this one on the success path.

        Returns:
            The next phase, or None for terminal phases.
        """
        if self.is_terminal:
            return None
        return _PHASE_ORDER[_PHASE_ORDER.index(self) + 1]

    @property
    def holds_cutover_lock(self) -> bool:
        """True for phases during which the source shard is write-locked."""
        start = _PHASE_ORDER.index(MigrationPhase.LOCKED)
        end = _PHASE_ORDER.index(MigrationPhase.UNLOCKED)
        return self in _PHASE_ORDER[start:end]

    def can_transition_to(self, target: MigrationPhase) -> bool:
        """
        Check if transition to target phase is valid.

        Args:
            target: The target phase to transition to.

        Returns:
            True if target is the immediate successor or ABORTED.
        """
        if self.is_terminal:
            return False
        if target == MigrationPhase.ABORTED:
            return True
        return target == self.successor


_PHASE_ORDER: list[MigrationPhase] = [p for p in MigrationPhase if p != MigrationPhase.ABORTED]


@dataclass(frozen=True)
class JoinTable:
    """
    Join description for a table that lacks the sharding key.

    Rows of the joined table belong to the shard when their primary key
    appears in ``table_name.join_column`` for rows of ``table_name`` that
    carry the sharding value.

    Attributes:
        table_name: Table that carries the sharding key.
        join_column: Column of ``table_name`` referencing the joined table's PK.
    """

    table_name: str
    join_column: str

    def to_dict(self) -> dict[str, str]:
        return {"table_name": self.table_name, "join_column": self.join_column}


@dataclass(frozen=True)
class ThrottleConfig:
    """
    Lag throttling configuration.

    Attributes:
        max_lag_seconds: Replication lag above which copying is throttled.
        check_interval_seconds: How often the lag probe is polled.
    """

    max_lag_seconds: float = 2.0
    check_interval_seconds: float = 0.5

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.max_lag_seconds <= 0:
            raise ValueError(f"max_lag_seconds must be > 0, got {self.max_lag_seconds}")
        if self.check_interval_seconds <= 0:
            raise ValueError(
                f"check_interval_seconds must be > 0, got {self.check_interval_seconds}"
            )

    def to_dict(self) -> dict[str, float]:
        return {
            "max_lag_seconds": self.max_lag_seconds,
            "check_interval_seconds": self.check_interval_seconds,
        }


@dataclass(frozen=True)
class MigrationConfig:
    """
    Configuration for migrating one shard.

    The configuration is immutable. Its consistency is checked by
    ``shardmigrate.validation.validate_config`` when a ``ShardMigrator`` is
    constructed; this class only normalizes container types.

    Attributes:
        sharding_key: Column holding the shard identifier.
        sharding_value: Shard identifier to migrate.
        source_db: Source database (schema) name.
        target_db: Target database (schema) name.
        joined_tables: Tables without the sharding key, and how they join.
        ignored_tables: Regex patterns of tables to skip entirely.
        ignored_verification_tables: Tables copied but not verified.
        primary_key_tables: Tables whose single primary key is the sharding value.
        table_rewrites: Source table name -> target table name.
        throttle: Lag throttling configuration, or None to disable throttling.
        cutover_lock: Webhook that write-locks the source shard.
        cutover_unlock: Webhook that releases the write lock.
        error_callback: Webhook notified when the migration aborts.
        data_iteration_concurrency: Tables copied in parallel.
        verifier_iteration_concurrency: Tables verified in parallel (0 = copy concurrency).
        data_iteration_batch_size: Rows per copy batch.
        db_read_retries: Retries for a failed read before giving up.

    Example:
        >>> config = MigrationConfig(
        ...     sharding_key="tenant_id",
        ...     sharding_value=42,
        ...     source_db="shard_1",
        ...     target_db="shard_2",
        ...     cutover_lock=WebhookSpec("http://ops/lock"),
        ...     cutover_unlock=WebhookSpec("http://ops/unlock"),
        ... )
        >>> config.database_rewrites
        {'shard_1': 'shard_2'}
    """

    sharding_key: str
    sharding_value: int
    source_db: str
    target_db: str
    joined_tables: Mapping[str, tuple[JoinTable, ...]] = field(default_factory=dict)
    ignored_tables: tuple[str, ...] = ()
    ignored_verification_tables: frozenset[str] = frozenset()
    primary_key_tables: tuple[str, ...] = ()
    table_rewrites: Mapping[str, str] = field(default_factory=dict)
    throttle: ThrottleConfig | None = None
    cutover_lock: WebhookSpec | None = None
    cutover_unlock: WebhookSpec | None = None
    error_callback: WebhookSpec | None = None
    data_iteration_concurrency: int = 4
    verifier_iteration_concurrency: int = 0
    data_iteration_batch_size: int = 200
    db_read_retries: int = 5

    def __post_init__(self) -> None:
        """Normalize container fields so callers may pass lists and dicts."""
        object.__setattr__(
            self,
            "joined_tables",
            {name: tuple(joins) for name, joins in self.joined_tables.items()},
        )
        object.__setattr__(self, "ignored_tables", tuple(self.ignored_tables))
        object.__setattr__(
            self, "ignored_verification_tables", frozenset(self.ignored_verification_tables)
        )
        object.__setattr__(self, "primary_key_tables", tuple(self.primary_key_tables))
        object.__setattr__(self, "table_rewrites", dict(self.table_rewrites))

    @property
    def database_rewrites(self) -> dict[str, str]:
        """The single source -> target database mapping."""
        return {self.source_db: self.target_db}

    @property
    def effective_verifier_concurrency(self) -> int:
        """Verifier concurrency, falling back to the copy concurrency when unset."""
        return self.verifier_iteration_concurrency or self.data_iteration_concurrency

    def to_dict(self) -> dict[str, Any]:
        """
        Convert to a JSON-friendly dictionary.

        Returns:
            Dictionary representation accepted by ``from_dict``.
        """
        return {
            "sharding_key": self.sharding_key,
            "sharding_value": self.sharding_value,
            "source_db": self.source_db,
            "target_db": self.target_db,
            "joined_tables": {
                name: [join.to_dict() for join in joins]
                for name, joins in self.joined_tables.items()
            },
            "ignored_tables": list(self.ignored_tables),
            "ignored_verification_tables": sorted(self.ignored_verification_tables),
            "primary_key_tables": list(self.primary_key_tables),
            "table_rewrites": dict(self.table_rewrites),
            "throttle": self.throttle.to_dict() if self.throttle else None,
            "cutover_lock": self.cutover_lock.to_dict() if self.cutover_lock else None,
            "cutover_unlock": self.cutover_unlock.to_dict() if self.cutover_unlock else None,
            "error_callback": self.error_callback.to_dict() if self.error_callback else None,
            "data_iteration_concurrency": self.data_iteration_concurrency,
            "verifier_iteration_concurrency": self.verifier_iteration_concurrency,
            "data_iteration_batch_size": self.data_iteration_batch_size,
            "db_read_retries": self.db_read_retries,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MigrationConfig:
        """
        Create from a dictionary, e.g. a parsed JSON config file.

        Args:
            data: Dictionary containing configuration values.

        Returns:
            MigrationConfig instance.
        """

        def webhook(key: str) -> WebhookSpec | None:
            value = data.get(key)
            return WebhookSpec.from_dict(value) if value else None

        throttle = data.get("throttle")
        return cls(
            sharding_key=data.get("sharding_key", ""),
            sharding_value=data.get("sharding_value", -1),
            source_db=data.get("source_db", ""),
            target_db=data.get("target_db", ""),
            joined_tables={
                name: tuple(JoinTable(**join) for join in joins)
                for name, joins in data.get("joined_tables", {}).items()
            },
            ignored_tables=tuple(data.get("ignored_tables", ())),
            ignored_verification_tables=frozenset(data.get("ignored_verification_tables", ())),
            primary_key_tables=tuple(data.get("primary_key_tables", ())),
            table_rewrites=data.get("table_rewrites", {}),
            throttle=ThrottleConfig(**throttle) if throttle else None,
            cutover_lock=webhook("cutover_lock"),
            cutover_unlock=webhook("cutover_unlock"),
            error_callback=webhook("error_callback"),
            data_iteration_concurrency=data.get("data_iteration_concurrency", 4),
            verifier_iteration_concurrency=data.get("verifier_iteration_concurrency", 0),
            data_iteration_batch_size=data.get("data_iteration_batch_size", 200),
            db_read_retries=data.get("db_read_retries", 5),
        )


@dataclass(frozen=True)
class VerificationResult:
    """
    Result of a verification pass.

    Attributes:
        data_correct: Whether source and target hold identical shard data.
        message: Diagnostic message describing any mismatch.
        incorrect_tables: Tables that failed verification.
    """

    data_correct: bool
    message: str = ""
    incorrect_tables: tuple[str, ...] = ()

    @classmethod
    def correct(cls) -> VerificationResult:
        return cls(data_correct=True)

    @classmethod
    def incorrect(cls, message: str, tables: tuple[str, ...] = ()) -> VerificationResult:
        return cls(data_correct=False, message=message, incorrect_tables=tuple(tables))


__all__ = [
    "MigrationPhase",
    "JoinTable",
    "ThrottleConfig",
    "MigrationConfig",
    "VerificationResult",
]
