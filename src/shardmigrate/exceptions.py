"""
Exceptions for the shard migration system.

Exception Hierarchy:
    ShardMigrationError (base)
    +-- ConfigurationError
    |   +-- InvalidIgnoredTablePatternError
    |   +-- CompositePrimaryKeyError
    +-- MigrationStateError
    |   +-- InvalidPhaseTransitionError
    |   +-- PrimaryKeyTablesAlreadyAttachedError
    +-- WebhookError
    +-- VerificationFailedError
    +-- MigrationAbortedError

Construction-time problems (filters, configuration, engine and verifier
initialization) surface as ordinary exceptions the caller may handle. Anything
that goes wrong inside ``ShardMigrator.run()`` is funnelled through the error
sink and ends as a ``MigrationAbortedError``.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from shardmigrate.models import MigrationPhase, VerificationResult


class ErrorSeverity(Enum):
    """
    Severity level of migration errors.

    Attributes:
        CRITICAL: The shard is in an undefined state and needs an operator.
        ERROR: The migration failed and must be restarted.
        WARNING: Something an operator should look at.
    """

    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"

    @property
    def log_level(self) -> int:
        """
        Get the corresponding Python logging level.

        Returns:
            Python logging level constant.
        """
        level_map = {
            ErrorSeverity.CRITICAL: logging.CRITICAL,
            ErrorSeverity.ERROR: logging.ERROR,
            ErrorSeverity.WARNING: logging.WARNING,
        }
        return level_map[self]


@dataclass(frozen=True)
class RetryConfig:
    """
    Configuration for retrying an outbound call.

    Implements exponential backoff with jitter.

    Attributes:
        max_attempts: Maximum number of attempts (including the first one).
        base_delay_ms: Base delay between attempts in milliseconds.
        max_delay_ms: Maximum delay between attempts in milliseconds.
        exponential_base: Base for exponential backoff (default 2.0).
        jitter_factor: Random jitter factor (0.0 to 1.0, default 0.1).

    Example:
        >>> config = RetryConfig(max_attempts=5, base_delay_ms=100)
        >>> config.get_delay_ms(attempt=3)  # about 800ms plus jitter
    """

    max_attempts: int = 5
    base_delay_ms: float = 100.0
    max_delay_ms: float = 5000.0
    exponential_base: float = 2.0
    jitter_factor: float = 0.1

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay_ms < 0:
            raise ValueError(f"base_delay_ms must be >= 0, got {self.base_delay_ms}")
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError(
                f"max_delay_ms ({self.max_delay_ms}) must be >= "
                f"base_delay_ms ({self.base_delay_ms})"
            )
        if self.exponential_base < 1.0:
            raise ValueError(f"exponential_base must be >= 1.0, got {self.exponential_base}")
        if not 0.0 <= self.jitter_factor <= 1.0:
            raise ValueError(f"jitter_factor must be between 0.0 and 1.0, got {self.jitter_factor}")

    def get_delay_ms(self, attempt: int) -> float:
        """
        Calculate delay before a specific retry attempt.

        Args:
            attempt: Current attempt number (0-indexed).

        Returns:
            Delay in milliseconds, capped at max_delay_ms.
        """
        delay = self.base_delay_ms * (self.exponential_base**attempt)
        delay = min(delay, self.max_delay_ms)
        if self.jitter_factor > 0 and delay > 0:
            jitter = delay * self.jitter_factor
            delay += random.uniform(-jitter, jitter)
        return max(0.0, delay)

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_attempts": self.max_attempts,
            "base_delay_ms": self.base_delay_ms,
            "max_delay_ms": self.max_delay_ms,
            "exponential_base": self.exponential_base,
            "jitter_factor": self.jitter_factor,
        }


WEBHOOK_RETRY_CONFIG = RetryConfig(max_attempts=5, base_delay_ms=200.0, max_delay_ms=5000.0)
"""Retry policy for lock, unlock and error-callback webhooks."""


class ShardMigrationError(Exception):
    """
    Base exception for all shard migration errors.

    Attributes:
        message: Human-readable error description.
        shard: The sharding value being migrated, if known.
    """

    error_code: str = "SHARD_MIGRATION_ERROR"
    severity: ErrorSeverity = ErrorSeverity.ERROR

    def __init__(self, message: str, *, shard: int | None = None) -> None:
        self.message = message
        self.shard = shard
        super().__init__(message)

    def __str__(self) -> str:
        if self.shard is not None:
            return f"{self.message} shard={self.shard}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the exception to a dictionary for logging and callbacks.

        Returns:
            Dictionary representation of the error.
        """
        return {
            "message": self.message,
            "shard": self.shard,
            "error_code": self.error_code,
            "severity": self.severity.value,
        }


class ConfigurationError(ShardMigrationError):
    """
    Raised when the migration configuration is inconsistent.

    Configuration errors are raised before any engine object exists, so the
    caller can fix the configuration and retry without cleanup.

    Attributes:
        problems: Every violation found, in the order it was detected.
    """

    error_code = "CONFIGURATION_ERROR"

    def __init__(self, message: str, *, problems: list[str] | None = None) -> None:
        self.problems = list(problems) if problems else [message]
        super().__init__(message)


class InvalidIgnoredTablePatternError(ConfigurationError):
    """Raised when an ignored-table pattern is not a valid regular expression."""

    error_code = "INVALID_IGNORED_TABLE_PATTERN"

    def __init__(self, pattern: str, reason: str) -> None:
        self.pattern = pattern
        self.reason = reason
        super().__init__(f"failed to compile ignored table pattern {pattern!r}: {reason}")


class CompositePrimaryKeyError(ConfigurationError):
    """
    Raised when a primary-key table does not have exactly one PK column.

    Primary-key tables are selected by comparing their single primary key
    column against the sharding value, which has no meaning for composite keys.
    """

    error_code = "COMPOSITE_PRIMARY_KEY"

    def __init__(self, table: str, pk_columns: tuple[str, ...]) -> None:
        self.table = table
        self.pk_columns = pk_columns
        super().__init__(
            f"multiple PK columns are not supported with the primary_key_tables option: "
            f"{table} has {list(pk_columns)}"
        )


class MigrationStateError(ShardMigrationError):
    """Raised when an operation is attempted in the wrong migration state."""

    error_code = "MIGRATION_STATE_ERROR"


class InvalidPhaseTransitionError(MigrationStateError):
    """
    Raised when the orchestrator tries to skip or repeat a phase.

    Attributes:
        current: Phase the migration is in.
        target: Phase that was requested.
    """

    error_code = "INVALID_PHASE_TRANSITION"
    severity = ErrorSeverity.CRITICAL

    def __init__(self, current: MigrationPhase, target: MigrationPhase) -> None:
        self.current = current
        self.target = target
        super().__init__(f"invalid phase transition: {current.value} -> {target.value}")


class PrimaryKeyTablesAlreadyAttachedError(MigrationStateError):
    """Raised when the primary-key table set is attached to the filters twice."""

    error_code = "PK_TABLES_ALREADY_ATTACHED"

    def __init__(self) -> None:
        super().__init__("primary key tables have already been attached to the shard filters")


class WebhookError(ShardMigrationError):
    """
    Raised when a webhook call does not succeed.

    Attributes:
        uri: The webhook URI.
        status_code: Last HTTP status received, or None on transport failure.
    """

    error_code = "WEBHOOK_ERROR"

    def __init__(self, uri: str, reason: str, *, status_code: int | None = None) -> None:
        self.uri = uri
        self.status_code = status_code
        super().__init__(f"webhook {uri} failed: {reason}")


class VerificationFailedError(ShardMigrationError):
    """
    Raised when cutover verification finds a data discrepancy.

    Attributes:
        result: The verification result reporting incorrect data.
    """

    error_code = "VERIFICATION_FAILED"
    severity = ErrorSeverity.CRITICAL

    def __init__(self, result: VerificationResult) -> None:
        self.result = result
        super().__init__(f"verifier detected data discrepancy: {result.message}")


class MigrationAbortedError(ShardMigrationError):
    """
    Terminal error raised once a run-time failure has been reported.

    After this is raised the migration cannot be resumed. If it happened after
    the cutover lock was acquired, the source is still locked and an operator
    must intervene.

    Attributes:
        stage: Tag of the component that failed (e.g. "sharding").
        cause: The underlying error.
    """

    error_code = "MIGRATION_ABORTED"
    severity = ErrorSeverity.CRITICAL

    def __init__(self, stage: str, cause: BaseException) -> None:
        self.stage = stage
        self.cause = cause
        super().__init__(f"migration aborted in {stage}: {cause}")

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["stage"] = self.stage
        result["cause"] = str(self.cause)
        return result


__all__ = [
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
]
