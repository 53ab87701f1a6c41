"""
Unit tests for shard migration exceptions and retry configuration.
"""

import logging

import pytest

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
from shardmigrate.models import MigrationPhase, VerificationResult


class TestErrorSeverity:
    def test_log_levels(self):
        assert ErrorSeverity.CRITICAL.log_level == logging.CRITICAL
        assert ErrorSeverity.ERROR.log_level == logging.ERROR
        assert ErrorSeverity.WARNING.log_level == logging.WARNING


class TestRetryConfig:
    """Tests for RetryConfig."""

    def test_exponential_delay_without_jitter(self):
        config = RetryConfig(base_delay_ms=100, max_delay_ms=1000, jitter_factor=0.0)

        assert [config.get_delay_ms(attempt) for attempt in range(5)] == [
            100.0,
            200.0,
            400.0,
            800.0,
            1000.0,
        ]

    def test_jitter_bounds(self):
        config = RetryConfig(base_delay_ms=100, jitter_factor=0.5)

        for _ in range(20):
            assert 50.0 <= config.get_delay_ms(0) <= 150.0

    def test_zero_delay(self):
        assert RetryConfig(base_delay_ms=0, max_delay_ms=0).get_delay_ms(3) == 0.0

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_attempts": 0},
            {"base_delay_ms": -1},
            {"base_delay_ms": 100, "max_delay_ms": 50},
            {"exponential_base": 0.5},
            {"jitter_factor": 1.5},
        ],
    )
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            RetryConfig(**kwargs)

    def test_webhook_policy(self):
        assert WEBHOOK_RETRY_CONFIG.max_attempts == 5
        assert WEBHOOK_RETRY_CONFIG.to_dict()["base_delay_ms"] == 200.0


class TestExceptionHierarchy:
    """Tests for the exception hierarchy and messages."""

    def test_configuration_errors(self):
        for error in (
            InvalidIgnoredTablePatternError("[", "unterminated character set"),
            CompositePrimaryKeyError("shard_1.tenants", ("id", "region")),
        ):
            assert isinstance(error, ConfigurationError)
            assert isinstance(error, ShardMigrationError)

    def test_state_errors(self):
        transition = InvalidPhaseTransitionError(MigrationPhase.CREATED, MigrationPhase.LOCKED)

        assert isinstance(transition, MigrationStateError)
        assert str(transition) == "invalid phase transition: created -> locked"
        assert isinstance(PrimaryKeyTablesAlreadyAttachedError(), MigrationStateError)

    def test_configuration_error_problems_default_to_message(self):
        assert ConfigurationError("bad").problems == ["bad"]
        assert ConfigurationError("bad", problems=["a", "b"]).problems == ["a", "b"]

    def test_composite_primary_key_message(self):
        error = CompositePrimaryKeyError("shard_1.tenants", ("id", "region"))

        assert "multiple PK columns are not supported" in str(error)
        assert "shard_1.tenants" in str(error)
        assert error.pk_columns == ("id", "region")

    def test_webhook_error(self):
        error = WebhookError("http://ops.test/lock", "unexpected status 500", status_code=500)

        assert str(error) == "webhook http://ops.test/lock failed: unexpected status 500"
        assert error.status_code == 500

    def test_verification_failed_error(self):
        result = VerificationResult.incorrect("3 rows differ", ("users",))
        error = VerificationFailedError(result)

        assert str(error) == "verifier detected data discrepancy: 3 rows differ"
        assert error.result is result
        assert error.severity == ErrorSeverity.CRITICAL

    def test_shard_in_message(self):
        assert str(ShardMigrationError("failed", shard=42)) == "failed shard=42"

    def test_aborted_error_to_dict(self):
        error = MigrationAbortedError("sharding", RuntimeError("lock refused"))

        data = error.to_dict()

        assert data["error_code"] == "MIGRATION_ABORTED"
        assert data["severity"] == "critical"
        assert data["stage"] == "sharding"
        assert data["cause"] == "lock refused"
        assert str(error) == "migration aborted in sharding: lock refused"
