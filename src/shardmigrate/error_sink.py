"""
The error sink: single exit path for run-time failures.

Every phase of ``ShardMigrator.run()`` reports an unrecoverable condition by
awaiting ``ErrorSink.fatal(stage, error)``. The sink logs the failure, notifies
the operator's error callback, hands the error to a base handler and then
raises ``MigrationAbortedError``. It never returns normally, so nothing after
a ``fatal`` call can execute.

No compensation is attempted. In particular, if the cutover lock was acquired
before the failure, it stays held until an operator releases it.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import NoReturn

import httpx

from shardmigrate.exceptions import (
    WEBHOOK_RETRY_CONFIG,
    ConfigurationError,
    MigrationAbortedError,
    RetryConfig,
)
from shardmigrate.protocols import ErrorHandler
from shardmigrate.webhooks import WebhookSpec

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[str, BaseException], Awaitable[None] | None]


class RaisingErrorHandler:
    """Default base handler: turns the failure into ``MigrationAbortedError``."""

    async def handle(self, stage: str, error: BaseException) -> None:
        raise MigrationAbortedError(stage, error) from error


class ErrorSink:
    """
    Decorates a base error handler with logging and an operator callback.

    Only the first ``fatal`` call reports anything. Later calls (for example a
    failure observed while the first one is unwinding) re-raise the original
    abort.

    Example:
        >>> sink = ErrorSink(error_callback=WebhookSpec("http://ops/error"))
        >>> try:
        ...     await sink.fatal("sharding", RuntimeError("boom"))
        ... except MigrationAbortedError as e:
        ...     print(e.stage)
        sharding
    """

    def __init__(
        self,
        base_handler: ErrorHandler | None = None,
        *,
        error_callback: WebhookSpec | ErrorCallback | None = None,
        http_client: httpx.AsyncClient | None = None,
        retry_config: RetryConfig = WEBHOOK_RETRY_CONFIG,
        log: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self._base_handler = base_handler or RaisingErrorHandler()
        self._error_callback = error_callback
        self.http_client = http_client
        self._retry_config = retry_config
        self._logger = log or logger
        self._aborted: MigrationAbortedError | None = None

    @property
    def aborted(self) -> bool:
        return self._aborted is not None

    @property
    def first_error(self) -> MigrationAbortedError | None:
        return self._aborted

    async def fatal(
        self,
        stage: str,
        error: BaseException,
        *,
        message: str = "aborting migration",
        phase: str | None = None,
    ) -> NoReturn:
        """
        Report an unrecoverable failure and abort the migration.

        Args:
            stage: Tag of the failing component (e.g. "sharding").
            error: The failure.
            message: What failed, logged with the stage.
            phase: Migration phase at the time of the failure.

        Raises:
            MigrationAbortedError: Always.
        """
        if self._aborted is not None:
            raise self._aborted

        self._aborted = MigrationAbortedError(stage, error)
        self._logger.error(
            "Fatal error in %s, %s: %s",
            stage,
            message,
            error,
            extra={"stage": stage, "phase": phase, "error": str(error)},
        )

        await self._notify(stage, error)

        try:
            await self._base_handler.handle(stage, error)
        except MigrationAbortedError as e:
            self._aborted = e
            raise

        raise self._aborted from error

    async def _notify(self, stage: str, error: BaseException) -> None:
        if self._error_callback is None:
            return

        try:
            if isinstance(self._error_callback, WebhookSpec):
                await self._post_error_callback(self._error_callback, stage, error)
            else:
                result = self._error_callback(stage, error)
                if inspect.isawaitable(result):
                    await result
        except Exception as e:
            self._logger.error(
                "Error callback failed: %s",
                e,
                extra={"stage": stage, "error": str(e)},
            )

    async def _post_error_callback(
        self,
        callback: WebhookSpec,
        stage: str,
        error: BaseException,
    ) -> None:
        extra = {"ErrFrom": stage, "ErrMessage": str(error)}
        if self.http_client is not None:
            await callback.post(self.http_client, extra, retry_config=self._retry_config)
            return
        async with httpx.AsyncClient() as client:
            await callback.post(client, extra, retry_config=self._retry_config)


def exit_code_for(error: BaseException | None) -> int:
    """
    Map the outcome of a migration to a process exit code.

    Args:
        error: The error that ended the migration, or None on success.

    Returns:
        0 on success, 2 for configuration errors, 1 for anything else.
    """
    if error is None:
        return 0
    if isinstance(error, ConfigurationError):
        return 2
    return 1


__all__ = ["ErrorCallback", "RaisingErrorHandler", "ErrorSink", "exit_code_for"]
