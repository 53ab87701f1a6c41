"""
Handle for the background bulk copy.

The bulk copy is the only task that runs concurrently with the migrator's
own progress. ``CopyTask`` wraps it in an ``asyncio.Task``, lets the migrator
wait on other signals while watching for the copy dying, and records whether
it has been joined. Phases that copy more data or mutate the shared filters
require ``joined`` to be true.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from shardmigrate.exceptions import MigrationStateError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CopyTask:
    """
    Background bulk copy task.

    Example:
        >>> copy_task = CopyTask(engine.run)
        >>> copy_task.start()
        >>> await copy_task.wait_alongside(engine.wait_until_row_copy_is_complete())
        >>> ...
        >>> await copy_task.join()
    """

    def __init__(self, run: Callable[[], Awaitable[None]], *, name: str = "bulk-copy") -> None:
        self._run = run
        self._name = name
        self._task: asyncio.Task[None] | None = None
        self._joined = False

    @property
    def started(self) -> bool:
        return self._task is not None

    @property
    def joined(self) -> bool:
        return self._joined

    def start(self) -> None:
        """Start the copy in the background."""
        if self._task is not None:
            raise MigrationStateError(f"{self._name} task has already been started")
        self._task = asyncio.create_task(self._execute(), name=self._name)

    async def _execute(self) -> None:
        logger.info("Starting %s", self._name)
        await self._run()
        logger.info("%s finished", self._name)

    def failed(self) -> BaseException | None:
        """
        Return the error the task finished with, if any.

        Returns:
            The exception, or None if the task is running or succeeded.
        """
        if self._task is None or not self._task.done():
            return None
        if self._task.cancelled():
            return asyncio.CancelledError(f"{self._name} task was cancelled")
        return self._task.exception()

    async def wait_alongside(self, awaitable: Awaitable[T]) -> T:
        """
        Await a signal while watching the copy task.

        If the copy task has failed, before the call or while waiting, the
        signal is abandoned and the copy task's error is raised instead, even
        when the signal completed too.

        Args:
            awaitable: The signal to wait for.

        Returns:
            The signal's result.
        """
        waiter = asyncio.ensure_future(awaitable)
        if self._task is None:
            return await waiter

        if not self._task.done():
            await asyncio.wait({waiter, self._task}, return_when=asyncio.FIRST_COMPLETED)

        # A copy failure wins over a signal that completed in the same step.
        error = self.failed()
        if error is not None:
            waiter.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await waiter
            raise error

        return await waiter

    async def join(self) -> None:
        """
        Wait for the copy task to terminate.

        Raises:
            MigrationStateError: If the task was never started.
            Exception: Whatever the copy task failed with.
        """
        if self._task is None:
            raise MigrationStateError(f"{self._name} task was never started")
        await self._task
        self._joined = True

    async def cancel(self) -> None:
        """Stop the copy task if it is still running."""
        if self._task is None:
            return
        if self._task.done():
            if not self._task.cancelled():
                self._task.exception()
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            logger.info("%s cancelled", self._name)
        except Exception as e:
            logger.warning("%s failed while being cancelled: %s", self._name, e)

    def require_joined(self, operation: str) -> None:
        """
        Guard for operations that must not overlap with the bulk copy.

        Raises:
            MigrationStateError: If the copy task has not been joined.
        """
        if not self._joined:
            raise MigrationStateError(
                f"{operation} requires the {self._name} task to be joined first"
            )


__all__ = ["CopyTask"]
