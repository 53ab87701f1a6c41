"""
Throttlers gating copy progress.

The copy engine consults ``throttled()`` between batches. The migrator waits
for the throttler to clear before locking the source, disables it once the
source is locked (lag no longer matters) and enables it again after the
cutover verification.

Implementations:
- PauseThrottler: Only throttled while explicitly paused. Used when no lag
  throttling is configured, which makes the pre-lock throttle wait a no-op.
- LagThrottler: Throttled while replication lag exceeds a threshold.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

from shardmigrate.models import ThrottleConfig
from shardmigrate.protocols import Throttler

logger = logging.getLogger(__name__)


class ThrottlerBase:
    """Holds the disabled flag shared by all throttlers."""

    def __init__(self) -> None:
        self._disabled = False

    @property
    def disabled(self) -> bool:
        return self._disabled

    def set_disabled(self, disabled: bool) -> None:
        if disabled != self._disabled:
            logger.info("Throttler %s", "disabled" if disabled else "enabled")
        self._disabled = disabled

    def throttled(self) -> bool:
        raise NotImplementedError


class PauseThrottler(ThrottlerBase):
    """Throttles only while paused by an operator."""

    def __init__(self) -> None:
        super().__init__()
        self._paused = False

    @property
    def paused(self) -> bool:
        return self._paused

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    def throttled(self) -> bool:
        return self._paused and not self.disabled


class LagThrottler(ThrottlerBase):
    """
    Throttles while replication lag is above ``config.max_lag_seconds``.

    A background task polls ``lag_probe`` every ``config.check_interval_seconds``.
    A failing probe keeps the previous reading.

    Example:
        >>> throttler = LagThrottler(ThrottleConfig(max_lag_seconds=1.0), engine.replication_lag)
        >>> await throttler.start()
        >>> await wait_for_throttle(throttler)
        >>> await throttler.stop()
    """

    def __init__(
        self,
        config: ThrottleConfig,
        lag_probe: Callable[[], Awaitable[float]],
    ) -> None:
        super().__init__()
        self._config = config
        self._lag_probe = lag_probe
        self._last_lag: float | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def config(self) -> ThrottleConfig:
        return self._config

    @property
    def last_lag(self) -> float | None:
        return self._last_lag

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def throttled(self) -> bool:
        if self.disabled or self._last_lag is None:
            return False
        return self._last_lag > self._config.max_lag_seconds

    async def update(self) -> None:
        """Poll the lag probe once."""
        try:
            self._last_lag = await self._lag_probe()
        except Exception as e:
            logger.warning("Failed to read replication lag: %s", e)
            return
        if self._last_lag > self._config.max_lag_seconds:
            logger.debug(
                "Replication lag %.2fs above %.2fs",
                self._last_lag,
                self._config.max_lag_seconds,
            )

    async def start(self) -> None:
        if self.running:
            return
        await self.update()
        self._task = asyncio.create_task(self._poll(), name="lag-throttler")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self._config.check_interval_seconds)
            await self.update()


async def wait_for_throttle(throttler: Throttler, poll_interval: float = 0.5) -> None:
    """
    Block until the throttler lets work proceed.

    Args:
        throttler: Throttler to wait on.
        poll_interval: Seconds between checks.
    """
    while throttler.throttled():
        await asyncio.sleep(poll_interval)


__all__ = ["ThrottlerBase", "PauseThrottler", "LagThrottler", "wait_for_throttle"]
