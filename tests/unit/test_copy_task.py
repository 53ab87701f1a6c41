"""
Unit tests for CopyTask.

Tests cover:
- Start and join
- Waiting on a signal while the copy runs
- Copy failures surfacing through wait_alongside and join
- Cancellation
- The joined guard
"""

import asyncio

import pytest

from shardmigrate.copy_task import CopyTask
from shardmigrate.exceptions import MigrationStateError


async def noop() -> None:
    return None


class TestCopyTaskLifecycle:
    """Tests for starting and joining the copy task."""

    @pytest.mark.asyncio
    async def test_start_and_join(self):
        ran = []

        async def run():
            ran.append(True)

        task = CopyTask(run)
        assert not task.started

        task.start()
        assert task.started
        await task.join()

        assert ran == [True]
        assert task.joined
        assert task.failed() is None

    @pytest.mark.asyncio
    async def test_start_twice_fails(self):
        task = CopyTask(noop)
        task.start()

        with pytest.raises(MigrationStateError):
            task.start()

        await task.join()

    @pytest.mark.asyncio
    async def test_join_before_start_fails(self):
        with pytest.raises(MigrationStateError):
            await CopyTask(noop).join()

    @pytest.mark.asyncio
    async def test_join_raises_copy_error(self):
        async def run():
            raise RuntimeError("copy died")

        task = CopyTask(run)
        task.start()

        with pytest.raises(RuntimeError, match="copy died"):
            await task.join()

        assert not task.joined
        assert isinstance(task.failed(), RuntimeError)


class TestWaitAlongside:
    """Tests for CopyTask.wait_alongside."""

    @pytest.mark.asyncio
    async def test_returns_signal_result(self):
        stop = asyncio.Event()
        task = CopyTask(stop.wait)
        task.start()

        async def signal():
            return "caught up"

        assert await task.wait_alongside(signal()) == "caught up"

        stop.set()
        await task.join()

    @pytest.mark.asyncio
    async def test_copy_failure_abandons_signal(self):
        never = asyncio.Event()
        cancelled = []

        async def run():
            raise RuntimeError("copy died")

        async def signal():
            try:
                await never.wait()
            except asyncio.CancelledError:
                cancelled.append(True)
                raise

        task = CopyTask(run)
        task.start()

        with pytest.raises(RuntimeError, match="copy died"):
            await task.wait_alongside(signal())

        assert cancelled == [True]

    @pytest.mark.asyncio
    async def test_earlier_copy_failure_wins_over_completed_signal(self):
        async def run():
            raise RuntimeError("copy died")

        async def signal():
            return "caught up"

        task = CopyTask(run)
        task.start()
        while task.failed() is None:
            await asyncio.sleep(0)

        with pytest.raises(RuntimeError, match="copy died"):
            await task.wait_alongside(signal())

    @pytest.mark.asyncio
    async def test_finished_copy_still_awaits_signal(self):
        task = CopyTask(noop)
        task.start()
        await task.join()

        async def signal():
            await asyncio.sleep(0)
            return "caught up"

        assert await task.wait_alongside(signal()) == "caught up"

    @pytest.mark.asyncio
    async def test_not_started_awaits_signal(self):
        async def signal():
            return 7

        assert await CopyTask(noop).wait_alongside(signal()) == 7


class TestCancelAndGuard:
    """Tests for CopyTask.cancel and require_joined."""

    @pytest.mark.asyncio
    async def test_cancel_running_task(self):
        never = asyncio.Event()
        task = CopyTask(never.wait)
        task.start()
        await asyncio.sleep(0)

        await task.cancel()

        assert isinstance(task.failed(), asyncio.CancelledError)
        assert not task.joined

    @pytest.mark.asyncio
    async def test_cancel_not_started_is_noop(self):
        await CopyTask(noop).cancel()

    def test_require_joined(self):
        task = CopyTask(noop)

        with pytest.raises(MigrationStateError, match="joined table delta copy"):
            task.require_joined("joined table delta copy")

    @pytest.mark.asyncio
    async def test_require_joined_after_join(self):
        async def run():
            return None

        task = CopyTask(run)
        task.start()
        await task.join()

        task.require_joined("primary key table copy")
