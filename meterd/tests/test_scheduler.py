"""
Unit tests for the periodic task scheduler.

Tests verify:
- A task is due once more than `interval` seconds have passed (strictly).
- Every task runs on the first tick after startup.
- Commands run in order; the first non-zero exit stops the task.
- last_executed is updated even when a command fails.
- The loop stops when the shutdown event is set.
- Commands really run through the shell.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from unittest.mock import AsyncMock, call, patch

import pytest
from meterd.src.config import TaskSettings
from meterd.src.scheduler import ScheduledTask, TaskScheduler


class TestScheduledTask:
    """Due-time computation."""

    def test_from_settings(self) -> None:
        task = ScheduledTask.from_settings(
            TaskSettings(description="plot", interval=60, commands=["a", "b"])
        )

        assert task == ScheduledTask(description="plot", interval=60, commands=["a", "b"])
        assert task.last_executed == 0

    def test_due_strictly_after_interval(self) -> None:
        task = ScheduledTask(description="t", interval=60, last_executed=1000)

        assert not task.is_due(1059)
        assert not task.is_due(1060)
        assert task.is_due(1061)

    def test_never_run_task_is_due(self) -> None:
        assert ScheduledTask(description="t", interval=300).is_due(1_700_000_000)


class TestRunDue:
    """One scheduler tick."""

    @pytest.mark.asyncio
    async def test_runs_commands_in_order(self) -> None:
        task = ScheduledTask(description="t", interval=60, commands=["one", "two", "three"])
        scheduler = TaskScheduler([task])

        with patch("meterd.src.scheduler._run_command", AsyncMock(return_value=0)) as run:
            ran = await scheduler.run_due(1000)

        assert ran == 1
        assert run.await_args_list == [call("one"), call("two"), call("three")]
        assert task.last_executed == 1000

    @pytest.mark.asyncio
    async def test_stops_at_first_failure(self, caplog: pytest.LogCaptureFixture) -> None:
        task = ScheduledTask(description="t", interval=60, commands=["one", "two", "three"])
        scheduler = TaskScheduler([task])

        with (
            patch("meterd.src.scheduler._run_command", AsyncMock(side_effect=[0, 1, 0])) as run,
            caplog.at_level(logging.ERROR, logger="meterd.src.scheduler"),
        ):
            await scheduler.run_due(1000)

        assert run.await_args_list == [call("one"), call("two")]
        assert task.last_executed == 1000
        assert "non-zero exit status" in caplog.text

    @pytest.mark.asyncio
    async def test_skips_tasks_not_due(self) -> None:
        due = ScheduledTask(description="due", interval=60, commands=["a"], last_executed=900)
        idle = ScheduledTask(description="idle", interval=600, commands=["b"], last_executed=900)
        scheduler = TaskScheduler([due, idle])

        with patch("meterd.src.scheduler._run_command", AsyncMock(return_value=0)) as run:
            ran = await scheduler.run_due(1000)

        assert ran == 1
        run.assert_awaited_once_with("a")
        assert idle.last_executed == 900

    @pytest.mark.asyncio
    async def test_start_failure_logged(self) -> None:
        task = ScheduledTask(description="t", interval=60, commands=["a", "b"])
        scheduler = TaskScheduler([task])

        with patch(
            "meterd.src.scheduler._run_command", AsyncMock(side_effect=OSError("no shell"))
        ) as run:
            assert await scheduler.run_task(task) is False

        run.assert_awaited_once_with("a")

    @pytest.mark.asyncio
    async def test_real_shell_commands(self, tmp_path: Path) -> None:
        out = tmp_path / "out.txt"
        task = ScheduledTask(
            description="t",
            interval=60,
            commands=[f"echo first >> {out}", "exit 3", f"echo never >> {out}"],
        )

        assert await TaskScheduler([task]).run_task(task) is False
        assert out.read_text() == "first\n"


class TestSchedulerLoop:
    """The once-per-second loop."""

    @pytest.mark.asyncio
    async def test_loop_runs_then_stops_on_shutdown(self) -> None:
        task = ScheduledTask(description="t", interval=60, commands=["a"])
        scheduler = TaskScheduler([task], clock=lambda: 5000.0)
        shutdown = asyncio.Event()

        with patch("meterd.src.scheduler._run_command", AsyncMock(return_value=0)) as run:
            loop_task = asyncio.create_task(scheduler.run(shutdown))
            await asyncio.sleep(0.05)
            shutdown.set()
            await asyncio.wait_for(loop_task, timeout=2.0)

        run.assert_awaited_once_with("a")
        assert task.last_executed == 5000

    @pytest.mark.asyncio
    async def test_loop_survives_errors(self, caplog: pytest.LogCaptureFixture) -> None:
        scheduler = TaskScheduler([], clock=lambda: 0.0)
        shutdown = asyncio.Event()

        with (
            patch.object(scheduler, "run_due", AsyncMock(side_effect=RuntimeError("boom"))),
            caplog.at_level(logging.ERROR, logger="meterd.src.scheduler"),
        ):
            loop_task = asyncio.create_task(scheduler.run(shutdown))
            await asyncio.sleep(0.05)
            shutdown.set()
            await asyncio.wait_for(loop_task, timeout=2.0)

        assert "Task scheduler cycle error" in caplog.text
