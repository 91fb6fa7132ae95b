"""
Periodic external command scheduler.

Each configured task is a list of shell command lines run every
``interval`` seconds, typically to render graphs or export data from the
series databases. The scheduler ticks once per second; a task is due when
more than ``interval`` seconds have passed since it last ran, so every task
runs once right after startup.

The commands of a task run one after the other. The first command that
exits with a non-zero status stops the task for this round; the remaining
commands run again at the next interval.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from meterd.src.config import TaskSettings

logger = logging.getLogger(__name__)

TICK_INTERVAL_S: float = 1.0


@dataclass
class ScheduledTask:
    """A command list and when it last ran.

    Attributes:
        description: Human-readable name used in log lines.
        interval: Seconds between two runs.
        commands: Shell command lines, run in order.
        last_executed: Unix time of the last run; 0 means never.
    """

    description: str
    interval: int
    commands: list[str] = field(default_factory=list)
    last_executed: int = 0

    @classmethod
    def from_settings(cls, task: TaskSettings) -> ScheduledTask:
        return cls(
            description=task.description,
            interval=task.interval,
            commands=list(task.commands),
        )

    def is_due(self, now: int) -> bool:
        return now - self.last_executed > self.interval


async def _run_command(command: str) -> int:
    """Run *command* through the shell and return its exit status."""
    process = await asyncio.create_subprocess_shell(command)
    return await process.wait()


class TaskScheduler:
    """Runs due tasks once per tick until shutdown.

    Args:
        tasks: Tasks to schedule.
        clock: Returns the current Unix time; ``time.time`` by default.
    """

    def __init__(
        self,
        tasks: list[ScheduledTask],
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._tasks = tasks
        self._clock = clock

    @property
    def tasks(self) -> list[ScheduledTask]:
        return self._tasks

    async def run_task(self, task: ScheduledTask) -> bool:
        """Run the commands of *task* in order.

        Returns:
            True if every command exited with status 0.
        """
        logger.debug("Executing task '%s'", task.description)
        for command in task.commands:
            logger.debug("Running '%s'", command)
            try:
                status = await _run_command(command)
            except OSError:
                logger.error("Failed to start command '%s'", command, exc_info=True)
                return False
            if status != 0:
                logger.error(
                    "Execution of command '%s' returned non-zero exit status %d",
                    command,
                    status,
                )
                return False
        return True

    async def run_due(self, now: int) -> int:
        """Run every task that is due at *now*.

        Returns:
            Number of tasks that were run.
        """
        ran = 0
        for task in self._tasks:
            if task.is_due(now):
                await self.run_task(task)
                task.last_executed = now
                ran += 1
        return ran

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """Tick every second until *shutdown_event* is set."""
        logger.info("Task scheduler started with %d task(s)", len(self._tasks))
        while not shutdown_event.is_set():
            try:
                await self.run_due(int(self._clock()))
            except Exception:
                logger.error("Task scheduler cycle error", exc_info=True)
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(shutdown_event.wait(), timeout=TICK_INTERVAL_S)
        logger.info("Task scheduler stopped")
