"""Paced keystroke injection with a per-process FIFO queue.

Each process owns one queue and at most one runner task. A scheduled command
types its characters one at a time, pauses, then sends the terminator; the
next queued command starts only after that terminator (or a cancellation).
"""

from __future__ import annotations

import asyncio
import itertools
import logging as py_logging
from collections import deque
from collections.abc import Awaitable, Callable
from enum import Enum

from panenexus.errors import ExitCode, PaneNexusError

logger = py_logging.getLogger(__name__)

Writer = Callable[[str, str], Awaitable[None]]
Sleeper = Callable[[float], Awaitable[None]]

DEFAULT_TERMINATOR = "\r"


class CommandState(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


_FINAL_STATES = {CommandState.COMPLETED, CommandState.CANCELLED, CommandState.FAILED}


class ScheduledCommand:
    """Handle for one queued or in-flight command injection."""

    def __init__(self, scheduler: CommandScheduler, handle_id: int, command: str, process_id: str) -> None:
        self.handle_id = handle_id
        self.command = command
        self.process_id = process_id
        self.state = CommandState.QUEUED
        self.error: BaseException | None = None
        self.written = 0
        self._scheduler = scheduler
        self._task: asyncio.Task[None] | None = None
        self._finished = asyncio.Event()

    @property
    def done(self) -> bool:
        return self.state in _FINAL_STATES

    def cancel(self) -> bool:
        return self._scheduler.cancel(self)

    async def wait(self) -> CommandState:
        await self._finished.wait()
        return self.state

    def _finish(self, state: CommandState, error: BaseException | None = None) -> None:
        if self.done:
            return
        self.state = state
        self.error = error
        self._finished.set()

    def __repr__(self) -> str:
        return (
            f"ScheduledCommand(id={self.handle_id}, process={self.process_id!r}, "
            f"state={self.state.value}, command={self.command!r})"
        )


class CommandScheduler:
    def __init__(
        self,
        writer: Writer,
        *,
        char_delay: float = 0.01,
        submit_delay: float = 1.0,
        terminator: str = DEFAULT_TERMINATOR,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        if char_delay < 0 or submit_delay < 0:
            raise PaneNexusError(
                f"Invalid scheduler delays: char={char_delay} submit={submit_delay}",
                code=ExitCode.VALIDATION_ERROR,
                hint="Use non-negative delays.",
            )
        self._writer = writer
        self.char_delay = char_delay
        self.submit_delay = submit_delay
        self.terminator = terminator
        self._sleep = sleep
        self._ids = itertools.count(1)
        self._queues: dict[str, deque[ScheduledCommand]] = {}
        self._runners: dict[str, asyncio.Task[None]] = {}
        self._active: dict[str, ScheduledCommand] = {}
        self._repeaters: set[RepeatingCommand] = set()

    def schedule(self, command: str, process_id: str) -> ScheduledCommand:
        handle = ScheduledCommand(self, next(self._ids), command, process_id)
        queue = self._queues.setdefault(process_id, deque())
        queue.append(handle)
        logger.debug(
            "scheduler enqueue process=%s handle=%s depth=%s", process_id, handle.handle_id, len(queue)
        )
        if process_id not in self._runners:
            loop = asyncio.get_running_loop()
            self._runners[process_id] = loop.create_task(
                self._drain(process_id), name=f"scheduler-{process_id}"
            )
        return handle

    def cancel(self, handle: ScheduledCommand) -> bool:
        if handle.done:
            return False
        if handle.state == CommandState.RUNNING and handle._task is not None:
            # A finished typing task has already sent the terminator.
            if not handle._task.cancel():
                return False
        else:
            queue = self._queues.get(handle.process_id)
            if queue is not None and handle in queue:
                queue.remove(handle)
        handle._finish(CommandState.CANCELLED)
        logger.debug("scheduler cancel process=%s handle=%s", handle.process_id, handle.handle_id)
        return True

    def cancel_process(self, process_id: str) -> int:
        """Cancel every queued and in-flight command and repeater for a process."""
        cancelled = 0
        for repeater in [item for item in self._repeaters if item.process_id == process_id]:
            repeater.stop()
        active = self._active.get(process_id)
        if active is not None and self.cancel(active):
            cancelled += 1
        for handle in list(self._queues.get(process_id, ())):
            if self.cancel(handle):
                cancelled += 1
        return cancelled

    def repeat(self, command: str, process_id: str, interval: float) -> RepeatingCommand:
        if interval <= 0:
            raise PaneNexusError(
                f"Invalid repeat interval: {interval}",
                code=ExitCode.VALIDATION_ERROR,
                hint="Use a positive interval in seconds.",
            )
        repeater = RepeatingCommand(self, command, process_id, interval)
        self._repeaters.add(repeater)
        repeater._start()
        return repeater

    def is_active(self, process_id: str) -> bool:
        if process_id in self._runners:
            return True
        return any(item.process_id == process_id for item in self._repeaters)

    def pending_count(self, process_id: str) -> int:
        return sum(1 for handle in self._queues.get(process_id, ()) if not handle.done)

    async def wait_idle(self, process_id: str) -> None:
        runner = self._runners.get(process_id)
        if runner is not None:
            await asyncio.shield(runner)

    async def _drain(self, process_id: str) -> None:
        queue = self._queues[process_id]
        try:
            while queue:
                handle = queue[0]
                if not handle.done:
                    await self._run(handle)
                if queue and queue[0] is handle:
                    queue.popleft()
        finally:
            self._active.pop(process_id, None)
            self._runners.pop(process_id, None)
            if not queue:
                self._queues.pop(process_id, None)

    async def _run(self, handle: ScheduledCommand) -> None:
        handle.state = CommandState.RUNNING
        self._active[handle.process_id] = handle
        task = asyncio.ensure_future(self._type(handle))
        handle._task = task
        try:
            await task
        except asyncio.CancelledError:
            # Only swallow the cancellation of this command, never of the runner.
            if not task.cancelled() or handle.state != CommandState.CANCELLED:
                raise
        except Exception as exc:
            logger.warning(
                "scheduler write failed process=%s handle=%s error=%s",
                handle.process_id,
                handle.handle_id,
                exc,
            )
            handle._finish(CommandState.FAILED, exc)
        else:
            handle._finish(CommandState.COMPLETED)
        finally:
            handle._task = None
            self._active.pop(handle.process_id, None)

    async def _type(self, handle: ScheduledCommand) -> None:
        for char in handle.command:
            await self._writer(handle.process_id, char)
            handle.written += 1
            await self._sleep(self.char_delay)
        await self._sleep(self.submit_delay)
        await self._writer(handle.process_id, self.terminator)
        handle.written += 1
        logger.debug(
            "scheduler submitted process=%s handle=%s chars=%s",
            handle.process_id,
            handle.handle_id,
            len(handle.command),
        )


class RepeatingCommand:
    """Re-schedules a command every interval; runs queue rather than overlap."""

    def __init__(self, scheduler: CommandScheduler, command: str, process_id: str, interval: float) -> None:
        self.command = command
        self.process_id = process_id
        self.interval = interval
        self.triggered = 0
        self.last: ScheduledCommand | None = None
        self._scheduler = scheduler
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._scheduler._repeaters.discard(self)
        logger.debug(
            "scheduler repeat-stop process=%s triggered=%s", self.process_id, self.triggered
        )

    def _start(self) -> None:
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._loop(), name=f"scheduler-repeat-{self.process_id}")

    async def _loop(self) -> None:
        while True:
            await self._scheduler._sleep(self.interval)
            self.last = self._scheduler.schedule(self.command, self.process_id)
            self.triggered += 1
