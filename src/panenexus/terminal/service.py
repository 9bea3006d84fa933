"""Terminal lifecycle orchestration across worktrees."""

from __future__ import annotations

import logging as py_logging
from collections.abc import Sequence
from dataclasses import dataclass

from panenexus.config import AppConfig
from panenexus.errors import ExitCode, LastTerminalError, PaneNexusError, SpawnError
from panenexus.stats import StatsAggregator
from panenexus.terminal.close_controller import TerminalCloseController
from panenexus.terminal.models import (
    CloseRequest,
    SplitDirection,
    StatsSnapshot,
    TerminalInstance,
    WorktreeSession,
)
from panenexus.terminal.pty_backend import OutputSubscription, PtySupervisor
from panenexus.terminal.registry import TerminalRegistry
from panenexus.terminal.scheduler import CommandScheduler, RepeatingCommand, ScheduledCommand

logger = py_logging.getLogger(__name__)


@dataclass(frozen=True)
class TerminalEvent:
    terminal_id: str
    step: str
    message: str


class TerminalService:
    def __init__(
        self,
        *,
        config: AppConfig | None = None,
        supervisor: PtySupervisor | None = None,
        registry: TerminalRegistry | None = None,
        scheduler: CommandScheduler | None = None,
        max_terminals: int | None = None,
        close_max_concurrency: int | None = None,
    ) -> None:
        cfg = config or AppConfig()
        limit = cfg.max_terminals if max_terminals is None else max_terminals
        if limit < 1:
            raise PaneNexusError(
                f"Invalid max terminal count: {limit}",
                code=ExitCode.VALIDATION_ERROR,
                hint="Use a positive terminal limit.",
            )
        self.config = cfg
        self.max_terminals = limit
        self.supervisor = supervisor or PtySupervisor(
            shell=cfg.shell,
            default_cols=cfg.default_cols,
            default_rows=cfg.default_rows,
            set_locale_variables=cfg.set_locale_variables,
            terminate_grace_seconds=cfg.terminate_grace_seconds,
            kill_wait_seconds=cfg.kill_wait_seconds,
        )
        self.registry = registry or TerminalRegistry(
            default_direction=SplitDirection(cfg.default_split_direction),
        )
        self.scheduler = scheduler or CommandScheduler(self.supervisor.write, **cfg.scheduler_timings())
        concurrency = cfg.close_max_concurrency if close_max_concurrency is None else close_max_concurrency
        self.closer = TerminalCloseController(
            self.supervisor,
            on_cleanup_success=self._on_cleanup_success,
            on_cleanup_error=self._on_cleanup_error,
            max_concurrency=concurrency or None,
        )
        self.stats = StatsAggregator(self.registry, self.supervisor)
        self._events: list[TerminalEvent] = []

    def list_events(self) -> list[TerminalEvent]:
        return list(self._events)

    def clear_events(self) -> None:
        self._events.clear()
        logger.info("runtime-event terminal=* step=clear-events message=Terminal events cleared.")

    def record_event(self, terminal_id: str, step: str, message: str) -> None:
        self._record(terminal_id, step, message)

    def list_instances(self) -> list[TerminalInstance]:
        return self.registry.instances()

    async def open_worktree(self, worktree_path: str) -> WorktreeSession:
        if self.registry.session_for(worktree_path) is None:
            self._ensure_capacity()
        session = self.registry.open_worktree(worktree_path)
        for instance in list(session.terminals):
            if instance.process_id is None:
                await self._attach(instance)
        return session

    async def create_terminal(self, worktree_path: str) -> TerminalInstance:
        self._ensure_capacity()
        instance = self.registry.create_instance(worktree_path)
        self._record(instance.terminal_id, "create", f"Created terminal for {worktree_path}.")
        await self._attach(instance)
        return instance

    async def split_terminal(
        self,
        terminal_id: str,
        direction: SplitDirection | str | None = None,
    ) -> TerminalInstance:
        self._ensure_capacity()
        instance = self.registry.split(terminal_id, direction or self.config.default_split_direction)
        session = self.registry.session_for(instance.worktree_path)
        layout = session.split_direction.value if session is not None else ""
        self._record(instance.terminal_id, "split", f"Split from {terminal_id} ({layout}).")
        await self._attach(instance)
        return instance

    async def close_terminal(self, terminal_id: str) -> None:
        process_id = self.registry.remove_instance(terminal_id)
        if process_id is None:
            self._record(terminal_id, "close", "Closed terminal without a process.")
            return
        self.scheduler.cancel_process(process_id)
        await self.closer.close_one(terminal_id, process_id)

    async def close_terminals(self, terminal_ids: Sequence[str]) -> None:
        unique_ids = list(dict.fromkeys(terminal_ids))
        removing: dict[str, int] = {}
        for terminal_id in unique_ids:
            instance = self.registry.get(terminal_id)
            removing[instance.worktree_path] = removing.get(instance.worktree_path, 0) + 1
        for worktree_path, count in removing.items():
            session = self.registry.session_for(worktree_path)
            if session is not None and count >= len(session.terminals):
                raise LastTerminalError(
                    f"Cannot close every terminal of {worktree_path}",
                    hint="Close the worktree view instead.",
                    terminal_id=unique_ids[-1],
                )

        requests: list[CloseRequest] = []
        for terminal_id in unique_ids:
            process_id = self.registry.remove_instance(terminal_id)
            if process_id is None:
                self._record(terminal_id, "close", "Closed terminal without a process.")
                continue
            self.scheduler.cancel_process(process_id)
            requests.append(CloseRequest(terminal_id=terminal_id, process_id=process_id))
        await self.closer.close_batch(requests)

    async def close_worktree(self, worktree_path: str) -> None:
        session = self.registry.session_for(worktree_path)
        if session is None:
            return
        requests = [
            CloseRequest(terminal_id=item.terminal_id, process_id=item.process_id)
            for item in session.terminals
            if item.process_id is not None
        ]
        self.registry.close_worktree(worktree_path)
        for request in requests:
            self.scheduler.cancel_process(request.process_id)
        self._record("*", "close-worktree", f"Closing {len(requests)} terminal(s) in {worktree_path}.")
        await self.closer.close_batch(requests)

    async def shutdown(self) -> None:
        requests: list[CloseRequest] = []
        for session in self.registry.sessions():
            requests.extend(
                CloseRequest(terminal_id=item.terminal_id, process_id=item.process_id)
                for item in session.terminals
                if item.process_id is not None
            )
            self.registry.close_worktree(session.worktree_path)
        for request in requests:
            self.scheduler.cancel_process(request.process_id)
        self._record("*", "shutdown", f"Closing {len(requests)} terminal(s).")
        try:
            await self.closer.close_batch(requests)
        finally:
            await self.supervisor.shutdown()

    async def write(self, terminal_id: str, data: str) -> None:
        process_id = self.registry.get(terminal_id).process_id
        if process_id is not None:
            await self.supervisor.write(process_id, data)

    async def resize(self, terminal_id: str, *, cols: int, rows: int) -> None:
        process_id = self.registry.get(terminal_id).process_id
        if process_id is not None:
            await self.supervisor.resize(process_id, cols, rows)

    def subscribe_output(self, terminal_id: str) -> OutputSubscription:
        return self.supervisor.subscribe_output(self._must_process(terminal_id))

    def schedule_command(self, terminal_id: str, command: str) -> ScheduledCommand:
        process_id = self._must_process(terminal_id)
        handle = self.scheduler.schedule(command, process_id)
        self._record(terminal_id, "schedule", f"Scheduled command ({len(command)} chars).")
        return handle

    def repeat_command(self, terminal_id: str, command: str, interval: float) -> RepeatingCommand:
        process_id = self._must_process(terminal_id)
        repeater = self.scheduler.repeat(command, process_id, interval)
        self._record(terminal_id, "schedule-repeat", f"Repeating command every {interval}s.")
        return repeater

    def is_scheduler_active(self, worktree_path: str) -> bool:
        return any(
            self.scheduler.is_active(process_id)
            for process_id in self.registry.process_ids_for_worktree(worktree_path)
        )

    def get_stats(self) -> StatsSnapshot:
        return self.stats.snapshot()

    async def _attach(self, instance: TerminalInstance) -> None:
        try:
            process_id = await self.supervisor.spawn(
                instance.worktree_path,
                env_overrides=self.config.env_overrides or None,
            )
        except SpawnError as exc:
            self._record(instance.terminal_id, "spawn-failed", exc.message)
            session = self.registry.session_for(instance.worktree_path)
            if session is not None and len(session.terminals) > 1:
                self.registry.remove_instance(instance.terminal_id)
            raise
        self.registry.bind_process(instance.terminal_id, process_id)
        self.supervisor.on_exit(process_id, self._on_process_exit)
        self._record(instance.terminal_id, "spawn", f"Terminal is running as {process_id}.")

    def _must_process(self, terminal_id: str) -> str:
        process_id = self.registry.get(terminal_id).process_id
        if process_id is None:
            raise PaneNexusError(
                f"Terminal not running: {terminal_id}",
                code=ExitCode.VALIDATION_ERROR,
                hint="Wait for the terminal process to start.",
            )
        return process_id

    def _ensure_capacity(self) -> None:
        if len(self.registry.instances()) >= self.max_terminals:
            raise PaneNexusError(
                f"Terminal limit reached: {self.max_terminals}",
                code=ExitCode.VALIDATION_ERROR,
                hint="Close another terminal before creating a new one.",
            )

    def _on_cleanup_success(self, terminal_id: str) -> None:
        self._record(terminal_id, "close", "Terminal process terminated.")

    def _on_cleanup_error(self, terminal_id: str, error: BaseException) -> None:
        self._record(terminal_id, "close-failed", str(error))

    def _on_process_exit(self, process_id: str, exit_code: int | None) -> None:
        instance = self.registry.terminal_for_process(process_id)
        terminal_id = instance.terminal_id if instance is not None else "*"
        self._record(terminal_id, "exit", f"Process {process_id} exited with code {exit_code}.")

    def _record(self, terminal_id: str, step: str, message: str) -> None:
        self._events.append(TerminalEvent(terminal_id=terminal_id, step=step, message=message))
        logger.info("runtime-event terminal=%s step=%s message=%s", terminal_id, step, message)
