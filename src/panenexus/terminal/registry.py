"""Worktree -> terminal topology, with the registry as its single writer."""

from __future__ import annotations

import itertools
import logging as py_logging
from collections.abc import Callable

from panenexus.errors import (
    ExitCode,
    LastTerminalError,
    PaneNexusError,
    RebindError,
    TerminalNotFoundError,
)
from panenexus.terminal.models import (
    SplitDirection,
    TerminalInstance,
    TopologyChange,
    TopologyEvent,
    ViewHandle,
    WorktreeSession,
    generate_session_id,
)

logger = py_logging.getLogger(__name__)

TopologyListener = Callable[[TopologyEvent], None]
ViewFactory = Callable[[str], object]
ViewDisposer = Callable[[object], None]


class TerminalRegistry:
    """Maps terminal views to processes and groups them by worktree.

    Sessions are created lazily on the first reference to a worktree path and
    torn down only through :meth:`close_worktree`. Every mutation ends with a
    synchronous topology notification so renderers can re-layout.
    """

    def __init__(
        self,
        *,
        view_factory: ViewFactory | None = None,
        view_disposer: ViewDisposer | None = None,
        default_direction: SplitDirection = SplitDirection.VERTICAL,
    ) -> None:
        self._view_factory = view_factory or ViewHandle
        self._view_disposer = view_disposer
        self.default_direction = default_direction
        self._sessions: dict[str, WorktreeSession] = {}
        self._instances: dict[str, TerminalInstance] = {}
        self._listeners: list[TopologyListener] = []
        self._sequence = itertools.count(1)

    def subscribe(self, listener: TopologyListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def open_worktree(self, worktree_path: str) -> WorktreeSession:
        """Mark a worktree visible, creating its session with one terminal if needed."""
        session = self._sessions.get(worktree_path)
        if session is None:
            self.create_instance(worktree_path)
            session = self._sessions[worktree_path]
        session.visible = True
        return session

    def create_instance(self, worktree_path: str) -> TerminalInstance:
        if not worktree_path.strip():
            raise PaneNexusError(
                "Worktree path is required.",
                code=ExitCode.VALIDATION_ERROR,
                hint="Select a worktree before opening a terminal.",
            )
        session = self._sessions.get(worktree_path)
        if session is None:
            session = WorktreeSession(worktree_path=worktree_path, split_direction=self.default_direction)
            self._sessions[worktree_path] = session
            logger.debug("registry session-created worktree=%s", worktree_path)
        instance = self._new_instance(worktree_path)
        session.terminals.append(instance)
        self._notify(TopologyEvent(TopologyChange.CREATED, worktree_path, instance.terminal_id))
        return instance

    def split(self, existing_terminal_id: str, direction: SplitDirection | str) -> TerminalInstance:
        resolved_direction = _normalize_direction(direction)
        existing = self._must_get(existing_terminal_id)
        session = self._sessions[existing.worktree_path]
        instance = self._new_instance(existing.worktree_path)
        session.terminals.append(instance)
        session.split_direction = resolved_direction
        logger.debug(
            "registry split source=%s new=%s direction=%s count=%s",
            existing_terminal_id,
            instance.terminal_id,
            resolved_direction.value,
            len(session.terminals),
        )
        self._notify(TopologyEvent(TopologyChange.SPLIT, existing.worktree_path, instance.terminal_id))
        return instance

    def bind_process(self, terminal_id: str, process_id: str) -> None:
        instance = self._must_get(terminal_id)
        if instance.process_id is not None:
            raise RebindError(
                f"Terminal {terminal_id} is already bound to process {instance.process_id}",
                hint="Open a new terminal instead of rebinding an existing one.",
                terminal_id=terminal_id,
                process_id=process_id,
            )
        instance.process_id = process_id
        logger.debug("registry bind terminal=%s process=%s", terminal_id, process_id)

    def remove_instance(self, terminal_id: str) -> str | None:
        instance = self._must_get(terminal_id)
        session = self._sessions[instance.worktree_path]
        if len(session.terminals) <= 1:
            raise LastTerminalError(
                f"Cannot close the last terminal of {instance.worktree_path}",
                hint="Close the worktree view instead.",
                terminal_id=terminal_id,
            )
        session.terminals = [item for item in session.terminals if item.terminal_id != terminal_id]
        del self._instances[terminal_id]
        self._dispose_view(instance)
        logger.debug(
            "registry remove terminal=%s process=%s remaining=%s",
            terminal_id,
            instance.process_id,
            len(session.terminals),
        )
        self._notify(TopologyEvent(TopologyChange.REMOVED, instance.worktree_path, terminal_id))
        return instance.process_id

    def close_worktree(self, worktree_path: str) -> list[str]:
        """Tear down a worktree's session; returns the bound process ids to terminate."""
        session = self._sessions.pop(worktree_path, None)
        if session is None:
            return []
        process_ids: list[str] = []
        for instance in session.terminals:
            self._instances.pop(instance.terminal_id, None)
            self._dispose_view(instance)
            if instance.process_id is not None:
                process_ids.append(instance.process_id)
        session.terminals = []
        session.visible = False
        logger.debug("registry session-closed worktree=%s processes=%s", worktree_path, len(process_ids))
        self._notify(TopologyEvent(TopologyChange.CLOSED, worktree_path))
        return process_ids

    def get(self, terminal_id: str) -> TerminalInstance:
        return self._must_get(terminal_id)

    def session_for(self, worktree_path: str) -> WorktreeSession | None:
        return self._sessions.get(worktree_path)

    def sessions(self) -> list[WorktreeSession]:
        return [self._sessions[key] for key in sorted(self._sessions)]

    def instances(self) -> list[TerminalInstance]:
        return [instance for session in self.sessions() for instance in session.terminals]

    def process_ids_for_worktree(self, worktree_path: str) -> list[str]:
        session = self._sessions.get(worktree_path)
        if session is None:
            return []
        return [item.process_id for item in session.terminals if item.process_id is not None]

    def terminal_for_process(self, process_id: str) -> TerminalInstance | None:
        for instance in self._instances.values():
            if instance.process_id == process_id:
                return instance
        return None

    def _new_instance(self, worktree_path: str) -> TerminalInstance:
        terminal_id = f"{generate_session_id(worktree_path)}-{next(self._sequence)}"
        instance = TerminalInstance(
            terminal_id=terminal_id,
            worktree_path=worktree_path,
            view_handle=self._view_factory(terminal_id),
        )
        self._instances[terminal_id] = instance
        return instance

    def _dispose_view(self, instance: TerminalInstance) -> None:
        if self._view_disposer is not None:
            self._view_disposer(instance.view_handle)

    def _must_get(self, terminal_id: str) -> TerminalInstance:
        instance = self._instances.get(terminal_id)
        if instance is None:
            raise TerminalNotFoundError(
                f"Terminal not found: {terminal_id}",
                hint="Select an existing terminal.",
                terminal_id=terminal_id,
            )
        return instance

    def _notify(self, event: TopologyEvent) -> None:
        for listener in list(self._listeners):
            listener(event)


def _normalize_direction(value: SplitDirection | str) -> SplitDirection:
    if isinstance(value, SplitDirection):
        return value
    normalized = str(value).strip().lower()
    for direction in SplitDirection:
        if direction.value == normalized:
            return direction
    raise PaneNexusError(
        f"Invalid split direction: {value}",
        code=ExitCode.VALIDATION_ERROR,
        hint="Use vertical or horizontal.",
    )
