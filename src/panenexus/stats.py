"""Point-in-time snapshot of live terminal processes."""

from __future__ import annotations

import logging as py_logging
from typing import Protocol

from panenexus.terminal.models import SessionEntry, StatsSnapshot, WorktreeSession

logger = py_logging.getLogger(__name__)


class SessionSource(Protocol):
    def sessions(self) -> list[WorktreeSession]: ...


class LivenessProbe(Protocol):
    def is_alive(self, process_id: str) -> bool: ...


class StatsAggregator:
    def __init__(self, registry: SessionSource, supervisor: LivenessProbe) -> None:
        self._registry = registry
        self._supervisor = supervisor

    def snapshot(self) -> StatsSnapshot:
        entries: list[SessionEntry] = []
        for session in self._registry.sessions():
            for instance in session.terminals:
                if instance.process_id is None:
                    continue
                if not self._supervisor.is_alive(instance.process_id):
                    continue
                entries.append(SessionEntry(worktree_path=session.worktree_path, process_id=instance.process_id))
        logger.debug("stats snapshot active=%s", len(entries))
        return StatsSnapshot(active_process_count=len(entries), sessions=entries)
