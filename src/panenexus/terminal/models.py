"""Terminal session domain models."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from enum import Enum


class SplitDirection(str, Enum):
    VERTICAL = "vertical"
    HORIZONTAL = "horizontal"


class TopologyChange(str, Enum):
    CREATED = "created"
    SPLIT = "split"
    REMOVED = "removed"
    CLOSED = "closed"


@dataclass
class PtyProcess:
    process_id: str
    os_handle: object
    cwd: str
    cols: int
    rows: int
    env: dict[str, str] = field(default_factory=dict)
    pid: int | None = None
    exit_code: int | None = None
    exited: bool = False


@dataclass(frozen=True)
class ViewHandle:
    terminal_id: str


@dataclass
class TerminalInstance:
    terminal_id: str
    worktree_path: str
    view_handle: object
    process_id: str | None = None


@dataclass
class WorktreeSession:
    worktree_path: str
    terminals: list[TerminalInstance] = field(default_factory=list)
    split_direction: SplitDirection = SplitDirection.VERTICAL
    visible: bool = True


@dataclass(frozen=True)
class TerminateResult:
    success: bool


@dataclass(frozen=True)
class CloseRequest:
    terminal_id: str
    process_id: str


@dataclass(frozen=True)
class TopologyEvent:
    kind: TopologyChange
    worktree_path: str
    terminal_id: str = ""


@dataclass(frozen=True)
class SessionEntry:
    worktree_path: str
    process_id: str


@dataclass(frozen=True)
class StatsSnapshot:
    active_process_count: int
    sessions: list[SessionEntry]

    def to_dict(self) -> dict[str, object]:
        return {
            "active_process_count": self.active_process_count,
            "sessions": [
                {"worktree_path": item.worktree_path, "process_id": item.process_id}
                for item in self.sessions
            ],
        }


def generate_session_id(worktree_path: str) -> str:
    """Stable 16-char hex key for a worktree path."""
    return hashlib.sha256(worktree_path.encode("utf-8")).hexdigest()[:16]
