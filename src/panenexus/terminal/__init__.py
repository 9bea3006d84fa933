"""Terminal session domain package."""

from .close_controller import TerminalCloseController
from .models import (
    CloseRequest,
    PtyProcess,
    SessionEntry,
    SplitDirection,
    StatsSnapshot,
    TerminalInstance,
    TerminateResult,
    TopologyChange,
    TopologyEvent,
    ViewHandle,
    WorktreeSession,
    generate_session_id,
)
from .pty_backend import OutputSubscription, PtySupervisor, build_pty_env, build_shell_command
from .registry import TerminalRegistry
from .scheduler import CommandScheduler, CommandState, RepeatingCommand, ScheduledCommand
from .service import TerminalEvent, TerminalService

__all__ = [
    "build_pty_env",
    "build_shell_command",
    "CloseRequest",
    "CommandScheduler",
    "CommandState",
    "generate_session_id",
    "OutputSubscription",
    "PtyProcess",
    "PtySupervisor",
    "RepeatingCommand",
    "ScheduledCommand",
    "SessionEntry",
    "SplitDirection",
    "StatsSnapshot",
    "TerminalCloseController",
    "TerminalEvent",
    "TerminalInstance",
    "TerminalRegistry",
    "TerminalService",
    "TerminateResult",
    "TopologyChange",
    "TopologyEvent",
    "ViewHandle",
    "WorktreeSession",
]
