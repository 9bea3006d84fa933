"""Deterministic error model and exit code contract."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class ExitCode(IntEnum):
    SUCCESS = 0
    INVALID_ARGS = 2
    CONFIG_ERROR = 3
    RUNTIME_ERROR = 4
    VALIDATION_ERROR = 7
    UNSUPPORTED_PLATFORM = 8


@dataclass
class PaneNexusError(Exception):
    message: str
    code: ExitCode = ExitCode.RUNTIME_ERROR
    hint: str = ""

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message} Hint: {self.hint}"
        return self.message


@dataclass
class SpawnError(PaneNexusError):
    """The OS could not create the pseudo-terminal or start the shell."""


@dataclass
class TerminationError(PaneNexusError):
    process_id: str = ""


@dataclass
class BatchCloseError(PaneNexusError):
    """Aggregate close failure; every item was attempted regardless."""

    failed_count: int = 0
    failures: list[Any] = field(default_factory=list)


@dataclass
class LastTerminalError(PaneNexusError):
    terminal_id: str = ""
    code: ExitCode = ExitCode.VALIDATION_ERROR


@dataclass
class RebindError(PaneNexusError):
    terminal_id: str = ""
    process_id: str = ""
    code: ExitCode = ExitCode.VALIDATION_ERROR


@dataclass
class TerminalNotFoundError(PaneNexusError):
    terminal_id: str = ""
    code: ExitCode = ExitCode.VALIDATION_ERROR


def user_facing_error(message: str, *, hint: str = "") -> str:
    if hint:
        return f"Error: {message}. Next step: {hint}"
    return f"Error: {message}."
