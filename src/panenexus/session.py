"""Application quit flow: confirm, then close every terminal."""

from __future__ import annotations

import logging as py_logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from panenexus.config import AppConfig
from panenexus.errors import BatchCloseError

logger = py_logging.getLogger(__name__)


class ExitChoice(str, Enum):
    CANCEL = "Cancel"
    QUIT = "OK"


@dataclass
class ShutdownResult:
    closed: bool
    cancelled: bool
    failed_count: int = 0


class Shutdownable(Protocol):
    async def shutdown(self) -> None: ...


class ShutdownHandler:
    def __init__(
        self,
        service: Shutdownable,
        prompt: Callable[[], ExitChoice],
        *,
        enable_dialog: bool = True,
    ) -> None:
        self.service = service
        self.prompt = prompt
        self.enable_dialog = enable_dialog
        self.is_quitting = False

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        service: Shutdownable,
        prompt: Callable[[], ExitChoice],
    ) -> ShutdownHandler:
        return cls(service, prompt, enable_dialog=config.quit_dialog_enabled)

    async def request_quit(self) -> ShutdownResult:
        if self.is_quitting:
            logger.debug("Quit already in progress")
            return ShutdownResult(closed=False, cancelled=False)

        if self.enable_dialog:
            choice = self.prompt()
            logger.info("Quit prompt result choice=%s", choice)
            if choice != ExitChoice.QUIT:
                self.is_quitting = False
                return ShutdownResult(closed=False, cancelled=True)

        return await self.force_quit()

    async def force_quit(self) -> ShutdownResult:
        self.is_quitting = True
        try:
            await self.service.shutdown()
        except BatchCloseError as exc:
            # Quit still completes when some terminals refused to close.
            logger.error("Shutdown left %s terminal(s) unclosed: %s", exc.failed_count, exc.message)
            return ShutdownResult(closed=True, cancelled=False, failed_count=exc.failed_count)
        logger.info("All sessions closed")
        return ShutdownResult(closed=True, cancelled=False)
