"""Single and batch terminal close with per-item and aggregate reporting."""

from __future__ import annotations

import asyncio
import logging as py_logging
from collections.abc import Awaitable, Callable, Sequence
from contextlib import AsyncExitStack
from typing import Protocol

from panenexus.errors import BatchCloseError, TerminationError
from panenexus.terminal.models import CloseRequest, TerminateResult

logger = py_logging.getLogger(__name__)

CleanupSuccess = Callable[[str], None]
CleanupError = Callable[[str, BaseException], None]


class ProcessTerminator(Protocol):
    def terminate(self, process_id: str) -> Awaitable[TerminateResult]: ...


class TerminalCloseController:
    def __init__(
        self,
        shell: ProcessTerminator,
        *,
        on_cleanup_success: CleanupSuccess | None = None,
        on_cleanup_error: CleanupError | None = None,
        max_concurrency: int | None = None,
    ) -> None:
        self._shell = shell
        self._on_cleanup_success = on_cleanup_success
        self._on_cleanup_error = on_cleanup_error
        self._limit = asyncio.Semaphore(max_concurrency) if max_concurrency else None

    async def close_one(self, terminal_id: str, process_id: str) -> None:
        """Terminate one process; the failure is reported to the callback, then raised."""
        async with AsyncExitStack() as stack:
            if self._limit is not None:
                await stack.enter_async_context(self._limit)
            try:
                result = await self._shell.terminate(process_id)
            except Exception as exc:
                logger.warning(
                    "close-failed terminal=%s process=%s error=%s", terminal_id, process_id, exc
                )
                self._report_error(terminal_id, exc)
                raise TerminationError(
                    f"Failed to terminate PTY process {process_id}",
                    hint=str(exc) or "Inspect PTY supervisor logs.",
                    process_id=process_id,
                ) from exc

        if not result.success:
            error = TerminationError(
                f"Failed to terminate PTY process {process_id}",
                hint="The process did not exit after a forced kill.",
                process_id=process_id,
            )
            logger.warning("close-failed terminal=%s process=%s error=%s", terminal_id, process_id, error.message)
            self._report_error(terminal_id, error)
            raise error

        logger.debug("close-ok terminal=%s process=%s", terminal_id, process_id)
        if self._on_cleanup_success is not None:
            self._on_cleanup_success(terminal_id)

    async def close_batch(self, items: Sequence[CloseRequest]) -> None:
        if not items:
            return
        outcomes = await asyncio.gather(
            *(self.close_one(item.terminal_id, item.process_id) for item in items),
            return_exceptions=True,
        )
        failures: list[CloseRequest] = []
        for item, outcome in zip(items, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                failures.append(item)
        logger.info("close-batch total=%s failed=%s", len(items), len(failures))
        if failures:
            raise BatchCloseError(
                f"Failed to close {len(failures)} terminal(s)",
                hint="Retry closing the remaining terminals.",
                failed_count=len(failures),
                failures=failures,
            )

    def _report_error(self, terminal_id: str, error: BaseException) -> None:
        if self._on_cleanup_error is not None:
            self._on_cleanup_error(terminal_id, error)
