from __future__ import annotations

import asyncio

from panenexus.config import AppConfig
from panenexus.errors import BatchCloseError
from panenexus.session import ExitChoice, ShutdownHandler, ShutdownResult


class _Service:
    def __init__(self, *, failed: int = 0) -> None:
        self.failed = failed
        self.calls = 0

    async def shutdown(self) -> None:
        self.calls += 1
        if self.failed:
            raise BatchCloseError(
                f"Failed to close {self.failed} terminal(s)",
                failed_count=self.failed,
            )


def test_cancelled_prompt_keeps_sessions_open() -> None:
    service = _Service()
    handler = ShutdownHandler(service, prompt=lambda: ExitChoice.CANCEL)

    result = asyncio.run(handler.request_quit())

    assert result == ShutdownResult(closed=False, cancelled=True)
    assert service.calls == 0
    assert handler.is_quitting is False


def test_confirmed_prompt_closes_everything() -> None:
    service = _Service()
    handler = ShutdownHandler(service, prompt=lambda: ExitChoice.QUIT)

    result = asyncio.run(handler.request_quit())

    assert result == ShutdownResult(closed=True, cancelled=False)
    assert service.calls == 1
    assert handler.is_quitting is True


def test_disabled_dialog_skips_prompt() -> None:
    prompts: list[str] = []

    def prompt() -> ExitChoice:
        prompts.append("asked")
        return ExitChoice.CANCEL

    service = _Service()
    handler = ShutdownHandler(service, prompt=prompt, enable_dialog=False)

    result = asyncio.run(handler.request_quit())

    assert result.closed is True
    assert prompts == []


def test_second_quit_request_is_ignored_while_quitting() -> None:
    service = _Service()
    handler = ShutdownHandler(service, prompt=lambda: ExitChoice.QUIT)

    async def scenario() -> tuple[ShutdownResult, ShutdownResult]:
        first = await handler.request_quit()
        second = await handler.request_quit()
        return first, second

    first, second = asyncio.run(scenario())

    assert first.closed is True
    assert second == ShutdownResult(closed=False, cancelled=False)
    assert service.calls == 1


def test_force_quit_reports_failed_closes() -> None:
    service = _Service(failed=2)
    handler = ShutdownHandler(service, prompt=lambda: ExitChoice.QUIT)

    result = asyncio.run(handler.force_quit())

    assert result == ShutdownResult(closed=True, cancelled=False, failed_count=2)


def test_from_config_honours_disabled_quit_dialog() -> None:
    service = _Service()
    handler = ShutdownHandler.from_config(
        AppConfig(quit_dialog_enabled=False),
        service,
        prompt=lambda: ExitChoice.CANCEL,
    )

    result = asyncio.run(handler.request_quit())

    assert handler.enable_dialog is False
    assert result.closed is True
    assert service.calls == 1
