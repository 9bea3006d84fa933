from __future__ import annotations

import asyncio
import time

import pytest

from panenexus.terminal import CloseRequest, TerminalCloseController, TerminateResult


class _SlowShell:
    def __init__(self, delay: float) -> None:
        self.delay = delay

    async def terminate(self, process_id: str) -> TerminateResult:
        _ = process_id
        await asyncio.sleep(self.delay)
        return TerminateResult(success=True)


@pytest.mark.performance
def test_batch_close_takes_about_as_long_as_one_close() -> None:
    controller = TerminalCloseController(_SlowShell(0.2))
    items = [CloseRequest(f"t{index}", f"pty-{index}") for index in range(20)]

    started = time.perf_counter()
    asyncio.run(controller.close_batch(items))
    elapsed = time.perf_counter() - started

    assert elapsed < 1.0, f"batch close ran sequentially: {elapsed:.3f}s"


@pytest.mark.performance
def test_registry_churn_stays_within_budget() -> None:
    from panenexus.terminal import SplitDirection, TerminalRegistry

    registry = TerminalRegistry()
    first = registry.create_instance("/repo")

    started = time.perf_counter()
    for _ in range(2000):
        extra = registry.split(first.terminal_id, SplitDirection.VERTICAL)
        registry.remove_instance(extra.terminal_id)
    elapsed = time.perf_counter() - started

    assert len(registry.instances()) == 1
    assert elapsed < 2.0, f"split/remove loop exceeded budget: {elapsed:.3f}s"
