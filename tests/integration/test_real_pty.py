from __future__ import annotations

import asyncio
import os
import shutil
from pathlib import Path

import pytest

from panenexus.terminal import PtySupervisor

pytest.importorskip("ptyprocess")
pytestmark = pytest.mark.skipif(
    os.name != "posix" or shutil.which("sh") is None,
    reason="requires a POSIX shell",
)


async def _collect_until(stream, marker: str, timeout: float) -> str:
    collected = ""

    async def reader() -> None:
        nonlocal collected
        async for chunk in stream:
            collected += chunk
            if marker in collected:
                return

    await asyncio.wait_for(reader(), timeout=timeout)
    return collected


def test_real_shell_echoes_command_and_terminates(tmp_path: Path) -> None:
    async def scenario() -> tuple[str, bool, bool]:
        supervisor = PtySupervisor(shell="sh", terminate_grace_seconds=1.0)
        process_id = await supervisor.spawn(str(tmp_path), cols=100, rows=20)
        stream = supervisor.subscribe_output(process_id)
        await supervisor.write(process_id, "echo pane-$((40 + 2))\r")
        output = await _collect_until(stream, "pane-42", timeout=5)
        result = await supervisor.terminate(process_id)
        return output, result.success, supervisor.is_alive(process_id)

    output, success, alive = asyncio.run(scenario())

    assert "pane-42" in output
    assert success is True
    assert alive is False


def test_real_shell_exit_is_reported_once(tmp_path: Path) -> None:
    exits: list[int | None] = []

    async def scenario() -> int | None:
        supervisor = PtySupervisor(shell="sh")
        process_id = await supervisor.spawn(str(tmp_path))
        supervisor.on_exit(process_id, lambda _pid, code: exits.append(code))
        await supervisor.write(process_id, "exit 3\r")
        code = await asyncio.wait_for(supervisor.wait_exit(process_id), timeout=5)
        await supervisor.terminate(process_id)
        return code

    assert asyncio.run(scenario()) == 3
    assert exits == [3]
