"""PTY process supervision for worktree terminals.

The supervisor is the only writer of :class:`PtyProcess` state. It spawns one
shell per terminal, pumps its output to subscribers, and tears it down with a
bounded SIGTERM -> SIGKILL escalation against the whole process group.
"""

from __future__ import annotations

import asyncio
import itertools
import logging as py_logging
import os
import shlex
import signal
import subprocess
import sys
from collections import OrderedDict
from collections.abc import Callable, Mapping
from contextlib import suppress

from panenexus.errors import ExitCode, PaneNexusError, SpawnError
from panenexus.terminal.models import PtyProcess, TerminateResult

logger = py_logging.getLogger(__name__)

PtySpawn = Callable[[list[str], str, dict[str, str], tuple[int, int]], object]
ProcessKiller = Callable[[object, int], None]
ExitCallback = Callable[[str, int | None], None]

DEFAULT_TERM = "xterm-256color"
DEFAULT_LANG = "en_US.UTF-8"
SIGKILL = getattr(signal, "SIGKILL", signal.SIGTERM)
_READ_SIZE = 4096
_REAP_POLL_SECONDS = 0.05
_EXIT_HISTORY = 256


def build_shell_command(shell: str = "") -> list[str]:
    if shell.strip():
        return shlex.split(shell.strip())
    if sys.platform == "win32":
        return ["powershell.exe", "-NoLogo", "-NoProfile"]
    return [os.environ.get("SHELL", "").strip() or "/bin/bash"]


def build_pty_env(
    overrides: Mapping[str, str] | None = None,
    *,
    set_locale_variables: bool = True,
    base: Mapping[str, str] | None = None,
) -> dict[str, str]:
    env = dict(os.environ if base is None else base)
    env["TERM"] = DEFAULT_TERM
    # Same behaviour as iTerm2/Terminal.app "set locale environment variables".
    if set_locale_variables and not env.get("LANG"):
        env["LANG"] = DEFAULT_LANG
    if overrides:
        env.update(overrides)
    return env


def _spawn_with_ptyprocess(
    command: list[str],
    cwd: str,
    env: dict[str, str],
    dimensions: tuple[int, int],
) -> object:
    try:
        from ptyprocess import PtyProcessUnicode
    except ImportError as exc:
        raise SpawnError(
            "ptyprocess backend is unavailable.",
            hint="Install the ptyprocess package.",
        ) from exc
    return PtyProcessUnicode.spawn(command, cwd=cwd, env=env, dimensions=dimensions)


def _spawn_with_pywinpty(
    command: list[str],
    cwd: str,
    env: dict[str, str],
    dimensions: tuple[int, int],
) -> object:
    try:
        from winpty import PtyProcess as WinPtyProcess
    except ImportError as exc:
        raise SpawnError(
            "pywinpty backend is unavailable.",
            hint="Install the pywinpty package on Windows.",
        ) from exc
    return WinPtyProcess.spawn(subprocess.list2cmdline(command), cwd=cwd, env=env, dimensions=dimensions)


def default_spawn() -> PtySpawn:
    if sys.platform == "win32":
        return _spawn_with_pywinpty
    return _spawn_with_ptyprocess


def _signal_process_group(process: object, sig: int) -> None:
    pid = getattr(process, "pid", None)
    if os.name == "posix" and isinstance(pid, int) and pid > 0:
        try:
            pgid = os.getpgid(pid)
            # The shell leads its own session; never signal our own group.
            if pgid == os.getpgrp():
                os.kill(pid, sig)
            else:
                os.killpg(pgid, sig)
        except ProcessLookupError:
            return
        except PermissionError:
            process.kill(sig)
        return
    if sig == SIGKILL:
        process.terminate(force=True)
    else:
        process.terminate()


def _is_alive(process: object) -> bool:
    if hasattr(process, "isalive"):
        try:
            return bool(process.isalive())
        except Exception:
            return True
    return True


def _exit_status(process: object) -> int | None:
    signal_status = getattr(process, "signalstatus", None)
    if isinstance(signal_status, int):
        return -signal_status
    status = getattr(process, "exitstatus", None)
    return status if isinstance(status, int) else None


def _reader_fd(process: object) -> int | None:
    if os.name != "posix" or not hasattr(process, "fileno"):
        return None
    try:
        fd = process.fileno()
    except (OSError, ValueError):
        return None
    return fd if isinstance(fd, int) and fd >= 0 else None


def _read_chunk(process: object, size: int) -> str:
    try:
        chunk = process.read(size)
    except EOFError:
        raise
    except OSError as exc:
        raise EOFError(str(exc)) from exc
    if chunk is None:
        return ""
    if isinstance(chunk, bytes):
        return chunk.decode("utf-8", errors="replace")
    return str(chunk)


def _close_handle(process: object) -> None:
    if not hasattr(process, "close"):
        return
    try:
        process.close()
    except TypeError:
        process.close(True)
    except OSError as exc:
        logger.debug("pty-close failed error=%s", exc)


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


def _mark_ready(future: asyncio.Future[None]) -> None:
    if not future.done():
        future.set_result(None)


def _validate_size(cols: int, rows: int) -> None:
    if cols <= 0 or rows <= 0:
        raise PaneNexusError(
            f"Invalid PTY size: {cols}x{rows}",
            code=ExitCode.VALIDATION_ERROR,
            hint="Use positive terminal row/column values.",
        )


class OutputSubscription:
    """Async iterator over one process's output, ending at exit."""

    def __init__(self, process_id: str, queue: asyncio.Queue[str | None], detach: Callable[[], None]) -> None:
        self.process_id = process_id
        self._queue = queue
        self._detach = detach
        self._finished = False

    def __aiter__(self) -> OutputSubscription:
        return self

    async def __anext__(self) -> str:
        if self._finished:
            raise StopAsyncIteration
        chunk = await self._queue.get()
        if chunk is None:
            self._finished = True
            self._detach()
            raise StopAsyncIteration
        return chunk

    def close(self) -> None:
        self._finished = True
        self._detach()


class PtySupervisor:
    def __init__(
        self,
        *,
        spawn: PtySpawn | None = None,
        killer: ProcessKiller | None = None,
        shell: str = "",
        default_cols: int = 80,
        default_rows: int = 30,
        set_locale_variables: bool = True,
        terminate_grace_seconds: float = 2.0,
        kill_wait_seconds: float = 1.0,
        base_env: Mapping[str, str] | None = None,
        read_size: int = _READ_SIZE,
        exit_history: int = _EXIT_HISTORY,
    ) -> None:
        _validate_size(default_cols, default_rows)
        self._spawn = spawn or default_spawn()
        self._killer = killer or _signal_process_group
        self.shell_command = build_shell_command(shell)
        self.default_cols = default_cols
        self.default_rows = default_rows
        self.set_locale_variables = set_locale_variables
        self.terminate_grace_seconds = terminate_grace_seconds
        self.kill_wait_seconds = kill_wait_seconds
        self.read_size = read_size
        self.exit_history = max(1, exit_history)
        self._base_env = base_env
        self._ids = itertools.count(1)
        self._processes: dict[str, PtyProcess] = {}
        # Exit codes of the most recent exits, for late on_exit and wait_exit callers.
        self._exited: OrderedDict[str, int | None] = OrderedDict()
        self._pumps: dict[str, asyncio.Task[None]] = {}
        self._reader_fds: dict[str, int] = {}
        self._subscribers: dict[str, list[asyncio.Queue[str | None]]] = {}
        self._exit_callbacks: dict[str, list[ExitCallback]] = {}
        self._exit_waiters: dict[str, asyncio.Future[int | None]] = {}
        self._loop: asyncio.AbstractEventLoop | None = None

    async def spawn(
        self,
        cwd: str,
        cols: int | None = None,
        rows: int | None = None,
        env_overrides: Mapping[str, str] | None = None,
    ) -> str:
        resolved_cols = self.default_cols if cols is None else cols
        resolved_rows = self.default_rows if rows is None else rows
        _validate_size(resolved_cols, resolved_rows)
        env = build_pty_env(
            env_overrides,
            set_locale_variables=self.set_locale_variables,
            base=self._base_env,
        )
        command = list(self.shell_command)
        try:
            handle = self._spawn(command, cwd, env, (resolved_rows, resolved_cols))
        except SpawnError:
            raise
        except Exception as exc:
            logger.error("pty-spawn failed cwd=%s command=%s error=%s", cwd, command, exc)
            raise SpawnError(
                "Failed to start PTY process.",
                hint=str(exc) or "Check shell installation and working directory.",
            ) from exc

        loop = asyncio.get_running_loop()
        self._loop = loop
        process_id = f"pty-{next(self._ids)}"
        pid = getattr(handle, "pid", None)
        record = PtyProcess(
            process_id=process_id,
            os_handle=handle,
            cwd=cwd,
            cols=resolved_cols,
            rows=resolved_rows,
            env=env,
            pid=pid if isinstance(pid, int) else None,
        )
        self._processes[process_id] = record
        self._subscribers[process_id] = []
        self._exit_callbacks[process_id] = []
        self._exit_waiters[process_id] = loop.create_future()
        self._pumps[process_id] = loop.create_task(self._pump(record), name=f"pty-pump-{process_id}")
        logger.info(
            "pty-spawn process=%s pid=%s cwd=%s size=%sx%s",
            process_id,
            record.pid,
            cwd,
            resolved_cols,
            resolved_rows,
        )
        return process_id

    async def write(self, process_id: str, data: str) -> None:
        record = self._live(process_id)
        if record is None:
            logger.debug("pty-write ignored process=%s reason=not-running", process_id)
            return
        try:
            record.os_handle.write(data)
        except (OSError, EOFError, ValueError) as exc:
            logger.debug("pty-write failed process=%s error=%s", process_id, exc)

    async def resize(self, process_id: str, cols: int, rows: int) -> None:
        _validate_size(cols, rows)
        record = self._live(process_id)
        if record is None:
            logger.debug("pty-resize ignored process=%s reason=not-running", process_id)
            return
        try:
            record.os_handle.setwinsize(rows, cols)
        except OSError as exc:
            logger.debug("pty-resize failed process=%s error=%s", process_id, exc)
            return
        record.cols = cols
        record.rows = rows

    async def terminate(self, process_id: str) -> TerminateResult:
        record = self._live(process_id)
        if record is None:
            logger.debug("pty-terminate process=%s already gone", process_id)
            return TerminateResult(success=True)

        logger.info("pty-terminate process=%s pid=%s signal=TERM", process_id, record.pid)
        if not self._send_signal(record, signal.SIGTERM):
            return TerminateResult(success=False)
        if await self._wait_exited(record, self.terminate_grace_seconds):
            return TerminateResult(success=True)

        logger.warning(
            "pty-terminate process=%s still alive after %.2fs; sending KILL",
            process_id,
            self.terminate_grace_seconds,
        )
        if not self._send_signal(record, SIGKILL):
            return TerminateResult(success=False)
        if await self._wait_exited(record, self.kill_wait_seconds):
            return TerminateResult(success=True)

        logger.error("pty-terminate process=%s refused to exit after KILL", process_id)
        return TerminateResult(success=False)

    def subscribe_output(self, process_id: str) -> OutputSubscription:
        queue: asyncio.Queue[str | None] = asyncio.Queue()
        subscribers = self._subscribers.get(process_id)
        if subscribers is None:
            # Exited or unknown: the stream is already over.
            queue.put_nowait(None)
            return OutputSubscription(process_id, queue, lambda: None)
        subscribers.append(queue)

        def detach() -> None:
            with suppress(ValueError):
                subscribers.remove(queue)

        return OutputSubscription(process_id, queue, detach)

    def on_exit(self, process_id: str, callback: ExitCallback) -> Callable[[], None]:
        if process_id in self._exited:
            callback(process_id, self._exited[process_id])
            return lambda: None
        callbacks = self._exit_callbacks.get(process_id)
        if callbacks is None:
            raise PaneNexusError(
                f"PTY process not found: {process_id}",
                code=ExitCode.VALIDATION_ERROR,
                hint="Spawn the process before subscribing to its exit.",
            )
        callbacks.append(callback)

        def unsubscribe() -> None:
            with suppress(ValueError):
                callbacks.remove(callback)

        return unsubscribe

    async def wait_exit(self, process_id: str) -> int | None:
        if process_id in self._exited:
            return self._exited[process_id]
        waiter = self._exit_waiters.get(process_id)
        if waiter is None:
            raise PaneNexusError(
                f"PTY process not found: {process_id}",
                code=ExitCode.VALIDATION_ERROR,
                hint="Spawn the process before waiting for it.",
            )
        return await asyncio.shield(waiter)

    def is_alive(self, process_id: str) -> bool:
        return self._live(process_id) is not None

    def get(self, process_id: str) -> PtyProcess | None:
        return self._processes.get(process_id)

    def list_processes(self) -> list[PtyProcess]:
        return [self._processes[key] for key in sorted(self._processes)]

    async def shutdown(self) -> dict[str, TerminateResult]:
        process_ids = sorted(self._processes)
        results = await asyncio.gather(*(self.terminate(process_id) for process_id in process_ids))
        return dict(zip(process_ids, results))

    def _live(self, process_id: str) -> PtyProcess | None:
        record = self._processes.get(process_id)
        if record is None or record.exited:
            return None
        if not _is_alive(record.os_handle):
            self._finalize(record, _exit_status(record.os_handle))
            return None
        return record

    def _send_signal(self, record: PtyProcess, sig: int) -> bool:
        try:
            self._killer(record.os_handle, sig)
        except ProcessLookupError:
            return True
        except Exception as exc:
            logger.warning("pty-signal failed process=%s signal=%s error=%s", record.process_id, sig, exc)
            return False
        return True

    async def _wait_exited(self, record: PtyProcess, timeout: float) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            if record.exited:
                return True
            if not _is_alive(record.os_handle):
                self._finalize(record, _exit_status(record.os_handle))
                return True
            remaining = deadline - loop.time()
            if remaining <= 0:
                return False
            await asyncio.sleep(min(_REAP_POLL_SECONDS, remaining))

    async def _pump(self, record: PtyProcess) -> None:
        handle = record.os_handle
        fd = _reader_fd(handle)
        if fd is not None:
            self._reader_fds[record.process_id] = fd
        try:
            while not record.exited:
                if fd is not None:
                    chunk = await self._read_when_ready(record, fd)
                else:
                    chunk = await asyncio.to_thread(_read_chunk, handle, self.read_size)
                if chunk and not record.exited:
                    self._publish(record.process_id, chunk)
        except EOFError:
            logger.debug("pty-eof process=%s", record.process_id)
        except Exception:
            logger.exception("pty-read failed process=%s", record.process_id)
        while not record.exited and _is_alive(handle):
            await asyncio.sleep(_REAP_POLL_SECONDS)
        self._finalize(record, _exit_status(handle))

    async def _read_when_ready(self, record: PtyProcess, fd: int) -> str:
        loop = asyncio.get_running_loop()
        ready: asyncio.Future[None] = loop.create_future()
        loop.add_reader(fd, _mark_ready, ready)
        try:
            await ready
        finally:
            # After exit the fd is closed and its number may be reused.
            if not record.exited:
                loop.remove_reader(fd)
        return _read_chunk(record.os_handle, self.read_size)

    def _publish(self, process_id: str, chunk: str) -> None:
        for queue in self._subscribers.get(process_id, []):
            queue.put_nowait(chunk)

    def _finalize(self, record: PtyProcess, exit_code: int | None) -> None:
        if record.exited:
            return
        process_id = record.process_id
        record.exited = True
        record.exit_code = exit_code
        self._processes.pop(process_id, None)
        self._exited[process_id] = exit_code
        while len(self._exited) > self.exit_history:
            self._exited.popitem(last=False)

        fd = self._reader_fds.pop(process_id, None)
        if fd is not None and self._loop is not None:
            self._loop.remove_reader(fd)
        _close_handle(record.os_handle)

        pump = self._pumps.pop(process_id, None)
        if pump is not None and pump is not _current_task():
            pump.cancel()

        for queue in self._subscribers.pop(process_id, []):
            queue.put_nowait(None)
        waiter = self._exit_waiters.pop(process_id, None)
        if waiter is not None and not waiter.done():
            waiter.set_result(exit_code)
        logger.info("pty-exit process=%s pid=%s code=%s", process_id, record.pid, exit_code)

        for callback in self._exit_callbacks.pop(process_id, []):
            try:
                callback(process_id, exit_code)
            except Exception:
                logger.exception("pty-exit callback failed process=%s", process_id)
