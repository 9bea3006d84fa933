"""Public CLI contract and entrypoint."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging as py_logging
import sys
from collections.abc import Callable, Sequence
from contextlib import suppress
from pathlib import Path
from typing import TextIO

from .config import AppConfig, load_config
from .errors import ExitCode, PaneNexusError, user_facing_error
from .logging import configure_logging, default_log_path
from .session import ExitChoice, ShutdownHandler, ShutdownResult
from .terminal import SplitDirection, TerminalService

_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARN", "ERROR")
_VALID_SPLITS = tuple(item.value for item in SplitDirection)
_QUIT_RETRY_SECONDS = 1.0

ServiceFactory = Callable[[AppConfig], TerminalService]


def _positive_seconds(value: str) -> float:
    try:
        seconds = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("value must be a number of seconds") from exc
    if seconds <= 0:
        raise argparse.ArgumentTypeError("value must be greater than zero")
    return seconds


def _non_negative_seconds(value: str) -> float:
    try:
        seconds = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("value must be a number of seconds") from exc
    if seconds < 0:
        raise argparse.ArgumentTypeError("value cannot be negative")
    return seconds


def _log_level_type(value: str) -> str:
    normalized = value.upper()
    if normalized == "WARNING":
        normalized = "WARN"
    if normalized not in _VALID_LOG_LEVELS:
        accepted = ", ".join(_VALID_LOG_LEVELS)
        raise argparse.ArgumentTypeError(f"--log-level must be one of: {accepted}")
    return normalized


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="panenexus",
        description="Open worktree terminals, inject a paced command, and report live sessions.",
    )
    parser.add_argument("--worktree", action="append", default=[], help="Worktree path (repeatable)")
    parser.add_argument("--split", choices=_VALID_SPLITS, default=None)
    parser.add_argument("--command", default="", help="Command typed into the first terminal")
    parser.add_argument("--repeat-interval", type=_positive_seconds, default=None)
    parser.add_argument(
        "--duration",
        type=_non_negative_seconds,
        default=1.0,
        help="Seconds to keep streaming after the command is submitted",
    )
    parser.add_argument("--stats", action="store_true", help="Print a JSON stats snapshot before exit")
    parser.add_argument("--config", type=Path, default=None)
    parser.add_argument("--log-level", type=_log_level_type, default="INFO")
    parser.add_argument("--log-file", type=Path, default=None)
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = build_parser()
    return parser.parse_args(argv)


def validate_namespace(namespace: argparse.Namespace) -> None:
    if namespace.repeat_interval is not None and not namespace.command:
        raise PaneNexusError(
            "--repeat-interval needs a command.",
            code=ExitCode.INVALID_ARGS,
            hint="Pass --command together with --repeat-interval.",
        )
    if namespace.repeat_interval is not None and namespace.duration <= 0:
        raise PaneNexusError(
            "A repeating command needs a positive --duration.",
            code=ExitCode.INVALID_ARGS,
            hint="Set --duration to the number of seconds to keep repeating.",
        )


async def _forward_output(service: TerminalService, terminal_id: str, out: TextIO) -> None:
    async for chunk in service.subscribe_output(terminal_id):
        out.write(chunk)
        out.flush()


def prompt_quit() -> ExitChoice:
    if sys.stdin is None or not sys.stdin.isatty():
        return ExitChoice.QUIT
    try:
        answer = input("Close all terminals and quit? [Y/n] ")
    except EOFError:
        return ExitChoice.QUIT
    return ExitChoice.CANCEL if answer.strip().lower() in {"n", "no"} else ExitChoice.QUIT


async def _quit_when_confirmed(shutdown: ShutdownHandler, linger: float) -> ShutdownResult:
    result = await shutdown.request_quit()
    while result.cancelled:
        await asyncio.sleep(linger)
        result = await shutdown.request_quit()
    return result


async def run_session(
    namespace: argparse.Namespace,
    service: TerminalService,
    *,
    out: TextIO | None = None,
    prompt: Callable[[], ExitChoice] = prompt_quit,
) -> int:
    stream = out or sys.stdout
    worktrees = namespace.worktree or [str(Path.cwd())]
    forwarders: list[asyncio.Task[None]] = []
    shutdown = ShutdownHandler.from_config(service.config, service, prompt)
    result = ShutdownResult(closed=False, cancelled=False)
    try:
        first_terminal = ""
        for worktree in worktrees:
            session = await service.open_worktree(worktree)
            terminal_id = session.terminals[0].terminal_id
            first_terminal = first_terminal or terminal_id
            forwarders.append(asyncio.create_task(_forward_output(service, terminal_id, stream)))

        if namespace.split:
            await service.split_terminal(first_terminal, namespace.split)

        if namespace.command and namespace.repeat_interval is not None:
            repeater = service.repeat_command(first_terminal, namespace.command, namespace.repeat_interval)
            await asyncio.sleep(namespace.duration)
            repeater.stop()
        elif namespace.command:
            handle = service.schedule_command(first_terminal, namespace.command)
            await handle.wait()
            await asyncio.sleep(namespace.duration)
        else:
            await asyncio.sleep(namespace.duration)

        if namespace.stats:
            stream.write("\n" + json.dumps(service.get_stats().to_dict(), indent=2) + "\n")
            stream.flush()

        result = await _quit_when_confirmed(shutdown, namespace.duration or _QUIT_RETRY_SECONDS)
    finally:
        if not shutdown.is_quitting:
            result = await shutdown.force_quit()
        for task in forwarders:
            task.cancel()
        for task in forwarders:
            with suppress(asyncio.CancelledError):
                await task

    if result.failed_count:
        raise PaneNexusError(
            f"Failed to close {result.failed_count} terminal(s)",
            code=ExitCode.RUNTIME_ERROR,
            hint="Inspect the log for the processes that refused to exit.",
        )
    return int(ExitCode.SUCCESS)


def main(
    argv: Sequence[str] | None = None,
    *,
    service_factory: ServiceFactory | None = None,
    out: TextIO | None = None,
) -> int:
    log_path = default_log_path()
    logger = configure_logging(log_file=log_path)
    parser = build_parser()
    try:
        namespace = parser.parse_args(argv)
    except SystemExit as exc:
        if exc.code not in (None, 0):
            logger.warning("Argument parsing failed with exit code %s", exc.code)
        return int(exc.code or 0)

    if namespace.log_file is not None:
        log_path = namespace.log_file.expanduser()
    logger = configure_logging(level=namespace.log_level, log_file=log_path)

    try:
        validate_namespace(namespace)
        config = load_config(namespace.config)
        factory = service_factory or (lambda cfg: TerminalService(config=cfg))
        logger.debug("Starting terminal session worktrees=%s", namespace.worktree)
        return asyncio.run(run_session(namespace, factory(config), out=out))
    except PaneNexusError as exc:
        logger.error(
            "Handled PaneNexusError (code=%s): %s",
            int(exc.code),
            exc.message,
            exc_info=logger.isEnabledFor(py_logging.DEBUG),
        )
        print(user_facing_error(exc.message, hint=exc.hint), file=sys.stderr)
        return int(exc.code)
    except Exception:
        logger.exception("Unhandled exception in CLI entrypoint")
        try:
            hint = f"Inspect logs: {log_path}"
            print(user_facing_error("Unexpected runtime failure", hint=hint), file=sys.stderr)
        except Exception:
            pass
        return int(ExitCode.RUNTIME_ERROR)


def run(argv: Sequence[str] | None = None) -> int:
    return main(argv)
