"""XDG config loading/saving."""

from __future__ import annotations

import os
import sys
from contextlib import suppress
from pathlib import Path
from typing import Literal, cast

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing_extensions import TypedDict

if sys.version_info >= (3, 11):
    import tomllib
else:  # pragma: no cover
    import tomli as tomllib

DEFAULT_CONFIG_PATH = Path("~/.config/panenexus/config.toml").expanduser()
DEFAULT_COLS = 80
DEFAULT_ROWS = 30
DEFAULT_SPLIT_DIRECTION: Literal["vertical", "horizontal"] = "vertical"
DEFAULT_TERMINATE_GRACE_SECONDS = 2.0
DEFAULT_KILL_WAIT_SECONDS = 1.0
DEFAULT_CHAR_DELAY_SECONDS = 0.01
DEFAULT_SUBMIT_DELAY_SECONDS = 1.0
DEFAULT_MAX_TERMINALS = 16
DISABLE_QUIT_DIALOG_ENV = "PANENEXUS_DISABLE_QUIT_DIALOG"

_VALID_SPLIT_DIRECTIONS = {"vertical", "horizontal"}


class SchedulerTimings(TypedDict):
    char_delay: float
    submit_delay: float


class AppConfig(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    shell: str = ""
    default_cols: int = Field(default=DEFAULT_COLS, ge=1, le=1000)
    default_rows: int = Field(default=DEFAULT_ROWS, ge=1, le=1000)
    default_split_direction: Literal["vertical", "horizontal"] = DEFAULT_SPLIT_DIRECTION
    set_locale_variables: bool = True
    terminate_grace_seconds: float = Field(default=DEFAULT_TERMINATE_GRACE_SECONDS, gt=0, le=60)
    kill_wait_seconds: float = Field(default=DEFAULT_KILL_WAIT_SECONDS, gt=0, le=60)
    scheduler_char_delay_seconds: float = Field(default=DEFAULT_CHAR_DELAY_SECONDS, ge=0, le=10)
    scheduler_submit_delay_seconds: float = Field(default=DEFAULT_SUBMIT_DELAY_SECONDS, ge=0, le=60)
    close_max_concurrency: int = Field(default=0, ge=0)
    max_terminals: int = Field(default=DEFAULT_MAX_TERMINALS, ge=1, le=256)
    quit_dialog_enabled: bool = True
    env_overrides: dict[str, str] = Field(default_factory=dict)

    @field_validator("default_split_direction")
    @classmethod
    def _validate_split_direction(cls, value: str) -> str:
        if value not in _VALID_SPLIT_DIRECTIONS:
            raise ValueError(f"Invalid split direction: {value}")
        return value

    def scheduler_timings(self) -> SchedulerTimings:
        return SchedulerTimings(
            char_delay=self.scheduler_char_delay_seconds,
            submit_delay=self.scheduler_submit_delay_seconds,
        )


def get_config_path(path: str | Path | None = None) -> Path:
    if path is None:
        return DEFAULT_CONFIG_PATH
    return Path(path).expanduser()


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _toml_scalar(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, str):
        return f'"{_escape(value)}"'
    raise TypeError(f"Unsupported TOML scalar type: {type(value)!r}")


def _as_number(value: object) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


def _normalize_env_overrides(value: object) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    normalized: dict[str, str] = {}
    for key, item in value.items():
        if not isinstance(key, str) or not isinstance(item, str):
            continue
        name = key.strip()
        if not name or "=" in name:
            continue
        normalized[name] = item
    return normalized


def _quit_dialog_disabled_by_env() -> bool:
    return os.getenv(DISABLE_QUIT_DIALOG_ENV, "").strip().lower() == "true"


def _sanitize(raw: dict[str, object]) -> AppConfig:
    cfg = AppConfig()

    shell = raw.get("shell", cfg.shell)
    if isinstance(shell, str):
        cfg.shell = shell.strip()

    default_cols = raw.get("default_cols", cfg.default_cols)
    if isinstance(default_cols, int) and not isinstance(default_cols, bool) and 1 <= default_cols <= 1000:
        cfg.default_cols = default_cols

    default_rows = raw.get("default_rows", cfg.default_rows)
    if isinstance(default_rows, int) and not isinstance(default_rows, bool) and 1 <= default_rows <= 1000:
        cfg.default_rows = default_rows

    split_direction = raw.get("default_split_direction", cfg.default_split_direction)
    if isinstance(split_direction, str) and split_direction in _VALID_SPLIT_DIRECTIONS:
        cfg.default_split_direction = cast(Literal["vertical", "horizontal"], split_direction)

    set_locale_variables = raw.get("set_locale_variables", cfg.set_locale_variables)
    if isinstance(set_locale_variables, bool):
        cfg.set_locale_variables = set_locale_variables

    grace = _as_number(raw.get("terminate_grace_seconds"))
    if grace is not None and 0 < grace <= 60:
        cfg.terminate_grace_seconds = grace

    kill_wait = _as_number(raw.get("kill_wait_seconds"))
    if kill_wait is not None and 0 < kill_wait <= 60:
        cfg.kill_wait_seconds = kill_wait

    char_delay = _as_number(raw.get("scheduler_char_delay_seconds"))
    if char_delay is not None and 0 <= char_delay <= 10:
        cfg.scheduler_char_delay_seconds = char_delay

    submit_delay = _as_number(raw.get("scheduler_submit_delay_seconds"))
    if submit_delay is not None and 0 <= submit_delay <= 60:
        cfg.scheduler_submit_delay_seconds = submit_delay

    close_max_concurrency = raw.get("close_max_concurrency", cfg.close_max_concurrency)
    if isinstance(close_max_concurrency, int) and not isinstance(close_max_concurrency, bool):
        if close_max_concurrency >= 0:
            cfg.close_max_concurrency = close_max_concurrency

    max_terminals = raw.get("max_terminals", cfg.max_terminals)
    if isinstance(max_terminals, int) and not isinstance(max_terminals, bool) and 1 <= max_terminals <= 256:
        cfg.max_terminals = max_terminals

    quit_dialog_enabled = raw.get("quit_dialog_enabled", cfg.quit_dialog_enabled)
    if isinstance(quit_dialog_enabled, bool):
        cfg.quit_dialog_enabled = quit_dialog_enabled

    cfg.env_overrides = _normalize_env_overrides(raw.get("env_overrides", {}))
    return cfg


def _apply_env(cfg: AppConfig) -> AppConfig:
    if _quit_dialog_disabled_by_env():
        cfg.quit_dialog_enabled = False
    return cfg


def load_config(path: str | Path | None = None) -> AppConfig:
    resolved = get_config_path(path)
    if not resolved.exists():
        return _apply_env(AppConfig())
    try:
        with resolved.open("rb") as handle:
            raw = tomllib.load(handle)
    except (tomllib.TOMLDecodeError, OSError):
        return _apply_env(AppConfig())
    if not isinstance(raw, dict):
        return _apply_env(AppConfig())
    return _apply_env(_sanitize(raw))


def save_config(config: AppConfig, path: str | Path | None = None) -> Path:
    resolved = get_config_path(path)
    resolved.parent.mkdir(parents=True, exist_ok=True)

    lines = [
        f"shell = {_toml_scalar(config.shell)}",
        f"default_cols = {_toml_scalar(config.default_cols)}",
        f"default_rows = {_toml_scalar(config.default_rows)}",
        f"default_split_direction = {_toml_scalar(config.default_split_direction)}",
        f"set_locale_variables = {_toml_scalar(config.set_locale_variables)}",
        f"terminate_grace_seconds = {_toml_scalar(config.terminate_grace_seconds)}",
        f"kill_wait_seconds = {_toml_scalar(config.kill_wait_seconds)}",
        f"scheduler_char_delay_seconds = {_toml_scalar(config.scheduler_char_delay_seconds)}",
        f"scheduler_submit_delay_seconds = {_toml_scalar(config.scheduler_submit_delay_seconds)}",
        f"close_max_concurrency = {_toml_scalar(config.close_max_concurrency)}",
        f"max_terminals = {_toml_scalar(config.max_terminals)}",
        f"quit_dialog_enabled = {_toml_scalar(config.quit_dialog_enabled)}",
    ]

    overrides = _normalize_env_overrides(config.env_overrides)
    if overrides:
        lines.append("")
        lines.append("[env_overrides]")
        for name, value in sorted(overrides.items()):
            lines.append(f'"{_escape(name)}" = {_toml_scalar(value)}')

    resolved.write_text("\n".join(lines) + "\n", encoding="utf-8")
    with suppress(OSError):
        resolved.chmod(0o600)
    return resolved
