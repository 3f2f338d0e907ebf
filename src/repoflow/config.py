from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import tomllib

from .stores.db import DB_FILENAME

CONFIG_FILENAME = "config.toml"
STATE_DIR_ENV_VAR = "REPOFLOW_STATE_DIR"
STATE_DIR_NAME = ".repoflow"
LOG_LEVEL_ENV_VAR = "REPOFLOW_LOG_LEVEL"
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigValidationError(ValueError):
    pass


@dataclass(frozen=True)
class RepoflowConfig:
    state_dir: Path
    db_path: Path
    busy_timeout_ms: int = 5000
    git: str = "git"
    merge_timeout: float | None = None
    lock_timeout: float | None = 30.0
    email_domain: str = "repoflow.local"
    log_level: str = "WARNING"

    @property
    def lock_dir(self) -> Path:
        return self.state_dir / "locks"

    @property
    def log_level_number(self) -> int:
        return logging.getLevelName(self.log_level)


def _table(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name, {})
    if not isinstance(value, dict):
        raise ConfigValidationError(f"[{name}] must be a table")
    return value


def _as_str(value: object, *, field: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ConfigValidationError(f"{field} must be a non-empty string")
    return value.strip()


def _as_seconds(value: object, *, field: str) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigValidationError(f"{field} must be a number of seconds")
    if value <= 0:
        raise ConfigValidationError(f"{field} must be positive")
    return float(value)


def _as_log_level(value: object, *, field: str) -> str | None:
    text = _as_str(value, field=field)
    if text is None:
        return None
    level = text.upper()
    if level not in _LOG_LEVELS:
        raise ConfigValidationError(
            f"{field} must be one of: {', '.join(_LOG_LEVELS)}"
        )
    return level


def load_config(state_dir: Path) -> RepoflowConfig:
    """Read ``<state_dir>/config.toml`` on top of the defaults.

    A missing file yields the defaults. ``REPOFLOW_LOG_LEVEL`` overrides
    ``[log].level``.
    """
    path = state_dir / CONFIG_FILENAME
    raw: dict[str, Any] = {}
    if path.is_file():
        try:
            raw = tomllib.loads(path.read_text(encoding="utf-8"))
        except tomllib.TOMLDecodeError as exc:
            raise ConfigValidationError(f"invalid TOML in {path}: {exc}") from exc

    database = _table(raw, "database")
    merge = _table(raw, "merge")
    log = _table(raw, "log")

    db_path = state_dir / DB_FILENAME
    db_raw = _as_str(database.get("path"), field="[database].path")
    if db_raw is not None:
        candidate = Path(db_raw).expanduser()
        db_path = candidate if candidate.is_absolute() else state_dir / candidate

    busy_timeout_ms = database.get("busy_timeout_ms", 5000)
    if isinstance(busy_timeout_ms, bool) or not isinstance(busy_timeout_ms, int):
        raise ConfigValidationError("[database].busy_timeout_ms must be an integer")
    if busy_timeout_ms <= 0:
        raise ConfigValidationError("[database].busy_timeout_ms must be positive")

    lock_timeout = 30.0
    if "lock_timeout" in merge:
        lock_timeout = _as_seconds(merge["lock_timeout"], field="[merge].lock_timeout")

    log_level = (
        _as_log_level(os.environ.get(LOG_LEVEL_ENV_VAR) or None, field=LOG_LEVEL_ENV_VAR)
        or _as_log_level(log.get("level"), field="[log].level")
        or "WARNING"
    )

    return RepoflowConfig(
        state_dir=state_dir,
        db_path=db_path,
        busy_timeout_ms=busy_timeout_ms,
        git=_as_str(merge.get("git"), field="[merge].git") or "git",
        merge_timeout=_as_seconds(merge.get("timeout"), field="[merge].timeout"),
        lock_timeout=lock_timeout,
        email_domain=_as_str(merge.get("email_domain"), field="[merge].email_domain")
        or "repoflow.local",
        log_level=log_level,
    )


def locate_state_dir(cwd: Path | None = None, *, create: bool = True) -> Path:
    """Find the state directory that serves ``cwd``.

    ``REPOFLOW_STATE_DIR`` wins. Otherwise the nearest enclosing ``.repoflow``
    directory is used, and failing that a new one directly under ``cwd``.
    """
    override = os.environ.get(STATE_DIR_ENV_VAR, "").strip()
    if override:
        found = Path(override).expanduser().resolve()
    else:
        here = (cwd or Path.cwd()).resolve()
        enclosing = (base / STATE_DIR_NAME for base in (here, *here.parents))
        found = next((d for d in enclosing if d.is_dir()), here / STATE_DIR_NAME)
    if create:
        found.mkdir(parents=True, exist_ok=True)
    return found


def load_workdir_config(cwd: Path | None = None) -> RepoflowConfig:
    return load_config(locate_state_dir(cwd))
