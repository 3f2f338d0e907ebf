"""Helpers shared by the ``repoflow`` subcommands."""

from __future__ import annotations

import argparse
import getpass
import json
import os
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any, NoReturn

from .config import load_workdir_config
from .errors import UnrecordedMergeError, WorkflowError
from .service import Workflow
from .ui import (
    OutputMode,
    add_output_mode_argument,
    configure_logging,
    resolve_output_mode,
)
from .util import eprint, iso_from_epoch_ms

ACTOR_ENV_VAR = "REPOFLOW_USER"
SORT_CHOICES = ("created", "updated")

EXIT_ERROR = 1
EXIT_UNRECORDED = 3


def add_common_arguments(
    parser: argparse.ArgumentParser,
    *,
    actor: bool = False,
) -> None:
    parser.add_argument("--json", action="store_true", help="Output JSON")
    add_output_mode_argument(parser)
    if actor:
        parser.add_argument(
            "--as",
            dest="actor",
            help=f"Acting user (default: ${ACTOR_ENV_VAR} or the login name)",
        )


def resolve_actor(explicit: str | None) -> str:
    if explicit and explicit.strip():
        return explicit.strip()
    from_env = os.environ.get(ACTOR_ENV_VAR, "").strip()
    if from_env:
        return from_env
    return getpass.getuser()


def output_mode_for(args: argparse.Namespace) -> OutputMode:
    return resolve_output_mode(getattr(args, "output", None))


def open_workflow(mode: OutputMode, cwd: Path | None = None) -> Workflow:
    config = load_workdir_config(cwd)
    configure_logging(config.log_level_number, mode=mode)
    return Workflow.from_config(config)


def with_iso_timestamps(payload: Any) -> Any:
    if isinstance(payload, dict):
        out: dict[str, Any] = {}
        for key, value in payload.items():
            out[key] = with_iso_timestamps(value)
            if key.endswith("_at"):
                iso = iso_from_epoch_ms(value)
                if iso:
                    out[f"{key}_iso"] = iso
        return out
    if isinstance(payload, list):
        return [with_iso_timestamps(item) for item in payload]
    return payload


def emit_json(payload: Any) -> None:
    print(json.dumps(with_iso_timestamps(payload), ensure_ascii=False, indent=2))


def format_time(value: object) -> str:
    return iso_from_epoch_ms(value) or "-"


def truncate(value: object, limit: int) -> str:
    text = str(value or "").strip()
    if len(text) <= limit:
        return text
    if limit <= 3:
        return text[:limit]
    return text[: limit - 3] + "..."


def sort_entities(rows: Sequence[Any], order: str) -> list[Any]:
    """Re-sort a creation-ordered listing by ``order``."""
    if order == "updated":
        return sorted(rows, key=lambda row: (row.updated_at, row.id), reverse=True)
    return list(rows)


def fail(message: str, *, code: int = EXIT_ERROR) -> NoReturn:
    eprint(f"error: {message}")
    raise SystemExit(code)


def run_guarded(action: Callable[[], None]) -> None:
    try:
        action()
    except UnrecordedMergeError as exc:
        eprint(f"error: {exc}")
        eprint(
            "hint: the merge commit exists in the repository; reconcile the "
            "merge request state manually"
        )
        raise SystemExit(EXIT_UNRECORDED) from exc
    except (WorkflowError, ValueError) as exc:
        fail(str(exc))
