"""Terminal rendering for the ``repoflow`` commands.

Rich mode draws tables and panels; plain mode is left to the callers, which
print one line per record.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from collections.abc import Iterable, Sequence
from typing import Literal

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

OUTPUT_CHOICES = ("auto", "plain", "rich")
OUTPUT_ENV_VAR = "REPOFLOW_OUTPUT"
OutputMode = Literal["plain", "rich"]

_STATE_STYLES = {
    "open": "green",
    "merged": "magenta",
    "closed": "red",
}


def add_output_mode_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--output",
        choices=OUTPUT_CHOICES,
        help=f"Output mode: auto (default), plain, or rich (or {OUTPUT_ENV_VAR})",
    )


def resolve_output_mode(
    requested: str | None = None,
    *,
    is_tty: bool | None = None,
) -> OutputMode:
    """Pick the output mode from ``--output``, then ``REPOFLOW_OUTPUT``.

    ``auto`` (or nothing set) means rich on a terminal and plain otherwise.
    """
    candidates = (
        (requested, "--output"),
        (os.environ.get(OUTPUT_ENV_VAR), OUTPUT_ENV_VAR),
    )
    for raw, source in candidates:
        choice = (raw or "").strip().lower()
        if not choice:
            continue
        if choice not in OUTPUT_CHOICES:
            raise ValueError(
                f"{source} must be one of {', '.join(OUTPUT_CHOICES)}, got {raw!r}"
            )
        if choice != "auto":
            return "rich" if choice == "rich" else "plain"
        break

    if is_tty is None:
        isatty = getattr(sys.stdout, "isatty", None)
        is_tty = bool(isatty()) if callable(isatty) else False
    return "rich" if is_tty else "plain"


def console_for(mode: OutputMode, *, stderr: bool = False) -> Console:
    rich = mode == "rich"
    return Console(
        file=sys.stderr if stderr else sys.stdout,
        force_terminal=rich,
        no_color=not rich,
        highlight=False,
    )


def styled_state(state: str) -> str:
    style = _STATE_STYLES.get(state)
    return f"[{style}]{state}[/{style}]" if style else state


def print_table(
    console: Console,
    title: str,
    headers: Sequence[str],
    rows: Iterable[Sequence[object]],
) -> None:
    # Every column but the last (free text) stays on one line.
    table = Table(title=title)
    last = len(headers) - 1
    for index, header in enumerate(headers):
        table.add_column(header, no_wrap=index < last)
    for row in rows:
        table.add_row(*("" if cell is None else str(cell) for cell in row))
    console.print(table)


def print_block(
    console: Console, title: str, body: str, *, empty: str = "(none)"
) -> None:
    console.print(Panel(body.strip() or empty, title=title))


def configure_logging(level: int | str, *, mode: OutputMode) -> None:
    """Attach one stderr handler to the ``repoflow`` logger."""
    root = logging.getLogger("repoflow")
    for handler in list(root.handlers):
        root.removeHandler(handler)
    handler: logging.Handler
    if mode == "rich":
        handler = RichHandler(
            console=console_for("rich", stderr=True),
            show_path=False,
            markup=False,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
    root.addHandler(handler)
    root.setLevel(level)
    root.propagate = False
