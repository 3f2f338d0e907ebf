"""CLI entry point for repoflow."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from . import __version__
from .cmdutil import (
    add_common_arguments,
    emit_json,
    fail,
    format_time,
    open_workflow,
    output_mode_for,
    run_guarded,
)
from .ui import console_for, print_block, print_table

_GROUPS = ("repo", "issue", "mr")
_USAGE = """\
usage: repoflow <group> <command> [ARGS]

groups:
  repo    register repositories and their working trees
  issue   create, transition and link issues
  mr      create, merge and transition merge requests

Run `repoflow <group> --help` for the commands of a group.
"""


def _repo_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="repoflow repo", description="Manage repositories.")
    sub = p.add_subparsers(dest="command", required=True, metavar="command")

    add = sub.add_parser("add", help="Register a repository working tree")
    add.add_argument("name", help="Repository name")
    add.add_argument("path", help="Path to the repository working tree")
    add_common_arguments(add)

    ls = sub.add_parser("list", help="List registered repositories")
    add_common_arguments(ls)

    remove = sub.add_parser(
        "remove", help="Forget a repository with its issues and merge requests"
    )
    remove.add_argument("name", help="Repository name")
    remove.add_argument("--yes", action="store_true", help="Confirm remove operation")
    add_common_arguments(remove)
    return p


def _repo_dispatch(args: argparse.Namespace) -> None:
    mode = output_mode_for(args)
    flow = open_workflow(mode)

    if args.command == "add":
        repo = flow.register_repo(args.name, Path(args.path).expanduser().resolve())
        if args.json:
            emit_json(repo.to_dict())
        else:
            print(f"Registered repository {repo.name} at {repo.path}")
        return

    if args.command == "list":
        repos = flow.list_repos()
        if args.json:
            emit_json([repo.to_dict() for repo in repos])
        elif mode == "rich":
            console = console_for("rich")
            if not repos:
                print_block(console, "Repositories", "", empty="(no repositories)")
                return
            print_table(
                console,
                "Repositories",
                ("NAME", "CREATED", "PATH"),
                [(r.name, format_time(r.created_at), r.path) for r in repos],
            )
        elif not repos:
            print("No repositories found")
        else:
            for repo in repos:
                print(f"{repo.name}\t{repo.path}")
        return

    if args.command == "remove":
        if not args.yes:
            fail("refusing to remove without --yes")
        flow.remove_repo(args.name)
        if args.json:
            emit_json({"name": args.name, "removed": True})
        else:
            print(f"Removed repository {args.name}")
        return


def repo_main(argv: list[str] | None = None) -> None:
    args = _repo_parser().parse_args(argv)
    run_guarded(lambda: _repo_dispatch(args))


def main(argv: list[str] | None = None) -> None:
    raw_argv = list(argv) if argv is not None else sys.argv[1:]
    if not raw_argv or raw_argv[0] in ("-h", "--help"):
        print(_USAGE, end="")
        raise SystemExit(0 if raw_argv else 2)
    if raw_argv[0] == "--version":
        print(f"repoflow {__version__}")
        return

    group, rest = raw_argv[0], raw_argv[1:]
    if group == "repo":
        repo_main(rest)
    elif group == "issue":
        from .issue_cmd import main as issue_main

        issue_main(rest)
    elif group in ("mr", "merge-request"):
        from .mr_cmd import main as mr_main

        mr_main(rest)
    else:
        expected = ", ".join(_GROUPS)
        print(
            f"error: unknown group {group!r} (expected one of: {expected})",
            file=sys.stderr,
        )
        raise SystemExit(2)


if __name__ == "__main__":
    main()
