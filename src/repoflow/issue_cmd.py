from __future__ import annotations

import argparse
from typing import Any

from .cmdutil import (
    SORT_CHOICES,
    add_common_arguments,
    emit_json,
    fail,
    format_time,
    open_workflow,
    output_mode_for,
    resolve_actor,
    run_guarded,
    sort_entities,
    truncate,
)
from .models import ISSUE_STATES, Issue
from .ui import console_for, print_block, print_table, styled_state

_ISSUE_HEADERS = ("ID", "STATE", "AUTHOR", "UPDATED", "TITLE")


def _issue_columns(issue: Issue) -> tuple[str, str, str, str, str]:
    return (
        f"#{issue.id}",
        issue.state.value,
        issue.author_id,
        format_time(issue.updated_at),
        truncate(issue.title, 60),
    )


def _print_issue_list(rows: list[Issue], *, mode: str, title: str) -> None:
    if mode == "rich":
        console = console_for("rich")
        if not rows:
            print_block(console, title, "", empty="(no issues)")
            return
        print_table(
            console,
            title,
            _ISSUE_HEADERS,
            [
                (c[0], styled_state(c[1]), *c[2:])
                for c in (_issue_columns(row) for row in rows)
            ],
        )
        return
    if not rows:
        print("No issues found")
        return
    for row in rows:
        print(f"#{row.id}: {row.title} [{row.state.value}]")


def _print_issue_details(
    issue: Issue,
    dependencies: list[Issue],
    dependents: list[Issue],
    *,
    mode: str,
) -> None:
    lines = [
        f"state: {issue.state.value}",
        f"author: {issue.author_id}",
        f"created: {format_time(issue.created_at)}",
        f"updated: {format_time(issue.updated_at)}",
    ]
    if issue.closed_at is not None:
        lines.append(f"closed: {format_time(issue.closed_at)} by {issue.closed_by}")

    if mode == "rich":
        console = console_for("rich")
        print_block(console, f"Issue #{issue.id}: {issue.title}", "\n".join(lines))
        print_block(
            console, "Description", issue.description, empty="(no description)"
        )
        for title, rows in (("Depends on", dependencies), ("Blocked by", dependents)):
            if rows:
                print_table(
                    console,
                    title,
                    _ISSUE_HEADERS,
                    [_issue_columns(row) for row in rows],
                )
            else:
                print_block(console, title, "")
        return

    print(f"Issue #{issue.id}")
    print(f"Title: {issue.title}")
    print(f"Description: {issue.description}")
    for line in lines:
        print(line)
    if dependencies:
        print()
        print("Depends on:")
        for dep in dependencies:
            print(f"  #{dep.id} - {dep.title} [{dep.state.value}]")
    if dependents:
        print()
        print("Blocked by:")
        for dep in dependents:
            print(f"  #{dep.id} - {dep.title} [{dep.state.value}]")


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="repoflow issue", description="Manage issues.")
    sub = p.add_subparsers(dest="command", required=True, metavar="command")

    create = sub.add_parser("create", help="Create an issue")
    create.add_argument("repo", help="Repository name")
    create.add_argument("title", help="Issue title")
    create.add_argument("-d", "--description", default="", help="Issue description")
    add_common_arguments(create, actor=True)

    ls = sub.add_parser("list", help="List issues")
    ls.add_argument("repo", help="Repository name")
    ls.add_argument("--state", choices=ISSUE_STATES, help="Filter by state")
    ls.add_argument(
        "--sort",
        choices=SORT_CHOICES,
        default="created",
        help="Order by creation (default) or last update",
    )
    add_common_arguments(ls)

    show = sub.add_parser("show", help="Show issue details and dependencies")
    show.add_argument("repo", help="Repository name")
    show.add_argument("id", type=int, help="Issue id")
    add_common_arguments(show)

    update = sub.add_parser("update", help="Update an issue's title and description")
    update.add_argument("repo", help="Repository name")
    update.add_argument("id", type=int, help="Issue id")
    update.add_argument("title", help="New title")
    update.add_argument("-d", "--description", default="", help="New description")
    add_common_arguments(update)

    for name, summary in (("close", "Close an issue"), ("reopen", "Reopen a closed issue")):
        cmd = sub.add_parser(name, help=summary)
        cmd.add_argument("repo", help="Repository name")
        cmd.add_argument("id", type=int, help="Issue id")
        add_common_arguments(cmd, actor=name == "close")

    delete = sub.add_parser("delete", help="Delete an issue and its dependency edges")
    delete.add_argument("repo", help="Repository name")
    delete.add_argument("id", type=int, help="Issue id")
    delete.add_argument("--yes", action="store_true", help="Confirm delete operation")
    add_common_arguments(delete)

    for name, summary in (
        ("add-dependency", "Make ISSUE_ID depend on DEPENDS_ON_ID"),
        ("remove-dependency", "Remove a dependency edge"),
        ("has-dependency", "Report whether ISSUE_ID depends on DEPENDS_ON_ID"),
    ):
        cmd = sub.add_parser(name, help=summary)
        cmd.add_argument("repo", help="Repository name")
        cmd.add_argument("id", type=int, help="Issue id")
        cmd.add_argument("depends_on", type=int, help="Issue id depended upon")
        add_common_arguments(cmd)

    for name, summary in (
        ("dependencies", "List issues an issue depends on"),
        ("dependents", "List issues blocked by an issue"),
    ):
        cmd = sub.add_parser(name, help=summary)
        cmd.add_argument("repo", help="Repository name")
        cmd.add_argument("id", type=int, help="Issue id")
        add_common_arguments(cmd)

    return p


def _dispatch(args: argparse.Namespace) -> None:
    mode = output_mode_for(args)
    flow = open_workflow(mode)

    if args.command == "create":
        issue = flow.create_issue(
            args.repo, resolve_actor(args.actor), args.title, args.description
        )
        if args.json:
            emit_json(issue.to_dict())
        else:
            print(f"Created issue #{issue.id}")
        return

    if args.command == "list":
        if args.state:
            rows = flow.list_issues_by_state(args.repo, args.state)
        else:
            rows = flow.list_issues(args.repo)
        rows = sort_entities(rows, args.sort)
        if args.json:
            emit_json([row.to_dict() for row in rows])
        else:
            _print_issue_list(rows, mode=mode, title=f"Issues: {args.repo}")
        return

    if args.command == "show":
        issue = flow.get_issue(args.repo, args.id)
        dependencies = flow.get_dependencies(args.repo, args.id)
        dependents = flow.get_dependents(args.repo, args.id)
        if args.json:
            payload: dict[str, Any] = issue.to_dict()
            payload["depends_on"] = [row.to_dict() for row in dependencies]
            payload["blocked_by"] = [row.to_dict() for row in dependents]
            emit_json(payload)
        else:
            _print_issue_details(issue, dependencies, dependents, mode=mode)
        return

    if args.command == "update":
        issue = flow.update_issue(args.repo, args.id, args.title, args.description)
        if args.json:
            emit_json(issue.to_dict())
        else:
            print(f"Updated issue #{issue.id}")
        return

    if args.command == "close":
        issue = flow.close_issue(args.repo, args.id, resolve_actor(args.actor))
        if args.json:
            emit_json(issue.to_dict())
        else:
            print(f"Closed issue #{issue.id}")
        return

    if args.command == "reopen":
        issue = flow.reopen_issue(args.repo, args.id)
        if args.json:
            emit_json(issue.to_dict())
        else:
            print(f"Reopened issue #{issue.id}")
        return

    if args.command == "delete":
        if not args.yes:
            fail("refusing to delete without --yes")
        flow.delete_issue(args.repo, args.id)
        if args.json:
            emit_json({"id": args.id, "deleted": True})
        else:
            print(f"Deleted issue #{args.id}")
        return

    if args.command == "add-dependency":
        edge = flow.add_dependency(args.repo, args.id, args.depends_on)
        if args.json:
            emit_json(edge.to_dict())
        else:
            print(
                f"Added dependency: issue #{args.id} now depends on "
                f"issue #{args.depends_on}"
            )
        return

    if args.command == "remove-dependency":
        removed = flow.remove_dependency(args.repo, args.id, args.depends_on)
        if args.json:
            emit_json(
                {"issue_id": args.id, "depends_on_id": args.depends_on, "removed": removed}
            )
        elif removed:
            print(
                f"Removed dependency: issue #{args.id} no longer depends on "
                f"issue #{args.depends_on}"
            )
        else:
            print(
                f"No dependency to remove: issue #{args.id} does not depend on "
                f"issue #{args.depends_on}"
            )
        return

    if args.command == "has-dependency":
        present = flow.has_dependency(args.repo, args.id, args.depends_on)
        if args.json:
            emit_json(
                {"issue_id": args.id, "depends_on_id": args.depends_on, "present": present}
            )
        else:
            print("yes" if present else "no")
        return

    if args.command in ("dependencies", "dependents"):
        if args.command == "dependencies":
            rows = flow.get_dependencies(args.repo, args.id)
            title = f"Issue #{args.id} depends on"
        else:
            rows = flow.get_dependents(args.repo, args.id)
            title = f"Issue #{args.id} blocks"
        if args.json:
            emit_json([row.to_dict() for row in rows])
        else:
            _print_issue_list(rows, mode=mode, title=title)
        return


def main(argv: list[str] | None = None) -> None:
    args = _build_parser().parse_args(argv)
    run_guarded(lambda: _dispatch(args))


if __name__ == "__main__":
    main()
