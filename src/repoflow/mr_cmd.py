from __future__ import annotations

import argparse

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
from .models import MERGE_REQUEST_STATES, MergeRequest
from .ui import console_for, print_block, print_table, styled_state

_MR_HEADERS = ("ID", "STATE", "BRANCHES", "AUTHOR", "UPDATED", "TITLE")


def _mr_columns(mr: MergeRequest) -> tuple[str, str, str, str, str, str]:
    return (
        f"!{mr.id}",
        mr.state.value,
        f"{mr.source_branch} -> {mr.target_branch}",
        mr.author_id,
        format_time(mr.updated_at),
        truncate(mr.title, 56),
    )


def _print_mr_list(rows: list[MergeRequest], *, mode: str, title: str) -> None:
    if mode == "rich":
        console = console_for("rich")
        if not rows:
            print_block(console, title, "", empty="(no merge requests)")
            return
        print_table(
            console,
            title,
            _MR_HEADERS,
            [
                (c[0], styled_state(c[1]), *c[2:])
                for c in (_mr_columns(row) for row in rows)
            ],
        )
        return
    if not rows:
        print("No merge requests found")
        return
    for mr in rows:
        print(
            f"!{mr.id}: {mr.title} ({mr.source_branch} -> {mr.target_branch}) "
            f"[{mr.state.value}]"
        )


def _print_mr_details(mr: MergeRequest, *, mode: str) -> None:
    lines = [
        f"state: {mr.state.value}",
        f"source: {mr.source_branch}",
        f"target: {mr.target_branch}",
        f"author: {mr.author_id}",
        f"created: {format_time(mr.created_at)}",
        f"updated: {format_time(mr.updated_at)}",
    ]
    if mr.merged_at is not None:
        lines.append(f"merged: {format_time(mr.merged_at)} by {mr.merged_by}")
    if mr.closed_at is not None:
        lines.append(f"closed: {format_time(mr.closed_at)} by {mr.closed_by}")

    if mode == "rich":
        console = console_for("rich")
        print_block(console, f"Merge request !{mr.id}: {mr.title}", "\n".join(lines))
        print_block(console, "Description", mr.description, empty="(no description)")
        return

    print(f"Merge Request !{mr.id}")
    print(f"Title: {mr.title}")
    print(f"Description: {mr.description}")
    for line in lines:
        print(line)


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="repoflow mr", description="Manage merge requests.")
    sub = p.add_subparsers(dest="command", required=True, metavar="command")

    create = sub.add_parser("create", help="Create a merge request")
    create.add_argument("repo", help="Repository name")
    create.add_argument("source", help="Source branch")
    create.add_argument("target", help="Target branch")
    create.add_argument("title", help="Merge request title")
    create.add_argument("-d", "--description", default="", help="Description")
    add_common_arguments(create, actor=True)

    ls = sub.add_parser("list", help="List merge requests")
    ls.add_argument("repo", help="Repository name")
    ls.add_argument("--state", choices=MERGE_REQUEST_STATES, help="Filter by state")
    ls.add_argument(
        "--sort",
        choices=SORT_CHOICES,
        default="created",
        help="Order by creation (default) or last update",
    )
    add_common_arguments(ls)

    show = sub.add_parser("show", help="Show merge request details")
    show.add_argument("repo", help="Repository name")
    show.add_argument("id", type=int, help="Merge request id")
    add_common_arguments(show)

    update = sub.add_parser("update", help="Update title and description")
    update.add_argument("repo", help="Repository name")
    update.add_argument("id", type=int, help="Merge request id")
    update.add_argument("title", help="New title")
    update.add_argument("-d", "--description", default="", help="New description")
    add_common_arguments(update)

    merge = sub.add_parser("merge", help="Merge the source branch into the target")
    merge.add_argument("repo", help="Repository name")
    merge.add_argument("id", type=int, help="Merge request id")
    merge.add_argument(
        "--timeout", type=float, help="Give up after this many seconds"
    )
    add_common_arguments(merge, actor=True)

    for name, summary in (
        ("close", "Close a merge request"),
        ("reopen", "Reopen a closed merge request"),
    ):
        cmd = sub.add_parser(name, help=summary)
        cmd.add_argument("repo", help="Repository name")
        cmd.add_argument("id", type=int, help="Merge request id")
        add_common_arguments(cmd, actor=name == "close")

    delete = sub.add_parser("delete", help="Delete a merge request")
    delete.add_argument("repo", help="Repository name")
    delete.add_argument("id", type=int, help="Merge request id")
    delete.add_argument("--yes", action="store_true", help="Confirm delete operation")
    add_common_arguments(delete)

    return p


def _dispatch(args: argparse.Namespace) -> None:
    mode = output_mode_for(args)
    flow = open_workflow(mode)

    if args.command == "create":
        mr = flow.create_merge_request(
            args.repo,
            resolve_actor(args.actor),
            args.title,
            args.source,
            args.target,
            args.description,
        )
        if args.json:
            emit_json(mr.to_dict())
        else:
            print(f"Created merge request !{mr.id}")
        return

    if args.command == "list":
        if args.state:
            rows = flow.list_merge_requests_by_state(args.repo, args.state)
        else:
            rows = flow.list_merge_requests(args.repo)
        rows = sort_entities(rows, args.sort)
        if args.json:
            emit_json([row.to_dict() for row in rows])
        else:
            _print_mr_list(rows, mode=mode, title=f"Merge requests: {args.repo}")
        return

    if args.command == "show":
        mr = flow.get_merge_request(args.repo, args.id)
        if args.json:
            emit_json(mr.to_dict())
        else:
            _print_mr_details(mr, mode=mode)
        return

    if args.command == "update":
        mr = flow.update_merge_request(args.repo, args.id, args.title, args.description)
        if args.json:
            emit_json(mr.to_dict())
        else:
            print(f"Updated merge request !{mr.id}")
        return

    if args.command == "merge":
        mr = flow.merge_merge_request(
            args.repo, args.id, resolve_actor(args.actor), timeout=args.timeout
        )
        if args.json:
            emit_json(mr.to_dict())
        else:
            print(f"Merged merge request !{mr.id}")
        return

    if args.command == "close":
        mr = flow.close_merge_request(args.repo, args.id, resolve_actor(args.actor))
        if args.json:
            emit_json(mr.to_dict())
        else:
            print(f"Closed merge request !{mr.id}")
        return

    if args.command == "reopen":
        mr = flow.reopen_merge_request(args.repo, args.id)
        if args.json:
            emit_json(mr.to_dict())
        else:
            print(f"Reopened merge request !{mr.id}")
        return

    if args.command == "delete":
        if not args.yes:
            fail("refusing to delete without --yes")
        flow.delete_merge_request(args.repo, args.id)
        if args.json:
            emit_json({"id": args.id, "deleted": True})
        else:
            print(f"Deleted merge request !{args.id}")
        return


def main(argv: list[str] | None = None) -> None:
    args = _build_parser().parse_args(argv)
    run_guarded(lambda: _dispatch(args))


if __name__ == "__main__":
    main()
