from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from repoflow.errors import InvalidArgumentError, NotFoundError
from repoflow.models import IssueState, MergeRequestState
from repoflow.stores.db import Database
from repoflow.stores.issue import IssueStore
from repoflow.stores.merge_request import MergeRequestStore
from repoflow.stores.repo import RepoStore, sanitize_repo_name


def _other_repo(db: Database, tmp_path: Path) -> int:
    with db.transaction() as conn:
        return RepoStore().create(conn, "other", str(tmp_path / "other"))


def test_issue_create_starts_open_without_audit_fields(
    db: Database, repo_id: int
) -> None:
    store = IssueStore()
    with db.transaction() as conn:
        issue_id = store.create(conn, repo_id, "alice", "  Fix bug  ", "details")
        issue = store.get(conn, repo_id, issue_id)

    assert issue.title == "Fix bug"
    assert issue.description == "details"
    assert issue.state is IssueState.OPEN
    assert issue.author_id == "alice"
    assert issue.closed_by is None
    assert issue.closed_at is None
    assert issue.updated_at == issue.created_at


def test_issue_create_rejects_blank_title(db: Database, repo_id: int) -> None:
    with db.transaction() as conn:
        with pytest.raises(InvalidArgumentError, match="title cannot be empty"):
            IssueStore().create(conn, repo_id, "alice", "   ")


def test_issue_get_is_scoped_by_repo(
    db: Database, repo_id: int, tmp_path: Path
) -> None:
    other = _other_repo(db, tmp_path)
    store = IssueStore()
    with db.transaction() as conn:
        issue_id = store.create(conn, repo_id, "alice", "Scoped")
        assert store.find(conn, other, issue_id) is None
        with pytest.raises(NotFoundError, match=f"issue not found: #{issue_id}"):
            store.get(conn, other, issue_id)


def test_issue_listing_is_newest_first(db: Database, repo_id: int) -> None:
    store = IssueStore()
    with db.transaction() as conn:
        ids = [store.create(conn, repo_id, "alice", f"Issue {n}") for n in range(4)]
        rows = store.list_all(conn, repo_id)

    assert [row.id for row in rows] == list(reversed(ids))


def test_issue_list_by_state_matches_filtered_listing(
    db: Database, repo_id: int
) -> None:
    store = IssueStore()
    with db.transaction() as conn:
        ids = [store.create(conn, repo_id, "alice", f"Issue {n}") for n in range(5)]
        for issue_id in ids[::2]:
            conn.execute(
                "UPDATE issues SET state = 'closed' WHERE id = ?", (issue_id,)
            )
        every = store.list_all(conn, repo_id)
        closed = store.list_by_state(conn, repo_id, IssueState.CLOSED)
        opened = store.list_by_state(conn, repo_id, IssueState.OPEN)

    assert closed == [row for row in every if row.state is IssueState.CLOSED]
    assert opened == [row for row in every if row.state is IssueState.OPEN]
    assert len(closed) == 3


def test_issue_update_rewrites_text_only(db: Database, repo_id: int) -> None:
    store = IssueStore()
    with db.transaction() as conn:
        issue_id = store.create(conn, repo_id, "alice", "Old", "old body")
        conn.execute(
            "UPDATE issues SET created_at = 1, updated_at = 1 WHERE id = ?",
            (issue_id,),
        )
        store.update(conn, repo_id, issue_id, "New", "new body")
        issue = store.get(conn, repo_id, issue_id)

    assert (issue.title, issue.description) == ("New", "new body")
    assert issue.state is IssueState.OPEN
    assert issue.created_at == 1
    assert issue.updated_at > 1


def test_issue_update_and_delete_fail_for_missing_rows(
    db: Database, repo_id: int
) -> None:
    store = IssueStore()
    with db.transaction() as conn:
        with pytest.raises(NotFoundError):
            store.update(conn, repo_id, 404, "Title", "")
        with pytest.raises(NotFoundError):
            store.delete(conn, repo_id, 404)


def test_issue_store_lets_raw_integrity_errors_escape(db: Database) -> None:
    with db.transaction() as conn:
        with pytest.raises(sqlite3.IntegrityError):
            IssueStore().create(conn, 999, "alice", "Orphan")


def test_transaction_rolls_back_on_error(db: Database, repo_id: int) -> None:
    store = IssueStore()
    with pytest.raises(RuntimeError):
        with db.transaction() as conn:
            store.create(conn, repo_id, "alice", "Discarded")
            raise RuntimeError("boom")

    with db.transaction(write=False) as conn:
        assert store.list_all(conn, repo_id) == []


def test_merge_request_create_and_list(db: Database, repo_id: int) -> None:
    store = MergeRequestStore()
    with db.transaction() as conn:
        first = store.create(conn, repo_id, "alice", "First", "", "feature", "main")
        second = store.create(conn, repo_id, "bob", "Second", "", "hotfix", "main")
        mr = store.get(conn, repo_id, first)
        rows = store.list_all(conn, repo_id)
        merged = store.list_by_state(conn, repo_id, MergeRequestState.MERGED)

    assert mr.state is MergeRequestState.OPEN
    assert (mr.source_branch, mr.target_branch) == ("feature", "main")
    assert mr.merged_by is None and mr.merged_at is None
    assert [row.id for row in rows] == [second, first]
    assert merged == []


def test_merge_request_missing_rows_are_not_found(db: Database, repo_id: int) -> None:
    store = MergeRequestStore()
    with db.transaction() as conn:
        with pytest.raises(NotFoundError, match="merge request not found: #7"):
            store.get(conn, repo_id, 7)
        with pytest.raises(NotFoundError):
            store.update(conn, repo_id, 7, "Title", "")
        with pytest.raises(NotFoundError):
            store.delete(conn, repo_id, 7)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("demo", "demo"),
        ("  Demo.git ", "demo"),
        ("/team/Project.git/", "team/project"),
    ],
)
def test_sanitize_repo_name(raw: str, expected: str) -> None:
    assert sanitize_repo_name(raw) == expected


def test_sanitize_repo_name_rejects_empty() -> None:
    with pytest.raises(InvalidArgumentError):
        sanitize_repo_name(" / ")


def test_repo_store_lookup_by_sanitized_name(db: Database, repo_id: int) -> None:
    store = RepoStore()
    with db.transaction() as conn:
        repo = store.get_by_name(conn, "DEMO.git")
        with pytest.raises(NotFoundError, match="repository not found: nope"):
            store.get_by_name(conn, "nope")

    assert repo.id == repo_id
    assert repo.name == "demo"
