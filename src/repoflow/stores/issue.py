from __future__ import annotations

import sqlite3

from ..models import Issue, IssueState
from .base import EntityStore, clean_title
from .state import now_ms


class IssueStore(EntityStore[Issue]):
    table = "issues"
    label = "issue"

    def _from_row(self, row: sqlite3.Row) -> Issue:
        return Issue.from_row(row)

    def create(
        self,
        conn: sqlite3.Connection,
        repo_id: int,
        author_id: str,
        title: str,
        description: str = "",
    ) -> int:
        now = now_ms()
        cur = conn.execute(
            """
            INSERT INTO issues(
                repo_id, title, description, state, author_id, created_at, updated_at
            )
            VALUES(?, ?, ?, ?, ?, ?, ?)
            """,
            (
                repo_id,
                clean_title(title),
                description,
                IssueState.OPEN.value,
                author_id,
                now,
                now,
            ),
        )
        return int(cur.lastrowid)

    def delete(self, conn: sqlite3.Connection, repo_id: int, entity_id: int) -> None:
        super().delete(conn, repo_id, entity_id)
        conn.execute(
            "DELETE FROM issue_dependencies WHERE issue_id = ? OR depends_on_id = ?",
            (entity_id, entity_id),
        )
