from __future__ import annotations

import sqlite3

from ..models import MergeRequest, MergeRequestState
from .base import EntityStore, clean_title
from .state import now_ms


class MergeRequestStore(EntityStore[MergeRequest]):
    table = "merge_requests"
    label = "merge request"

    def _from_row(self, row: sqlite3.Row) -> MergeRequest:
        return MergeRequest.from_row(row)

    def create(
        self,
        conn: sqlite3.Connection,
        repo_id: int,
        author_id: str,
        title: str,
        description: str,
        source_branch: str,
        target_branch: str,
    ) -> int:
        now = now_ms()
        cur = conn.execute(
            """
            INSERT INTO merge_requests(
                repo_id, title, description, source_branch, target_branch,
                state, author_id, created_at, updated_at
            )
            VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                repo_id,
                clean_title(title),
                description,
                source_branch,
                target_branch,
                MergeRequestState.OPEN.value,
                author_id,
                now,
                now,
            ),
        )
        return int(cur.lastrowid)
