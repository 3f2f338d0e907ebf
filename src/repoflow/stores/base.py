from __future__ import annotations

import sqlite3
from typing import Any, ClassVar, Generic, TypeVar

from ..errors import InvalidArgumentError, NotFoundError
from .state import now_ms

EntityT = TypeVar("EntityT")


def clean_title(title: str) -> str:
    value = title.strip()
    if not value:
        raise InvalidArgumentError("title cannot be empty")
    return value


class EntityStore(Generic[EntityT]):
    """Repository-scoped CRUD shared by issues and merge requests.

    Every method takes the connection of the caller's transaction. Listings
    are ordered by creation time, newest first; callers wanting recency of
    update re-sort on their side.
    """

    table: ClassVar[str]
    label: ClassVar[str]

    def _from_row(self, row: sqlite3.Row) -> EntityT:
        raise NotImplementedError

    def find(
        self, conn: sqlite3.Connection, repo_id: int, entity_id: int
    ) -> EntityT | None:
        row = conn.execute(
            f"SELECT * FROM {self.table} WHERE repo_id = ? AND id = ?",
            (repo_id, entity_id),
        ).fetchone()
        return self._from_row(row) if row is not None else None

    def get(self, conn: sqlite3.Connection, repo_id: int, entity_id: int) -> EntityT:
        entity = self.find(conn, repo_id, entity_id)
        if entity is None:
            raise NotFoundError(f"{self.label} not found: #{entity_id}")
        return entity

    def exists(self, conn: sqlite3.Connection, repo_id: int, entity_id: int) -> bool:
        row = conn.execute(
            f"SELECT 1 FROM {self.table} WHERE repo_id = ? AND id = ?",
            (repo_id, entity_id),
        ).fetchone()
        return row is not None

    def list_all(self, conn: sqlite3.Connection, repo_id: int) -> list[EntityT]:
        rows = conn.execute(
            f"""
            SELECT * FROM {self.table}
            WHERE repo_id = ?
            ORDER BY created_at DESC, id DESC
            """,
            (repo_id,),
        ).fetchall()
        return [self._from_row(row) for row in rows]

    def list_by_state(
        self, conn: sqlite3.Connection, repo_id: int, state: str
    ) -> list[EntityT]:
        rows = conn.execute(
            f"""
            SELECT * FROM {self.table}
            WHERE repo_id = ? AND state = ?
            ORDER BY created_at DESC, id DESC
            """,
            (repo_id, str(state)),
        ).fetchall()
        return [self._from_row(row) for row in rows]

    def update(
        self,
        conn: sqlite3.Connection,
        repo_id: int,
        entity_id: int,
        title: str,
        description: str,
    ) -> None:
        cur = conn.execute(
            f"""
            UPDATE {self.table}
            SET title = ?, description = ?, updated_at = ?
            WHERE repo_id = ? AND id = ?
            """,
            (clean_title(title), description, now_ms(), repo_id, entity_id),
        )
        if cur.rowcount == 0:
            raise NotFoundError(f"{self.label} not found: #{entity_id}")

    def delete(self, conn: sqlite3.Connection, repo_id: int, entity_id: int) -> None:
        cur = conn.execute(
            f"DELETE FROM {self.table} WHERE repo_id = ? AND id = ?",
            (repo_id, entity_id),
        )
        if cur.rowcount == 0:
            raise NotFoundError(f"{self.label} not found: #{entity_id}")

    def guarded_update(
        self,
        conn: sqlite3.Connection,
        repo_id: int,
        entity_id: int,
        *,
        expected_state: str,
        assignments: dict[str, Any],
    ) -> int:
        """Apply ``assignments`` only while the row is in ``expected_state``.

        Returns the number of rows matched: 1 when the precondition held, 0
        when the row is missing or in any other state.
        """
        columns = ", ".join(f"{column} = ?" for column in assignments)
        cur = conn.execute(
            f"""
            UPDATE {self.table}
            SET {columns}
            WHERE repo_id = ? AND id = ? AND state = ?
            """,
            (*assignments.values(), repo_id, entity_id, str(expected_state)),
        )
        return cur.rowcount
