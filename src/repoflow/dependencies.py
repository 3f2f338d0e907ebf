from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field

from .errors import InvalidArgumentError, NotFoundError
from .models import DependencyEdge, Issue
from .stores.issue import IssueStore
from .stores.state import now_ms

logger = logging.getLogger(__name__)


@dataclass
class DependencyGraph:
    """Directed "depends-on" edges between issues of a single repository.

    Cycles spanning several hops are representable; only self-edges are
    rejected.
    """

    issues: IssueStore = field(default_factory=IssueStore)

    def _require(self, conn: sqlite3.Connection, repo_id: int, issue_id: int) -> None:
        if not self.issues.exists(conn, repo_id, issue_id):
            raise NotFoundError(f"issue not found: #{issue_id}")

    def add(
        self,
        conn: sqlite3.Connection,
        repo_id: int,
        issue_id: int,
        depends_on_id: int,
    ) -> DependencyEdge:
        self._require(conn, repo_id, issue_id)
        self._require(conn, repo_id, depends_on_id)
        if issue_id == depends_on_id:
            raise InvalidArgumentError("an issue cannot depend on itself")

        now = now_ms()
        # A duplicate edge surfaces as sqlite3.IntegrityError.
        conn.execute(
            """
            INSERT INTO issue_dependencies(issue_id, depends_on_id, created_at)
            VALUES(?, ?, ?)
            """,
            (issue_id, depends_on_id, now),
        )
        logger.debug("issue #%s now depends on #%s", issue_id, depends_on_id)
        return DependencyEdge(
            issue_id=issue_id, depends_on_id=depends_on_id, created_at=now
        )

    def remove(
        self,
        conn: sqlite3.Connection,
        repo_id: int,
        issue_id: int,
        depends_on_id: int,
    ) -> bool:
        """Delete the edge if present. Returns whether an edge was removed."""
        self._require(conn, repo_id, issue_id)
        cur = conn.execute(
            """
            DELETE FROM issue_dependencies
            WHERE issue_id = ? AND depends_on_id = ?
            """,
            (issue_id, depends_on_id),
        )
        return cur.rowcount > 0

    def dependencies(
        self, conn: sqlite3.Connection, repo_id: int, issue_id: int
    ) -> list[Issue]:
        """Issues that ``issue_id`` depends on, newest first."""
        self._require(conn, repo_id, issue_id)
        rows = conn.execute(
            """
            SELECT i.*
            FROM issue_dependencies d
            JOIN issues i ON i.id = d.depends_on_id
            WHERE d.issue_id = ? AND i.repo_id = ?
            ORDER BY i.created_at DESC, i.id DESC
            """,
            (issue_id, repo_id),
        ).fetchall()
        return [Issue.from_row(row) for row in rows]

    def dependents(
        self, conn: sqlite3.Connection, repo_id: int, issue_id: int
    ) -> list[Issue]:
        """Issues blocked on ``issue_id``, newest first."""
        self._require(conn, repo_id, issue_id)
        rows = conn.execute(
            """
            SELECT i.*
            FROM issue_dependencies d
            JOIN issues i ON i.id = d.issue_id
            WHERE d.depends_on_id = ? AND i.repo_id = ?
            ORDER BY i.created_at DESC, i.id DESC
            """,
            (issue_id, repo_id),
        ).fetchall()
        return [Issue.from_row(row) for row in rows]

    def has(
        self,
        conn: sqlite3.Connection,
        repo_id: int,
        issue_id: int,
        depends_on_id: int,
    ) -> bool:
        self._require(conn, repo_id, issue_id)
        row = conn.execute(
            """
            SELECT 1 FROM issue_dependencies
            WHERE issue_id = ? AND depends_on_id = ?
            """,
            (issue_id, depends_on_id),
        ).fetchone()
        return row is not None
