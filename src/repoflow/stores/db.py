from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import closing, contextmanager
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

DB_FILENAME = "repoflow.sqlite3"

_SCHEMA = """
PRAGMA journal_mode=WAL;
CREATE TABLE IF NOT EXISTS repos (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    path TEXT NOT NULL,
    created_at INTEGER NOT NULL
);
CREATE TABLE IF NOT EXISTS issues (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    repo_id INTEGER NOT NULL,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    state TEXT NOT NULL DEFAULT 'open',
    author_id TEXT NOT NULL,
    closed_by TEXT,
    closed_at INTEGER,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL,
    FOREIGN KEY(repo_id) REFERENCES repos(id) ON DELETE CASCADE
);
CREATE TABLE IF NOT EXISTS merge_requests (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    repo_id INTEGER NOT NULL,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    source_branch TEXT NOT NULL,
    target_branch TEXT NOT NULL,
    state TEXT NOT NULL DEFAULT 'open',
    author_id TEXT NOT NULL,
    merged_by TEXT,
    merged_at INTEGER,
    closed_by TEXT,
    closed_at INTEGER,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL,
    FOREIGN KEY(repo_id) REFERENCES repos(id) ON DELETE CASCADE
);
CREATE TABLE IF NOT EXISTS issue_dependencies (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    issue_id INTEGER NOT NULL,
    depends_on_id INTEGER NOT NULL,
    created_at INTEGER NOT NULL,
    CONSTRAINT unique_dependency UNIQUE(issue_id, depends_on_id),
    CONSTRAINT no_self_dependency CHECK(issue_id != depends_on_id),
    FOREIGN KEY(issue_id) REFERENCES issues(id) ON DELETE CASCADE,
    FOREIGN KEY(depends_on_id) REFERENCES issues(id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_issues_repo_state ON issues(repo_id, state);
CREATE INDEX IF NOT EXISTS idx_merge_requests_repo_state
    ON merge_requests(repo_id, state);
CREATE INDEX IF NOT EXISTS idx_issue_dependencies_issue_id
    ON issue_dependencies(issue_id);
CREATE INDEX IF NOT EXISTS idx_issue_dependencies_depends_on_id
    ON issue_dependencies(depends_on_id);
"""


@dataclass
class Database:
    """Handle on the SQLite file shared by every store.

    Each transaction uses its own connection, so a ``Database`` can be shared
    between threads.
    """

    path: Path
    busy_timeout_ms: int = 5000
    _schema_ready: bool = field(default=False, init=False, repr=False)
    _schema_lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False
    )

    def connect(self, *, timeout: float | None = None) -> sqlite3.Connection:
        busy = self.busy_timeout_ms / 1000.0
        if timeout is not None:
            busy = max(0.0, min(busy, timeout))
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.path, timeout=busy, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        self._ensure_schema(conn)
        return conn

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        if self._schema_ready:
            return
        with self._schema_lock:
            if self._schema_ready:
                return
            conn.executescript(_SCHEMA)
            self._schema_ready = True
            logger.debug("schema ready at %s", self.path)

    @contextmanager
    def transaction(
        self,
        *,
        write: bool = True,
        timeout: float | None = None,
    ) -> Iterator[sqlite3.Connection]:
        """Run the block inside one transaction, committing on success.

        Write transactions take the database write lock up front so that a
        read followed by a write inside the block cannot interleave with
        another writer.
        """
        with closing(self.connect(timeout=timeout)) as conn:
            conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
            try:
                yield conn
            except BaseException:
                conn.rollback()
                raise
            conn.commit()
