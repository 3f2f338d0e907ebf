from __future__ import annotations

import sqlite3

from ..errors import InvalidArgumentError, NotFoundError
from ..models import Repo
from .state import now_ms


def sanitize_repo_name(name: str) -> str:
    value = name.strip().strip("/").lower()
    if value.endswith(".git"):
        value = value[: -len(".git")]
    value = value.strip("/")
    if not value:
        raise InvalidArgumentError("repository name cannot be empty")
    return value


class RepoStore:
    def create(self, conn: sqlite3.Connection, name: str, path: str) -> int:
        location = path.strip()
        if not location:
            raise InvalidArgumentError("repository path cannot be empty")
        cur = conn.execute(
            "INSERT INTO repos(name, path, created_at) VALUES(?, ?, ?)",
            (sanitize_repo_name(name), location, now_ms()),
        )
        return int(cur.lastrowid)

    def get_by_name(self, conn: sqlite3.Connection, name: str) -> Repo:
        key = sanitize_repo_name(name)
        row = conn.execute(
            "SELECT id, name, path, created_at FROM repos WHERE name = ?",
            (key,),
        ).fetchone()
        if row is None:
            raise NotFoundError(f"repository not found: {key}")
        return Repo.from_row(row)

    def list(self, conn: sqlite3.Connection) -> list[Repo]:
        rows = conn.execute(
            "SELECT id, name, path, created_at FROM repos ORDER BY name ASC"
        ).fetchall()
        return [Repo.from_row(row) for row in rows]

    def delete(self, conn: sqlite3.Connection, name: str) -> None:
        key = sanitize_repo_name(name)
        cur = conn.execute("DELETE FROM repos WHERE name = ?", (key,))
        if cur.rowcount == 0:
            raise NotFoundError(f"repository not found: {key}")
