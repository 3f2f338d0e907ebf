from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from repoflow.errors import ExternalOperationError
from repoflow.locks import WorkingTreeLocks
from repoflow.service import Workflow
from repoflow.stores.db import Database
from repoflow.stores.repo import RepoStore

_ENV_VARS = (
    "REPOFLOW_STATE_DIR",
    "REPOFLOW_USER",
    "REPOFLOW_OUTPUT",
    "REPOFLOW_LOG_LEVEL",
)


@dataclass
class FakeWorkingTree:
    """In-memory stand-in for a git checkout."""

    branches: set[str] = field(default_factory=lambda: {"main", "feature", "hotfix"})
    merge_error: str | None = None
    abort_error: str | None = None
    delay: float = 0.0
    on_merge: Callable[[], None] | None = None
    fail_after_merge: str | None = None
    calls: list[tuple[str, ...]] = field(default_factory=list)
    head: str | None = None
    landed: set[tuple[str, str]] = field(default_factory=set)
    max_active: int = 0
    _active: int = 0
    _guard: threading.Lock = field(default_factory=threading.Lock)

    def branch_exists(self, branch: str) -> bool:
        return branch in self.branches

    def contains(
        self, branch: str, ancestor: str, *, timeout: float | None = None
    ) -> bool:
        return (branch, ancestor) in self.landed

    def checkout(self, branch: str, *, timeout: float | None = None) -> None:
        self.calls.append(("checkout", branch))
        if branch not in self.branches:
            raise ExternalOperationError(f"failed to checkout target branch {branch!r}")
        self.head = branch

    def merge(
        self,
        branch: str,
        *,
        message: str,
        author: str,
        timeout: float | None = None,
    ) -> str:
        with self._guard:
            self._active += 1
            self.max_active = max(self.max_active, self._active)
        try:
            self.calls.append(("merge", branch, message, author))
            if self.delay:
                time.sleep(self.delay)
            if self.on_merge is not None:
                self.on_merge()
            if self.merge_error is not None:
                raise ExternalOperationError(self.merge_error)
            if branch not in self.branches:
                raise ExternalOperationError(f"failed to merge branch {branch!r}")
            if self.head is not None:
                self.landed.add((self.head, branch))
            if self.fail_after_merge is not None:
                raise ExternalOperationError(self.fail_after_merge)
            return f"{len(self.calls):040x}"
        finally:
            with self._guard:
                self._active -= 1

    def abort_merge(self) -> None:
        self.calls.append(("abort",))
        if self.abort_error is not None:
            raise ExternalOperationError(self.abort_error)

    def merges(self) -> list[tuple[str, ...]]:
        return [call for call in self.calls if call[0] == "merge"]


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield
    logger = logging.getLogger("repoflow")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture
def db(tmp_path: Path) -> Database:
    return Database(tmp_path / "state" / "repoflow.sqlite3")


@pytest.fixture
def repo_id(db: Database, tmp_path: Path) -> int:
    with db.transaction() as conn:
        return RepoStore().create(conn, "demo", str(tmp_path / "demo"))


@pytest.fixture
def tree() -> FakeWorkingTree:
    return FakeWorkingTree()


@pytest.fixture
def workflow(db: Database, tree: FakeWorkingTree, tmp_path: Path) -> Workflow:
    flow = Workflow(
        db,
        tree_factory=lambda repo: tree,
        locks=WorkingTreeLocks(tmp_path / "state" / "locks"),
        lock_timeout=5.0,
    )
    flow.register_repo("demo", tmp_path / "demo")
    return flow
