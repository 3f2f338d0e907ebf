"""Entry points used by the command line and other callers.

``Workflow`` resolves repository names and acting users, runs each operation
inside one transaction, and translates raw storage failures into the
``repoflow.errors`` taxonomy. Authentication happens before this layer: the
actor handed in is trusted as given.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path

from .config import RepoflowConfig, load_workdir_config
from .dependencies import DependencyGraph
from .errors import InvalidArgumentError, translate_store_error
from .locks import WorkingTreeLocks
from .machine import IssueStateMachine, MergeRequestStateMachine
from .merge import MergeExecutor
from .models import (
    DependencyEdge,
    Issue,
    IssueState,
    MergeRequest,
    MergeRequestState,
    Repo,
    parse_issue_state,
    parse_merge_request_state,
)
from .stores.db import Database
from .stores.issue import IssueStore
from .stores.merge_request import MergeRequestStore
from .stores.repo import RepoStore
from .vcs import GitWorkingTree, WorkingTree, is_valid_branch_name

logger = logging.getLogger(__name__)

TreeFactory = Callable[[Repo], WorkingTree]


def _clean_actor(actor: str) -> str:
    value = (actor or "").strip()
    if not value:
        raise InvalidArgumentError("acting user is required")
    return value


class Workflow:
    def __init__(
        self,
        db: Database,
        *,
        tree_factory: TreeFactory | None = None,
        locks: WorkingTreeLocks | None = None,
        lock_timeout: float | None = None,
        merge_timeout: float | None = None,
    ) -> None:
        self.db = db
        self.tree_factory = tree_factory or (
            lambda repo: GitWorkingTree(Path(repo.path))
        )
        self.merge_timeout = merge_timeout
        self.repos = RepoStore()
        self.issues = IssueStore()
        self.merge_requests = MergeRequestStore()
        self.graph = DependencyGraph(self.issues)
        self.issue_machine = IssueStateMachine(self.issues)
        self.mr_machine = MergeRequestStateMachine(self.merge_requests)
        self.executor = MergeExecutor(
            db,
            locks=locks,
            store=self.merge_requests,
            machine=self.mr_machine,
            lock_timeout=lock_timeout,
        )

    @classmethod
    def from_config(cls, config: RepoflowConfig) -> "Workflow":
        def tree_factory(repo: Repo) -> WorkingTree:
            return GitWorkingTree(
                Path(repo.path), git=config.git, email_domain=config.email_domain
            )

        return cls(
            Database(config.db_path, busy_timeout_ms=config.busy_timeout_ms),
            tree_factory=tree_factory,
            locks=WorkingTreeLocks(config.lock_dir),
            lock_timeout=config.lock_timeout,
            merge_timeout=config.merge_timeout,
        )

    @classmethod
    def from_workdir(cls, cwd: Path | None = None) -> "Workflow":
        return cls.from_config(load_workdir_config(cwd))

    @contextmanager
    def _session(self, *, write: bool = True) -> Iterator[sqlite3.Connection]:
        try:
            with self.db.transaction(write=write) as conn:
                yield conn
        except sqlite3.Error as exc:
            raise translate_store_error(exc) from exc

    def _repo(self, conn: sqlite3.Connection, name: str) -> Repo:
        return self.repos.get_by_name(conn, name)

    # -- repositories -------------------------------------------------------

    def register_repo(self, name: str, path: str | Path) -> Repo:
        with self._session() as conn:
            repo_id = self.repos.create(conn, name, str(path))
            repo = self._repo(conn, name)
        logger.info("registered repository %s (#%s) at %s", repo.name, repo_id, repo.path)
        return repo

    def get_repo(self, name: str) -> Repo:
        with self._session(write=False) as conn:
            return self._repo(conn, name)

    def list_repos(self) -> list[Repo]:
        with self._session(write=False) as conn:
            return self.repos.list(conn)

    def remove_repo(self, name: str) -> None:
        with self._session() as conn:
            self.repos.delete(conn, name)

    # -- issues -------------------------------------------------------------

    def create_issue(
        self, repo: str, actor: str, title: str, description: str = ""
    ) -> Issue:
        author = _clean_actor(actor)
        with self._session() as conn:
            r = self._repo(conn, repo)
            issue_id = self.issues.create(conn, r.id, author, title, description)
            return self.issues.get(conn, r.id, issue_id)

    def get_issue(self, repo: str, issue_id: int) -> Issue:
        with self._session(write=False) as conn:
            return self.issues.get(conn, self._repo(conn, repo).id, issue_id)

    def list_issues(self, repo: str) -> list[Issue]:
        with self._session(write=False) as conn:
            return self.issues.list_all(conn, self._repo(conn, repo).id)

    def list_issues_by_state(self, repo: str, state: IssueState | str) -> list[Issue]:
        wanted = state if isinstance(state, IssueState) else parse_issue_state(state)
        with self._session(write=False) as conn:
            return self.issues.list_by_state(conn, self._repo(conn, repo).id, wanted)

    def update_issue(
        self, repo: str, issue_id: int, title: str, description: str = ""
    ) -> Issue:
        with self._session() as conn:
            r = self._repo(conn, repo)
            self.issues.update(conn, r.id, issue_id, title, description)
            return self.issues.get(conn, r.id, issue_id)

    def delete_issue(self, repo: str, issue_id: int) -> None:
        with self._session() as conn:
            self.issues.delete(conn, self._repo(conn, repo).id, issue_id)

    def close_issue(self, repo: str, issue_id: int, actor: str) -> Issue:
        closer = _clean_actor(actor)
        with self._session() as conn:
            return self.issue_machine.close(
                conn, self._repo(conn, repo).id, issue_id, closer
            )

    def reopen_issue(self, repo: str, issue_id: int) -> Issue:
        with self._session() as conn:
            return self.issue_machine.reopen(conn, self._repo(conn, repo).id, issue_id)

    # -- dependencies -------------------------------------------------------

    def add_dependency(
        self, repo: str, issue_id: int, depends_on_id: int
    ) -> DependencyEdge:
        with self._session() as conn:
            return self.graph.add(
                conn, self._repo(conn, repo).id, issue_id, depends_on_id
            )

    def remove_dependency(self, repo: str, issue_id: int, depends_on_id: int) -> bool:
        with self._session() as conn:
            return self.graph.remove(
                conn, self._repo(conn, repo).id, issue_id, depends_on_id
            )

    def get_dependencies(self, repo: str, issue_id: int) -> list[Issue]:
        with self._session(write=False) as conn:
            return self.graph.dependencies(conn, self._repo(conn, repo).id, issue_id)

    def get_dependents(self, repo: str, issue_id: int) -> list[Issue]:
        with self._session(write=False) as conn:
            return self.graph.dependents(conn, self._repo(conn, repo).id, issue_id)

    def has_dependency(self, repo: str, issue_id: int, depends_on_id: int) -> bool:
        with self._session(write=False) as conn:
            return self.graph.has(
                conn, self._repo(conn, repo).id, issue_id, depends_on_id
            )

    # -- merge requests -----------------------------------------------------

    def create_merge_request(
        self,
        repo: str,
        actor: str,
        title: str,
        source_branch: str,
        target_branch: str,
        description: str = "",
    ) -> MergeRequest:
        author = _clean_actor(actor)
        source = source_branch.strip()
        target = target_branch.strip()
        for label, branch in (("source", source), ("target", target)):
            if not is_valid_branch_name(branch):
                raise InvalidArgumentError(f"invalid {label} branch name: {branch!r}")
        if source == target:
            raise InvalidArgumentError("source and target branches must differ")

        r = self.get_repo(repo)
        tree = self.tree_factory(r)
        for label, branch in (("source", source), ("target", target)):
            if not tree.branch_exists(branch):
                raise InvalidArgumentError(f"{label} branch {branch!r} does not exist")

        with self._session() as conn:
            mr_id = self.merge_requests.create(
                conn, r.id, author, title, description, source, target
            )
            return self.merge_requests.get(conn, r.id, mr_id)

    def get_merge_request(self, repo: str, mr_id: int) -> MergeRequest:
        with self._session(write=False) as conn:
            return self.merge_requests.get(conn, self._repo(conn, repo).id, mr_id)

    def list_merge_requests(self, repo: str) -> list[MergeRequest]:
        with self._session(write=False) as conn:
            return self.merge_requests.list_all(conn, self._repo(conn, repo).id)

    def list_merge_requests_by_state(
        self, repo: str, state: MergeRequestState | str
    ) -> list[MergeRequest]:
        wanted = (
            state
            if isinstance(state, MergeRequestState)
            else parse_merge_request_state(state)
        )
        with self._session(write=False) as conn:
            return self.merge_requests.list_by_state(
                conn, self._repo(conn, repo).id, wanted
            )

    def update_merge_request(
        self, repo: str, mr_id: int, title: str, description: str = ""
    ) -> MergeRequest:
        with self._session() as conn:
            r = self._repo(conn, repo)
            self.merge_requests.update(conn, r.id, mr_id, title, description)
            return self.merge_requests.get(conn, r.id, mr_id)

    def delete_merge_request(self, repo: str, mr_id: int) -> None:
        with self._session() as conn:
            self.merge_requests.delete(conn, self._repo(conn, repo).id, mr_id)

    def close_merge_request(self, repo: str, mr_id: int, actor: str) -> MergeRequest:
        closer = _clean_actor(actor)
        with self._session() as conn:
            return self.mr_machine.close(conn, self._repo(conn, repo).id, mr_id, closer)

    def reopen_merge_request(self, repo: str, mr_id: int) -> MergeRequest:
        with self._session() as conn:
            return self.mr_machine.reopen(conn, self._repo(conn, repo).id, mr_id)

    def merge_merge_request(
        self,
        repo: str,
        mr_id: int,
        actor: str,
        *,
        timeout: float | None = None,
    ) -> MergeRequest:
        merger = _clean_actor(actor)
        r = self.get_repo(repo)
        try:
            return self.executor.merge(
                r,
                self.tree_factory(r),
                mr_id,
                merger,
                timeout=timeout if timeout is not None else self.merge_timeout,
            )
        except sqlite3.Error as exc:
            raise translate_store_error(exc) from exc
