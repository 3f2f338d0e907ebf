"""Merge execution: a version-control merge followed by a guarded state change.

There is no transaction spanning git and the database. The executor holds the
repository's working-tree lock from the state check until the guarded commit,
and reports a merge that reached git but not the database as
``UnrecordedMergeError`` so it can be reconciled by hand.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from dataclasses import dataclass
from typing import NoReturn

from .errors import (
    DeadlineExceededError,
    ExternalOperationError,
    InvalidStateError,
    NotFoundError,
    UnrecordedMergeError,
)
from .locks import WorkingTreeLocks
from .machine import MergeRequestStateMachine
from .models import MergeRequest, MergeRequestState, Repo
from .stores.db import Database
from .stores.merge_request import MergeRequestStore
from .vcs import WorkingTree

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Deadline:
    expires_at: float | None = None

    @classmethod
    def after(cls, timeout: float | None) -> "Deadline":
        if timeout is None:
            return cls()
        return cls(time.monotonic() + max(0.0, timeout))

    def remaining(self) -> float | None:
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.expires_at is not None and time.monotonic() >= self.expires_at

    def cap(self, timeout: float | None) -> float | None:
        remaining = self.remaining()
        if remaining is None:
            return timeout
        if timeout is None:
            return remaining
        return min(remaining, timeout)


def merge_commit_message(mr: MergeRequest, actor: str) -> str:
    return (
        f"Merge branch '{mr.source_branch}' into '{mr.target_branch}'\n\n"
        f"Merge request !{mr.id} merged by {actor}"
    )


class MergeExecutor:
    def __init__(
        self,
        db: Database,
        *,
        locks: WorkingTreeLocks | None = None,
        store: MergeRequestStore | None = None,
        machine: MergeRequestStateMachine | None = None,
        lock_timeout: float | None = None,
    ) -> None:
        self.db = db
        self.locks = locks or WorkingTreeLocks()
        self.store = store or MergeRequestStore()
        self.machine = machine or MergeRequestStateMachine(self.store)
        self.lock_timeout = lock_timeout

    def merge(
        self,
        repo: Repo,
        tree: WorkingTree,
        mr_id: int,
        actor: str,
        *,
        timeout: float | None = None,
    ) -> MergeRequest:
        deadline = Deadline.after(timeout)
        with self.locks.hold(repo.id, timeout=deadline.cap(self.lock_timeout)):
            with self.db.transaction(write=False, timeout=deadline.remaining()) as conn:
                mr = self.store.get(conn, repo.id, mr_id)
            if mr.state is not MergeRequestState.OPEN:
                raise InvalidStateError(
                    f"cannot merge merge request #{mr_id}: state is {mr.state}, "
                    f"expected {MergeRequestState.OPEN}"
                )
            if deadline.expired:
                raise DeadlineExceededError(
                    f"deadline exceeded before merging merge request #{mr_id}"
                )

            commit = self._merge_branches(repo, tree, mr, actor, deadline)
            return self._record(repo, mr, actor, commit, deadline)

    def _merge_branches(
        self,
        repo: Repo,
        tree: WorkingTree,
        mr: MergeRequest,
        actor: str,
        deadline: Deadline,
    ) -> str:
        logger.info(
            "merging %s into %s for merge request #%s",
            mr.source_branch,
            mr.target_branch,
            mr.id,
        )
        tree.checkout(mr.target_branch, timeout=deadline.remaining())
        up_to_date = tree.contains(
            mr.target_branch, mr.source_branch, timeout=deadline.remaining()
        )
        try:
            return tree.merge(
                mr.source_branch,
                message=merge_commit_message(mr, actor),
                author=actor,
                timeout=deadline.remaining(),
            )
        except ExternalOperationError as exc:
            if not up_to_date and self._landed(tree, mr):
                self._unrecorded(
                    repo, mr, "", f"git reported a failure after merging: {exc}", exc
                )
            try:
                tree.abort_merge()
            except ExternalOperationError as abort_exc:
                logger.warning(
                    "could not abort failed merge for merge request #%s: %s",
                    mr.id,
                    abort_exc,
                )
            raise

    def _landed(self, tree: WorkingTree, mr: MergeRequest) -> bool:
        # The target only gains the source's tip once the merge commit exists.
        try:
            return tree.contains(mr.target_branch, mr.source_branch)
        except ExternalOperationError as exc:
            logger.warning(
                "could not tell whether merge request #%s reached %s: %s",
                mr.id,
                mr.target_branch,
                exc,
            )
            return False

    def _record(
        self,
        repo: Repo,
        mr: MergeRequest,
        actor: str,
        commit: str,
        deadline: Deadline,
    ) -> MergeRequest:
        if deadline.expired:
            self._unrecorded(
                repo, mr, commit, "deadline exceeded after the merge commit was created"
            )
        try:
            with self.db.transaction(timeout=deadline.remaining()) as conn:
                merged = self.machine.merge(conn, repo.id, mr.id, actor)
        except (InvalidStateError, NotFoundError) as exc:
            self._unrecorded(repo, mr, commit, str(exc), exc)
        except sqlite3.Error as exc:
            self._unrecorded(repo, mr, commit, f"storage failure: {exc}", exc)
        logger.info(
            "merge request #%s merged by %s at %s", mr.id, actor, commit or "HEAD"
        )
        return merged

    def _unrecorded(
        self,
        repo: Repo,
        mr: MergeRequest,
        commit: str,
        reason: str,
        cause: BaseException | None = None,
    ) -> NoReturn:
        logger.error(
            "merge commit %s for merge request #%s in %s is not recorded: %s",
            commit or "(unknown)",
            mr.id,
            repo.name,
            reason,
        )
        raise UnrecordedMergeError(repo.name, mr, reason) from cause
