"""Guarded lifecycle transitions for issues and merge requests.

Each transition is a single conditional UPDATE keyed on the row's current
state. Concurrent callers racing on the same row all issue the same update;
exactly one matches, the others see zero rows and get ``InvalidStateError``.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from .errors import InvalidArgumentError, InvalidStateError
from .models import Issue, IssueState, MergeRequest, MergeRequestState
from .stores.base import EntityStore
from .stores.issue import IssueStore
from .stores.merge_request import MergeRequestStore
from .stores.state import now_ms

logger = logging.getLogger(__name__)

EntityT = TypeVar("EntityT", Issue, MergeRequest)


@dataclass(frozen=True)
class Transition:
    name: str
    source: str
    target: str
    # Audit prefixes: "closed" stamps/clears closed_by and closed_at.
    stamps: tuple[str, ...] = ()
    clears: tuple[str, ...] = ()

    def assignments(self, actor: str | None, now: int) -> dict[str, Any]:
        values: dict[str, Any] = {"state": self.target}
        for prefix in self.stamps:
            values[f"{prefix}_by"] = actor
            values[f"{prefix}_at"] = now
        for prefix in self.clears:
            values[f"{prefix}_by"] = None
            values[f"{prefix}_at"] = None
        values["updated_at"] = now
        return values


ISSUE_TRANSITIONS = {
    "close": Transition(
        "close", IssueState.OPEN, IssueState.CLOSED, stamps=("closed",)
    ),
    "reopen": Transition(
        "reopen", IssueState.CLOSED, IssueState.OPEN, clears=("closed",)
    ),
}

MERGE_REQUEST_TRANSITIONS = {
    "close": Transition(
        "close", MergeRequestState.OPEN, MergeRequestState.CLOSED, stamps=("closed",)
    ),
    "reopen": Transition(
        "reopen", MergeRequestState.CLOSED, MergeRequestState.OPEN, clears=("closed",)
    ),
    "merge": Transition(
        "merge", MergeRequestState.OPEN, MergeRequestState.MERGED, stamps=("merged",)
    ),
}


class StateMachine(Generic[EntityT]):
    def __init__(
        self,
        store: EntityStore[EntityT],
        transitions: dict[str, Transition],
    ) -> None:
        self.store = store
        self.transitions = transitions

    def apply(
        self,
        conn: sqlite3.Connection,
        repo_id: int,
        entity_id: int,
        name: str,
        *,
        actor: str | None = None,
    ) -> EntityT:
        transition = self.transitions.get(name)
        if transition is None:
            raise ValueError(f"unknown {self.store.label} transition: {name}")
        if transition.stamps and not actor:
            raise InvalidArgumentError(f"{name} requires an acting user")

        matched = self.store.guarded_update(
            conn,
            repo_id,
            entity_id,
            expected_state=transition.source,
            assignments=transition.assignments(actor, now_ms()),
        )
        if matched == 0:
            # Missing rows raise NotFoundError here.
            current = self.store.get(conn, repo_id, entity_id)
            raise InvalidStateError(
                f"cannot {name} {self.store.label} #{entity_id}: "
                f"state is {current.state}, expected {transition.source}"
            )

        logger.info(
            "%s #%s: %s -> %s (repo=%s actor=%s)",
            self.store.label,
            entity_id,
            transition.source,
            transition.target,
            repo_id,
            actor or "-",
        )
        return self.store.get(conn, repo_id, entity_id)


class IssueStateMachine(StateMachine[Issue]):
    def __init__(self, store: IssueStore | None = None) -> None:
        super().__init__(store or IssueStore(), ISSUE_TRANSITIONS)

    def close(
        self, conn: sqlite3.Connection, repo_id: int, issue_id: int, actor: str
    ) -> Issue:
        return self.apply(conn, repo_id, issue_id, "close", actor=actor)

    def reopen(self, conn: sqlite3.Connection, repo_id: int, issue_id: int) -> Issue:
        return self.apply(conn, repo_id, issue_id, "reopen")


class MergeRequestStateMachine(StateMachine[MergeRequest]):
    def __init__(self, store: MergeRequestStore | None = None) -> None:
        super().__init__(store or MergeRequestStore(), MERGE_REQUEST_TRANSITIONS)

    def close(
        self, conn: sqlite3.Connection, repo_id: int, mr_id: int, actor: str
    ) -> MergeRequest:
        return self.apply(conn, repo_id, mr_id, "close", actor=actor)

    def reopen(
        self, conn: sqlite3.Connection, repo_id: int, mr_id: int
    ) -> MergeRequest:
        return self.apply(conn, repo_id, mr_id, "reopen")

    def merge(
        self, conn: sqlite3.Connection, repo_id: int, mr_id: int, actor: str
    ) -> MergeRequest:
        """Record a completed merge. Only the merge executor should call this."""
        return self.apply(conn, repo_id, mr_id, "merge", actor=actor)
