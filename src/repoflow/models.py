from __future__ import annotations

import sqlite3
from dataclasses import asdict, dataclass
from enum import StrEnum
from typing import Any

from .errors import InvalidArgumentError


class IssueState(StrEnum):
    OPEN = "open"
    CLOSED = "closed"


class MergeRequestState(StrEnum):
    OPEN = "open"
    MERGED = "merged"
    CLOSED = "closed"


ISSUE_STATES = tuple(state.value for state in IssueState)
MERGE_REQUEST_STATES = tuple(state.value for state in MergeRequestState)


def parse_issue_state(value: str) -> IssueState:
    try:
        return IssueState(value.strip().lower())
    except ValueError:
        raise InvalidArgumentError(
            f"invalid issue state: {value} (must be one of: {', '.join(ISSUE_STATES)})"
        ) from None


def parse_merge_request_state(value: str) -> MergeRequestState:
    try:
        return MergeRequestState(value.strip().lower())
    except ValueError:
        raise InvalidArgumentError(
            f"invalid merge request state: {value} "
            f"(must be one of: {', '.join(MERGE_REQUEST_STATES)})"
        ) from None


def _opt_str(value: object) -> str | None:
    return str(value) if value is not None else None


def _opt_int(value: object) -> int | None:
    return int(value) if value is not None else None


class _Entity:
    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)  # type: ignore[call-overload]
        for key, value in payload.items():
            if isinstance(value, StrEnum):
                payload[key] = value.value
        return payload


@dataclass(frozen=True)
class Repo(_Entity):
    id: int
    name: str
    path: str
    created_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Repo":
        return cls(
            id=int(row["id"]),
            name=str(row["name"]),
            path=str(row["path"]),
            created_at=int(row["created_at"]),
        )


@dataclass(frozen=True)
class Issue(_Entity):
    """An issue owned by one repository.

    ``closed_by`` and ``closed_at`` are both set while the issue is closed and
    both ``None`` while it is open.
    """

    id: int
    repo_id: int
    title: str
    description: str
    state: IssueState
    author_id: str
    closed_by: str | None
    closed_at: int | None
    created_at: int
    updated_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Issue":
        return cls(
            id=int(row["id"]),
            repo_id=int(row["repo_id"]),
            title=str(row["title"]),
            description=str(row["description"]),
            state=IssueState(str(row["state"])),
            author_id=str(row["author_id"]),
            closed_by=_opt_str(row["closed_by"]),
            closed_at=_opt_int(row["closed_at"]),
            created_at=int(row["created_at"]),
            updated_at=int(row["updated_at"]),
        )


@dataclass(frozen=True)
class MergeRequest(_Entity):
    """A request to merge ``source_branch`` into ``target_branch``.

    ``merged`` is terminal. ``merged_by``/``merged_at`` are written once, by the
    merge transition.
    """

    id: int
    repo_id: int
    title: str
    description: str
    source_branch: str
    target_branch: str
    state: MergeRequestState
    author_id: str
    merged_by: str | None
    merged_at: int | None
    closed_by: str | None
    closed_at: int | None
    created_at: int
    updated_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "MergeRequest":
        return cls(
            id=int(row["id"]),
            repo_id=int(row["repo_id"]),
            title=str(row["title"]),
            description=str(row["description"]),
            source_branch=str(row["source_branch"]),
            target_branch=str(row["target_branch"]),
            state=MergeRequestState(str(row["state"])),
            author_id=str(row["author_id"]),
            merged_by=_opt_str(row["merged_by"]),
            merged_at=_opt_int(row["merged_at"]),
            closed_by=_opt_str(row["closed_by"]),
            closed_at=_opt_int(row["closed_at"]),
            created_at=int(row["created_at"]),
            updated_at=int(row["updated_at"]),
        )


@dataclass(frozen=True)
class DependencyEdge(_Entity):
    """``issue_id`` is blocked on ``depends_on_id``."""

    issue_id: int
    depends_on_id: int
    created_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "DependencyEdge":
        return cls(
            issue_id=int(row["issue_id"]),
            depends_on_id=int(row["depends_on_id"]),
            created_at=int(row["created_at"]),
        )
