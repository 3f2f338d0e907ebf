from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import MergeRequest


class WorkflowError(Exception):
    """Base class for every failure surfaced by the workflow engine."""


class NotFoundError(WorkflowError):
    pass


class InvalidStateError(WorkflowError):
    """A guarded transition's precondition did not hold."""


class ConflictError(WorkflowError):
    pass


class InvalidArgumentError(WorkflowError, ValueError):
    pass


class StorageError(WorkflowError):
    pass


class ExternalOperationError(WorkflowError):
    """The version-control step failed; no state was recorded."""


class DeadlineExceededError(ExternalOperationError):
    """The caller's timeout elapsed before the external step completed."""


class UnrecordedMergeError(WorkflowError):
    """The branches were merged but the merge request was not marked merged.

    The working tree already holds the merge commit. Someone has to reconcile
    the merge request's state by hand.
    """

    def __init__(
        self,
        repo: str,
        merge_request: "MergeRequest",
        reason: str,
    ) -> None:
        super().__init__(
            f"merge request !{merge_request.id} in {repo}: "
            f"'{merge_request.source_branch}' was merged into "
            f"'{merge_request.target_branch}' but the state was not recorded: {reason}"
        )
        self.repo = repo
        self.merge_request = merge_request
        self.reason = reason


def translate_store_error(exc: sqlite3.Error) -> WorkflowError:
    """Map a raw backing-store failure onto the workflow taxonomy."""
    message = str(exc)
    if isinstance(exc, sqlite3.IntegrityError):
        if message.startswith("UNIQUE constraint failed"):
            if "issue_dependencies" in message:
                return ConflictError("dependency already exists")
            if "repos" in message:
                return ConflictError("repository already exists")
            return ConflictError(message)
        if message.startswith("CHECK constraint failed"):
            if "no_self_dependency" in message or "issue_dependencies" in message:
                return InvalidArgumentError("an issue cannot depend on itself")
            return InvalidArgumentError(message)
        if message.startswith("FOREIGN KEY constraint failed"):
            return NotFoundError("referenced record does not exist")
        if message.startswith("NOT NULL constraint failed"):
            return InvalidArgumentError(message)
    return StorageError(f"storage failure: {message}")
