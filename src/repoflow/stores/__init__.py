from __future__ import annotations

from .db import Database
from .issue import IssueStore
from .merge_request import MergeRequestStore
from .repo import RepoStore
from .state import now_ms

__all__ = [
    "Database",
    "IssueStore",
    "MergeRequestStore",
    "RepoStore",
    "now_ms",
]
