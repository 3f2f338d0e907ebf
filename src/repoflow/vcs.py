from __future__ import annotations

import logging
import os
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from .errors import DeadlineExceededError, ExternalOperationError
from .util import CommandError, run_capture

logger = logging.getLogger(__name__)

_FORBIDDEN_REF_CHARS = re.compile(r"[\x00-\x20\x7f~^:?*\[\\]")


def is_valid_branch_name(name: str) -> bool:
    """Subset of ``git check-ref-format --branch`` rules."""
    if not name or name == "@":
        return False
    if name.startswith(("-", "/", ".")) or name.endswith(("/", ".", ".lock")):
        return False
    if ".." in name or "//" in name or "@{" in name or "/." in name:
        return False
    return _FORBIDDEN_REF_CHARS.search(name) is None


class WorkingTree(Protocol):
    """Version-control operations the engine needs from a repository checkout.

    Implementations raise ``ExternalOperationError`` for every failure and
    ``DeadlineExceededError`` when ``timeout`` elapses.
    """

    def branch_exists(self, branch: str) -> bool: ...

    def contains(
        self, branch: str, ancestor: str, *, timeout: float | None = None
    ) -> bool:
        """Whether the tip of ``ancestor`` is reachable from ``branch``."""
        ...

    def checkout(self, branch: str, *, timeout: float | None = None) -> None: ...

    def merge(
        self,
        branch: str,
        *,
        message: str,
        author: str,
        timeout: float | None = None,
    ) -> str: ...

    def abort_merge(self) -> None: ...


@dataclass
class GitWorkingTree:
    path: Path
    git: str = "git"
    email_domain: str = "repoflow.local"

    def _run(
        self,
        *args: str,
        action: str,
        timeout: float | None = None,
        env: dict[str, str] | None = None,
    ) -> str:
        argv = [self.git, *args]
        try:
            return run_capture(argv, cwd=self.path, env=env, timeout=timeout)
        except subprocess.TimeoutExpired as exc:
            raise DeadlineExceededError(
                f"failed to {action}: timed out after {exc.timeout:g}s"
            ) from exc
        except CommandError as exc:
            raise ExternalOperationError(f"failed to {action}: {exc.detail}") from exc
        except OSError as exc:
            raise ExternalOperationError(f"failed to {action}: {exc}") from exc

    def _check(self, *args: str, action: str, timeout: float | None = None) -> bool:
        # Exit status 1 is a "no" answer; anything else non-zero is a failure.
        try:
            self._run(*args, action=action, timeout=timeout)
        except ExternalOperationError as exc:
            cause = exc.__cause__
            if isinstance(cause, CommandError) and cause.returncode == 1:
                return False
            raise
        return True

    def branch_exists(self, branch: str) -> bool:
        return self._check(
            "show-ref",
            "--verify",
            "--quiet",
            f"refs/heads/{branch}",
            action=f"inspect branch {branch!r}",
        )

    def contains(
        self, branch: str, ancestor: str, *, timeout: float | None = None
    ) -> bool:
        return self._check(
            "merge-base",
            "--is-ancestor",
            ancestor,
            branch,
            action=f"compare branches {ancestor!r} and {branch!r}",
            timeout=timeout,
        )

    def checkout(self, branch: str, *, timeout: float | None = None) -> None:
        self._run(
            "checkout",
            "--quiet",
            branch,
            action=f"checkout target branch {branch!r}",
            timeout=timeout,
        )

    def merge(
        self,
        branch: str,
        *,
        message: str,
        author: str,
        timeout: float | None = None,
    ) -> str:
        """Merge ``branch`` into the checked-out branch with ``--no-ff``.

        Returns the merge commit id, or ``""`` when the merge went through but
        HEAD could not be read back.
        """
        email = f"{author}@{self.email_domain}"
        env = {
            **os.environ,
            "GIT_AUTHOR_NAME": author,
            "GIT_AUTHOR_EMAIL": email,
            "GIT_COMMITTER_NAME": author,
            "GIT_COMMITTER_EMAIL": email,
        }
        self._run(
            "merge",
            "--no-ff",
            "--no-edit",
            "-m",
            message,
            branch,
            action=f"merge branch {branch!r}",
            timeout=timeout,
            env=env,
        )
        try:
            commit = self._run("rev-parse", "HEAD", action="read merge commit").strip()
        except ExternalOperationError as exc:
            logger.warning("merged %s in %s but %s", branch, self.path, exc)
            return ""
        logger.debug("merged %s in %s as %s", branch, self.path, commit)
        return commit

    def abort_merge(self) -> None:
        self._run("merge", "--abort", action="abort merge")
