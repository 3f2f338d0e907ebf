from __future__ import annotations

import fcntl
import logging
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from .errors import DeadlineExceededError

logger = logging.getLogger(__name__)

_POLL_SECONDS = 0.05


class WorkingTreeLocks:
    """Exclusive per-repository locks around working-tree mutation.

    Threads of one process serialize on an in-memory lock per repository. When
    ``lock_dir`` is set, holders also take an ``flock`` on
    ``<lock_dir>/repo-<id>.lock`` so separate processes sharing the state
    directory serialize too.
    """

    def __init__(self, lock_dir: Path | None = None) -> None:
        self.lock_dir = lock_dir
        self._guard = threading.Lock()
        self._locks: dict[int, threading.Lock] = {}

    def _lock_for(self, repo_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(repo_id)
            if lock is None:
                lock = self._locks[repo_id] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, repo_id: int, *, timeout: float | None = None) -> Iterator[None]:
        deadline = None if timeout is None else time.monotonic() + timeout
        lock = self._lock_for(repo_id)
        if not lock.acquire(timeout=-1 if timeout is None else max(0.0, timeout)):
            raise DeadlineExceededError(
                f"timed out waiting for the working tree lock of repo {repo_id}"
            )
        try:
            if self.lock_dir is None:
                yield
            else:
                with self._flock(repo_id, deadline):
                    yield
        finally:
            lock.release()

    @contextmanager
    def _flock(self, repo_id: int, deadline: float | None) -> Iterator[None]:
        assert self.lock_dir is not None
        self.lock_dir.mkdir(parents=True, exist_ok=True)
        path = self.lock_dir / f"repo-{repo_id}.lock"
        with path.open("a+") as handle:
            while True:
                try:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if deadline is not None and time.monotonic() >= deadline:
                        raise DeadlineExceededError(
                            f"timed out waiting for the working tree lock of repo {repo_id}"
                        ) from None
                    time.sleep(_POLL_SECONDS)
            logger.debug("acquired %s", path)
            try:
                yield
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
