# core/locks.py
import asyncio
import logging
import threading
from contextlib import asynccontextmanager, contextmanager
from typing import AsyncIterator, Dict, Iterator

logger = logging.getLogger(__name__)


class RepoLocks:
    """
    In-process mutual exclusion keyed by repoHash.

    Every git/filesystem mutation of one repository runs inside `hold(repo_hash)`.
    Entries are reference counted and dropped once nobody holds or waits on them.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._refs: Dict[str, int] = {}

    @contextmanager
    def hold(self, repo_hash: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(repo_hash, threading.Lock())
            self._refs[repo_hash] = self._refs.get(repo_hash, 0) + 1
        lock.acquire()
        logger.debug("lock.repo.acquired repo=%s", repo_hash)
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._refs[repo_hash] -= 1
                if self._refs[repo_hash] == 0:
                    del self._refs[repo_hash]
                    del self._locks[repo_hash]
            logger.debug("lock.repo.released repo=%s", repo_hash)

    def held(self, repo_hash: str) -> bool:
        with self._guard:
            lock = self._locks.get(repo_hash)
        return bool(lock and lock.locked())


class SessionLocks:
    """asyncio counterpart used to serialize PATCH/DELETE handling per upload session."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._refs: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, session_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        self._refs[session_id] = self._refs.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._refs[session_id] -= 1
            if self._refs[session_id] == 0:
                del self._refs[session_id]
                self._locks.pop(session_id, None)


# Shared by every task handler in the process.
repo_locks = RepoLocks()
