"""Synchronization primitives used by multiple storage components."""

import collections
from contextlib import contextmanager
import threading
from typing import Any, Dict, Iterator

import fasteners


class LockIndex:
    """
    Collection of mutexes to lock critical sections by arbitrary values.

    Its use case is to lock critical sections based on unpredictable input values, like
    file names. Locks are automatically garbage collected when no longer in use (no
    threads in the critical section and none waiting to enter).
    """

    def __init__(self) -> None:
        """Instantiate a LockIndex."""
        self._global_lock = threading.Lock()

        self._locks: Dict[Any, threading.Lock] = collections.defaultdict(threading.Lock)
        self._lock_users: Dict[Any, int] = collections.defaultdict(int)

    @contextmanager
    def lock(self, key: Any, blocking: bool = True) -> Iterator[bool]:
        """Lock a critical section based on the specified key."""
        with self._global_lock:
            self._lock_users[key] += 1
            lock = self._locks[key]

        acquired = lock.acquire(blocking)

        try:
            yield acquired
        finally:
            if acquired:
                lock.release()

            # Delete the lock once nobody is using or waiting for it anymore
            with self._global_lock:
                self._lock_users[key] -= 1

                if self._lock_users[key] == 0:
                    del self._lock_users[key]
                    del self._locks[key]

    @property
    def lock_count(self) -> int:
        """Return the number of locks currently in use."""
        with self._global_lock:
            return len(self._locks)


# POSIX file locks are owned by the process, so threads of a single process have to be
# serialized separately before they compete for the file lock.
_file_lock_threads = LockIndex()


@contextmanager
def file_lock(path: str) -> Iterator[None]:
    """Hold an exclusive lock on the lock file at path, across threads and processes."""
    with _file_lock_threads.lock(path):
        with fasteners.InterProcessLock(path):
            yield
