"""
Module that implements the local disk cache of a catalog.

The cache is a plain directory that mirrors the objects of a catalog by name. It knows
nothing about the remote store, the streams decide what goes in and when it's stale.
Entries are never evicted automatically, only deleted on request.

Locks on cache entries are kept as lock files in a hidden subdirectory, so that they
never show up as entries themselves.
"""

from contextlib import contextmanager
import os
import shutil
from typing import BinaryIO, Iterator, List

from blobdir.common import file_lock
from blobdir.errors import CacheIOError
from blobdir.logger import log

LOCKS_DIR = ".locks"


class LocalCacheStore:
    """Local directory holding cached copies of remote objects."""

    def __init__(self, path: str) -> None:
        """Instantiate the cache in the specified directory, creating it if needed."""
        self.path = os.path.abspath(os.path.expanduser(path))

        os.makedirs(os.path.join(self.path, LOCKS_DIR), exist_ok=True)

    def path_of(self, name: str) -> str:
        """Return the path of the cache entry with the given name."""
        if not name or name in (".", "..", LOCKS_DIR) or "/" in name or os.sep in name:
            raise CacheIOError(name, "invalid cache entry name")

        return os.path.join(self.path, name)

    def list_all(self) -> List[str]:
        """List the names of all cache entries."""
        return [
            entry.name
            for entry in os.scandir(self.path)
            if entry.is_file() and entry.name != LOCKS_DIR
        ]

    def exists(self, name: str) -> bool:
        return os.path.isfile(self.path_of(name))

    def length(self, name: str) -> int:
        """Return the size of a cache entry in bytes."""
        try:
            return os.path.getsize(self.path_of(name))
        except OSError as e:
            raise CacheIOError(name, str(e)) from e

    def modified(self, name: str) -> int:
        """Return the modification time of a cache entry in nanoseconds."""
        try:
            return os.stat(self.path_of(name)).st_mtime_ns
        except OSError as e:
            raise CacheIOError(name, str(e)) from e

    def set_modified(self, name: str, mtime_ns: int) -> None:
        """Set the modification time of a cache entry in nanoseconds."""
        try:
            os.utime(self.path_of(name), ns=(mtime_ns, mtime_ns))
        except OSError as e:
            raise CacheIOError(name, str(e)) from e

    def touch(self, name: str) -> bool:
        """Set the modification time of an existing cache entry to now."""
        try:
            os.utime(self.path_of(name))
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise CacheIOError(name, str(e)) from e

    def delete(self, name: str) -> bool:
        """Delete a cache entry if it exists, return whether it existed."""
        try:
            os.unlink(self.path_of(name))
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise CacheIOError(name, str(e)) from e

    def open_read(self, name: str) -> BinaryIO:
        """Open a cache entry for reading."""
        try:
            return open(self.path_of(name), "rb")
        except OSError as e:
            raise CacheIOError(name, str(e)) from e

    def open_write(self, name: str) -> BinaryIO:
        """Create or truncate a cache entry and open it for writing."""
        try:
            return open(self.path_of(name), "w+b")
        except OSError as e:
            raise CacheIOError(name, str(e)) from e

    def _lock_path(self, name: str) -> str:
        return os.path.join(self.path, LOCKS_DIR, name)

    @contextmanager
    def lock(self, name: str) -> Iterator[None]:
        """Hold exclusive access to a cache entry across threads and processes."""
        with file_lock(self._lock_path(os.path.basename(self.path_of(name)))):
            yield

    def clear_lock(self, name: str) -> None:
        """Drop the lock file that is kept for the named entry, if any."""
        try:
            os.unlink(self._lock_path(os.path.basename(self.path_of(name))))
        except FileNotFoundError:
            pass

    def clear(self) -> None:
        """Delete every entry in the cache."""
        for name in self.list_all():
            self.delete(name)

        shutil.rmtree(os.path.join(self.path, LOCKS_DIR), ignore_errors=True)
        os.makedirs(os.path.join(self.path, LOCKS_DIR), exist_ok=True)

        log.debug(f"cleared cache {self.path}")

    def __repr__(self) -> str:
        return f"LocalCacheStore({self.path!r})"
