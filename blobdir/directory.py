"""
Module with the directory that presents a blob store catalog as a flat file directory.

The directory is the entry point for a search index engine: it offers the small set of
operations that an index needs from its storage (list, exists, length, modified time,
delete, create for writing, open for reading, and locks) and maps them onto a container
of the blob store and a local cache.

The remote store is authoritative for everything except the contents that are being
read, which always come from the local cache. Metadata queries (exists, length and
modified time) go straight to the store and never fail: any error counts as an absent
file, which means that their answer is "unknown" rather than "definitely absent" when
the store is unreachable.
"""

from __future__ import annotations

import contextlib
import io
import os
import threading
from typing import BinaryIO, Dict, List, Optional, Union

from blobdir.cache import LocalCacheStore
from blobdir.compression import CompressionPolicy
from blobdir.config import CacheConfig, Config, LockConfig
from blobdir.constants import BLOB_SUFFIX, DEFAULT_CATALOG, LOCK_PREFIX
from blobdir.errors import FileNotInStoreError
from blobdir.lock import DistributedLock
from blobdir.logger import log
from blobdir.store import BlobContainer, BlobService, create_service, StoreError
from blobdir.streams import InputStream, InputStreamReader, OutputStream
from blobdir.streams import OutputStreamWriter


class BlobDirectory:
    """
    Directory of index files stored as objects in one container of a blob store.

    Every catalog maps to its own container, which is created if it doesn't exist yet.
    The local cache defaults to a subdirectory named after the catalog in the default
    cache path, and is left intact when the directory is disposed so that the next
    instance can reuse it.

    Lock objects are kept per directory instance: make_lock() returns the same object
    for the same name every time, so that all threads share a single lock state.
    """

    def __init__(
        self,
        service: BlobService,
        catalog: Optional[str] = None,
        cache: Union[LocalCacheStore, str, None] = None,
        compression: Optional[CompressionPolicy] = None,
        lock_config: Optional[LockConfig] = None,
    ) -> None:
        """Instantiate a directory for the catalog in the specified blob store."""
        self.catalog = (catalog or DEFAULT_CATALOG).lower()

        self._service = service
        self._container: Optional[BlobContainer] = None
        self._container_lock = threading.Lock()

        if cache is None:
            cache = os.path.join(CacheConfig().path, self.catalog)
        if isinstance(cache, str):
            cache = LocalCacheStore(cache)

        self.cache = cache
        self.compression = compression or CompressionPolicy.disabled()
        self.lock_config = lock_config or LockConfig()

        self._locks: Dict[str, DistributedLock] = {}
        self._locks_mutex = threading.Lock()

        self.create_container()

    @staticmethod
    def from_config(config: Config, catalog: Optional[str] = None) -> BlobDirectory:
        """Instantiate a directory with the blob store and settings of a config."""
        catalog = (catalog or DEFAULT_CATALOG).lower()

        return BlobDirectory(
            create_service(config.store),
            catalog,
            cache=os.path.join(config.cache.path, catalog),
            compression=CompressionPolicy(
                config.compression.enabled, config.compression.patterns
            ),
            lock_config=config.lock,
        )

    #
    # Container management
    #

    def create_container(self) -> BlobContainer:
        """Make sure that the container of the catalog exists, return its handle."""
        with self._container_lock:
            if self._container is None:
                container = self._service.get_container(self.catalog)

                if container.create_if_not_exists():
                    log.info(f"created container for catalog {self.catalog}")

                self._container = container

            return self._container

    @property
    def container(self) -> BlobContainer:
        """Return the container handle, recreating it if it was invalidated."""
        return self.create_container()

    def clear_cache(self) -> None:
        """Delete all locally cached files, remote objects are left untouched."""
        self.cache.clear()

    #
    # Metadata
    #

    def list_all(self) -> List[str]:
        """Return the names of all files in the directory, in no particular order."""
        return [
            props.name
            for props in self.container.list_blobs()
            if not props.name.startswith(LOCK_PREFIX)
        ]

    def file_exists(self, name: str) -> bool:
        """Return whether the file exists, False if that can't be determined."""
        try:
            self.container.get_properties(name)
            return True
        except Exception as e:
            log.debug(f"file_exists({name}): {e}")
            return False

    def file_modified(self, name: str) -> int:
        """Return the remote modification time in nanoseconds since the epoch, or 0."""
        try:
            return self.container.get_properties(name).last_modified_ns
        except Exception as e:
            log.debug(f"file_modified({name}): {e}")
            return 0

    def touch_file(self, name: str) -> None:
        """
        Set the modification time of the locally cached file to now.

        The remote object is not modified, so this has no effect on file_modified().
        """
        self.cache.touch(name)

    def file_length(self, name: str) -> int:
        """Return the logical (uncompressed) length of the file, or 0."""
        try:
            return self.container.get_properties(name).logical_length
        except Exception as e:
            log.debug(f"file_length({name}): {e}")
            return 0

    def delete_file(self, name: str) -> None:
        """Delete the file from the blob store and the cache, if it exists."""
        self.container.delete(name)

        log.debug(f"DELETE {self.catalog}/{name}")

        for cache_name in (name + BLOB_SUFFIX, name):
            with contextlib.suppress(OSError):
                self.cache.delete(cache_name)

    #
    # Contents
    #

    def create_output(self, name: str) -> OutputStream:
        """Create a new file, or replace an existing one, and return a stream to it."""
        return OutputStream(self, name)

    def open_input(self, name: str) -> InputStream:
        """Open an existing file for reading."""
        try:
            props = self.container.get_properties(name)
            return InputStream(self, name, props)
        except StoreError as e:
            raise FileNotInStoreError(name, e) from e

    def open_input_stream(self, name: str) -> io.BufferedReader:
        """Open an existing file as a standard buffered binary stream."""
        return io.BufferedReader(InputStreamReader(self.open_input(name)))

    def create_output_stream(self, name: str) -> io.BufferedWriter:
        """Create a file as a standard buffered binary stream, uploaded on close."""
        return io.BufferedWriter(OutputStreamWriter(self.create_output(name)))

    def open_cached_input_as_stream(self, name: str) -> BinaryIO:
        """Open an entry of the local cache directly for reading."""
        return self.cache.open_read(name)

    def create_cached_output_as_stream(self, name: str) -> BinaryIO:
        """Create an entry of the local cache directly for writing."""
        return self.cache.open_write(name)

    #
    # Locking
    #

    def make_lock(self, name: str) -> DistributedLock:
        """Return the lock with the given name, creating it on first use."""
        with self._locks_mutex:
            if name not in self._locks:
                self._locks[name] = DistributedLock(
                    name,
                    self.create_container,
                    timeout=self.lock_config.timeout,
                    stale_after=self.lock_config.stale_after,
                    retry_interval=self.lock_config.retry_interval,
                    max_retry_interval=self.lock_config.max_retry_interval,
                )

            return self._locks[name]

    def clear_lock(self, name: str) -> None:
        """Forcefully break the named lock and drop any local lock file for it."""
        with self._locks_mutex:
            lock = self._locks.get(name)

        if lock is not None:
            lock.break_lock()

        self.cache.clear_lock(name)

    #
    # Lifetime
    #

    def dispose(self) -> None:
        """Invalidate the remote handles, the local cache is kept for reuse."""
        with self._container_lock:
            self._container = None

        log.debug(f"disposed directory for catalog {self.catalog}")

    close = dispose

    def __enter__(self) -> BlobDirectory:
        return self

    def __exit__(self, *exc_info) -> None:
        self.dispose()

    def __repr__(self) -> str:
        return f"BlobDirectory({self.catalog!r}, {self._service!r}, {self.cache!r})"
