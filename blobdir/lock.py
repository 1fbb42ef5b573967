"""
Module that implements mutual exclusion between processes on top of a blob store.

A lock is held by whoever managed to create its marker object. Creating the marker is a
conditional create-if-absent, so the blob store decides who wins when processes on
different machines try at the same time. Nothing else is needed from the store, which
makes this work on any backend that supports that one conditional write.

Holders can crash without releasing their lock. A marker that is older than the
staleness threshold is therefore considered abandoned and taken over. The takeover
deletes the marker conditionally on its etag, so that two contenders who both decide
that the same marker is stale can't end up deleting a fresh marker of a third process.
A holder whose marker was taken over or broken simply finds that there is nothing left
for it to release.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import auto, Enum
import os
import socket
import threading
import time
from typing import Callable, Optional, Union
import uuid

from blobdir.constants import LOCK_PREFIX
from blobdir.errors import LockTimeoutError
from blobdir.logger import log
from blobdir.rpc import Encoding
from blobdir.store.base import BlobContainer
from blobdir.store.common import (
    BlobExistsError,
    BlobModifiedError,
    BlobNotFoundError,
    StoreError,
)


@dataclass
class LockMarker:
    """Contents of a lock marker object, for diagnosing who holds a lock."""

    holder: str
    host: str
    pid: int
    acquired_at: float


class LockState(Enum):
    """State of a distributed lock as seen by its own instance."""

    UNLOCKED = auto()
    HELD = auto()
    BROKEN = auto()


class DistributedLock:
    """
    Lock that excludes other processes, on any machine, that use the same blob store.

    Instances are meant to be shared by all threads of a process that need the lock
    with the same name, see BlobDirectory.make_lock(). The instance itself does not
    exclude threads from each other: if one thread holds the lock, another thread that
    calls obtain() on the same instance will wait for the marker like anyone else.
    """

    _encoding = Encoding(LockMarker)

    def __init__(
        self,
        name: str,
        container: Union[BlobContainer, Callable[[], BlobContainer]],
        timeout: float = 10.0,
        stale_after: float = 60.0,
        retry_interval: float = 0.05,
        max_retry_interval: float = 1.0,
    ) -> None:
        """
        Instantiate a lock with the given name in the specified container.

        The container can also be given as a function that returns it, which is then
        called for every operation so that the lock follows a handle that changes.

        The timeout bounds how long obtain() keeps retrying by default. Markers older
        than stale_after seconds are taken over. Retries start after retry_interval
        seconds and back off exponentially up to max_retry_interval.
        """
        self.name = name
        self.timeout = timeout
        self.stale_after = stale_after
        self.retry_interval = retry_interval
        self.max_retry_interval = max_retry_interval

        self._container_source = container
        self._holder = uuid.uuid4().hex
        self._etag: Optional[str] = None
        self._state = LockState.UNLOCKED
        self._state_lock = threading.Lock()

    @property
    def _container(self) -> BlobContainer:
        if isinstance(self._container_source, BlobContainer):
            return self._container_source

        return self._container_source()

    @property
    def marker_name(self) -> str:
        """Return the name of the marker object of this lock."""
        return f"{LOCK_PREFIX}{self.name}"

    @property
    def state(self) -> LockState:
        return self._state

    def obtain(self, timeout: Optional[float] = None) -> bool:
        """
        Try to obtain the lock within the timeout, return whether it was obtained.

        Failures of the blob store are logged and count as not obtaining the lock, this
        method never raises.
        """
        if timeout is None:
            timeout = self.timeout

        deadline = time.monotonic() + timeout
        interval = self.retry_interval

        while True:
            try:
                if self._try_obtain():
                    return True
            except StoreError as e:
                log.warning(f"failed to obtain lock {self.name}: {e}")
                return False

            remaining = deadline - time.monotonic()

            if remaining <= 0:
                log.debug(f"timed out obtaining lock {self.name}")
                return False

            time.sleep(min(interval, remaining))
            interval = min(interval * 2, self.max_retry_interval)

    def _try_obtain(self) -> bool:
        """Make a single attempt to create the marker, taking over a stale one."""
        marker = LockMarker(
            holder=self._holder,
            host=socket.gethostname(),
            pid=os.getpid(),
            acquired_at=time.time(),
        )

        try:
            props = self._container.upload(
                self.marker_name, self._encoding.pack(marker), overwrite=False
            )
        except BlobExistsError:
            self._try_clear_stale()
            return False

        with self._state_lock:
            self._etag = props.etag
            self._state = LockState.HELD

        log.debug(f"obtained lock {self.name}")

        return True

    def _try_clear_stale(self) -> None:
        """Delete the existing marker if it has been abandoned."""
        try:
            props = self._container.get_properties(self.marker_name)
        except BlobNotFoundError:
            # Released in the meanwhile, the next attempt may succeed
            return

        age = time.time() - props.last_modified

        if age < self.stale_after:
            return

        try:
            self._container.delete(self.marker_name, etag=props.etag)
            log.warning(f"took over stale lock {self.name} ({age:.1f}s old)")
        except BlobModifiedError:
            # Somebody else took it over first
            pass

    def release(self) -> None:
        """Release the lock if this instance holds it, otherwise do nothing."""
        with self._state_lock:
            etag = self._etag
            held = self._state == LockState.HELD

            self._etag = None

            if held:
                self._state = LockState.UNLOCKED

        if not held or etag is None:
            return

        try:
            self._container.delete(self.marker_name, etag=etag)
            log.debug(f"released lock {self.name}")
        except BlobModifiedError:
            log.warning(f"lock {self.name} was taken over before it was released")

    def break_lock(self) -> None:
        """Delete the marker regardless of who holds it."""
        self._container.delete(self.marker_name)

        with self._state_lock:
            self._etag = None
            self._state = LockState.BROKEN

        log.warning(f"broke lock {self.name}")

    def is_locked(self) -> bool:
        """Check if anybody currently holds the lock, by asking the blob store."""
        return self._container.exists(self.marker_name)

    def read_marker(self) -> Optional[LockMarker]:
        """Return the contents of the current marker, or None if it's not held."""
        try:
            return self._encoding.unpack(self._container.download(self.marker_name))
        except BlobNotFoundError:
            return None

    def __enter__(self) -> DistributedLock:
        if not self.obtain():
            raise LockTimeoutError(self.name, self.timeout)

        return self

    def __exit__(self, *exc_info) -> None:
        self.release()

    def __repr__(self) -> str:
        return f"DistributedLock({self.name!r}, state={self._state.name})"
