"""
Module with a blob store backend that keeps its objects in a local directory.

Each container is a directory with the following layout:

* objects/ - one file per object, its name percent-encoded so that names containing
slashes (like lock markers) stay flat.
* meta/ - a JSON sidecar per object with its etag and user metadata.
* tmp/ - uploads in progress, which are moved into place once complete.
* container.lock - lock file that serializes all mutations of the container.

This backend is used on its own for indexes on a shared or local disk, and as the
storage behind BlobStoreService when objects are served over the network.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import os
import shutil
import tempfile
from typing import BinaryIO, Dict, Iterator, Optional
from urllib.parse import quote, unquote
import uuid

from blobdir.common import file_lock
from blobdir.logger import log
from blobdir.rpc import Encoding
from blobdir.store.base import BlobContainer, BlobData, BlobService
from blobdir.store.common import (
    BlobExistsError,
    BlobModifiedError,
    BlobNotFoundError,
    BlobProperties,
    StoreError,
)


@dataclass
class Sidecar:
    """Stored next to each object to keep track of its etag and user metadata."""

    etag: str
    metadata: Dict[str, str] = field(default_factory=dict)


class LocalBlobContainer(BlobContainer):
    """Container of objects stored as files in a local directory."""

    _encoding = Encoding(Sidecar)

    def __init__(self, root: str, name: str) -> None:
        """Instantiate a handle for the named container under the given root."""
        super().__init__(name)

        if not name or name in (".", "..") or os.sep in name:
            raise ValueError(f"invalid container name '{name}'")

        self._path = os.path.join(root, name)

    @property
    def _objects_path(self) -> str:
        return os.path.join(self._path, "objects")

    @property
    def _meta_path(self) -> str:
        return os.path.join(self._path, "meta")

    @property
    def _tmp_path(self) -> str:
        return os.path.join(self._path, "tmp")

    @property
    def _lock_path(self) -> str:
        return os.path.join(self._path, "container.lock")

    def _object_path(self, name: str) -> str:
        if not name:
            raise StoreError(f"invalid object name '{name}' in {self.name}")

        return os.path.join(self._objects_path, quote(name, safe=""))

    def _sidecar_path(self, name: str) -> str:
        return os.path.join(self._meta_path, quote(name, safe="") + ".json")

    def _check_container(self) -> None:
        if not os.path.isdir(self._objects_path):
            raise BlobNotFoundError(f"container {self.name} does not exist")

    def create_if_not_exists(self) -> bool:
        if os.path.isdir(self._objects_path):
            return False

        for path in (self._objects_path, self._meta_path, self._tmp_path):
            os.makedirs(path, exist_ok=True)

        log.debug(f"created local container {self._path}")

        return True

    def list_blobs(self, prefix: str = "") -> Iterator[BlobProperties]:
        self._check_container()

        for filename in sorted(os.listdir(self._objects_path)):
            name = unquote(filename)

            if not name.startswith(prefix):
                continue

            try:
                yield self.get_properties(name)
            except BlobNotFoundError:
                # Deleted while listing
                continue

    def get_properties(self, name: str) -> BlobProperties:
        self._check_container()

        with file_lock(self._lock_path):
            return self._properties(name)

    def _properties(self, name: str) -> BlobProperties:
        """Read the properties of an object, the container lock must be held."""
        path = self._object_path(name)

        try:
            st = os.stat(path)
        except FileNotFoundError:
            raise BlobNotFoundError(f"{self.name}/{name} does not exist")
        except OSError as e:
            raise StoreError(f"failed to stat {self.name}/{name}: {e}") from e

        sidecar = self._read_sidecar(name)

        return BlobProperties(
            name=name,
            size=st.st_size,
            last_modified=st.st_mtime,
            etag=sidecar.etag if sidecar else f"{st.st_mtime_ns:x}-{st.st_size:x}",
            metadata=dict(sidecar.metadata) if sidecar else {},
        )

    def _read_sidecar(self, name: str) -> Optional[Sidecar]:
        try:
            with open(self._sidecar_path(name), "r") as f:
                return self._encoding.load_json(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError, TypeError) as e:
            # Includes sidecars that were truncated or written by another version
            raise StoreError(f"unreadable metadata of {self.name}/{name}: {e}") from e

    def _write_sidecar(self, name: str, metadata: Dict[str, str]) -> None:
        sidecar = Sidecar(etag=uuid.uuid4().hex, metadata=dict(metadata))

        fd, tmp = tempfile.mkstemp(dir=self._tmp_path, suffix=".json")

        with os.fdopen(fd, "w") as f:
            self._encoding.dump_json(sidecar, f)

        os.replace(tmp, self._sidecar_path(name))

    def set_metadata(self, name: str, metadata: Dict[str, str]) -> BlobProperties:
        self._check_container()

        with file_lock(self._lock_path):
            if not os.path.exists(self._object_path(name)):
                raise BlobNotFoundError(f"{self.name}/{name} does not exist")

            self._write_sidecar(name, metadata)

            # Metadata changes count as modifications of the object
            os.utime(self._object_path(name))

            return self._properties(name)

    def download(self, name: str) -> bytes:
        try:
            with open(self._object_path(name), "rb") as f:
                return f.read()
        except FileNotFoundError:
            raise BlobNotFoundError(f"{self.name}/{name} does not exist")

    def download_into(self, name: str, fp: BinaryIO) -> int:
        try:
            with open(self._object_path(name), "rb") as f:
                shutil.copyfileobj(f, fp)
                return f.tell()
        except FileNotFoundError:
            raise BlobNotFoundError(f"{self.name}/{name} does not exist")

    def upload(
        self,
        name: str,
        data: BlobData,
        metadata: Optional[Dict[str, str]] = None,
        overwrite: bool = True,
    ) -> BlobProperties:
        self._check_container()

        # Write outside of the lock, then move the complete file into place
        fd, tmp = tempfile.mkstemp(dir=self._tmp_path)

        try:
            with os.fdopen(fd, "wb") as f:
                if isinstance(data, (bytes, bytearray)):
                    f.write(data)
                else:
                    shutil.copyfileobj(data, f)

            with file_lock(self._lock_path):
                target = self._object_path(name)

                if overwrite:
                    os.replace(tmp, target)
                else:
                    try:
                        os.link(tmp, target)
                    except FileExistsError:
                        raise BlobExistsError(f"{self.name}/{name} already exists")

                self._write_sidecar(name, metadata or {})

                return self._properties(name)
        except OSError as e:
            if isinstance(e, StoreError):
                raise
            raise StoreError(f"failed to upload {self.name}/{name}: {e}") from e
        finally:
            if os.path.exists(tmp):
                os.unlink(tmp)

    def delete(self, name: str, etag: Optional[str] = None) -> bool:
        if not os.path.isdir(self._objects_path):
            return False

        with file_lock(self._lock_path):
            try:
                current = self._properties(name)
            except BlobNotFoundError:
                return False

            if etag is not None and current.etag != etag:
                raise BlobModifiedError(f"{self.name}/{name} has been modified")

            os.unlink(self._object_path(name))

            try:
                os.unlink(self._sidecar_path(name))
            except FileNotFoundError:
                pass

            return True


class LocalBlobService(BlobService):
    """Blob store whose containers are directories under a root directory."""

    def __init__(self, root: str) -> None:
        """Instantiate a blob store rooted at the specified directory."""
        self.root = os.path.abspath(os.path.expanduser(root))

    def get_container(self, name: str) -> LocalBlobContainer:
        return LocalBlobContainer(self.root, name)

    def __repr__(self) -> str:
        return f"LocalBlobService({self.root!r})"
