"""
Module with the streams that move file contents between the cache and the blob store.

Writes are buffered in the local cache and uploaded in one go when the output is
closed, because index files are written once, sequentially, and never modified
afterwards. Reads always come from the local cache: an input downloads the complete
object the first time it's needed and serves every read from disk after that.

For a file F the cache holds:

* F.blob - the payload exactly as it is stored remotely (possibly compressed).
* F - the decompressed payload, only for compressed objects.

A cached F.blob is reused if its size matches the remote object and it is not older
than the remote object. Its modification time is set to the remote last modified time
whenever it is filled, so any later upload by another process makes it stale.
"""

from __future__ import annotations

import io
import os
from typing import BinaryIO, Dict, Optional, TYPE_CHECKING

from blobdir.compression import LZ4_CODEC
from blobdir.constants import BLOB_SUFFIX, CACHED_LENGTH_KEY, COMPRESSION_KEY
from blobdir.errors import CacheIOError
from blobdir.logger import log
from blobdir.store.common import BlobProperties, StoreError

if TYPE_CHECKING:
    from blobdir.directory import BlobDirectory


class OutputStream:
    """
    Stream that writes a new file, buffered in the cache and uploaded on close.

    If the upload fails then the error is raised from close() and the buffered copy is
    left in the cache. Retrying is up to the caller.
    """

    def __init__(self, directory: BlobDirectory, name: str) -> None:
        """Start writing the named file of the directory."""
        self.name = name

        self._directory = directory
        self._blob_name = name + BLOB_SUFFIX
        self._file: Optional[BinaryIO] = directory.cache.open_write(self._blob_name)
        self._length = 0

    @property
    def closed(self) -> bool:
        return self._file is None

    def _check_open(self) -> BinaryIO:
        if self._file is None:
            raise ValueError(f"output {self.name} is closed")

        return self._file

    def write(self, data: bytes) -> int:
        """Append bytes to the file."""
        f = self._check_open()

        try:
            f.write(data)
        except OSError as e:
            raise CacheIOError(self._blob_name, str(e), self._length) from e

        self._length += len(data)

        return len(data)

    def write_byte(self, value: int) -> None:
        """Append a single byte to the file."""
        self.write(bytes((value,)))

    def tell(self) -> int:
        """Return the number of bytes written so far."""
        return self._length

    def length(self) -> int:
        return self._length

    def flush(self) -> None:
        """Flush buffered bytes to the cache (not to the blob store)."""
        self._check_open().flush()

    def close(self) -> None:
        """Finish the file and upload it to the blob store."""
        if self._file is None:
            return

        f, self._file = self._file, None

        try:
            f.seek(0)
            data = f.read()
        except OSError as e:
            raise CacheIOError(self._blob_name, str(e)) from e
        finally:
            f.close()

        self._upload(data)

    def abort(self) -> None:
        """Stop writing without uploading anything."""
        if self._file is not None:
            self._file.close()
            self._file = None

        log.debug(f"aborted output {self.name}")

    def _upload(self, data: bytes) -> None:
        cache = self._directory.cache
        policy = self._directory.compression

        upload_metadata: Dict[str, str] = {}
        payload = data

        if policy.should_compress(self.name):
            payload = policy.compress(data)
            upload_metadata[COMPRESSION_KEY] = LZ4_CODEC

            # The cache keeps the transmitted bytes in F.blob and the serving copy in F
            with cache.open_write(self.name) as f:
                f.write(data)
            with cache.open_write(self._blob_name) as f:
                f.write(payload)
        else:
            # A leftover serving copy from an earlier compressed version is stale now
            cache.delete(self.name)

        container = self._directory.container

        log.debug(
            f"uploading {self.name} ({len(data)} bytes, {len(payload)} transmitted)"
        )

        try:
            container.upload(self.name, payload, upload_metadata)

            # The logical length is stamped only after a successful upload
            metadata = {**upload_metadata, CACHED_LENGTH_KEY: str(len(data))}
            props = container.set_metadata(self.name, metadata)
        except StoreError:
            log.error(f"failed to upload {self.name}")
            raise

        _mark_fresh(self._directory, self.name, props)

    def __enter__(self) -> OutputStream:
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        if exc_type is None:
            self.close()
        else:
            self.abort()

    def __repr__(self) -> str:
        return f"OutputStream({self.name!r})"


def _mark_fresh(directory: BlobDirectory, name: str, props: BlobProperties) -> None:
    """Stamp the cache entries of a file with the last modified time of its object."""
    cache = directory.cache

    cache.set_modified(name + BLOB_SUFFIX, props.last_modified_ns)

    if props.compression and cache.exists(name):
        cache.set_modified(name, props.last_modified_ns)


class InputStream:
    """
    Stream that reads an existing file from its local cached copy.

    The cached copy is validated, and downloaded if needed, when the stream is opened.
    Reads past the end of the file raise CacheIOError.
    """

    def __init__(
        self, directory: BlobDirectory, name: str, props: BlobProperties
    ) -> None:
        """Open the named file of the directory whose object has the given properties."""
        self.name = name

        self._directory = directory
        self._props = props
        self._position = 0

        with directory.cache.lock(name + BLOB_SUFFIX):
            serving_name = self._prepare()

        self._serving_name = serving_name
        self._file: Optional[BinaryIO] = directory.cache.open_read(serving_name)
        self._length = directory.cache.length(serving_name)

    def _prepare(self) -> str:
        """Make sure that the cache holds a usable copy, return the entry to serve."""
        cache = self._directory.cache
        blob_name = self.name + BLOB_SUFFIX

        fetched = False

        if not self._is_cached():
            log.debug(f"fetching {self.name} ({self._props.size} bytes)")

            try:
                with cache.open_write(blob_name) as f:
                    self._directory.container.download_into(self.name, f)
            except StoreError:
                cache.delete(blob_name)
                raise

            cache.set_modified(blob_name, self._props.last_modified_ns)
            fetched = True

        if not self._props.compression:
            return blob_name

        if self._props.compression != LZ4_CODEC:
            raise CacheIOError(
                self.name, f"unsupported compression '{self._props.compression}'"
            )

        if (
            fetched
            or not cache.exists(self.name)
            or cache.modified(self.name) < self._props.last_modified_ns
        ):
            log.debug(f"decompressing {self.name}")

            with cache.open_read(blob_name) as f:
                compressed = f.read()

            try:
                data = self._directory.compression.decompress(compressed)
            except RuntimeError as e:
                raise CacheIOError(self.name, f"corrupt compressed data: {e}") from e

            with cache.open_write(self.name) as f:
                f.write(data)

            cache.set_modified(self.name, self._props.last_modified_ns)

        return self.name

    def _is_cached(self) -> bool:
        """Check if F.blob is consistent with the current state of the remote object."""
        cache = self._directory.cache
        blob_name = self.name + BLOB_SUFFIX

        if not cache.exists(blob_name):
            return False

        if cache.length(blob_name) != self._props.size:
            log.debug(f"cached {self.name} has a different size, refetching")
            return False

        if cache.modified(blob_name) < self._props.last_modified_ns:
            log.debug(f"cached {self.name} is older than its object, refetching")
            return False

        return True

    @property
    def closed(self) -> bool:
        return self._file is None

    def _check_open(self) -> BinaryIO:
        if self._file is None:
            raise ValueError(f"input {self.name} is closed")

        return self._file

    def length(self) -> int:
        """Return the logical length of the file."""
        return self._length

    def tell(self) -> int:
        return self._position

    def seek(self, position: int) -> None:
        """Move the read position, which may not be negative."""
        if position < 0:
            raise CacheIOError(self.name, "negative seek position", position)

        self._position = position

    def read_at(self, offset: int, size: int) -> bytes:
        """Read exactly size bytes at the given offset, without moving the position."""
        f = self._check_open()

        if offset < 0 or size < 0 or offset + size > self._length:
            raise CacheIOError(self.name, "read past end of file", offset)

        try:
            f.seek(offset)
            data = f.read(size)
        except OSError as e:
            raise CacheIOError(self._serving_name, str(e), offset) from e

        if len(data) != size:
            raise CacheIOError(self._serving_name, "cache entry is truncated", offset)

        return data

    def read(self, size: int = -1) -> bytes:
        """
        Read exactly size bytes at the current position and advance it.

        A negative size reads up to the end of the file.
        """
        if size < 0:
            size = max(self._length - self._position, 0)

        data = self.read_at(self._position, size)
        self._position += size

        return data

    def read_byte(self) -> int:
        return self.read(1)[0]

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> InputStream:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"InputStream({self.name!r}, length={self._length})"


class InputStreamReader(io.RawIOBase):
    """
    Adapter that exposes an InputStream as a standard Python binary stream.

    Unlike InputStream, reads at the end of the file return fewer bytes (or none)
    instead of raising, as callers of io streams expect.
    """

    def __init__(self, stream: InputStream) -> None:
        """Wrap the given input stream."""
        super().__init__()

        self._stream = stream

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        available = max(self._stream.length() - self._stream.tell(), 0)
        size = min(len(buffer), available)

        if size == 0:
            return 0

        data = self._stream.read(size)
        buffer[:size] = data

        return size

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        if whence == os.SEEK_CUR:
            offset += self._stream.tell()
        elif whence == os.SEEK_END:
            offset += self._stream.length()

        self._stream.seek(offset)

        return offset

    def tell(self) -> int:
        return self._stream.tell()

    def close(self) -> None:
        if not self.closed:
            self._stream.close()

        super().close()


class OutputStreamWriter(io.RawIOBase):
    """Adapter that exposes an OutputStream as a standard Python binary stream."""

    def __init__(self, stream: OutputStream) -> None:
        """Wrap the given output stream."""
        super().__init__()

        self._stream = stream

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        return self._stream.write(bytes(data))

    def tell(self) -> int:
        return self._stream.tell()

    def flush(self) -> None:
        if not self._stream.closed:
            self._stream.flush()

    def close(self) -> None:
        """Close the stream, which uploads the file."""
        if not self.closed:
            try:
                self._stream.close()
            finally:
                super().close()
