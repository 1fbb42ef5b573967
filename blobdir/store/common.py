"""Data structures and exceptions shared by all blob store backends."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from blobdir.constants import CACHED_LENGTH_KEY, COMPRESSION_KEY


@dataclass
class BlobProperties:
    """
    Properties of a single object in a blob container.

    The size is the number of bytes stored remotely, which may be the compressed size.
    Use logical_length to find the number of bytes that a reader will observe.

    The last modified timestamp is in seconds since the epoch. The etag changes every
    time the contents or metadata of the object change and is used for conditional
    operations.
    """

    name: str
    size: int
    last_modified: float
    etag: str
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def logical_length(self) -> int:
        """Return the uncompressed length, falling back to the stored size."""
        try:
            return int(self.metadata[CACHED_LENGTH_KEY])
        except (KeyError, TypeError, ValueError):
            return self.size

    @property
    def compression(self) -> Optional[str]:
        """Return the codec the stored payload is compressed with, if any."""
        return self.metadata.get(COMPRESSION_KEY) or None

    @property
    def last_modified_ns(self) -> int:
        """Return the last modified timestamp in integer nanoseconds since the epoch."""
        return int(round(self.last_modified * 1_000_000_000))


class StoreError(IOError):
    """Error raised when a remote blob store operation fails."""


class BlobNotFoundError(StoreError):
    """Raised when an object or container does not exist."""


class BlobExistsError(StoreError):
    """Raised when a conditional create finds that the object already exists."""


class BlobModifiedError(StoreError):
    """Raised when a conditional operation finds that the object has changed."""


class IncompatibleProtocolError(StoreError):
    """Raised when a blob store server speaks an incompatible protocol version."""


# Exceptions that can be faithfully transported over RPC
STORE_ERRORS: Tuple[type, ...] = (
    StoreError,
    BlobNotFoundError,
    BlobExistsError,
    BlobModifiedError,
    IncompatibleProtocolError,
)
