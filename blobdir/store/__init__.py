"""
Backends for the remote blob store that holds the objects of every catalog.

A blob store is organized in containers, one per catalog, that hold a flat namespace of
objects. Every object has its contents, a size, a last modified timestamp, an etag that
changes on every modification, and a small dictionary of string metadata.

The directory layer only relies on operations that every serious object store offers:
listing by prefix, reading and writing whole objects, metadata, and one conditional
operation to build locks upon (create-if-absent, plus delete-if-unchanged).

Three backends are included:

* LocalBlobService stores objects in a local (or network mounted) directory.
* RpcBlobService talks to a BlobStoreService that is served by `blobdir serve`.
* AzureBlobService stores objects in Azure Blob Storage.
"""

from blobdir.config import StoreConfig
from .base import BlobContainer, BlobService
from .common import (
    BlobExistsError,
    BlobModifiedError,
    BlobNotFoundError,
    BlobProperties,
    IncompatibleProtocolError,
    StoreError,
)
from .local import LocalBlobService
from .remote import RpcBlobService
from .service import BlobStoreService

__all__ = [
    "BlobContainer",
    "BlobService",
    "BlobProperties",
    "StoreError",
    "BlobNotFoundError",
    "BlobExistsError",
    "BlobModifiedError",
    "IncompatibleProtocolError",
    "LocalBlobService",
    "RpcBlobService",
    "BlobStoreService",
    "create_service",
]


def create_service(config: StoreConfig) -> BlobService:
    """Create the blob store backend selected by the configuration."""
    if config.backend == "local":
        return LocalBlobService(config.path)
    elif config.backend == "rpc":
        return RpcBlobService(config.endpoint, config.token, config.timeout)
    elif config.backend == "azure":
        # Only pull in the Azure SDK when it's actually used
        from .azure import AzureBlobService

        if not config.connection_string:
            raise ValueError("azure backend requires a connection_string")

        return AzureBlobService.from_connection_string(config.connection_string)
    else:
        raise ValueError(f"unknown blob store backend '{config.backend}'")
