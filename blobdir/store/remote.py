"""Module that contains the blob store backend that forwards all calls over RPC."""

from __future__ import annotations

import functools
import threading
from typing import Any, Callable, Dict, Iterator, Optional

from semver import VersionInfo

from blobdir.constants import PROTOCOL_VERSION
from blobdir.logger import log
import blobdir.rpc as rpc
from blobdir.store.base import BlobContainer, BlobData, BlobService
from blobdir.store.common import (
    BlobProperties,
    IncompatibleProtocolError,
    STORE_ERRORS,
    StoreError,
)
from blobdir.store.service import BlobStoreService


def _wrap_rpc_errors(cb: Callable) -> Callable:
    """Turn transport failures into StoreErrors, store errors pass through as is."""

    @functools.wraps(cb)
    def _inner(*args: Any, **kwargs: Any) -> Any:
        try:
            return cb(*args, **kwargs)
        except StoreError:
            raise
        except (IOError, rpc.InvalidTokenError) as e:
            raise StoreError(f"rpc: {e.__class__.__name__}: {e}") from e

    return _inner


class RpcBlobContainer(BlobContainer):
    """Container handle that forwards all of its operations to a BlobStoreService."""

    def __init__(self, service: RpcBlobService, name: str) -> None:
        """Instantiate a handle for the named container of a remote service."""
        super().__init__(name)

        self._service = service

    @property
    def _client(self) -> rpc.Client:
        return self._service.client()

    @_wrap_rpc_errors
    def create_if_not_exists(self) -> bool:
        return self._client.create_container(self.name)

    @_wrap_rpc_errors
    def list_blobs(self, prefix: str = "") -> Iterator[BlobProperties]:
        return iter(self._client.list_blobs(self.name, prefix))

    @_wrap_rpc_errors
    def get_properties(self, name: str) -> BlobProperties:
        return self._client.get_properties(self.name, name)

    @_wrap_rpc_errors
    def set_metadata(self, name: str, metadata: Dict[str, str]) -> BlobProperties:
        return self._client.set_metadata(self.name, name, metadata)

    @_wrap_rpc_errors
    def download(self, name: str) -> bytes:
        return self._client.download(self.name, name)

    @_wrap_rpc_errors
    def upload(
        self,
        name: str,
        data: BlobData,
        metadata: Optional[Dict[str, str]] = None,
        overwrite: bool = True,
    ) -> BlobProperties:
        if not isinstance(data, (bytes, bytearray)):
            data = data.read()

        return self._client.upload(self.name, name, bytes(data), metadata, overwrite)

    @_wrap_rpc_errors
    def delete(self, name: str, etag: Optional[str] = None) -> bool:
        return self._client.delete(self.name, name, etag)


class RpcBlobService(BlobService):
    """
    Blob store served by another process, possibly on another machine.

    The protocol version of the server is checked on first use. Only the major version
    has to match.
    """

    def __init__(
        self, endpoint: str, token: Optional[str] = None, timeout_ms: int = 5000
    ) -> None:
        """Instantiate a blob store client for the server at the given endpoint."""
        self.endpoint = endpoint

        self._client = rpc.Client(
            BlobStoreService,
            endpoint,
            token=token,
            timeout_ms=timeout_ms,
            exceptions=STORE_ERRORS,
        )

        self._checked = False
        self._check_lock = threading.Lock()

    def client(self) -> rpc.Client:
        """Return the RPC client after making sure that the server is compatible."""
        with self._check_lock:
            if not self._checked:
                self._check_protocol()
                self._checked = True

        return self._client

    @_wrap_rpc_errors
    def _check_protocol(self) -> None:
        remote_version = VersionInfo.parse(self._client.protocol_version())
        local_version = VersionInfo.parse(PROTOCOL_VERSION)

        if remote_version.major != local_version.major:
            raise IncompatibleProtocolError(
                f"incompatible protocol ({remote_version} != {local_version})"
            )

        log.debug(f"connected to blob store {self.endpoint} (protocol {remote_version})")

    def get_container(self, name: str) -> RpcBlobContainer:
        return RpcBlobContainer(self, name)

    def close(self) -> None:
        self._client.close()

    def __repr__(self) -> str:
        return f"RpcBlobService({self.endpoint!r})"
