"""Module that exposes a local blob store as an RPC service."""

from typing import Dict, List, Optional

from blobdir.constants import PROTOCOL_VERSION
from blobdir.store.common import BlobProperties
from blobdir.store.local import LocalBlobContainer, LocalBlobService


class BlobStoreService:
    """
    RPC service that exposes the containers of a local blob store.

    Every call names its container explicitly since RPC calls are stateless. Listings
    are returned in full rather than streamed.
    """

    def __init__(self, root: str) -> None:
        """Instantiate the service for the blob store rooted at the given directory."""
        self._store = LocalBlobService(root)

    def _container(self, container: str) -> LocalBlobContainer:
        return self._store.get_container(container)

    @staticmethod
    def protocol_version() -> str:
        return PROTOCOL_VERSION

    def create_container(self, container: str) -> bool:
        return self._container(container).create_if_not_exists()

    def list_blobs(self, container: str, prefix: str) -> List[BlobProperties]:
        return list(self._container(container).list_blobs(prefix))

    def get_properties(self, container: str, name: str) -> BlobProperties:
        return self._container(container).get_properties(name)

    def set_metadata(
        self, container: str, name: str, metadata: Dict[str, str]
    ) -> BlobProperties:
        return self._container(container).set_metadata(name, metadata)

    def download(self, container: str, name: str) -> bytes:
        return self._container(container).download(name)

    def upload(
        self,
        container: str,
        name: str,
        data: bytes,
        metadata: Optional[Dict[str, str]],
        overwrite: bool,
    ) -> BlobProperties:
        return self._container(container).upload(name, data, metadata, overwrite)

    def delete(self, container: str, name: str, etag: Optional[str]) -> bool:
        return self._container(container).delete(name, etag)
