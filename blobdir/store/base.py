"""Abstract interface that every remote blob store backend implements."""

from abc import ABC, abstractmethod
from typing import BinaryIO, Dict, Iterator, Optional, Union

from blobdir.store.common import BlobNotFoundError, BlobProperties

BlobData = Union[bytes, BinaryIO]


class BlobContainer(ABC):
    """
    Handle to a single container (bucket) of objects in a remote blob store.

    All operations are blocking and either complete or fail outright. Failures are
    raised as StoreError or one of its subclasses.
    """

    def __init__(self, name: str) -> None:
        """Instantiate a handle for the container with the specified name."""
        self.name = name

    @abstractmethod
    def create_if_not_exists(self) -> bool:
        """Create the container unless it exists, return whether it was created."""

    @abstractmethod
    def list_blobs(self, prefix: str = "") -> Iterator[BlobProperties]:
        """Enumerate the properties of all objects whose name starts with prefix."""

    @abstractmethod
    def get_properties(self, name: str) -> BlobProperties:
        """Fetch the properties and metadata of an object."""

    @abstractmethod
    def set_metadata(self, name: str, metadata: Dict[str, str]) -> BlobProperties:
        """Replace the metadata of an existing object."""

    @abstractmethod
    def download(self, name: str) -> bytes:
        """Fetch the full contents of an object."""

    def download_into(self, name: str, fp: BinaryIO) -> int:
        """Stream the full contents of an object into a file, return the size."""
        data = self.download(name)
        fp.write(data)
        return len(data)

    @abstractmethod
    def upload(
        self,
        name: str,
        data: BlobData,
        metadata: Optional[Dict[str, str]] = None,
        overwrite: bool = True,
    ) -> BlobProperties:
        """
        Store an object with the given contents and metadata.

        If overwrite is disabled then the upload is a conditional create that fails
        with BlobExistsError if the object already exists, even if it was created by a
        concurrent caller a moment ago.
        """

    @abstractmethod
    def delete(self, name: str, etag: Optional[str] = None) -> bool:
        """
        Delete an object if it exists, return whether anything was deleted.

        If an etag is specified then the object is only deleted if it has not been
        modified since, otherwise BlobModifiedError is raised.
        """

    def exists(self, name: str) -> bool:
        """Check if an object exists (errors other than absence propagate)."""
        try:
            self.get_properties(name)
            return True
        except BlobNotFoundError:
            return False

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name!r})"


class BlobService(ABC):
    """
    Account level access to a remote blob store.

    A service instance carries the connection and authentication details needed to
    reach the store, and hands out handles to its containers.
    """

    @abstractmethod
    def get_container(self, name: str) -> BlobContainer:
        """Return a handle to the named container without contacting the store."""

    def close(self) -> None:
        """Release any connections held by the service."""
