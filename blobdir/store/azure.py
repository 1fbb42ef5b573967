"""Module with the blob store backend for Azure Blob Storage."""

from __future__ import annotations

import functools
from typing import Any, BinaryIO, Callable, Dict, Iterator, Optional

import azure.core.exceptions as ace
from azure.core import MatchConditions
from azure.storage.blob import BlobProperties as AzureBlobProperties
from azure.storage.blob import BlobServiceClient, ContainerClient

from blobdir.logger import log
from blobdir.store.base import BlobContainer, BlobData, BlobService
from blobdir.store.common import (
    BlobExistsError,
    BlobModifiedError,
    BlobNotFoundError,
    BlobProperties,
    StoreError,
)


def wrap_azure_errors(cb: Callable) -> Callable:
    """Convert Azure SDK errors into the matching store errors."""

    @functools.wraps(cb)
    def _inner(*args: Any, **kwargs: Any) -> Any:
        try:
            return cb(*args, **kwargs)
        except ace.ResourceNotFoundError as e:
            raise BlobNotFoundError(f"azure: {e.message}") from e
        except ace.ResourceExistsError as e:
            raise BlobExistsError(f"azure: {e.message}") from e
        except ace.ResourceModifiedError as e:
            raise BlobModifiedError(f"azure: {e.message}") from e
        except ace.AzureError as e:
            raise StoreError(f"azure: {e.__class__.__name__}: {e}") from e

    return _inner


def _convert_properties(props: AzureBlobProperties) -> BlobProperties:
    return BlobProperties(
        name=props.name,
        size=props.size,
        last_modified=props.last_modified.timestamp(),
        etag=props.etag,
        metadata=dict(props.metadata or {}),
    )


class AzureBlobContainer(BlobContainer):
    """Handle to a container of an Azure storage account."""

    def __init__(self, client: ContainerClient) -> None:
        """Instantiate a handle for the container behind the given client."""
        super().__init__(client.container_name)

        self._client = client

    @wrap_azure_errors
    def create_if_not_exists(self) -> bool:
        try:
            self._client.create_container()
        except ace.ResourceExistsError:
            return False

        log.debug(f"created azure container {self.name}")

        return True

    @wrap_azure_errors
    def list_blobs(self, prefix: str = "") -> Iterator[BlobProperties]:
        # Pages are fetched while iterating, so the listing is completed here
        blobs = self._client.list_blobs(
            name_starts_with=prefix or None, include=["metadata"]
        )

        return iter([_convert_properties(props) for props in blobs])

    @wrap_azure_errors
    def get_properties(self, name: str) -> BlobProperties:
        return _convert_properties(self._client.get_blob_client(name).get_blob_properties())

    @wrap_azure_errors
    def set_metadata(self, name: str, metadata: Dict[str, str]) -> BlobProperties:
        blob = self._client.get_blob_client(name)
        blob.set_blob_metadata(metadata)

        return _convert_properties(blob.get_blob_properties())

    @wrap_azure_errors
    def download(self, name: str) -> bytes:
        return self._client.download_blob(name).readall()

    @wrap_azure_errors
    def download_into(self, name: str, fp: BinaryIO) -> int:
        return self._client.download_blob(name).readinto(fp)

    @wrap_azure_errors
    def upload(
        self,
        name: str,
        data: BlobData,
        metadata: Optional[Dict[str, str]] = None,
        overwrite: bool = True,
    ) -> BlobProperties:
        blob = self._client.get_blob_client(name)
        blob.upload_blob(data, metadata=metadata or None, overwrite=overwrite)

        return _convert_properties(blob.get_blob_properties())

    @wrap_azure_errors
    def delete(self, name: str, etag: Optional[str] = None) -> bool:
        kwargs: Dict[str, Any] = {}

        if etag is not None:
            kwargs["etag"] = etag
            kwargs["match_condition"] = MatchConditions.IfNotModified

        try:
            self._client.delete_blob(name, **kwargs)
        except ace.ResourceNotFoundError:
            return False

        return True


class AzureBlobService(BlobService):
    """
    Blob store backed by an Azure storage account.

    The service is created from a connection string, or from an account URL and any
    credential accepted by the Azure SDK (for example DefaultAzureCredential).
    """

    def __init__(self, client: BlobServiceClient) -> None:
        """Instantiate the blob store for an Azure blob service client."""
        self._client = client

    @staticmethod
    def from_connection_string(connection_string: str) -> AzureBlobService:
        """Create the blob store from a storage account connection string."""
        return AzureBlobService(
            BlobServiceClient.from_connection_string(connection_string)
        )

    @staticmethod
    def from_account_url(account_url: str, credential: Any = None) -> AzureBlobService:
        """Create the blob store from an account URL and credential."""
        return AzureBlobService(BlobServiceClient(account_url, credential=credential))

    def get_container(self, name: str) -> AzureBlobContainer:
        return AzureBlobContainer(self._client.get_container_client(name))

    def close(self) -> None:
        self._client.close()

    def __repr__(self) -> str:
        return f"AzureBlobService({self._client.url!r})"
