import logging
import mimetypes
from typing import Any

from azure.core import MatchConditions
from azure.core.exceptions import AzureError, ResourceExistsError
from azure.storage.blob import ContentSettings, PublicAccess
from azure.storage.blob.aio import BlobLeaseClient, BlobServiceClient

from .errors import BlobNotFoundError, TransportError
from .models import NOT_FOUND, BlobEntry, BlobKind, Precondition, PreconditionKind
from .storage_protocols import (
    AsyncBlobHandle,
    AsyncContainerHandle,
    AsyncStorageAdapter,
)

logger = logging.getLogger(__name__)


def _translate(
    error: AzureError, container: str, blob_name: str | None = None
) -> TransportError:
    """Wrap an Azure SDK error, keeping its HTTP status and error code."""
    status_code = getattr(error, "status_code", None)
    error_code = getattr(error, "error_code", None)
    error_cls = BlobNotFoundError if status_code == NOT_FOUND else TransportError
    target = f"{container}/{blob_name}" if blob_name else container
    return error_cls(
        f"Store request for '{target}' failed: {getattr(error, 'message', error)}",
        status_code=status_code,
        error_code=str(error_code) if error_code is not None else None,
        container=container,
        blob_name=blob_name,
    )


class AzureBlobAdapter(AsyncStorageAdapter):
    """Azure Blob Storage adapter."""

    def __init__(self, blob_service_client: BlobServiceClient):
        """
        Create an adapter from an existing BlobServiceClient.
        This allows custom authentication and configuration.
        """
        self._client = blob_service_client

    @classmethod
    def from_connection_string(cls, connection_string: str) -> "AzureBlobAdapter":
        """
        Convenience builder: create adapter from a connection string.
        """
        client = BlobServiceClient.from_connection_string(connection_string)
        return cls(client)

    def get_container(self, container_name: str) -> AsyncContainerHandle:
        return _AzureContainerHandle(self._client.get_container_client(container_name))

    async def close(self) -> None:
        await self._client.close()


class _AzureContainerHandle(AsyncContainerHandle):
    def __init__(self, container_client):
        self._container_client = container_client
        self.name = container_client.container_name

    async def create_if_not_exists(self) -> bool:
        try:
            await self._container_client.create_container()
        except ResourceExistsError:
            return False
        except AzureError as e:
            raise _translate(e, self.name) from e
        return True

    async def set_public_blob_access(self) -> None:
        try:
            await self._container_client.set_container_access_policy(
                signed_identifiers={}, public_access=PublicAccess.BLOB
            )
        except AzureError as e:
            raise _translate(e, self.name) from e

    async def list_blobs(self) -> list[BlobEntry]:
        entries: list[BlobEntry] = []
        try:
            async for blob in self._container_client.list_blobs():
                entries.append(
                    BlobEntry(
                        kind=BlobKind.parse(blob.blob_type),
                        name=blob.name,
                        url=self._container_client.get_blob_client(blob.name).url,
                    )
                )
        except AzureError as e:
            raise _translate(e, self.name) from e
        return entries

    def get_blob(self, blob_name: str) -> AsyncBlobHandle:
        return _AzureBlobHandle(self._container_client.get_blob_client(blob_name))


class _AzureBlobHandle(AsyncBlobHandle):
    def __init__(self, blob_client):
        self._blob_client = blob_client
        self.name = blob_client.blob_name
        self.url = blob_client.url
        self._container = blob_client.container_name

    async def download(self) -> bytes:
        try:
            stream = await self._blob_client.download_blob()
            return await stream.readall()
        except AzureError as e:
            raise _translate(e, self._container, self.name) from e

    async def get_etag(self) -> str:
        try:
            props = await self._blob_client.get_blob_properties()
        except AzureError as e:
            raise _translate(e, self._container, self.name) from e
        return props.etag

    async def upload(
        self,
        data: bytes,
        precondition: Precondition = Precondition(),
        content_type: str | None = None,
    ) -> str:
        """Note: Guesses content type if not provided."""

        if content_type is None:
            guessed, _ = mimetypes.guess_type(self.name)
            content_type = guessed or "application/octet-stream"

        kwargs: dict[str, Any] = {
            "overwrite": True,
            "content_settings": ContentSettings(content_type=content_type),
        }
        if precondition.kind == PreconditionKind.IF_MATCH:
            kwargs["etag"] = precondition.token
            kwargs["match_condition"] = MatchConditions.IfNotModified
        elif precondition.kind == PreconditionKind.IF_NONE_MATCH:
            kwargs["match_condition"] = MatchConditions.IfMissing
        elif precondition.kind == PreconditionKind.LEASE:
            kwargs["lease"] = precondition.token

        try:
            result = await self._blob_client.upload_blob(data, **kwargs)
        except AzureError as e:
            raise _translate(e, self._container, self.name) from e
        return result["etag"]

    async def acquire_lease(
        self, duration: int, proposed_lease_id: str | None = None
    ) -> str:
        try:
            lease = await self._blob_client.acquire_lease(
                lease_duration=duration, lease_id=proposed_lease_id
            )
        except AzureError as e:
            raise _translate(e, self._container, self.name) from e
        logger.debug("Acquired lease %s on '%s'", lease.id, self.url)
        return lease.id

    async def release_lease(self, lease_id: str) -> None:
        lease = BlobLeaseClient(self._blob_client, lease_id=lease_id)
        try:
            await lease.release()
        except AzureError as e:
            raise _translate(e, self._container, self.name) from e
