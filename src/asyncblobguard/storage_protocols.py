from typing import Protocol

from .models import BlobEntry, Precondition


class AsyncBlobHandle(Protocol):
    """Represents a single blob in storage."""

    name: str
    url: str

    async def download(self) -> bytes:
        """Download blob contents as bytes."""
        ...

    async def get_etag(self) -> str:
        """Return the blob's current ETag. Raises BlobNotFoundError if missing."""
        ...

    async def upload(
        self, data: bytes, precondition: Precondition = Precondition()
    ) -> str:
        """Write bytes under the given precondition and return the new ETag."""
        ...

    async def acquire_lease(
        self, duration: int, proposed_lease_id: str | None = None
    ) -> str:
        """Acquire an exclusive lease and return its id."""
        ...

    async def release_lease(self, lease_id: str) -> None:
        """Release a lease held on this blob."""
        ...


class AsyncContainerHandle(Protocol):
    """Represents a container in storage."""

    name: str

    async def create_if_not_exists(self) -> bool:
        """Create the container. Returns False if it already existed."""
        ...

    async def set_public_blob_access(self) -> None:
        """Make blobs publicly readable while keeping container listing private."""
        ...

    async def list_blobs(self) -> list[BlobEntry]:
        """List every blob in the container in store order."""
        ...

    def get_blob(self, blob_name: str) -> AsyncBlobHandle:
        """Return a handle to a blob."""
        ...


class AsyncStorageAdapter(Protocol):
    """Protocol for a storage backend adapter."""

    def get_container(self, container_name: str) -> AsyncContainerHandle:
        """Return a handle to a container."""
        ...

    async def close(self) -> None:
        """Close any resources/connections."""
        ...
