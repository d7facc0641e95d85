import logging

from .azure_blob_adapter import AzureBlobAdapter
from .config import StoreSettings
from .errors import (
    BlobNotFoundError,
    LeaseConflictError,
    OptimisticConflictError,
    TransportError,
)
from .models import (
    CONFLICT,
    DEFAULT_LEASE_DURATION,
    NOT_FOUND,
    PRECONDITION_FAILED,
    BlobKind,
    BlobSummary,
    Precondition,
    PreconditionKind,
    UploadResult,
)
from .storage_protocols import (
    AsyncBlobHandle,
    AsyncContainerHandle,
    AsyncStorageAdapter,
)

logger = logging.getLogger(__name__)

LISTED_KINDS = (BlobKind.BLOCK, BlobKind.PAGE)
LEASE_CONFLICT_STATUSES = (NOT_FOUND, CONFLICT, PRECONDITION_FAILED)


def blob_name_from_path(file_name: str) -> str:
    """Return the final segment of a file path, e.g. "/a/b/photo.jpg" -> "photo.jpg"."""
    name = file_name.replace("\\", "/").rsplit("/", 1)[-1]
    if not name:
        raise ValueError(f"No file name in path '{file_name}'")
    return name


class ContainerResolver:
    """
    Returns a container handle, creating the container if needed.
    Blobs are made publicly readable; container listing stays private.
    Nothing is cached: every call re-resolves.
    """

    def __init__(self, adapter: AsyncStorageAdapter) -> None:
        self.adapter = adapter

    async def resolve(self, container_name: str) -> AsyncContainerHandle:
        if not container_name:
            raise ValueError("Container name must not be empty")
        container = self.adapter.get_container(container_name)
        if await container.create_if_not_exists():
            logger.info("Created container '%s'", container_name)
        await container.set_public_blob_access()
        return container


class BlobCatalog:
    def __init__(self, adapter: AsyncStorageAdapter) -> None:
        self.resolver = ContainerResolver(adapter)

    async def list_blobs(self, container_name: str) -> list[BlobSummary]:
        """
        Snapshot of the block and page blobs in a container, in store order.
        Blobs of any other kind are skipped.
        """
        container = await self.resolver.resolve(container_name)
        summaries: list[BlobSummary] = []
        for entry in await container.list_blobs():
            if entry.kind in LISTED_KINDS:
                summaries.append(BlobSummary(name=entry.name, url=entry.url))
            else:
                logger.debug(
                    "Skipping %s '%s' in '%s'", entry.kind.value, entry.name, container_name
                )
        return summaries


class _BlobWriter:
    def __init__(self, adapter: AsyncStorageAdapter) -> None:
        self.resolver = ContainerResolver(adapter)

    async def _get_blob(self, container_name: str, file_name: str) -> AsyncBlobHandle:
        blob_name = blob_name_from_path(file_name)
        container = await self.resolver.resolve(container_name)
        return container.get_blob(blob_name)

    @staticmethod
    def _result(container_name: str, blob: AsyncBlobHandle, etag: str) -> UploadResult:
        return UploadResult(container=container_name, name=blob.name, url=blob.url, etag=etag)


class UnconditionalUploader(_BlobWriter):
    async def upload(
        self, container_name: str, file_name: str, data: bytes
    ) -> UploadResult:
        """Create or overwrite a blob. Concurrent writers race; the last one wins."""
        blob = await self._get_blob(container_name, file_name)
        etag = await blob.upload(data, Precondition.unconditional())
        logger.info("Uploaded %d bytes to '%s'", len(data), blob.url)
        return self._result(container_name, blob, etag)


class OptimisticUpdateController(_BlobWriter):
    """Writes a blob only if its ETag is unchanged since it was read."""

    async def update(
        self,
        container_name: str,
        file_name: str,
        data: bytes,
        etag: str | None = None,
    ) -> UploadResult:
        """
        Write `data` guarded by `etag`.

        When `etag` is None the blob's current ETag is read and used as the guard;
        if the blob does not exist yet the write only succeeds while it is still absent.
        Raises OptimisticConflictError if another writer got there first.
        """
        blob = await self._get_blob(container_name, file_name)
        if etag is None:
            try:
                etag = await blob.get_etag()
            except BlobNotFoundError:
                etag = None

        precondition = (
            Precondition.if_match(etag)
            if etag is not None
            else Precondition.if_none_match()
        )

        try:
            new_etag = await blob.upload(data, precondition)
        except TransportError as e:
            conflict = e.status_code == PRECONDITION_FAILED or (
                precondition.kind == PreconditionKind.IF_NONE_MATCH
                and e.status_code == CONFLICT
            )
            if not conflict:
                raise
            logger.warning(
                "ETag conflict on '%s': expected %s (%s)", blob.url, etag, e.error_code
            )
            raise OptimisticConflictError(
                f"Precondition failure. ETag of blob '{blob.name}' no longer matches",
                expected_etag=etag,
                status_code=e.status_code,
                error_code=e.error_code,
                container=container_name,
                blob_name=blob.name,
            ) from e

        logger.info("Updated '%s' (etag %s -> %s)", blob.url, etag, new_etag)
        return self._result(container_name, blob, new_etag)


class PessimisticUpdateController(_BlobWriter):
    """
    Writes a blob while holding an exclusive lease on it.

    The blob must already exist: a lease cannot be taken on a missing blob.
    With `release_lease` the lease is released once the write has finished,
    whatever its outcome; otherwise it simply expires after `lease_duration`.
    """

    def __init__(
        self,
        adapter: AsyncStorageAdapter,
        lease_duration: int = DEFAULT_LEASE_DURATION,
        release_lease: bool = True,
    ) -> None:
        super().__init__(adapter)
        self.lease_duration = lease_duration
        self.release_lease = release_lease

    async def acquire(self, container_name: str, file_name: str) -> str:
        blob = await self._get_blob(container_name, file_name)
        return await self._acquire(container_name, blob)

    async def write(
        self, container_name: str, file_name: str, data: bytes, lease_id: str
    ) -> UploadResult:
        blob = await self._get_blob(container_name, file_name)
        return await self._write(container_name, blob, data, lease_id)

    async def update(
        self, container_name: str, file_name: str, data: bytes
    ) -> UploadResult:
        blob = await self._get_blob(container_name, file_name)
        lease_id = await self._acquire(container_name, blob)
        try:
            return await self._write(container_name, blob, data, lease_id)
        finally:
            if self.release_lease:
                await self._release(blob, lease_id)

    async def _acquire(self, container_name: str, blob: AsyncBlobHandle) -> str:
        try:
            lease_id = await blob.acquire_lease(self.lease_duration)
        except TransportError as e:
            if e.status_code not in LEASE_CONFLICT_STATUSES:
                raise
            logger.warning(
                "Could not acquire lease on '%s': %s (%s)",
                blob.url,
                e.status_code,
                e.error_code,
            )
            raise LeaseConflictError(
                f"Could not acquire a lease on blob '{blob.name}'",
                status_code=e.status_code,
                error_code=e.error_code,
                container=container_name,
                blob_name=blob.name,
            ) from e
        logger.info(
            "Acquired %ss lease %s on '%s'", self.lease_duration, lease_id, blob.url
        )
        return lease_id

    async def _write(
        self, container_name: str, blob: AsyncBlobHandle, data: bytes, lease_id: str
    ) -> UploadResult:
        try:
            etag = await blob.upload(data, Precondition.lease(lease_id))
        except TransportError as e:
            if e.status_code != PRECONDITION_FAILED:
                raise
            logger.warning(
                "Lease %s rejected on '%s' (%s)", lease_id, blob.url, e.error_code
            )
            raise LeaseConflictError(
                f"Precondition failure. Lease on blob '{blob.name}' is not valid",
                lease_id=lease_id,
                status_code=e.status_code,
                error_code=e.error_code,
                container=container_name,
                blob_name=blob.name,
            ) from e
        logger.info("Updated '%s' under lease %s", blob.url, lease_id)
        return self._result(container_name, blob, etag)

    async def _release(self, blob: AsyncBlobHandle, lease_id: str) -> None:
        try:
            await blob.release_lease(lease_id)
        except TransportError as e:
            # Raising here would hide the write's own outcome
            logger.warning(
                "Could not release lease %s on '%s' (%s); it expires after %ss",
                lease_id,
                blob.url,
                e.error_code,
                self.lease_duration,
            )


class PhotoBlobStore:
    """
    Photo storage over one adapter: listing, plain uploads,
    and optimistic or lease-guarded updates.
    """

    def __init__(
        self,
        adapter: AsyncStorageAdapter,
        lease_duration: int = DEFAULT_LEASE_DURATION,
        release_lease: bool = True,
    ) -> None:
        self.adapter = adapter
        self.resolver = ContainerResolver(adapter)
        self.catalog = BlobCatalog(adapter)
        self.uploader = UnconditionalUploader(adapter)
        self.optimistic = OptimisticUpdateController(adapter)
        self.pessimistic = PessimisticUpdateController(
            adapter, lease_duration=lease_duration, release_lease=release_lease
        )

    @classmethod
    def from_settings(cls, settings: StoreSettings) -> "PhotoBlobStore":
        if not settings.connection_string:
            raise ValueError("StoreSettings.connection_string is required")
        return cls(
            AzureBlobAdapter.from_connection_string(settings.connection_string),
            lease_duration=settings.lease_duration,
            release_lease=settings.release_lease,
        )

    async def __aenter__(self) -> "PhotoBlobStore":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.adapter.close()

    async def list_blobs(self, container_name: str) -> list[BlobSummary]:
        return await self.catalog.list_blobs(container_name)

    async def upload_photo(
        self, container_name: str, file_name: str, data: bytes
    ) -> UploadResult:
        return await self.uploader.upload(container_name, file_name, data)

    async def upload_photo_optimistic(
        self,
        container_name: str,
        file_name: str,
        data: bytes,
        etag: str | None = None,
    ) -> UploadResult:
        return await self.optimistic.update(container_name, file_name, data, etag=etag)

    async def update_photo_lease(
        self, container_name: str, file_name: str, data: bytes
    ) -> UploadResult:
        return await self.pessimistic.update(container_name, file_name, data)

    async def download_photo(self, container_name: str, file_name: str) -> bytes:
        container = await self.resolver.resolve(container_name)
        return await container.get_blob(blob_name_from_path(file_name)).download()
