import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable
from urllib.parse import quote

from .errors import BlobNotFoundError, TransportError
from .models import (
    CONFLICT,
    INFINITE_LEASE,
    NOT_FOUND,
    PRECONDITION_FAILED,
    BlobEntry,
    BlobKind,
    Precondition,
    PreconditionKind,
)
from .storage_protocols import (
    AsyncBlobHandle,
    AsyncContainerHandle,
    AsyncStorageAdapter,
)

DEFAULT_ACCOUNT_URL = "http://127.0.0.1:10000/devstoreaccount1"


def _new_etag() -> str:
    return f'"0x{uuid.uuid4().hex[:16].upper()}"'


@dataclass
class _Lease:
    lease_id: str
    expires_at: float | None  # None for infinite leases

    def is_active(self, now: float) -> bool:
        return self.expires_at is None or now < self.expires_at


@dataclass
class _StoredBlob:
    data: bytes
    etag: str
    kind: BlobKind = BlobKind.BLOCK
    lease: _Lease | None = None


@dataclass
class _StoredContainer:
    blobs: dict[str, _StoredBlob] = field(default_factory=dict)
    public_access: str | None = None


class InMemoryStorageAdapter(AsyncStorageAdapter):
    """
    In-process store with the conditional-write and lease rules of Azure Blob Storage.
    Every write changes the ETag; leases expire according to `clock`.
    """

    def __init__(
        self,
        account_url: str = DEFAULT_ACCOUNT_URL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._account_url = account_url.rstrip("/")
        self._clock = clock
        self._containers: dict[str, _StoredContainer] = {}
        self._lock = asyncio.Lock()
        # Names in creation order, one entry per actual creation
        self.created_containers: list[str] = []

    def get_container(self, container_name: str) -> AsyncContainerHandle:
        return _MemoryContainerHandle(self, container_name)

    async def close(self) -> None:
        pass

    def seed_blob(
        self,
        container_name: str,
        blob_name: str,
        data: bytes,
        kind: BlobKind = BlobKind.BLOCK,
    ) -> None:
        """Place a blob of any kind directly, creating the container if needed."""
        container = self._containers.setdefault(container_name, _StoredContainer())
        container.blobs[blob_name] = _StoredBlob(data=data, etag=_new_etag(), kind=kind)

    def public_access(self, container_name: str) -> str | None:
        return self._containers[container_name].public_access

    def _url(self, container_name: str, blob_name: str | None = None) -> str:
        url = f"{self._account_url}/{quote(container_name)}"
        if blob_name is not None:
            url = f"{url}/{quote(blob_name)}"
        return url

    def _require_container(self, container_name: str) -> _StoredContainer:
        try:
            return self._containers[container_name]
        except KeyError:
            raise BlobNotFoundError(
                f"Container '{container_name}' not found",
                status_code=NOT_FOUND,
                error_code="ContainerNotFound",
                container=container_name,
            ) from None


class _MemoryContainerHandle(AsyncContainerHandle):
    def __init__(self, adapter: InMemoryStorageAdapter, container_name: str):
        self._adapter = adapter
        self.name = container_name

    async def create_if_not_exists(self) -> bool:
        async with self._adapter._lock:
            if self.name in self._adapter._containers:
                return False
            self._adapter._containers[self.name] = _StoredContainer()
            self._adapter.created_containers.append(self.name)
            return True

    async def set_public_blob_access(self) -> None:
        async with self._adapter._lock:
            self._adapter._require_container(self.name).public_access = "blob"

    async def list_blobs(self) -> list[BlobEntry]:
        async with self._adapter._lock:
            container = self._adapter._require_container(self.name)
            return [
                BlobEntry(kind=blob.kind, name=name, url=self._adapter._url(self.name, name))
                for name, blob in sorted(container.blobs.items())
            ]

    def get_blob(self, blob_name: str) -> AsyncBlobHandle:
        return _MemoryBlobHandle(self._adapter, self.name, blob_name)


class _MemoryBlobHandle(AsyncBlobHandle):
    def __init__(
        self, adapter: InMemoryStorageAdapter, container_name: str, blob_name: str
    ):
        self._adapter = adapter
        self._container = container_name
        self.name = blob_name
        self.url = adapter._url(container_name, blob_name)

    def _error(
        self, status_code: int, error_code: str, message: str
    ) -> TransportError:
        error_cls = BlobNotFoundError if status_code == NOT_FOUND else TransportError
        return error_cls(
            message,
            status_code=status_code,
            error_code=error_code,
            container=self._container,
            blob_name=self.name,
        )

    def _require_blob(self) -> _StoredBlob:
        container = self._adapter._require_container(self._container)
        if self.name not in container.blobs:
            raise self._error(NOT_FOUND, "BlobNotFound", f"Blob '{self.name}' not found")
        return container.blobs[self.name]

    def _active_lease(self, blob: _StoredBlob | None) -> _Lease | None:
        if blob is None or blob.lease is None:
            return None
        if blob.lease.is_active(self._adapter._clock()):
            return blob.lease
        return None

    async def download(self) -> bytes:
        async with self._adapter._lock:
            return self._require_blob().data

    async def get_etag(self) -> str:
        async with self._adapter._lock:
            return self._require_blob().etag

    async def upload(
        self, data: bytes, precondition: Precondition = Precondition()
    ) -> str:
        async with self._adapter._lock:
            container = self._adapter._require_container(self._container)
            blob = container.blobs.get(self.name)
            lease = self._active_lease(blob)

            if precondition.kind == PreconditionKind.LEASE:
                if lease is None:
                    raise self._error(
                        PRECONDITION_FAILED,
                        "LeaseNotPresentWithBlobOperation",
                        f"There is currently no lease on blob '{self.name}'",
                    )
                if lease.lease_id != precondition.token:
                    raise self._error(
                        PRECONDITION_FAILED,
                        "LeaseIdMismatchWithBlobOperation",
                        f"The lease ID specified did not match the lease on '{self.name}'",
                    )
            elif lease is not None:
                raise self._error(
                    PRECONDITION_FAILED,
                    "LeaseIdMissing",
                    f"Blob '{self.name}' is leased and no lease ID was specified",
                )

            if precondition.kind == PreconditionKind.IF_MATCH and (
                blob is None or blob.etag != precondition.token
            ):
                raise self._error(
                    PRECONDITION_FAILED,
                    "ConditionNotMet",
                    f"ETag of blob '{self.name}' does not match",
                )
            if precondition.kind == PreconditionKind.IF_NONE_MATCH and blob is not None:
                raise self._error(
                    CONFLICT, "BlobAlreadyExists", f"Blob '{self.name}' already exists"
                )

            etag = _new_etag()
            container.blobs[self.name] = _StoredBlob(
                data=bytes(data), etag=etag, lease=lease
            )
            return etag

    async def acquire_lease(
        self, duration: int, proposed_lease_id: str | None = None
    ) -> str:
        if duration != INFINITE_LEASE and not 15 <= duration <= 60:
            raise self._error(
                400,
                "InvalidHeaderValue",
                "Lease duration must be 15-60 seconds or -1 for infinite",
            )
        async with self._adapter._lock:
            blob = self._require_blob()
            lease = self._active_lease(blob)
            if lease is not None and lease.lease_id != proposed_lease_id:
                raise self._error(
                    CONFLICT,
                    "LeaseAlreadyPresent",
                    f"There is already a lease present on blob '{self.name}'",
                )
            now = self._adapter._clock()
            blob.lease = _Lease(
                lease_id=proposed_lease_id or str(uuid.uuid4()),
                expires_at=None if duration == INFINITE_LEASE else now + duration,
            )
            return blob.lease.lease_id

    async def release_lease(self, lease_id: str) -> None:
        async with self._adapter._lock:
            blob = self._require_blob()
            if blob.lease is None or blob.lease.lease_id != lease_id:
                raise self._error(
                    CONFLICT,
                    "LeaseIdMismatchWithLeaseOperation",
                    f"The lease ID specified did not match the lease on '{self.name}'",
                )
            blob.lease = None
