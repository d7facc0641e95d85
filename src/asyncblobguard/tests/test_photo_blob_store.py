import asyncio
import logging
import os
import uuid

import pytest
from dotenv import load_dotenv

from asyncblobguard import (
    AzureBlobAdapter,
    BlobCatalog,
    BlobKind,
    BlobNotFoundError,
    ContainerResolver,
    ErrorKind,
    InMemoryStorageAdapter,
    LeaseConflictError,
    OptimisticConflictError,
    PessimisticUpdateController,
    PhotoBlobStore,
    TransportError,
)
from asyncblobguard.memory_adapter import _MemoryBlobHandle

load_dotenv()

# Azure config
CONN_STR = os.environ.get("AZURE_CONN_STR")
CONTAINER_NAME = os.environ.get("AZURE_CONTAINER")

# In-memory config
MEMORY_CONTAINER = "pics"


def unique_name(suffix: str) -> str:
    return f"test_{uuid.uuid4().hex[:8]}_{suffix}"


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _cleanup_azure(container: str) -> None:
    from azure.core.exceptions import HttpResponseError
    from azure.storage.blob import BlobLeaseClient, BlobServiceClient

    blob_service_client = BlobServiceClient.from_connection_string(CONN_STR)
    container_client = blob_service_client.get_container_client(container)
    if not container_client.exists():
        return
    for blob in container_client.list_blobs(name_starts_with="test_"):
        blob_client = container_client.get_blob_client(blob.name)
        try:
            BlobLeaseClient(blob_client).break_lease(lease_break_period=0)
        except HttpResponseError:
            pass
        container_client.delete_blob(blob.name)


# ---------------------------
# Parametrize backends
# ---------------------------
@pytest.fixture(
    params=[
        pytest.param("azure", marks=pytest.mark.azure),
        pytest.param("memory", marks=pytest.mark.memory),
    ]
)
def backend(request):
    """Fixture that provides either an Azure or an in-memory adapter."""
    if request.param == "azure":
        if not CONN_STR or not CONTAINER_NAME:
            pytest.skip(
                "Azure backend not configured (AZURE_CONN_STR / AZURE_CONTAINER missing)"
            )
        _cleanup_azure(CONTAINER_NAME)
        yield AzureBlobAdapter.from_connection_string(CONN_STR), CONTAINER_NAME
        _cleanup_azure(CONTAINER_NAME)

    elif request.param == "memory":
        yield InMemoryStorageAdapter(), MEMORY_CONTAINER


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_adapter(clock):
    return InMemoryStorageAdapter(clock=clock)


# ---------------------------
# Container resolution and listing
# ---------------------------


@pytest.mark.asyncio
async def test_resolve_is_idempotent(backend):
    adapter, container = backend
    resolver = ContainerResolver(adapter)
    first = await resolver.resolve(container)
    second = await resolver.resolve(container)
    assert first.name == second.name == container
    await adapter.close()


@pytest.mark.asyncio
@pytest.mark.memory
async def test_resolve_creates_once_with_public_blob_access(memory_adapter):
    resolver = ContainerResolver(memory_adapter)
    for _ in range(3):
        await resolver.resolve("fresh")
    assert memory_adapter.created_containers == ["fresh"]
    assert memory_adapter.public_access("fresh") == "blob"


@pytest.mark.asyncio
async def test_resolve_rejects_empty_name(backend):
    adapter, _ = backend
    with pytest.raises(ValueError):
        await ContainerResolver(adapter).resolve("")
    await adapter.close()


@pytest.mark.asyncio
@pytest.mark.memory
async def test_list_empty_container(memory_adapter):
    assert await BlobCatalog(memory_adapter).list_blobs("empty") == []


@pytest.mark.asyncio
@pytest.mark.memory
async def test_list_keeps_only_block_and_page_blobs(memory_adapter):
    memory_adapter.seed_blob("mixed", "a.jpg", b"a", BlobKind.BLOCK)
    memory_adapter.seed_blob("mixed", "b.vhd", b"b", BlobKind.PAGE)
    memory_adapter.seed_blob("mixed", "c.log", b"c", BlobKind.APPEND)
    memory_adapter.seed_blob("mixed", "d.bin", b"d", BlobKind.UNKNOWN)

    summaries = await BlobCatalog(memory_adapter).list_blobs("mixed")

    assert [s.name for s in summaries] == ["a.jpg", "b.vhd"]
    assert all(s.url.endswith(f"mixed/{s.name}") for s in summaries)


@pytest.mark.asyncio
async def test_list_reports_uploaded_photos(backend):
    adapter, container = backend
    name = unique_name("listed.jpg")
    async with PhotoBlobStore(adapter) as store:
        await store.upload_photo(container, f"albums/{name}", b"jpeg")
        summaries = await store.list_blobs(container)
        assert name in [s.name for s in summaries]


# ---------------------------
# Unconditional uploads
# ---------------------------


@pytest.mark.asyncio
async def test_upload_round_trip(backend):
    adapter, container = backend
    name = unique_name("cat.png")
    async with PhotoBlobStore(adapter) as store:
        result = await store.upload_photo(container, f"x/y/{name}", bytes([1, 2, 3]))
        assert result.name == name
        assert f"{container}/{name}" in result.url
        assert await store.download_photo(container, name) == b"\x01\x02\x03"


@pytest.mark.asyncio
@pytest.mark.memory
async def test_upload_uses_final_path_segment(memory_adapter):
    async with PhotoBlobStore(memory_adapter) as store:
        result = await store.upload_photo("pics", "/a/b/photo.jpg", b"1")
        assert result.name == "photo.jpg"
        assert [s.name for s in await store.list_blobs("pics")] == ["photo.jpg"]


@pytest.mark.asyncio
async def test_upload_overwrites(backend):
    adapter, container = backend
    name = unique_name("over.jpg")
    async with PhotoBlobStore(adapter) as store:
        first = await store.upload_photo(container, name, b"one")
        second = await store.upload_photo(container, name, b"two")
        assert first.etag != second.etag
        assert await store.download_photo(container, name) == b"two"


# ---------------------------
# Optimistic concurrency
# ---------------------------


@pytest.mark.asyncio
async def test_optimistic_stale_etag_conflict(backend):
    adapter, container = backend
    name = unique_name("etag.jpg")
    async with PhotoBlobStore(adapter) as store:
        t0 = (await store.upload_photo(container, name, b"v0")).etag

        t1 = (await store.upload_photo_optimistic(container, name, b"v1", etag=t0)).etag
        assert t1 != t0

        with pytest.raises(OptimisticConflictError) as excinfo:
            await store.upload_photo_optimistic(container, name, b"v2", etag=t0)

        assert excinfo.value.status_code == 412
        assert excinfo.value.kind == ErrorKind.OPTIMISTIC_CONFLICT
        assert excinfo.value.expected_etag == t0
        assert excinfo.value.blob_name == name
        assert isinstance(excinfo.value.__cause__, TransportError)
        assert await store.download_photo(container, name) == b"v1"


@pytest.mark.asyncio
async def test_optimistic_reads_current_etag(backend):
    adapter, container = backend
    name = unique_name("fresh.jpg")
    async with PhotoBlobStore(adapter) as store:
        before = await store.upload_photo(container, name, b"v0")
        after = await store.upload_photo_optimistic(container, name, b"v1")
        assert after.etag != before.etag
        assert await store.download_photo(container, name) == b"v1"


@pytest.mark.asyncio
async def test_optimistic_creates_missing_blob(backend):
    adapter, container = backend
    name = unique_name("new.jpg")
    async with PhotoBlobStore(adapter) as store:
        await store.upload_photo_optimistic(container, name, b"created")
        assert await store.download_photo(container, name) == b"created"


@pytest.mark.asyncio
@pytest.mark.memory
async def test_optimistic_concurrent_writers_one_wins(memory_adapter):
    async with PhotoBlobStore(memory_adapter) as store:
        t0 = (await store.upload_photo("pics", "race.jpg", b"v0")).etag
        results = await asyncio.gather(
            store.upload_photo_optimistic("pics", "race.jpg", b"a", etag=t0),
            store.upload_photo_optimistic("pics", "race.jpg", b"b", etag=t0),
            return_exceptions=True,
        )
        conflicts = [r for r in results if isinstance(r, OptimisticConflictError)]
        assert len(conflicts) == 1
        assert await store.download_photo("pics", "race.jpg") in (b"a", b"b")


# ---------------------------
# Pessimistic concurrency
# ---------------------------


@pytest.mark.asyncio
async def test_lease_on_missing_blob_fails(backend):
    adapter, container = backend
    async with PhotoBlobStore(adapter) as store:
        with pytest.raises(LeaseConflictError) as excinfo:
            await store.update_photo_lease(container, unique_name("ghost.jpg"), b"x")
        assert excinfo.value.status_code == 404
        assert excinfo.value.kind == ErrorKind.LEASE_CONFLICT


@pytest.mark.asyncio
async def test_lease_update_writes_and_releases(backend):
    adapter, container = backend
    name = unique_name("leased.jpg")
    async with PhotoBlobStore(adapter) as store:
        await store.upload_photo(container, name, b"v0")
        await store.update_photo_lease(container, name, b"v1")
        assert await store.download_photo(container, name) == b"v1"

        # Released, so a plain upload and a second lease both go through
        await store.upload_photo(container, name, b"v2")
        await store.update_photo_lease(container, name, b"v3")
        assert await store.download_photo(container, name) == b"v3"


@pytest.mark.asyncio
async def test_write_with_mismatched_lease_fails(backend):
    adapter, container = backend
    name = unique_name("mismatch.jpg")
    controller = PessimisticUpdateController(adapter)
    async with PhotoBlobStore(adapter) as store:
        await store.upload_photo(container, name, b"v0")
        lease_id = await controller.acquire(container, name)
        wrong = str(uuid.uuid4())

        with pytest.raises(LeaseConflictError) as excinfo:
            await controller.write(container, name, b"v1", wrong)
        assert excinfo.value.status_code == 412
        assert excinfo.value.lease_id == wrong

        await controller.write(container, name, b"v2", lease_id)
        assert await store.download_photo(container, name) == b"v2"


@pytest.mark.asyncio
async def test_write_without_any_lease_fails(backend):
    adapter, container = backend
    name = unique_name("nolease.jpg")
    controller = PessimisticUpdateController(adapter)
    async with PhotoBlobStore(adapter) as store:
        await store.upload_photo(container, name, b"v0")
        with pytest.raises(LeaseConflictError):
            await controller.write(container, name, b"v1", str(uuid.uuid4()))


@pytest.mark.asyncio
async def test_leased_blob_rejects_other_writers(backend):
    adapter, container = backend
    name = unique_name("held.jpg")
    controller = PessimisticUpdateController(adapter)
    async with PhotoBlobStore(adapter) as store:
        await store.upload_photo(container, name, b"v0")
        await controller.acquire(container, name)

        with pytest.raises(LeaseConflictError) as excinfo:
            await store.update_photo_lease(container, name, b"v1")
        assert excinfo.value.status_code == 409

        with pytest.raises(TransportError) as plain:
            await store.upload_photo(container, name, b"v2")
        assert plain.value.status_code == 412


@pytest.mark.asyncio
@pytest.mark.memory
async def test_write_with_expired_lease_fails(memory_adapter, clock):
    controller = PessimisticUpdateController(memory_adapter)
    async with PhotoBlobStore(memory_adapter) as store:
        await store.upload_photo("pics", "slow.jpg", b"v0")
        lease_id = await controller.acquire("pics", "slow.jpg")

        clock.advance(15)

        with pytest.raises(LeaseConflictError) as excinfo:
            await controller.write("pics", "slow.jpg", b"v1", lease_id)
        assert excinfo.value.error_code == "LeaseNotPresentWithBlobOperation"
        assert await store.download_photo("pics", "slow.jpg") == b"v0"


@pytest.mark.asyncio
@pytest.mark.memory
async def test_unreleased_lease_blocks_until_expiry(memory_adapter, clock):
    async with PhotoBlobStore(memory_adapter, release_lease=False) as store:
        await store.upload_photo("pics", "sticky.jpg", b"v0")
        await store.update_photo_lease("pics", "sticky.jpg", b"v1")

        with pytest.raises(LeaseConflictError):
            await store.update_photo_lease("pics", "sticky.jpg", b"v2")

        clock.advance(15)
        await store.update_photo_lease("pics", "sticky.jpg", b"v3")
        assert await store.download_photo("pics", "sticky.jpg") == b"v3"


@pytest.mark.asyncio
@pytest.mark.memory
async def test_failed_release_is_logged_not_raised(memory_adapter, monkeypatch, caplog):
    async def failing_release(self, lease_id):
        raise TransportError("boom", status_code=500, error_code="InternalError")

    monkeypatch.setattr(_MemoryBlobHandle, "release_lease", failing_release)

    async with PhotoBlobStore(memory_adapter) as store:
        await store.upload_photo("pics", "release.jpg", b"v0")
        with caplog.at_level(logging.WARNING, logger="asyncblobguard"):
            result = await store.update_photo_lease("pics", "release.jpg", b"v1")

    assert result.name == "release.jpg"
    assert "Could not release lease" in caplog.text


@pytest.mark.asyncio
@pytest.mark.memory
async def test_lease_released_after_failed_write(memory_adapter, monkeypatch):
    original_upload = _MemoryBlobHandle.upload

    async def failing_upload(self, data, precondition=None):
        raise TransportError("network down", status_code=503, error_code="ServerBusy")

    async with PhotoBlobStore(memory_adapter) as store:
        await store.upload_photo("pics", "flaky.jpg", b"v0")

        monkeypatch.setattr(_MemoryBlobHandle, "upload", failing_upload)
        with pytest.raises(TransportError) as excinfo:
            await store.update_photo_lease("pics", "flaky.jpg", b"v1")
        assert not isinstance(excinfo.value, LeaseConflictError)
        monkeypatch.setattr(_MemoryBlobHandle, "upload", original_upload)

        # Lease was released, so the next writer is not blocked
        await store.update_photo_lease("pics", "flaky.jpg", b"v2")
        assert await store.download_photo("pics", "flaky.jpg") == b"v2"


@pytest.mark.asyncio
async def test_download_missing_blob(backend):
    adapter, container = backend
    async with PhotoBlobStore(adapter) as store:
        with pytest.raises(BlobNotFoundError) as excinfo:
            await store.download_photo(container, unique_name("missing.jpg"))
        assert excinfo.value.status_code == 404
