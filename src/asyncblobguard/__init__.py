"""
asyncblobguard
==============

Async photo storage on Azure Blob Storage with optimistic (ETag) and
pessimistic (lease) concurrency control for updates.

Main entry points:
- PhotoBlobStore: facade over the components below
- ContainerResolver, BlobCatalog: container provisioning and listing
- UnconditionalUploader, OptimisticUpdateController, PessimisticUpdateController: writers
- AzureBlobAdapter, InMemoryStorageAdapter: storage backends
- TransportError, OptimisticConflictError, LeaseConflictError: exceptions

Example:
    from asyncblobguard import PhotoBlobStore, StoreSettings

    async with PhotoBlobStore.from_settings(StoreSettings.from_env()) as store:
        result = await store.upload_photo("pics", "x/y/cat.png", data)
        await store.upload_photo_optimistic("pics", "cat.png", new_data, etag=result.etag)
"""

from .photo_blob_store import (
    PhotoBlobStore,
    ContainerResolver,
    BlobCatalog,
    UnconditionalUploader,
    OptimisticUpdateController,
    PessimisticUpdateController,
    blob_name_from_path,
)

from .errors import (
    ErrorKind,
    BlobStoreError,
    TransportError,
    BlobNotFoundError,
    OptimisticConflictError,
    LeaseConflictError,
)

from .models import (
    BlobKind,
    BlobEntry,
    BlobSummary,
    Precondition,
    PreconditionKind,
    UploadResult,
)

from .storage_protocols import (
    AsyncStorageAdapter,
    AsyncContainerHandle,
    AsyncBlobHandle,
)
from .memory_adapter import InMemoryStorageAdapter
from .azure_blob_adapter import AzureBlobAdapter
from .config import StoreSettings

import importlib.metadata

try:
    __version__ = importlib.metadata.version(__name__)
except importlib.metadata.PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = [
    "PhotoBlobStore",
    "ContainerResolver",
    "BlobCatalog",
    "UnconditionalUploader",
    "OptimisticUpdateController",
    "PessimisticUpdateController",
    "blob_name_from_path",
    "ErrorKind",
    "BlobStoreError",
    "TransportError",
    "BlobNotFoundError",
    "OptimisticConflictError",
    "LeaseConflictError",
    "BlobKind",
    "BlobEntry",
    "BlobSummary",
    "Precondition",
    "PreconditionKind",
    "UploadResult",
    "AsyncStorageAdapter",
    "AsyncContainerHandle",
    "AsyncBlobHandle",
    "InMemoryStorageAdapter",
    "AzureBlobAdapter",
    "StoreSettings",
]
