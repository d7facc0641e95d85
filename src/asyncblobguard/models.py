from dataclasses import dataclass
from enum import Enum

PRECONDITION_FAILED = 412
NOT_FOUND = 404
CONFLICT = 409

DEFAULT_LEASE_DURATION = 15
INFINITE_LEASE = -1


class BlobKind(Enum):
    BLOCK = "BlockBlob"
    PAGE = "PageBlob"
    APPEND = "AppendBlob"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: object) -> "BlobKind":
        raw = getattr(value, "value", value)
        for kind in cls:
            if kind.value.lower() == str(raw).lower():
                return kind
        return cls.UNKNOWN


class PreconditionKind(Enum):
    NONE = "none"  # Create or overwrite
    IF_MATCH = "if_match"  # Current ETag must equal token
    IF_NONE_MATCH = "if_none_match"  # Blob must not exist yet
    LEASE = "lease"  # Active lease id must equal token


@dataclass(frozen=True)
class Precondition:
    kind: PreconditionKind = PreconditionKind.NONE
    token: str | None = None

    @classmethod
    def unconditional(cls) -> "Precondition":
        return cls()

    @classmethod
    def if_match(cls, etag: str) -> "Precondition":
        return cls(PreconditionKind.IF_MATCH, etag)

    @classmethod
    def if_none_match(cls) -> "Precondition":
        return cls(PreconditionKind.IF_NONE_MATCH, "*")

    @classmethod
    def lease(cls, lease_id: str) -> "Precondition":
        return cls(PreconditionKind.LEASE, lease_id)


@dataclass(frozen=True)
class BlobEntry:
    """Raw listing record as reported by an adapter."""

    kind: BlobKind
    name: str
    url: str


@dataclass(frozen=True)
class BlobSummary:
    name: str
    url: str


@dataclass(frozen=True)
class UploadResult:
    container: str
    name: str
    url: str
    etag: str
