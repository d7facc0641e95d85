import os
from dataclasses import dataclass

from dotenv import load_dotenv

from .models import DEFAULT_LEASE_DURATION, INFINITE_LEASE


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class StoreSettings:
    """Connection and concurrency settings for a PhotoBlobStore."""

    connection_string: str | None = None
    lease_duration: int = DEFAULT_LEASE_DURATION
    release_lease: bool = True

    def __post_init__(self) -> None:
        if self.lease_duration != INFINITE_LEASE and not 15 <= self.lease_duration <= 60:
            raise ValueError(
                f"lease_duration must be 15-60 seconds or -1, got {self.lease_duration}"
            )

    @classmethod
    def from_env(cls, dotenv_path: str | None = None) -> "StoreSettings":
        """
        Read settings from the environment, loading a .env file first.

        AZURE_CONN_STR       storage connection string (required)
        BLOB_LEASE_DURATION  lease length in seconds (default 15)
        BLOB_RELEASE_LEASE   release leases after writing (default true)
        """
        load_dotenv(dotenv_path)
        connection_string = os.environ.get("AZURE_CONN_STR")
        if not connection_string:
            raise ValueError("AZURE_CONN_STR is not set")
        return cls(
            connection_string=connection_string,
            lease_duration=int(
                os.environ.get("BLOB_LEASE_DURATION", DEFAULT_LEASE_DURATION)
            ),
            release_lease=_parse_bool(os.environ.get("BLOB_RELEASE_LEASE", "true")),
        )
