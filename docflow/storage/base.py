from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class StoredObject:
    """Result of a successful upload."""

    key: str
    etag: str
    size: int


@dataclass(frozen=True)
class BlobEntry:
    key: str
    size: int


class BaseBlobStore(ABC):
    """Contract for all blob storage adapters.

    Keys are opaque, slash-separated strings. Every failure surfaces as a
    StorageError so the worker can retry it.
    """

    @abstractmethod
    def upload(self, key: str, data: bytes, content_type: str) -> StoredObject:
        """Store bytes under key, overwriting any existing blob."""

    @abstractmethod
    def download(self, key: str) -> bytes:
        """Return the bytes stored under key.

        Raises:
            BlobNotFoundError: if nothing is stored under key.
        """

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Return True if a blob is stored under key."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove the blob under key. Missing keys are ignored."""

    @abstractmethod
    def list(self, prefix: str) -> list[BlobEntry]:
        """Return all blobs whose key starts with prefix, sorted by key."""

    @abstractmethod
    def url(self, key: str, expires_in: int) -> str:
        """Return a URL a client can use to fetch the blob."""
