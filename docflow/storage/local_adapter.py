import hashlib
import os
from pathlib import Path

from docflow.storage.base import BaseBlobStore, BlobEntry, StoredObject
from docflow.storage.exceptions import BlobNotFoundError, InvalidStorageKeyError, StorageError


class LocalBlobStore(BaseBlobStore):
    """Stores blobs as files below a root directory."""

    def __init__(self, root: Path) -> None:
        self._root = root.resolve()

    def upload(self, key: str, data: bytes, content_type: str) -> StoredObject:
        path = self._path_for(key)
        tmp_path = path.with_name(f".{path.name}.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(data)
            os.replace(tmp_path, path)
        except OSError as exc:
            raise StorageError(f"Failed to write blob {key}: {exc}") from exc
        return StoredObject(key=key, etag=hashlib.md5(data).hexdigest(), size=len(data))

    def download(self, key: str) -> bytes:
        path = self._path_for(key)
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise BlobNotFoundError(f"Blob not found: {key}") from exc
        except OSError as exc:
            raise StorageError(f"Failed to read blob {key}: {exc}") from exc

    def exists(self, key: str) -> bool:
        return self._path_for(key).is_file()

    def delete(self, key: str) -> None:
        try:
            self._path_for(key).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to delete blob {key}: {exc}") from exc

    def list(self, prefix: str) -> list[BlobEntry]:
        if not self._root.exists():
            return []
        entries = []
        for path in self._root.rglob("*"):
            if not path.is_file() or path.name.startswith("."):
                continue
            key = path.relative_to(self._root).as_posix()
            if key.startswith(prefix):
                entries.append(BlobEntry(key=key, size=path.stat().st_size))
        return sorted(entries, key=lambda entry: entry.key)

    def url(self, key: str, expires_in: int) -> str:
        _ = expires_in
        return self._path_for(key).as_uri()

    def _path_for(self, key: str) -> Path:
        if not key or key.startswith("/") or ".." in key.split("/"):
            raise InvalidStorageKeyError(f"Invalid storage key: {key!r}")
        return self._root / key
