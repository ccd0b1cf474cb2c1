from pathlib import Path

from docflow.config.settings import Settings
from docflow.storage.base import BaseBlobStore
from docflow.storage.local_adapter import LocalBlobStore
from docflow.storage.s3_adapter import S3BlobStore


class BlobStoreFactory:
    """Creates the configured blob store adapter."""

    BACKENDS = ("local", "s3")

    @classmethod
    def create(cls, settings: Settings) -> BaseBlobStore:
        backend = settings.storage_backend.lower()
        if backend == "local":
            return LocalBlobStore(Path(settings.storage_local_root))
        if backend == "s3":
            if not settings.s3_bucket:
                raise ValueError("s3_bucket is required for storage_backend=s3")
            return S3BlobStore.from_credentials(
                bucket=settings.s3_bucket,
                region=settings.s3_region,
                access_key_id=settings.s3_access_key_id,
                secret_access_key=settings.s3_secret_access_key,
                endpoint_url=settings.s3_endpoint_url,
            )
        raise ValueError(
            f"Unknown storage backend '{backend}'. Choose from: {list(cls.BACKENDS)}"
        )
