from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from docflow.storage.base import BaseBlobStore, BlobEntry, StoredObject
from docflow.storage.exceptions import BlobNotFoundError, StorageError

_MISSING_CODES = frozenset({"404", "NoSuchKey", "NotFound"})


class S3BlobStore(BaseBlobStore):
    """Stores blobs in an S3 (or S3-compatible) bucket."""

    def __init__(self, bucket: str, client: Any) -> None:
        self._bucket = bucket
        self._client = client

    @classmethod
    def from_credentials(
        cls,
        *,
        bucket: str,
        region: str,
        access_key_id: str,
        secret_access_key: str,
        endpoint_url: str | None = None,
    ) -> "S3BlobStore":
        client = boto3.client(
            "s3",
            region_name=region,
            aws_access_key_id=access_key_id or None,
            aws_secret_access_key=secret_access_key or None,
            endpoint_url=endpoint_url,
        )
        return cls(bucket=bucket, client=client)

    def upload(self, key: str, data: bytes, content_type: str) -> StoredObject:
        try:
            response = self._client.put_object(
                Bucket=self._bucket, Key=key, Body=data, ContentType=content_type
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"S3 upload failed for {key}: {exc}") from exc
        return StoredObject(key=key, etag=response.get("ETag", "").strip('"'), size=len(data))

    def download(self, key: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=key)
            return response["Body"].read()
        except ClientError as exc:
            if _error_code(exc) in _MISSING_CODES:
                raise BlobNotFoundError(f"Blob not found: {key}") from exc
            raise StorageError(f"S3 download failed for {key}: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"S3 download failed for {key}: {exc}") from exc

    def exists(self, key: str) -> bool:
        try:
            self._client.head_object(Bucket=self._bucket, Key=key)
        except ClientError as exc:
            if _error_code(exc) in _MISSING_CODES:
                return False
            raise StorageError(f"S3 head failed for {key}: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"S3 head failed for {key}: {exc}") from exc
        return True

    def delete(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self._bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"S3 delete failed for {key}: {exc}") from exc

    def list(self, prefix: str) -> list[BlobEntry]:
        entries = []
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self._bucket, Prefix=prefix):
                for item in page.get("Contents", []):
                    entries.append(BlobEntry(key=item["Key"], size=item["Size"]))
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"S3 list failed for prefix {prefix}: {exc}") from exc
        return sorted(entries, key=lambda entry: entry.key)

    def url(self, key: str, expires_in: int) -> str:
        try:
            return self._client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self._bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to presign URL for {key}: {exc}") from exc


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))
