"""
Storage abstraction for S3-compatible object storage (Cloudflare R2) and in-memory testing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional, Protocol
from urllib.parse import urlparse

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

PRESIGN_EXPIRES_SECONDS = 600


class StorageError(Exception):
    pass


class StorageClient(Protocol):
    """Defines the operations the API and job functions need from object storage."""

    def create_presigned_upload(
        self, key: str, content_type: str, expires_in: int = PRESIGN_EXPIRES_SECONDS
    ) -> dict:
        ...

    def upload_bytes(self, key: str, data: bytes, content_type: str) -> dict:
        ...

    def delete_urls(self, urls: Iterable[str]) -> None:
        ...

    def public_url(self, key: str) -> str:
        ...

    def key_from_url(self, url: str) -> str:
        ...


def _join_url(base_url: str, key: str) -> str:
    return f"{base_url.rstrip('/')}/{key.lstrip('/')}"


def _key_from_url(base_url: str, url: str) -> str:
    prefix = base_url.rstrip("/") + "/"
    if url.startswith(prefix):
        return url[len(prefix):]
    return urlparse(url).path.lstrip("/")


@dataclass
class InMemoryStorageClient:
    """Test double for storage interactions."""

    base_url: str = "https://example.test/storage"
    stored_objects: dict = field(default_factory=dict)

    def create_presigned_upload(
        self, key: str, content_type: str, expires_in: int = PRESIGN_EXPIRES_SECONDS
    ) -> dict:
        return {
            "presignedUrl": f"{self.base_url}/{key}?op=put&expires={expires_in}",
            "key": key,
            "publicUrl": self.public_url(key),
        }

    def upload_bytes(self, key: str, data: bytes, content_type: str) -> dict:
        self.stored_objects[key] = (data, content_type)
        return {"url": self.public_url(key), "key": key}

    def delete_urls(self, urls: Iterable[str]) -> None:
        for url in urls:
            self.stored_objects.pop(self.key_from_url(url), None)

    def public_url(self, key: str) -> str:
        return _join_url(self.base_url, key)

    def key_from_url(self, url: str) -> str:
        return _key_from_url(self.base_url, url)


@dataclass
class S3StorageClient:
    """
    S3-compatible storage client. Objects are served from ``public_base_url``.
    """

    bucket: str
    endpoint: str
    access_key_id: str
    secret_access_key: str
    public_base_url: str
    region: Optional[str] = "auto"

    def __post_init__(self):
        config = Config(signature_version="s3v4")
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint,
            region_name=self.region,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            config=config,
        )

    def create_presigned_upload(
        self, key: str, content_type: str, expires_in: int = PRESIGN_EXPIRES_SECONDS
    ) -> dict:
        try:
            url = self._client.generate_presigned_url(
                ClientMethod="put_object",
                Params={"Bucket": self.bucket, "Key": key, "ContentType": content_type},
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to presign upload for {key}: {exc}") from exc
        return {"presignedUrl": url, "key": key, "publicUrl": self.public_url(key)}

    def upload_bytes(self, key: str, data: bytes, content_type: str) -> dict:
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to upload {key}: {exc}") from exc
        return {"url": self.public_url(key), "key": key}

    def delete_urls(self, urls: Iterable[str]) -> None:
        keys = [self.key_from_url(url) for url in urls]
        if not keys:
            return
        # delete_objects accepts at most 1000 keys per call.
        for start in range(0, len(keys), 1000):
            batch = keys[start:start + 1000]
            try:
                self._client.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": key} for key in batch], "Quiet": True},
                )
            except (BotoCoreError, ClientError) as exc:
                raise StorageError(f"Failed to delete objects: {exc}") from exc

    def public_url(self, key: str) -> str:
        return _join_url(self.public_base_url, key)

    def key_from_url(self, url: str) -> str:
        return _key_from_url(self.public_base_url, url)
