"""
Storage abstraction for food images on S3 and in-memory testing.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

DEFAULT_CONTENT_TYPE = "image/jpeg"
CONTENT_TYPES_BY_EXTENSION = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
}
UPLOAD_SOURCE = "foody-app"


class ObjectNotFoundError(Exception):
    pass


@dataclass
class StoredObject:
    body: bytes
    content_type: Optional[str] = None


def build_image_key(file_name: str, now: Optional[datetime] = None) -> str:
    """food-image_<iso timestamp with - for : and .>_<8 hex>.<ext>"""
    now = now or datetime.now(timezone.utc)
    timestamp = now.strftime("%Y-%m-%dT%H-%M-%S-") + f"{now.microsecond // 1000:03d}Z"
    extension = file_name.rsplit(".", 1)[-1] if "." in file_name else "jpg"
    return f"food-image_{timestamp}_{uuid.uuid4().hex[:8]}.{extension}"


def parse_s3_url(url: str) -> Optional[tuple[str, str]]:
    """Splits s3://bucket/key; returns None for anything else."""
    if not url or not url.startswith("s3://"):
        return None
    bucket, _, key = url[len("s3://") :].partition("/")
    if not bucket or not key:
        return None
    return bucket, key


def guess_content_type(key: str) -> str:
    extension = key.lower().rsplit(".", 1)[-1] if "." in key else ""
    return CONTENT_TYPES_BY_EXTENSION.get(extension, DEFAULT_CONTENT_TYPE)


class StorageClient(Protocol):
    """Defines the operations the API needs from object storage."""

    bucket: str

    def upload_bytes(
        self, key: str, body: bytes, content_type: str, metadata: dict | None = None
    ) -> str:
        ...

    def get_object(self, key: str) -> StoredObject:
        ...

    def delete_object(self, key: str) -> bool:
        ...


@dataclass
class InMemoryStorageClient:
    """Test double for storage interactions."""

    bucket: str = "foody-images-test"
    base_url: str = "https://example.test/storage"
    stored_objects: dict = field(default_factory=dict)

    def upload_bytes(
        self, key: str, body: bytes, content_type: str, metadata: dict | None = None
    ) -> str:
        self.stored_objects[key] = StoredObject(body=body, content_type=content_type)
        return f"{self.base_url}/{self.bucket}/{key}"

    def get_object(self, key: str) -> StoredObject:
        stored = self.stored_objects.get(key)
        if stored is None:
            raise ObjectNotFoundError(key)
        return stored

    def delete_object(self, key: str) -> bool:
        return self.stored_objects.pop(key, None) is not None


@dataclass
class S3StorageClient:
    """
    boto3-backed storage client. An endpoint override allows S3-compatible
    stores such as MinIO or localstack.
    """

    bucket: str
    region: str
    endpoint: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None

    def __post_init__(self):
        config = Config(signature_version="s3v4", retries={"max_attempts": 3})
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint or None,
            region_name=self.region,
            aws_access_key_id=self.access_key_id or None,
            aws_secret_access_key=self.secret_access_key or None,
            config=config,
        )

    def _public_url(self, key: str) -> str:
        if self.endpoint:
            return f"{self.endpoint.rstrip('/')}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def upload_bytes(
        self, key: str, body: bytes, content_type: str, metadata: dict | None = None
    ) -> str:
        self._client.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=body,
            ContentType=content_type,
            Metadata=metadata or {},
        )
        return self._public_url(key)

    def get_object(self, key: str) -> StoredObject:
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                raise ObjectNotFoundError(key) from e
            raise
        return StoredObject(
            body=response["Body"].read(), content_type=response.get("ContentType")
        )

    def delete_object(self, key: str) -> bool:
        try:
            self._client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                return False
            raise
        self._client.delete_object(Bucket=self.bucket, Key=key)
        return True
