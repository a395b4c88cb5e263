"""
S3 object storage for uploaded product images and documents.

This module provides functionality for:
- Building collision-free, namespaced object keys
- Uploading assembled buffers and returning a durable public URL
- Recognising URLs that belong to this backend's bucket
- Deleting objects by their public URL

The bucket and its public URL base are configured under ``storage`` in the
settings (S3_BUCKET_NAME, S3_REGION, S3_PUBLIC_BASE_URL, S3_ENDPOINT_URL).
boto3 is blocking, so the async entry points run it in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import secrets
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote, unquote, urlparse

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import UpstreamFailure
from .utils import sanitize_filename

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredObject:
    key: str
    url: str
    size: int
    content_type: str


def guess_content_type(file_name: str, default: str = "application/octet-stream") -> str:
    content_type, _ = mimetypes.guess_type(file_name)
    return content_type or default


def build_object_key(namespace: str, file_name: str, now: Optional[float] = None) -> str:
    """
    Build a storage key of the form ``{namespace}/{epoch_ms}-{16 hex}-{name}``.

    The random component keeps two uploads of the same file name from
    overwriting each other.
    """
    epoch_ms = int((now if now is not None else time.time()) * 1000)
    safe_namespace = namespace.strip("/") or "uploads"
    return f"{safe_namespace}/{epoch_ms}-{secrets.token_hex(8)}-{sanitize_filename(file_name)}"


class ObjectStorage:
    """
    Thin wrapper over an S3 bucket used as durable public storage.

    Args:
        bucket: Bucket name; operations fail with UpstreamFailure when empty
        region: Bucket region, used for the default public URL
        public_base_url: Override for the public URL base (CDN, custom domain)
        endpoint_url: Custom S3 endpoint (MinIO, localstack)
        client: Pre-built boto3 client, mainly for tests
    """

    def __init__(
        self,
        bucket: str,
        region: str = "us-east-1",
        public_base_url: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        client=None,
    ) -> None:
        self.bucket = bucket
        self.region = region
        self.endpoint_url = endpoint_url
        self.public_base_url = (public_base_url or self._default_public_base()).rstrip("/")
        self._client = client

    def _default_public_base(self) -> str:
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com"

    @property
    def is_configured(self) -> bool:
        return bool(self.bucket)

    def _get_client(self):
        """
        Get or create the S3 client.

        Credential errors surface during the actual put/delete calls rather
        than here, so no permission beyond PutObject/DeleteObject is needed.
        """
        if not self.bucket:
            raise UpstreamFailure("S3_BUCKET_NAME not configured")
        if self._client is None:
            self._client = boto3.client("s3", region_name=self.region, endpoint_url=self.endpoint_url)
        return self._client

    def url_for_key(self, key: str) -> str:
        return f"{self.public_base_url}/{quote(key)}"

    def owns(self, url: Optional[str]) -> bool:
        """True when ``url`` points into this backend's bucket."""
        return bool(url) and url.startswith(f"{self.public_base_url}/")  # type: ignore[union-attr]

    def key_from_url(self, url: str) -> str:
        if not self.owns(url):
            raise ValueError(f"URL does not belong to bucket {self.bucket}: {url[:50]}")
        base_path = urlparse(self.public_base_url).path.rstrip("/")
        return unquote(urlparse(url).path[len(base_path) + 1 :])

    def put_bytes(self, key: str, data: bytes, content_type: str) -> StoredObject:
        client = self._get_client()
        try:
            logger.info(f"Uploading {len(data)} bytes to s3://{self.bucket}/{key}")
            client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        except (ClientError, BotoCoreError) as exc:
            logger.error(f"S3 upload failed for {key}: {exc}")
            raise UpstreamFailure(f"Failed to store {key}: {exc}") from exc
        url = self.url_for_key(key)
        logger.info(f"Upload successful: {url}")
        return StoredObject(key=key, url=url, size=len(data), content_type=content_type)

    def delete_url(self, url: str) -> None:
        key = self.key_from_url(url)
        client = self._get_client()
        try:
            client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise UpstreamFailure(f"Failed to delete {key}: {exc}") from exc

    async def upload(self, namespace: str, file_name: str, data: bytes, content_type: Optional[str] = None) -> StoredObject:
        key = build_object_key(namespace, file_name)
        return await asyncio.to_thread(self.put_bytes, key, data, content_type or guess_content_type(file_name))

    async def delete(self, url: str) -> None:
        await asyncio.to_thread(self.delete_url, url)
