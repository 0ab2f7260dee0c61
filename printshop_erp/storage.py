"""
File storage for uploaded documents.

Files are kept in named buckets (``inbox`` for OCR intake, ``project_files``
for project attachments) on S3 or any S3-compatible service.  Objects are
addressed by a generated path and served through a public URL derived from
that path.
"""

from __future__ import annotations

import logging
import uuid
from typing import Iterable, Optional

import boto3
from botocore.client import BaseClient
from botocore.exceptions import BotoCoreError, ClientError

from .config import Settings, get_settings
from .errors import StoreError

logger = logging.getLogger(__name__)


def get_s3_client(settings: Optional[Settings] = None) -> BaseClient:
    """Return an S3 client configured using environment variables or IAM roles."""
    settings = settings or get_settings()
    return boto3.client(
        "s3",
        endpoint_url=settings.storage_endpoint_url,
        region_name=settings.aws_region,
    )


def generate_path(file_name: str) -> str:
    """A fresh object path keeping the original file extension."""
    ext = file_name.rsplit(".", 1)[-1] if "." in file_name else "bin"
    return f"{uuid.uuid4()}.{ext.lower()}"


class FileStorage:
    def __init__(self, settings: Optional[Settings] = None, client: Optional[BaseClient] = None) -> None:
        self.settings = settings or get_settings()
        self._client = client

    @property
    def client(self) -> BaseClient:
        if self._client is None:
            self._client = get_s3_client(self.settings)
        return self._client

    def bucket_name(self, bucket: str) -> str:
        return f"{self.settings.storage_bucket_prefix}{bucket}"

    def upload(self, bucket: str, path: str, content: bytes, content_type: str = "application/octet-stream") -> str:
        try:
            self.client.put_object(
                Bucket=self.bucket_name(bucket), Key=path, Body=content, ContentType=content_type
            )
        except (BotoCoreError, ClientError) as exc:
            logger.error("Upload of %s to bucket %s failed: %s", path, bucket, exc)
            raise StoreError.from_exception("File upload", exc) from exc
        return path

    def remove(self, bucket: str, paths: Iterable[str]) -> None:
        objects = [{"Key": path} for path in paths if path]
        if not objects:
            return
        try:
            self.client.delete_objects(Bucket=self.bucket_name(bucket), Delete={"Objects": objects})
        except (BotoCoreError, ClientError) as exc:
            logger.error("Removing %d object(s) from bucket %s failed: %s", len(objects), bucket, exc)
            raise StoreError.from_exception("File removal", exc) from exc

    def public_url(self, bucket: str, path: str) -> str:
        name = self.bucket_name(bucket)
        if self.settings.storage_public_url:
            return f"{self.settings.storage_public_url.rstrip('/')}/{name}/{path}"
        return f"https://{name}.s3.{self.settings.aws_region}.amazonaws.com/{path}"
