"""
S3 Upload Service - Blob store backed by Amazon S3 (or an S3-compatible endpoint).
"""

import asyncio
import logging
import os
from typing import Optional
from urllib.parse import urlparse

import boto3
from boto3.exceptions import Boto3Error
from botocore.exceptions import BotoCoreError, ClientError

from clipforge.config import OUTPUT_CONTENT_TYPES, Settings, get_settings

logger = logging.getLogger(__name__)


def build_clip_key(project_id: str, clip_id: str, fmt: str) -> str:
    """
    Object key for a rendered clip.

    Keys are deterministic, so re-rendering a clip id overwrites the
    previous artifact.
    """
    return f"clips/{project_id}/{clip_id}.{fmt}"


def content_type_for(key: str) -> str:
    """Guess a video content type from the key's extension."""
    ext = os.path.splitext(key)[1].lstrip(".").lower()
    return OUTPUT_CONTENT_TYPES.get(ext, "application/octet-stream")


def is_s3_url(url: str) -> bool:
    """Check whether a reference points at S3 (s3:// or an amazonaws S3 host)."""
    if not isinstance(url, str):
        return False
    if url.startswith("s3://"):
        return True

    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        return False
    host = parsed.hostname or ""
    if not host.endswith("amazonaws.com"):
        return False
    return host.startswith(("s3.", "s3-")) or ".s3." in host or ".s3-" in host


def parse_s3_url(url: str) -> tuple[str, str]:
    """
    Split an S3 reference into (bucket, key).

    Supports ``s3://bucket/key``, virtual-hosted URLs
    (``https://bucket.s3.region.amazonaws.com/key``) and path-style URLs
    (``https://s3.region.amazonaws.com/bucket/key``).

    Raises:
        BlobStoreError: If the reference is not a recognizable S3 location
    """
    if not is_s3_url(url):
        raise BlobStoreError(f"Not an S3 URL: {url}")

    parsed = urlparse(url)
    path = parsed.path.lstrip("/")

    if parsed.scheme == "s3":
        bucket, key = parsed.netloc, path
    else:
        host = parsed.hostname or ""
        if host.startswith("s3.") or host.startswith("s3-"):
            bucket, _, key = path.partition("/")
        else:
            bucket = host.split(".s3", 1)[0]
            key = path

    if not bucket or not key:
        raise BlobStoreError(f"S3 URL is missing a bucket or key: {url}")
    return bucket, key


class S3UploadService:
    """
    Blob store for clips on S3.

    Features:
    - Async upload of rendered clips (sync boto3 calls run in a thread pool)
    - Content type derived from the output format
    - Time-limited presigned read URLs for private sources
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._client = None

    @property
    def client(self):
        """Lazy-initialize S3 client."""
        if self._client is None:
            config = {
                "region_name": self.settings.aws_region,
            }
            if self.settings.aws_access_key_id and self.settings.aws_secret_access_key:
                config["aws_access_key_id"] = self.settings.aws_access_key_id
                config["aws_secret_access_key"] = self.settings.aws_secret_access_key
            if self.settings.s3_endpoint_url:
                config["endpoint_url"] = self.settings.s3_endpoint_url

            self._client = boto3.client("s3", **config)

        return self._client

    @property
    def bucket(self) -> str:
        return self.settings.s3_bucket

    def public_url(self, key: str) -> str:
        if self.settings.s3_endpoint_url:
            return f"{self.settings.s3_endpoint_url.rstrip('/')}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.{self.settings.aws_region}.amazonaws.com/{key}"

    async def put(self, local_path: str, key: str) -> str:
        """
        Upload a local file under ``key``.

        Args:
            local_path: Path to local file
            key: Destination object key

        Returns:
            Durable URL of the uploaded object

        Raises:
            BlobStoreError: If the file is missing or the upload fails
        """
        if not os.path.isfile(local_path):
            raise BlobStoreError(f"File not found: {local_path}")

        content_type = content_type_for(key)
        logger.info(f"Uploading clip to s3://{self.bucket}/{key}")

        try:
            # Upload (use thread pool for sync boto3 call)
            loop = asyncio.get_event_loop()
            await loop.run_in_executor(
                None,
                lambda: self.client.upload_file(
                    local_path,
                    self.bucket,
                    key,
                    ExtraArgs={"ContentType": content_type},
                ),
            )
        except (Boto3Error, BotoCoreError, ClientError) as e:
            # upload_file reports transfer failures as S3UploadFailedError
            raise BlobStoreError(f"Upload of {key} failed: {e}") from e

        url = self.public_url(key)
        logger.info(f"Upload complete: {url}")
        return url

    async def signed_get(
        self,
        key: str,
        ttl_seconds: Optional[int] = None,
        bucket: Optional[str] = None,
    ) -> str:
        """
        Generate a presigned URL for downloading a file.

        Args:
            key: S3 object key
            ttl_seconds: URL validity duration (defaults to one hour)
            bucket: Bucket holding the object (defaults to the configured bucket)

        Returns:
            Presigned download URL
        """
        expires = ttl_seconds or self.settings.signed_url_ttl_seconds
        try:
            loop = asyncio.get_event_loop()
            url = await loop.run_in_executor(
                None,
                lambda: self.client.generate_presigned_url(
                    "get_object",
                    Params={
                        "Bucket": bucket or self.bucket,
                        "Key": key,
                    },
                    ExpiresIn=expires,
                ),
            )
        except (BotoCoreError, ClientError) as e:
            raise BlobStoreError(f"Could not sign read URL for {key}: {e}") from e
        return url


class BlobStoreError(Exception):
    """Exception raised when a blob store operation fails."""
    pass
