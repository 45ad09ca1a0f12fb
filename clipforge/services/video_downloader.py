"""
Video Downloader Service - Makes a batch's source video available on local disk.

Supported sources:
- Local file paths (used in place, never deleted)
- S3 URLs (``s3://`` or amazonaws hosts), read through a presigned URL
- Direct http(s) URLs (streamed with httpx)
"""

import logging
import os
import uuid
from dataclasses import dataclass
from typing import Literal, Optional
from urllib.parse import urlparse

import httpx

from clipforge.config import Settings, get_settings
from clipforge.services.artifact_publisher import BlobStore
from clipforge.services.s3_upload_service import BlobStoreError, is_s3_url, parse_s3_url
from clipforge.services.temp_reaper import CleanupWarning

logger = logging.getLogger(__name__)


# Source types for videos
VideoSourceType = Literal["local", "s3", "direct_url"]


@dataclass
class AcquiredSource:
    """A source video ready for rendering."""

    local_path: str
    is_temporary: bool  # True when we downloaded it and must delete it
    source_type: VideoSourceType
    file_size_bytes: int = 0


class SourceAcquirer:
    """
    Acquires the source video for a batch exactly once.

    Remote sources are downloaded into the batch work directory under a
    unique name; local paths are validated and used directly.
    """

    def __init__(
        self,
        blob_store: Optional[BlobStore] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.blob_store = blob_store

    def detect_source_type(self, source_ref: str) -> VideoSourceType:
        """
        Detect the source type from a reference.

        Args:
            source_ref: Local path, S3 URL or http(s) URL

        Returns:
            VideoSourceType
        """
        if is_s3_url(source_ref):
            return "s3"

        parsed = urlparse(source_ref)
        if parsed.scheme in ("http", "https"):
            return "direct_url"

        return "local"

    async def acquire(self, source_ref: str, work_dir: str) -> AcquiredSource:
        """
        Make the source available locally.

        Args:
            source_ref: Local path, S3 URL or http(s) URL
            work_dir: Directory for downloaded files

        Returns:
            AcquiredSource with the local path

        Raises:
            SourceAcquisitionError: If the source cannot be read
        """
        if not source_ref or not isinstance(source_ref, str):
            raise SourceAcquisitionError("Source reference is empty")

        try:
            source_type = self.detect_source_type(source_ref)
        except ValueError as e:
            # urlparse rejects malformed hosts such as "http://[::1"
            raise SourceAcquisitionError(f"Malformed source reference: {e}") from e
        logger.info(f"Detected source type: {source_type} for {source_ref[:100]}")

        if source_type == "local":
            return self._use_local(source_ref)

        try:
            os.makedirs(work_dir, exist_ok=True)
        except OSError as e:
            raise SourceAcquisitionError(f"Cannot create work directory {work_dir}: {e}") from e
        output_path = os.path.join(work_dir, f"source_{uuid.uuid4().hex}{_extension(source_ref)}")

        if source_type == "s3":
            url = await self._sign_s3_source(source_ref)
            if not url.startswith(("http://", "https://")):
                # Local blob store hands back a path
                return self._use_local(url)
        else:
            url = source_ref

        await self._download(url, output_path)

        file_size = os.path.getsize(output_path)
        logger.info(f"Video downloaded: {output_path} ({file_size / 1024 / 1024:.1f} MB)")

        return AcquiredSource(
            local_path=output_path,
            is_temporary=True,
            source_type=source_type,
            file_size_bytes=file_size,
        )

    def release(self, source: AcquiredSource) -> Optional[CleanupWarning]:
        """Delete a downloaded source. Local sources are left untouched."""
        if not source.is_temporary:
            return None

        try:
            os.remove(source.local_path)
            logger.debug(f"Removed source temp file: {source.local_path}")
        except FileNotFoundError:
            return None
        except OSError as e:
            warning = CleanupWarning(source.local_path, str(e))
            logger.warning(str(warning))
            return warning
        return None

    def _use_local(self, source_ref: str) -> AcquiredSource:
        path = source_ref[len("file://"):] if source_ref.startswith("file://") else source_ref
        if not os.path.isfile(path):
            raise SourceAcquisitionError(f"Local source not found: {path}")

        return AcquiredSource(
            local_path=path,
            is_temporary=False,
            source_type="local",
            file_size_bytes=os.path.getsize(path),
        )

    async def _sign_s3_source(self, source_ref: str) -> str:
        if self.blob_store is None:
            raise SourceAcquisitionError("S3 source given but no blob store is configured")

        try:
            bucket, key = parse_s3_url(source_ref)
            logger.info(f"Downloading video from S3: s3://{bucket}/{key}")
            return await self.blob_store.signed_get(
                key,
                self.settings.signed_url_ttl_seconds,
                bucket=bucket,
            )
        except BlobStoreError as e:
            raise SourceAcquisitionError(f"Failed to sign S3 source: {e}") from e

    async def _download(self, url: str, output_path: str) -> None:
        """Stream a URL to disk using httpx."""
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.download_timeout_seconds,
                follow_redirects=True,
            ) as client:
                async with client.stream("GET", url) as response:
                    response.raise_for_status()

                    with open(output_path, "wb") as f:
                        async for chunk in response.aiter_bytes():
                            f.write(chunk)
        except (httpx.HTTPError, OSError) as e:
            if os.path.exists(output_path):
                os.remove(output_path)
            raise SourceAcquisitionError(f"Failed to download source: {e}") from e

        if not os.path.isfile(output_path) or os.path.getsize(output_path) == 0:
            if os.path.exists(output_path):
                os.remove(output_path)
            raise SourceAcquisitionError(f"Download completed but file is empty: {output_path}")


def _extension(source_ref: str) -> str:
    ext = os.path.splitext(urlparse(source_ref).path)[1]
    return ext if ext and len(ext) <= 5 else ".mp4"


class SourceAcquisitionError(Exception):
    """Exception raised when the source video cannot be acquired."""
    pass
