"""
Artifact Publisher - Moves a rendered clip from local disk into the blob store.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional, Protocol

from clipforge.config import Settings, get_settings
from clipforge.services.s3_upload_service import BlobStoreError

logger = logging.getLogger(__name__)


class BlobStore(Protocol):
    """Storage backend the publisher and source acquirer talk to."""

    async def put(self, local_path: str, key: str) -> str:
        ...

    async def signed_get(
        self,
        key: str,
        ttl_seconds: Optional[int] = None,
        bucket: Optional[str] = None,
    ) -> str:
        ...


@dataclass
class PublishedArtifact:
    """Where a clip ended up."""

    url: str
    key: str
    file_size_bytes: int


class ArtifactPublisher:
    """Uploads rendered clips and removes the local copy afterwards."""

    def __init__(self, blob_store: BlobStore):
        self.blob_store = blob_store

    async def publish(self, local_path: str, key_hint: str) -> PublishedArtifact:
        """
        Upload a rendered clip.

        The local file is deleted after a successful upload, and on a best
        effort basis after a failed one.

        Args:
            local_path: Rendered clip on local disk
            key_hint: Destination key (see build_clip_key)

        Returns:
            PublishedArtifact with URL, key and size

        Raises:
            PublishError: If the file is missing or the upload fails
        """
        if not os.path.isfile(local_path):
            raise PublishError(f"Rendered file not found: {local_path}")

        file_size = os.path.getsize(local_path)

        try:
            url = await self.blob_store.put(local_path, key_hint)
        except BlobStoreError as e:
            raise PublishError(f"Failed to publish {key_hint}: {e}") from e
        finally:
            self._delete_local(local_path)

        return PublishedArtifact(url=url, key=key_hint, file_size_bytes=file_size)

    def _delete_local(self, local_path: str) -> None:
        try:
            os.remove(local_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to delete local artifact {local_path}: {e}")


def create_blob_store(settings: Optional[Settings] = None) -> BlobStore:
    """Blob store for the configured storage backend."""
    settings = settings or get_settings()
    if settings.storage_backend == "local":
        from clipforge.services.local_storage_service import LocalStorageService
        return LocalStorageService(settings)

    from clipforge.services.s3_upload_service import S3UploadService
    return S3UploadService(settings)


class PublishError(Exception):
    """Exception raised when a clip cannot be published."""
    pass
