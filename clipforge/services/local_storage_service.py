"""
Local Storage Service - Blob store on the local filesystem.

Replaces S3UploadService for local-only deployments. Keys map to paths under
``Settings.output_directory``; returned URLs are absolute file paths.
"""

import asyncio
import logging
import os
import shutil
from typing import Optional

from clipforge.config import Settings, get_settings
from clipforge.services.s3_upload_service import BlobStoreError

logger = logging.getLogger(__name__)


class LocalStorageService:
    """
    Blob store that copies clips into an output directory.

    Output structure:
        output/clips/{project_id}/
        ├── clip-a.mp4
        └── clip-b.mov
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.root = os.path.abspath(self.settings.output_directory)
        os.makedirs(self.root, exist_ok=True)
        logger.info(f"Local storage output directory: {self.root}")

    def path_for(self, key: str) -> str:
        """Absolute path for a key, refusing keys that escape the root."""
        path = os.path.abspath(os.path.join(self.root, key))
        if os.path.commonpath([path, self.root]) != self.root:
            raise BlobStoreError(f"Key escapes storage root: {key}")
        return path

    async def put(self, local_path: str, key: str) -> str:
        """Copy a file into storage and return its absolute path."""
        if not os.path.isfile(local_path):
            raise BlobStoreError(f"File not found: {local_path}")

        output_path = self.path_for(key)
        logger.info(f"Copying clip to {output_path}")

        try:
            os.makedirs(os.path.dirname(output_path), exist_ok=True)
            # Copy file (use thread pool for blocking IO)
            loop = asyncio.get_event_loop()
            await loop.run_in_executor(
                None,
                lambda: shutil.copy2(local_path, output_path),
            )
        except OSError as e:
            raise BlobStoreError(f"Failed to store {key}: {e}") from e

        file_size = os.path.getsize(output_path)
        logger.info(f"Clip saved: {output_path} ({file_size / 1024 / 1024:.1f} MB)")
        return output_path

    async def signed_get(
        self,
        key: str,
        ttl_seconds: Optional[int] = None,
        bucket: Optional[str] = None,
    ) -> str:
        """Local files need no signing; return the stored path if present."""
        path = self.path_for(key)
        if not os.path.isfile(path):
            raise BlobStoreError(f"No stored object for key: {key}")
        return path
