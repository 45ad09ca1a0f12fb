"""
Tests for publishing rendered clips.
"""

import asyncio

import pytest

from clipforge.services.artifact_publisher import (
    ArtifactPublisher,
    PublishError,
    create_blob_store,
)
from clipforge.services.local_storage_service import LocalStorageService
from clipforge.services.s3_upload_service import S3UploadService


@pytest.fixture
def rendered_clip(tmp_path):
    path = tmp_path / "clip-a_1234abcd.mp4"
    path.write_bytes(b"\x00" * 512)
    return path


class TestArtifactPublisher:
    """Tests for ArtifactPublisher.publish."""

    def test_publish_uploads_and_removes_local(self, fake_blob_store, rendered_clip):
        """Test a successful publish returns the URL and deletes the local copy."""
        publisher = ArtifactPublisher(fake_blob_store)

        artifact = asyncio.run(publisher.publish(str(rendered_clip), "clips/p/clip-a.mp4"))

        assert artifact.url == "https://blobs.test/clips/p/clip-a.mp4"
        assert artifact.key == "clips/p/clip-a.mp4"
        assert artifact.file_size_bytes == 512
        assert fake_blob_store.puts == [(str(rendered_clip), "clips/p/clip-a.mp4")]
        assert not rendered_clip.exists()

    def test_failed_upload_raises_and_removes_local(self, fake_blob_store, rendered_clip):
        """Test a store failure becomes PublishError and the local file is still removed."""
        fake_blob_store.fail = True
        publisher = ArtifactPublisher(fake_blob_store)

        with pytest.raises(PublishError, match="simulated outage"):
            asyncio.run(publisher.publish(str(rendered_clip), "clips/p/clip-a.mp4"))
        assert not rendered_clip.exists()

    def test_missing_file(self, fake_blob_store, tmp_path):
        """Test publishing a file that does not exist fails without uploading."""
        publisher = ArtifactPublisher(fake_blob_store)

        with pytest.raises(PublishError, match="not found"):
            asyncio.run(publisher.publish(str(tmp_path / "gone.mp4"), "k.mp4"))
        assert fake_blob_store.puts == []


class TestCreateBlobStore:
    """Tests for backend selection."""

    def test_local_backend(self, settings):
        """Test storage_backend=local selects the filesystem store."""
        assert isinstance(create_blob_store(settings), LocalStorageService)

    def test_s3_backend(self, settings):
        """Test storage_backend=s3 selects the S3 store."""
        settings.storage_backend = "s3"
        assert isinstance(create_blob_store(settings), S3UploadService)
