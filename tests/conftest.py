"""
Pytest configuration and fixtures.
"""

import os
import sys
from typing import Optional
from unittest.mock import PropertyMock

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from clipforge.config import Settings
from clipforge.services.rendering_service import EncodeError, RenderResult
from clipforge.services.s3_upload_service import BlobStoreError


class FakeRenderer:
    """Stands in for RenderingService; writes a small file instead of running FFmpeg."""

    def __init__(self, fail_for: Optional[set] = None):
        self.calls = []
        self.fail_for = fail_for or set()

    async def render(self, source_path, graph, output_path, progress_callback=None):
        self.calls.append((source_path, graph, output_path))
        name = os.path.basename(output_path)
        if any(name.startswith(f"{clip_id}_") for clip_id in self.fail_for):
            raise EncodeError("FFmpeg failed with exit code 1: simulated")

        os.makedirs(os.path.dirname(output_path), exist_ok=True)
        with open(output_path, "wb") as f:
            f.write(b"\x00" * 2048)
        return RenderResult(
            output_path=output_path,
            file_size_bytes=2048,
            duration_seconds=graph.expected_duration_seconds,
        )


class FakeBlobStore:
    """In-memory blob store recording uploaded keys."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.puts = []
        self.signed = []

    async def put(self, local_path, key):
        if self.fail:
            raise BlobStoreError("simulated outage")
        self.puts.append((local_path, key))
        return f"https://blobs.test/{key}"

    async def signed_get(self, key, ttl_seconds=None, bucket=None):
        self.signed.append((bucket, key, ttl_seconds))
        return f"https://signed.test/{bucket}/{key}?X-Amz-Expires={ttl_seconds}"


@pytest.fixture
def settings(tmp_path, mocker):
    """Settings isolated from the environment, with temp files under tmp_path."""
    work_dir = tmp_path / "work"
    mocker.patch.object(
        Settings,
        "temp_directory",
        new_callable=PropertyMock,
        return_value=str(work_dir),
    )
    return Settings(
        _env_file=None,
        storage_backend="local",
        output_directory=str(tmp_path / "output"),
        clipforge_api_key=None,
    )


@pytest.fixture
def source_video(tmp_path):
    """A stand-in local source file."""
    path = tmp_path / "source.mp4"
    path.write_bytes(b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 1024)
    return str(path)


@pytest.fixture
def fake_renderer():
    return FakeRenderer()


@pytest.fixture
def renderer_factory():
    """Build a FakeRenderer that fails for the given clip ids."""
    return FakeRenderer


@pytest.fixture
def fake_blob_store():
    return FakeBlobStore()
