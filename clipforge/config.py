"""
Configuration module using Pydantic Settings for environment variable management.

Only essential environment variables are exposed. Rendering constants that
should not drift between deployments are hardcoded as read-only properties.
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings


# ============================================================
# QUALITY PRESETS
# ============================================================

class Quality:
    """
    Available render quality identifiers.

    Each maps to a fixed bitrate / target-width preset.
    """
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class QualityPreset:
    """Encoding parameters for a named quality level."""

    id: str
    video_bitrate: str
    audio_bitrate: str
    target_width: int


_QUALITY_PRESETS = {
    Quality.LOW: QualityPreset(
        id=Quality.LOW,
        video_bitrate="500k",
        audio_bitrate="64k",
        target_width=720,
    ),
    Quality.MEDIUM: QualityPreset(
        id=Quality.MEDIUM,
        video_bitrate="1000k",
        audio_bitrate="128k",
        target_width=1280,
    ),
    Quality.HIGH: QualityPreset(
        id=Quality.HIGH,
        video_bitrate="2000k",
        audio_bitrate="192k",
        target_width=1920,
    ),
}


def get_quality_preset(quality_id: str) -> QualityPreset:
    """
    Get the encoding preset for a quality level.

    Args:
        quality_id: One of the Quality constants

    Returns:
        QualityPreset with bitrates and target width

    Raises:
        ValueError: If quality_id is not recognized
    """
    if quality_id not in _QUALITY_PRESETS:
        valid = list(_QUALITY_PRESETS.keys())
        raise ValueError(f"Unknown quality: {quality_id}. Valid qualities: {valid}")

    return _QUALITY_PRESETS[quality_id]


def get_available_presets() -> list[dict]:
    """
    Get list of available quality presets with metadata.

    Returns:
        List of preset info dicts (id, bitrates, target width)
    """
    return [
        {
            "id": preset.id,
            "video_bitrate": preset.video_bitrate,
            "audio_bitrate": preset.audio_bitrate,
            "target_width": preset.target_width,
        }
        for preset in _QUALITY_PRESETS.values()
    ]


# Output containers and the muxer name FFmpeg expects for each
OUTPUT_FORMATS = {
    "mp4": "mp4",
    "mov": "mov",
    "avi": "avi",
}

OUTPUT_CONTENT_TYPES = {
    "mp4": "video/mp4",
    "mov": "video/quicktime",
    "avi": "video/x-msvideo",
}


class Settings(BaseSettings):
    """
    Application settings.

    Only essential configuration is loaded from environment variables.
    """

    # ============================================================
    # ENVIRONMENT VARIABLES (minimal set)
    # ============================================================

    # Application
    app_name: str = "clipforge"
    debug: bool = False
    log_level: str = "INFO"

    # Blob storage
    storage_backend: Literal["s3", "local"] = "s3"
    output_directory: str = "./output"  # Used by the local backend only

    # AWS S3
    aws_region: str = "us-east-1"
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    s3_bucket: str = "clipforge-media"
    s3_endpoint_url: Optional[str] = None  # For S3-compatible stores (MinIO, LocalStack)

    # Security - API authentication
    clipforge_api_key: Optional[str] = None

    # Media engine
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    # Segment policy (single threshold for every validation path)
    max_segment_duration_seconds: float = 60.0

    # Performance tuning
    max_render_workers: int = 1  # Concurrent FFmpeg renders per batch
    max_concurrent_jobs: int = 2  # Batches processed at once by the API

    # Temp file reaping
    temp_file_ttl_seconds: int = 3600

    # ============================================================
    # HARDCODED SETTINGS (not configurable via env vars)
    # ============================================================

    @property
    def temp_directory(self) -> str:
        return "/tmp/clipforge"

    @property
    def ffmpeg_preset(self) -> str:
        return "fast"

    @property
    def signed_url_ttl_seconds(self) -> int:
        return 3600  # 1 hour

    @property
    def download_timeout_seconds(self) -> int:
        return 300

    @property
    def render_timeout_seconds(self) -> int:
        return 1800  # 30 minutes per clip

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
