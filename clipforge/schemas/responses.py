"""
Response schemas for the clip assembly API.
"""

from typing import Optional, Union

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Service status")
    version: str = Field(..., description="API version")


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool = Field(..., description="Whether service is ready to render")
    ffmpeg: str = Field(..., description="Media engine status")
    storage_backend: str = Field(..., description="Configured blob store")


class DroppedSegmentResponse(BaseModel):
    """A segment removed by the duration filter."""

    label: str
    reason: str
    duration_seconds: float


class ClipResultResponse(BaseModel):
    """Outcome of one clip request."""

    id: str
    status: str = Field(..., description="completed or failed")
    artifact_ref: Optional[str] = Field(default=None, description="URL of the rendered clip")
    artifact_key: Optional[str] = None
    file_size_bytes: Optional[int] = None
    duration_seconds: Optional[float] = None
    error: Optional[str] = None
    stage: Optional[str] = Field(
        default=None,
        description="Failed step: acquire, validate, build, render, publish or cancelled",
    )
    dropped_segments: list[DroppedSegmentResponse] = []


class BatchSubmitResponse(BaseModel):
    """Response after submitting a batch."""

    batch_id: str
    status: str
    message: str
    total_clips: int


class BatchStatusResponse(BaseModel):
    """Response for batch status query."""

    batch_id: str
    state: str
    progress_percent: float
    clips_completed: int
    total_clips: int
    current_clip_id: Optional[str] = None
    success_count: Optional[int] = None
    failure_count: Optional[int] = None
    cancelled: bool = False
    warnings: list[str] = []
    error: Optional[str] = None
    results: Optional[list[ClipResultResponse]] = None
    processing_time_seconds: Optional[float] = None


class ProposedSegmentResponse(BaseModel):
    """A validated segment from a proposal."""

    label: str
    start: Union[str, float]
    end: Union[str, float]


class ProposalResponse(BaseModel):
    """A validated clip proposal."""

    title: str
    description: Optional[str] = None
    theme_category: Optional[str] = None
    segments: list[ProposedSegmentResponse]


class ProposalParseResponse(BaseModel):
    """Result of parsing proposer output."""

    total: int
    proposals: list[ProposalResponse]
    clip_requests: Optional[list[dict]] = Field(
        default=None,
        description="Ready-to-submit clip requests (only when options were supplied)",
    )


class QualityPresetResponse(BaseModel):
    """Response model for a quality preset."""

    id: str
    video_bitrate: str
    audio_bitrate: str
    target_width: int


class ReapResponse(BaseModel):
    """Result of a temp-file sweep."""

    directory: str
    removed_count: int
    removed: list[str]
    errors: list[str]
