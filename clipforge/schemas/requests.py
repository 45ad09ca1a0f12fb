"""
Request schemas for the clip assembly API.
"""

from typing import Literal, Optional, Union

from pydantic import BaseModel, Field

from clipforge.services.clip_assembly_pipeline import SAFE_ID_PATTERN


class SegmentInput(BaseModel):
    """One time range of the source video."""

    label: str = Field(..., description="What this segment covers")
    start_time: Union[str, float] = Field(
        ..., description="Start as HH:MM:SS,mmm or seconds"
    )
    end_time: Union[str, float] = Field(
        ..., description="End as HH:MM:SS,mmm or seconds"
    )


class RenderOptionsInput(BaseModel):
    """Rendering options for one clip."""

    quality: Literal["low", "medium", "high"] = "medium"
    format: Literal["mp4", "mov", "avi"] = "mp4"
    width: Optional[int] = Field(
        default=None, ge=2, description="Output width (defaults to the quality preset)"
    )
    height: Optional[int] = Field(
        default=None, ge=2, description="Output height (defaults to 16:9 of the width)"
    )
    fps: int = Field(default=30, ge=1, le=120)
    crossfade: bool = Field(default=False, description="Blend segments instead of hard cuts")
    crossfade_duration: float = Field(default=0.3, ge=0, le=5)
    include_fades: bool = Field(default=False, description="Fade in/out at the clip edges")


class ClipRequestInput(BaseModel):
    """A single Franken-Clip to render."""

    id: str = Field(
        ..., pattern=SAFE_ID_PATTERN, description="Clip identifier (used in the artifact key)"
    )
    title: Optional[str] = None
    segments: list[SegmentInput] = Field(..., min_length=1)
    options: RenderOptionsInput = Field(default_factory=RenderOptionsInput)


class BatchSubmitRequest(BaseModel):
    """Request to render a batch of clips from one source video.

    Supported sources:
    - Local path: /data/videos/source.mp4
    - S3 URL: s3://bucket/key or https://bucket.s3.region.amazonaws.com/key
    - Direct URL: https://example.com/video.mp4
    """

    source_ref: str = Field(..., min_length=1, description="Source video location")
    project_id: str = Field(
        ..., pattern=SAFE_ID_PATTERN, description="Project the clips belong to"
    )
    user_id: Optional[str] = Field(default=None, description="Owner user ID for tracking")
    batch_id: Optional[str] = Field(
        default=None,
        pattern=SAFE_ID_PATTERN,
        description="Batch ID (generated when omitted); letters, digits, '_' and '-'",
    )
    clips: list[ClipRequestInput] = Field(..., min_length=1)
    max_segment_duration_seconds: Optional[float] = Field(
        default=None,
        gt=0,
        description="Override the configured maximum segment duration for this batch",
    )

    class Config:
        json_schema_extra = {
            "example": {
                "source_ref": "s3://clipforge-media/uploads/project-1/source.mp4",
                "project_id": "project-1",
                "clips": [
                    {
                        "id": "clip-1",
                        "title": "Why caching matters",
                        "segments": [
                            {"label": "Hook", "start_time": "00:00:10,000", "end_time": "00:00:30,000"},
                            {"label": "Payoff", "start_time": "00:04:00,000", "end_time": "00:04:20,500"},
                        ],
                        "options": {"quality": "medium", "crossfade": True},
                    }
                ],
            }
        }


class ProposalParseRequest(BaseModel):
    """Raw AI proposer output to validate."""

    raw: str = Field(..., description="Text returned by the segment proposer")
    clip_id_prefix: str = Field(
        default="clip",
        pattern=r"^[A-Za-z0-9_-]{1,48}$",
        description="Prefix for generated clip IDs",
    )
    options: Optional[RenderOptionsInput] = Field(
        default=None, description="When given, proposals are also converted to clip requests"
    )


class ReapRequest(BaseModel):
    """Request to sweep stale temp files."""

    ttl_seconds: Optional[int] = Field(
        default=None, ge=0, description="Age threshold (defaults to TEMP_FILE_TTL_SECONDS)"
    )
