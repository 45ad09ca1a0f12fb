"""
Pydantic schemas for request/response models.
"""

from clipforge.schemas.requests import (
    BatchSubmitRequest,
    ClipRequestInput,
    ProposalParseRequest,
    ReapRequest,
    RenderOptionsInput,
    SegmentInput,
)
from clipforge.schemas.responses import (
    BatchStatusResponse,
    BatchSubmitResponse,
    ClipResultResponse,
    HealthResponse,
    ProposalParseResponse,
    QualityPresetResponse,
    ReadinessResponse,
    ReapResponse,
)

__all__ = [
    "BatchSubmitRequest",
    "ClipRequestInput",
    "ProposalParseRequest",
    "ReapRequest",
    "RenderOptionsInput",
    "SegmentInput",
    "BatchStatusResponse",
    "BatchSubmitResponse",
    "ClipResultResponse",
    "HealthResponse",
    "ProposalParseResponse",
    "QualityPresetResponse",
    "ReadinessResponse",
    "ReapResponse",
]
