"""
Clip Assembly API Router - Endpoints for batch clip rendering.
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status

from clipforge.auth import verify_api_key
from clipforge.config import get_available_presets, get_settings
from clipforge.schemas.requests import (
    BatchSubmitRequest,
    ClipRequestInput,
    ProposalParseRequest,
    RenderOptionsInput,
)
from clipforge.schemas.responses import (
    BatchStatusResponse,
    BatchSubmitResponse,
    ClipResultResponse,
    DroppedSegmentResponse,
    ProposalParseResponse,
    ProposalResponse,
    QualityPresetResponse,
)
from clipforge.services.clip_assembly_pipeline import (
    BatchProgress,
    BatchRenderRequest,
    BatchRenderResult,
    BatchState,
    ClipAssemblyPipeline,
    ClipRenderRequest,
    ClipRenderResult,
    OwnerContext,
)
from clipforge.services.filter_graph import RenderOptions
from clipforge.services.proposal_parser import parse_proposals, proposal_to_request
from clipforge.services.segment_filter import SegmentSpec, SegmentValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/clip-assembly", tags=["Clip Assembly"])


# ============================================================================
# In-Memory Batch Storage (process-local; nothing is persisted)
# ============================================================================

_batch_store: dict[str, BatchProgress] = {}
_batch_results: dict[str, BatchRenderResult] = {}
_batch_errors: dict[str, str] = {}
_cancel_events: dict[str, asyncio.Event] = {}

# Semaphore for limiting concurrent batches
_job_semaphore: Optional[asyncio.Semaphore] = None


def get_job_semaphore() -> asyncio.Semaphore:
    """Get or create batch semaphore."""
    global _job_semaphore
    if _job_semaphore is None:
        _job_semaphore = asyncio.Semaphore(get_settings().max_concurrent_jobs)
    return _job_semaphore


def active_batch_ids() -> set[str]:
    """Ids of batches submitted and not yet finished; their work dirs are in use."""
    return set(_cancel_events)


def progress_callback(progress: BatchProgress) -> None:
    """Callback to store batch progress."""
    _batch_store[progress.batch_id] = progress
    logger.debug(
        f"Batch {progress.batch_id}: {progress.state.value} - {progress.percent:.0f}%"
    )


# ============================================================================
# Conversions
# ============================================================================


def _to_render_options(options: RenderOptionsInput) -> RenderOptions:
    return RenderOptions(
        quality=options.quality,
        format=options.format,
        width=options.width,
        height=options.height,
        fps=options.fps,
        crossfade=options.crossfade,
        crossfade_duration=options.crossfade_duration,
        include_fades=options.include_fades,
    )


def _to_clip_request(clip: ClipRequestInput) -> ClipRenderRequest:
    return ClipRenderRequest(
        id=clip.id,
        title=clip.title,
        segments=[
            SegmentSpec(label=s.label, start_time=s.start_time, end_time=s.end_time)
            for s in clip.segments
        ],
        options=_to_render_options(clip.options),
    )


def _to_clip_response(result: ClipRenderResult) -> ClipResultResponse:
    return ClipResultResponse(
        id=result.id,
        status=result.status.value,
        artifact_ref=result.artifact_ref,
        artifact_key=result.artifact_key,
        file_size_bytes=result.file_size_bytes,
        duration_seconds=result.duration_seconds,
        error=result.error,
        stage=result.stage.value if result.stage else None,
        dropped_segments=[
            DroppedSegmentResponse(
                label=d.segment.label,
                reason=d.reason,
                duration_seconds=d.duration_seconds,
            )
            for d in result.dropped_segments
        ],
    )


# ============================================================================
# Endpoints
# ============================================================================


@router.get("/presets", response_model=list[QualityPresetResponse])
async def list_quality_presets() -> list[QualityPresetResponse]:
    """List the available render quality presets."""
    return [QualityPresetResponse(**preset) for preset in get_available_presets()]


@router.post("/proposals/parse", response_model=ProposalParseResponse)
async def parse_proposal_output(
    request: ProposalParseRequest,
    _: None = Depends(verify_api_key),
) -> ProposalParseResponse:
    """
    Validate raw AI proposer output.

    Returns 422 when the output matches none of the accepted shapes.
    """
    try:
        proposals = parse_proposals(request.raw)
    except SegmentValidationError as e:
        logger.warning(f"Rejected proposer output: {e}")
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        )

    clip_requests = None
    if request.options is not None:
        options = _to_render_options(request.options)
        clip_requests = []
        for index, proposal in enumerate(proposals):
            clip = proposal_to_request(proposal, f"{request.clip_id_prefix}-{index + 1}", options)
            clip_requests.append({
                "id": clip.id,
                "title": clip.title,
                "segments": [
                    {"label": s.label, "start_time": s.start_time, "end_time": s.end_time}
                    for s in clip.segments
                ],
                "options": request.options.model_dump(),
            })

    return ProposalParseResponse(
        total=len(proposals),
        proposals=[ProposalResponse(**p.model_dump()) for p in proposals],
        clip_requests=clip_requests,
    )


@router.post("/batches", response_model=BatchSubmitResponse, status_code=status.HTTP_202_ACCEPTED)
async def submit_batch(
    request: BatchSubmitRequest,
    background_tasks: BackgroundTasks,
    _: None = Depends(verify_api_key),
) -> BatchSubmitResponse:
    """
    Submit a batch of clips to render from one source video.

    The batch is processed asynchronously. Use GET /batches/{batch_id} to check status.
    """
    clip_ids = [clip.id for clip in request.clips]
    if len(set(clip_ids)) != len(clip_ids):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Clip IDs must be unique within a batch",
        )

    batch_request = BatchRenderRequest(
        source_ref=request.source_ref,
        clip_requests=[_to_clip_request(clip) for clip in request.clips],
        owner_context=OwnerContext(project_id=request.project_id, user_id=request.user_id),
        batch_id=request.batch_id,
        max_segment_duration=request.max_segment_duration_seconds,
    )
    batch_id = batch_request.batch_id

    if batch_id in _cancel_events:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Batch already running: {batch_id}",
        )

    # Resubmitting a finished batch id starts over
    _batch_results.pop(batch_id, None)
    _batch_errors.pop(batch_id, None)

    _batch_store[batch_id] = BatchProgress(
        batch_id=batch_id,
        state=BatchState.PENDING,
        clips_completed=0,
        total_clips=len(batch_request.clip_requests),
    )
    cancel_event = asyncio.Event()
    _cancel_events[batch_id] = cancel_event

    background_tasks.add_task(_process_batch_background, batch_request, cancel_event)

    logger.info(f"Batch {batch_id} submitted with {len(request.clips)} clip(s)")

    return BatchSubmitResponse(
        batch_id=batch_id,
        status="accepted",
        message="Batch queued for processing",
        total_clips=len(request.clips),
    )


@router.get("/batches/{batch_id}", response_model=BatchStatusResponse)
async def get_batch_status(batch_id: str) -> BatchStatusResponse:
    """
    Get the status of a batch.

    Includes per-clip results once the batch is done.
    """
    if batch_id in _batch_results:
        result = _batch_results[batch_id]
        return BatchStatusResponse(
            batch_id=batch_id,
            state=BatchState.DONE.value,
            progress_percent=100,
            clips_completed=result.total_requested,
            total_clips=result.total_requested,
            success_count=result.success_count,
            failure_count=result.failure_count,
            cancelled=result.cancelled,
            warnings=result.warnings,
            results=[_to_clip_response(r) for r in result.results],
            processing_time_seconds=result.processing_time_seconds,
        )

    if batch_id in _batch_store:
        progress = _batch_store[batch_id]
        return BatchStatusResponse(
            batch_id=batch_id,
            state=progress.state.value,
            progress_percent=progress.percent,
            clips_completed=progress.clips_completed,
            total_clips=progress.total_clips,
            current_clip_id=progress.current_clip_id,
            error=_batch_errors.get(batch_id),
        )

    raise HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Batch not found: {batch_id}",
    )


@router.delete("/batches/{batch_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_batch(
    batch_id: str,
    _: None = Depends(verify_api_key),
) -> None:
    """
    Cancel a pending or running batch.

    Clips already rendering finish; clips not yet started are recorded as
    cancelled.
    """
    if batch_id in _cancel_events:
        _cancel_events[batch_id].set()
        logger.info(f"Cancellation requested for batch {batch_id}")
        return

    if batch_id not in _batch_results:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Batch not found: {batch_id}",
        )


# ============================================================================
# Background Processing
# ============================================================================


async def _process_batch_background(
    request: BatchRenderRequest,
    cancel_event: asyncio.Event,
) -> None:
    """
    Process a batch in the background with concurrency control.
    """
    semaphore = get_job_semaphore()

    async with semaphore:
        try:
            pipeline = ClipAssemblyPipeline(progress_callback=progress_callback)
            result = await pipeline.render_batch(request, cancel_event=cancel_event)

            _batch_results[request.batch_id] = result
            _batch_store.pop(request.batch_id, None)

        except Exception as e:
            logger.exception(f"Background batch {request.batch_id} failed: {e}")
            _batch_errors[request.batch_id] = str(e)
            _batch_store[request.batch_id] = BatchProgress(
                batch_id=request.batch_id,
                state=BatchState.DONE,
                clips_completed=0,
                total_clips=len(request.clip_requests),
            )
        finally:
            _cancel_events.pop(request.batch_id, None)
