"""
Proposal Parser - Reads Franken-Clip recipes out of raw AI proposer output.

The proposer is an LLM, so its output is untrusted text. Only a fixed set of
JSON shapes is accepted:

1. A top-level array of clip recipes
2. An object wrapping the recipes in ``clips``, ``franken_clips``,
   ``criteria`` or ``output``
3. A single recipe object (carries ``timestamps`` or ``segments``)

Markdown code fences around the JSON are stripped. When the text is not valid
JSON but still contains a ``"franken_clips": [...]`` array, that array is
salvaged. Everything else is rejected.
"""

import json
import logging
import re
from typing import Any, Optional, Union

from pydantic import AliasChoices, BaseModel, Field, ValidationError

from clipforge.services.clip_assembly_pipeline import ClipRenderRequest
from clipforge.services.filter_graph import RenderOptions
from clipforge.services.segment_filter import SegmentSpec, SegmentValidationError

logger = logging.getLogger(__name__)


# Wrapper keys checked in order for an object-shaped response
_WRAPPER_KEYS = ("clips", "franken_clips", "criteria", "output")

_CODE_FENCE_RE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)
_FRANKEN_CLIPS_RE = re.compile(r'"franken_clips"\s*:\s*\[')


class ProposedSegment(BaseModel):
    """One timestamped segment of a proposed clip."""

    label: str = Field(default="segment", description="What this segment covers")
    start: Union[str, float] = Field(
        ...,
        validation_alias=AliasChoices("start_str", "start_time", "start"),
        description="Start as HH:MM:SS,mmm or seconds",
    )
    end: Union[str, float] = Field(
        ...,
        validation_alias=AliasChoices("end_str", "end_time", "end"),
        description="End as HH:MM:SS,mmm or seconds",
    )

    class Config:
        extra = "ignore"


class ClipProposal(BaseModel):
    """A proposed Franken-Clip recipe."""

    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    theme_category: Optional[str] = None
    segments: list[ProposedSegment] = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("segments", "timestamps"),
    )

    class Config:
        extra = "ignore"


def parse_proposals(raw: str) -> list[ClipProposal]:
    """
    Parse raw proposer output into validated clip proposals.

    Args:
        raw: Text returned by the AI segment proposer

    Returns:
        List of ClipProposal in the order the proposer listed them

    Raises:
        SegmentValidationError: If the text matches none of the accepted
            shapes, reports an error, or a recipe fails validation
    """
    if not isinstance(raw, str) or not raw.strip():
        raise SegmentValidationError("Proposer returned an empty response")

    text = strip_code_fences(raw)

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        payload = _salvage_franken_clips(text)
        if payload is None:
            raise SegmentValidationError(f"Proposer response is not valid JSON: {e}") from e
        logger.warning("Proposer response was not valid JSON; salvaged franken_clips array")

    recipes, shape = _extract_recipes(payload)
    logger.info(f"Detected '{shape}' proposal format with {len(recipes)} recipe(s)")

    proposals = []
    for index, recipe in enumerate(recipes):
        try:
            proposals.append(ClipProposal.model_validate(recipe))
        except ValidationError as e:
            raise SegmentValidationError(f"Recipe {index} is invalid: {e}") from e

    return proposals


def proposal_to_request(
    proposal: ClipProposal,
    clip_id: str,
    options: Optional[RenderOptions] = None,
) -> ClipRenderRequest:
    """Convert a parsed proposal into a render request."""
    segments = [
        SegmentSpec(label=segment.label, start_time=segment.start, end_time=segment.end)
        for segment in proposal.segments
    ]
    return ClipRenderRequest(
        id=clip_id,
        segments=segments,
        options=options or RenderOptions(),
        title=proposal.title,
    )


def strip_code_fences(text: str) -> str:
    """Remove Markdown code fences (```json ... ```) around a payload."""
    return _CODE_FENCE_RE.sub("", text.strip()).strip()


def _extract_recipes(payload: Any) -> tuple[list, str]:
    if isinstance(payload, list):
        return payload, "array"

    if not isinstance(payload, dict):
        raise SegmentValidationError(
            f"Unsupported proposal format: top-level {type(payload).__name__}"
        )

    if "error" in payload:
        raise SegmentValidationError(f"Proposer reported an error: {payload['error']}")

    for key in _WRAPPER_KEYS:
        if isinstance(payload.get(key), list):
            return payload[key], key

    if "timestamps" in payload or "segments" in payload:
        return [payload], "single"

    raise SegmentValidationError(
        f"Unsupported proposal format: object with keys {sorted(payload.keys())}"
    )


def _salvage_franken_clips(text: str) -> Optional[dict]:
    match = _FRANKEN_CLIPS_RE.search(text)
    if not match:
        return None

    try:
        clips, _ = json.JSONDecoder().raw_decode(text, match.end() - 1)
    except json.JSONDecodeError:
        return None
    return {"franken_clips": clips}
