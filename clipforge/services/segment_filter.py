"""
Segment Filter - Enforces per-segment duration bounds on Franken-Clip segments.

Segments arrive from the AI proposer (untrusted) or from user edits. Anything
with a non-positive duration or a duration above the configured maximum is
dropped with a recorded reason; survivors keep their relative order and get
their narrative purpose reassigned by position.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Union

from clipforge.services.timestamps import coerce_seconds, to_timestamp

logger = logging.getLogger(__name__)


class SegmentPurpose(str, Enum):
    """Narrative role of a segment inside a Franken-Clip."""

    HOOK = "hook"
    BUILD = "build"
    PAYOFF = "payoff"


@dataclass
class SegmentSpec:
    """A labeled time range within the source video."""

    label: str
    start_time: Union[str, float]  # "HH:MM:SS,mmm" or seconds
    end_time: Union[str, float]
    purpose: Optional[SegmentPurpose] = None
    sequence_order: Optional[int] = None

    @property
    def start_seconds(self) -> float:
        return coerce_seconds(self.start_time)

    @property
    def end_seconds(self) -> float:
        return coerce_seconds(self.end_time)

    @property
    def duration_seconds(self) -> float:
        return self.end_seconds - self.start_seconds


@dataclass
class DroppedSegment:
    """A segment removed by the filter and why."""

    segment: SegmentSpec
    reason: str
    duration_seconds: float


@dataclass
class FilterResult:
    """Outcome of filtering a clip's segments."""

    kept: list[SegmentSpec] = field(default_factory=list)
    dropped: list[DroppedSegment] = field(default_factory=list)

    @property
    def total_duration_seconds(self) -> float:
        return sum(segment.duration_seconds for segment in self.kept)

    def describe_drops(self) -> str:
        """Human-readable summary of every dropped segment."""
        if not self.dropped:
            return "no segments supplied"
        return "; ".join(
            f"'{drop.segment.label}' ({drop.reason})" for drop in self.dropped
        )


def filter_segments(
    segments: list[SegmentSpec],
    max_segment_duration: float,
) -> FilterResult:
    """
    Drop segments whose duration is non-positive or exceeds the maximum.

    A duration exactly equal to ``max_segment_duration`` is kept. Kept
    segments are copies with ``sequence_order`` and ``purpose`` reassigned by
    position; the input list is not mutated.

    Args:
        segments: Candidate segments in proposed order
        max_segment_duration: Inclusive upper bound in seconds

    Returns:
        FilterResult with kept segments and dropped segments with reasons

    Raises:
        FormatError: If any segment carries a malformed timestamp
    """
    result = FilterResult()

    for segment in segments:
        duration = segment.duration_seconds

        if duration <= 0:
            reason = (
                f"non-positive duration {duration:.3f}s "
                f"({_fmt(segment.start_time)} -> {_fmt(segment.end_time)})"
            )
        elif duration > max_segment_duration:
            reason = (
                f"duration {duration:.2f}s exceeds {max_segment_duration:g}s limit"
            )
        else:
            result.kept.append(segment)
            continue

        logger.warning(f"Filtered out segment '{segment.label}' - {reason}")
        result.dropped.append(
            DroppedSegment(segment=segment, reason=reason, duration_seconds=duration)
        )

    result.kept = assign_purposes(result.kept)
    return result


def assign_purposes(segments: list[SegmentSpec]) -> list[SegmentSpec]:
    """
    Reassign sequence order and narrative purpose by position.

    First = hook, last = payoff, everything between = build. A single
    segment collapses to hook.
    """
    last_index = len(segments) - 1
    assigned = []
    for index, segment in enumerate(segments):
        if index == 0:
            purpose = SegmentPurpose.HOOK
        elif index == last_index:
            purpose = SegmentPurpose.PAYOFF
        else:
            purpose = SegmentPurpose.BUILD
        assigned.append(replace(segment, purpose=purpose, sequence_order=index))
    return assigned


def _fmt(value: Union[str, float]) -> str:
    if isinstance(value, str):
        return value
    return to_timestamp(value)


class SegmentValidationError(Exception):
    """Exception raised when a clip has no usable segments or bad render bounds."""
    pass
