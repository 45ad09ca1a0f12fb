"""
Tests for parsing AI segment proposals.
"""

import json

import pytest

from clipforge.services.filter_graph import RenderOptions
from clipforge.services.proposal_parser import (
    parse_proposals,
    proposal_to_request,
    strip_code_fences,
)
from clipforge.services.segment_filter import SegmentValidationError


RECIPE = {
    "title": "🔥 The caching trick nobody talks about",
    "description": "Three moments that explain it",
    "theme_category": "Education",
    "timestamps": [
        {"label": "Hook: the question", "start_str": "00:00:10,000", "end_str": "00:00:32,000", "duration": 22},
        {"label": "Build: the demo", "start_str": "00:03:00,000", "end_str": "00:03:21,500", "duration": 21.5},
        {"label": "Payoff: the answer", "start_str": "00:07:45,000", "end_str": "00:08:06,000", "duration": 21},
    ],
}


class TestAcceptedShapes:
    """Tests for the enumerated response shapes."""

    def test_top_level_array(self):
        """Test a bare array of recipes."""
        proposals = parse_proposals(json.dumps([RECIPE, RECIPE]))
        assert len(proposals) == 2
        assert proposals[0].title.endswith("nobody talks about")

    @pytest.mark.parametrize("key", ["clips", "franken_clips", "criteria", "output"])
    def test_wrapped_array(self, key):
        """Test arrays wrapped in a known key."""
        proposals = parse_proposals(json.dumps({key: [RECIPE]}))
        assert len(proposals) == 1
        assert len(proposals[0].segments) == 3

    def test_single_recipe_object(self):
        """Test a lone recipe object becomes a one-item list."""
        proposals = parse_proposals(json.dumps(RECIPE))
        assert len(proposals) == 1
        assert proposals[0].theme_category == "Education"

    def test_segments_key_and_time_aliases(self):
        """Test the newer 'segments' key with start_time/end_time fields."""
        recipe = {
            "title": "Numbers",
            "segments": [{"label": "a", "start_time": 1.5, "end_time": 4}],
        }
        proposal = parse_proposals(json.dumps(recipe))[0]

        assert proposal.segments[0].start == 1.5
        assert proposal.segments[0].end == 4

    def test_code_fences_are_stripped(self):
        """Test Markdown fences around JSON are removed."""
        raw = "```json\n" + json.dumps({"clips": [RECIPE]}) + "\n```"
        assert len(parse_proposals(raw)) == 1

    def test_franken_clips_salvaged_from_broken_json(self):
        """Test a franken_clips array is recovered from trailing garbage."""
        raw = '{"franken_clips": ' + json.dumps([RECIPE]) + ', "notes": "truncat'
        proposals = parse_proposals(raw)
        assert len(proposals) == 1
        assert proposals[0].segments[1].label == "Build: the demo"

    def test_empty_array(self):
        """Test an empty list means no proposals."""
        assert parse_proposals("[]") == []


class TestRejectedShapes:
    """Tests for fail-closed parsing."""

    def test_error_object(self):
        """Test an error payload is rejected."""
        with pytest.raises(SegmentValidationError, match="reported an error"):
            parse_proposals(json.dumps({"error": "rate limited"}))

    def test_unknown_object(self):
        """Test an object with no recognized keys is rejected."""
        with pytest.raises(SegmentValidationError, match="Unsupported proposal format"):
            parse_proposals(json.dumps({"foo": "bar"}))

    def test_not_json(self):
        """Test free text is rejected."""
        with pytest.raises(SegmentValidationError, match="not valid JSON"):
            parse_proposals("Sure! Here are some clips you might like.")

    def test_scalar(self):
        """Test a JSON scalar is rejected."""
        with pytest.raises(SegmentValidationError):
            parse_proposals("42")

    def test_empty(self):
        """Test blank output is rejected."""
        with pytest.raises(SegmentValidationError):
            parse_proposals("   ")

    def test_recipe_without_segments(self):
        """Test a recipe with an empty segment list is rejected."""
        with pytest.raises(SegmentValidationError, match="Recipe 0 is invalid"):
            parse_proposals(json.dumps([{"title": "x", "timestamps": []}]))

    def test_segment_missing_end(self):
        """Test a segment without an end bound is rejected."""
        recipe = {"title": "x", "segments": [{"label": "a", "start_str": "00:00:01,000"}]}
        with pytest.raises(SegmentValidationError):
            parse_proposals(json.dumps(recipe))


class TestProposalToRequest:
    """Tests for converting proposals into render requests."""

    def test_conversion(self):
        """Test segments and title carry over."""
        proposal = parse_proposals(json.dumps(RECIPE))[0]
        options = RenderOptions(quality="high", crossfade=True)

        request = proposal_to_request(proposal, "clip-1", options)

        assert request.id == "clip-1"
        assert request.title == proposal.title
        assert request.options is options
        assert [(s.start_time, s.end_time) for s in request.segments] == [
            ("00:00:10,000", "00:00:32,000"),
            ("00:03:00,000", "00:03:21,500"),
            ("00:07:45,000", "00:08:06,000"),
        ]
        assert request.segments[0].duration_seconds == pytest.approx(22.0)

    def test_default_options(self):
        """Test default render options are used when none are given."""
        proposal = parse_proposals(json.dumps(RECIPE))[0]
        assert proposal_to_request(proposal, "c").options == RenderOptions()


def test_strip_code_fences_leaves_plain_json():
    """Test unfenced text is returned unchanged."""
    assert strip_code_fences('  {"a": 1} ') == '{"a": 1}'
