import json

import pytest

from vidseek.exceptions import ParseError, ValidationError
from vidseek.models import Frame, FrameDescription, KeywordAnalysis
from vidseek.pipeline import select_frames_for_sampling
from vidseek.utils.media import plan_frame_timestamps
from vidseek.utils.validation import extract_json_payload, parse_structured_response

ANALYSIS = {"summary": "s", "keywords": ["a", "b"], "categories": ["tutorial"]}


@pytest.mark.parametrize("raw", [
    json.dumps(ANALYSIS),
    "  " + json.dumps(ANALYSIS) + "\n",
    "```json\n" + json.dumps(ANALYSIS) + "\n```",
    "```\n" + json.dumps(ANALYSIS, indent=2) + "\n```",
])
def test_accepts_bare_or_single_fenced_object(raw):
    assert parse_structured_response(raw, KeywordAnalysis) == KeywordAnalysis(**ANALYSIS)


@pytest.mark.parametrize("raw", [
    None,
    "",
    "Here is the analysis: " + json.dumps(ANALYSIS),
    json.dumps(ANALYSIS) + " Hope this helps!",
    "```json\n" + json.dumps(ANALYSIS) + "\n```\n```json\n{}\n```",
    json.dumps([ANALYSIS]),
    "{not json}",
])
def test_rejects_anything_but_one_object(raw):
    with pytest.raises(ParseError):
        parse_structured_response(raw, KeywordAnalysis)


def test_rejects_missing_or_extra_keys():
    with pytest.raises(ParseError):
        parse_structured_response(json.dumps({"summary": "s", "keywords": []}), KeywordAnalysis)
    with pytest.raises(ParseError) as exc_info:
        parse_structured_response(json.dumps({**ANALYSIS, "mood": "happy"}), KeywordAnalysis)
    assert exc_info.value.details["errors"]


def test_frame_description_keywords_default_to_empty():
    parsed = parse_structured_response('{"description": "a cat"}', FrameDescription)
    assert parsed.keywords == []


def test_extract_json_payload_strips_fence():
    assert extract_json_payload('```json\n{"a": 1}\n```') == '{"a": 1}'


@pytest.mark.parametrize("duration,interval,expected", [
    (30.0, 10.0, [0.0, 10.0, 20.0, 30.0]),
    (25.0, 10.0, [0.0, 10.0, 20.0]),
    (9.99, 10.0, [0.0]),
    (0.0, 10.0, [0.0]),
    (None, 10.0, [0.0]),
    (1.0, 0.3, [0.0, 0.3, 0.6, 0.9]),
])
def test_plan_frame_timestamps(duration, interval, expected):
    assert plan_frame_timestamps(duration, interval) == expected


@pytest.mark.parametrize("duration,interval", [(-1.0, 10.0), (10.0, 0.0), (10.0, -2.0)])
def test_plan_frame_timestamps_rejects_bad_input(duration, interval):
    with pytest.raises(ValidationError):
        plan_frame_timestamps(duration, interval)


def test_select_frames_picks_closest_frame_once():
    frames = [Frame(video_id="v", timestamp=ts, storage_key=f"f{ts}") for ts in (0.0, 2.0, 4.0, 21.0)]
    selected = select_frames_for_sampling(frames, duration=30.0, interval=10.0)
    # 0 -> 0.0, 10 -> 4.0, 20 -> 21.0, 30 -> 21.0 (deduplicated)
    assert [f.timestamp for f in selected] == [0.0, 4.0, 21.0]
