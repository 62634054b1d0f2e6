"""Tests for completion output parsing: normalisation, decoding, schema
validation and the composed parse_segment."""

import json
import logging

import pytest

from narrative_engine.errors import MalformedResponse
from narrative_engine.models import NarrativeSegment
from narrative_engine.parsing import (
    decode_record,
    normalize_response,
    parse_segment,
    serialize_segment,
    validate_record,
)

from conftest import SEGMENT, segment_json

FENCED = '```json\n{"narrative_text":"X","choices":["a","b"],"mood":"calm"}\n```'


# ── normalize_response ───────────────────────────────────────


def test_normalize_plain_json_unchanged():
    raw = segment_json()
    assert normalize_response(raw) == raw


def test_normalize_strips_language_tagged_fence():
    assert normalize_response(FENCED) == '{"narrative_text":"X","choices":["a","b"],"mood":"calm"}'


def test_normalize_strips_bare_fence():
    assert normalize_response('```\n{"a": 1}\n```') == '{"a": 1}'


def test_normalize_slices_surrounding_prose():
    raw = 'Here is your segment:\n{"a": {"b": 1}}\nEnjoy!'
    assert normalize_response(raw) == '{"a": {"b": 1}}'


def test_normalize_fences_inside_prose():
    raw = 'Sure!\n```JSON\n{"a": 1}\n```\nLet me know.'
    assert normalize_response(raw) == '{"a": 1}'


def test_normalize_keeps_words_after_backticks_in_strings():
    raw = '```json\n{"narrative_text": "Type ```rain``` now"}\n```'
    assert normalize_response(raw) == '{"narrative_text": "Type rain now"}'


def test_normalize_without_braces_returns_stripped_text():
    assert normalize_response("```\nno json here\n```") == "no json here"


def test_normalize_reversed_braces_left_alone():
    assert normalize_response("} oops {") == "} oops {"


# ── decode_record ────────────────────────────────────────────


def test_decode_record_object():
    assert decode_record('{"a": 1}') == {"a": 1}


def test_decode_record_invalid_json():
    with pytest.raises(MalformedResponse, match="not valid JSON") as exc_info:
        decode_record("{not json}")
    assert isinstance(exc_info.value.__cause__, json.JSONDecodeError)


def test_decode_record_rejects_array():
    with pytest.raises(MalformedResponse, match="JSON object"):
        decode_record('["a", "b"]')


# ── validate_record ──────────────────────────────────────────


def test_validate_record_happy_path():
    segment = validate_record(dict(SEGMENT))
    assert segment.narrative_text == SEGMENT["narrative_text"]
    assert segment.choices == tuple(SEGMENT["choices"])
    assert segment.mood == "tense"


@pytest.mark.parametrize("overrides", [
    {"mood": "happy"},
    {"mood": "Calm"},
    {"mood": 3},
    {"choices": []},
    {"choices": "Follow the hum"},
    {"choices": ["ok", 7]},
    {"choices": ["ok", ""]},
    {"narrative_text": ""},
    {"narrative_text": "   "},
    {"narrative_text": ["not", "a", "string"]},
    {"image_prompt": 42},
    {"audio_prompt": None},
])
def test_validate_record_rejects(overrides):
    with pytest.raises(MalformedResponse):
        validate_record({**SEGMENT, **overrides})


@pytest.mark.parametrize("missing", ["narrative_text", "choices", "mood"])
def test_validate_record_requires_field(missing):
    record = dict(SEGMENT)
    del record[missing]
    with pytest.raises(MalformedResponse, match=missing):
        validate_record(record)


def test_validate_record_keeps_absent_prompts_absent():
    segment = validate_record(dict(SEGMENT))
    assert segment.image_prompt is None
    assert segment.audio_prompt is None
    assert "image_prompt" not in segment.model_dump()


def test_validate_record_keeps_present_prompts():
    segment = validate_record({**SEGMENT, "image_prompt": "neon", "audio_prompt": ""})
    assert segment.image_prompt == "neon"
    assert segment.audio_prompt == ""


def test_validate_record_ignores_unknown_fields():
    segment = validate_record({**SEGMENT, "world_updates": {"x": 1}})
    assert segment == validate_record(dict(SEGMENT))


def test_single_choice_accepted_with_warning(caplog):
    with caplog.at_level(logging.WARNING, logger="narrative_engine.parsing"):
        segment = validate_record({**SEGMENT, "choices": ["Only way forward"]})
    assert segment.choices == ("Only way forward",)
    assert "1 choices" in caplog.text


def test_too_many_choices_accepted_with_warning(caplog):
    choices = ["a", "b", "c", "d", "e"]
    with caplog.at_level(logging.WARNING, logger="narrative_engine.parsing"):
        segment = validate_record({**SEGMENT, "choices": choices})
    assert len(segment.choices) == 5
    assert "5 choices" in caplog.text


def test_duplicate_choices_warned(caplog):
    with caplog.at_level(logging.WARNING, logger="narrative_engine.parsing"):
        validate_record({**SEGMENT, "choices": ["Run", "Run"]})
    assert "duplicate" in caplog.text


def test_long_image_prompt_warned(caplog):
    prompt = " ".join(["word"] * 20)
    with caplog.at_level(logging.WARNING, logger="narrative_engine.parsing"):
        segment = validate_record({**SEGMENT, "image_prompt": prompt})
    assert segment.image_prompt == prompt
    assert "image_prompt has 20 words" in caplog.text


# ── parse_segment ────────────────────────────────────────────


def test_parse_fenced_response():
    assert parse_segment(FENCED) == NarrativeSegment(
        narrative_text="X", choices=("a", "b"), mood="calm"
    )


def test_parse_fenced_equals_unfenced():
    unfenced = '{"narrative_text":"X","choices":["a","b"],"mood":"calm"}'
    assert parse_segment(FENCED) == parse_segment(unfenced)


def test_parse_fenced_optional_prompts_absent():
    segment = parse_segment(FENCED)
    assert segment.image_prompt is None
    assert segment.audio_prompt is None


def test_parse_rejects_unknown_mood():
    with pytest.raises(MalformedResponse):
        parse_segment(segment_json(mood="happy"))


def test_parse_rejects_empty_choices():
    with pytest.raises(MalformedResponse):
        parse_segment(segment_json(choices=[]))


def test_parse_rejects_prose_only():
    with pytest.raises(MalformedResponse):
        parse_segment("I'm sorry, I can't continue this story.")


def test_parse_rejects_empty_output():
    with pytest.raises(MalformedResponse):
        parse_segment("")


def test_parse_handles_unicode_text():
    raw = segment_json(narrative_text="O ar estagnado na câmara escura.")
    assert parse_segment(raw).narrative_text == "O ar estagnado na câmara escura."


@pytest.mark.parametrize("raw", [
    FENCED,
    segment_json(image_prompt="cold concrete, neon", audio_prompt="synth hum"),
    "Here you go:\n" + segment_json(audio_prompt="rain") + "\nThanks",
])
def test_parse_is_idempotent_through_serialize(raw):
    once = parse_segment(raw)
    assert parse_segment(serialize_segment(once)) == once


def test_serialize_uses_wire_names_and_omits_absent():
    data = json.loads(serialize_segment(parse_segment(FENCED)))
    assert data == {"narrative_text": "X", "choices": ["a", "b"], "mood": "calm"}
