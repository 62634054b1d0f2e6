"""Completion output parsing into a NarrativeSegment.

Models wrap their JSON in markdown fences or chat around it despite being
told not to. Parsing is split into stages that can be tested on their own:

    normalize_response  — strip fences, slice to the outermost {...}; total.
    decode_record       — JSON text -> dict, or MalformedResponse.
    validate_record     — dict -> NarrativeSegment, or MalformedResponse.

parse_segment() composes the three.
"""

import json
import logging
import re
from typing import Any

from pydantic import ValidationError

from narrative_engine.errors import MalformedResponse
from narrative_engine.models import (
    AUDIO_PROMPT_MAX_WORDS,
    IMAGE_PROMPT_MAX_WORDS,
    MAX_CHOICES,
    MIN_CHOICES,
    NarrativeSegment,
)

logger = logging.getLogger(__name__)

# Opening fences may carry a language tag (```json, ```JSON5, ```js) running
# to the end of the line. Elsewhere only the backticks themselves go.
_FENCE_RE = re.compile(r"```[A-Za-z0-9_+-]*(?=[ \t]*\r?\n)|```")


def normalize_response(raw: str) -> str:
    """Strip markdown fences and surrounding prose from model output.

    Never raises; text without a {...} span is returned fence-stripped.
    """
    text = _FENCE_RE.sub("", raw)
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        text = text[start:end + 1]
    return text.strip()


def decode_record(text: str) -> dict[str, Any]:
    """Parse normalised text as a JSON object."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedResponse(f"Completion output is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedResponse(
            f"Completion output must be a JSON object, got {type(data).__name__}"
        )
    return data


def validate_record(record: dict[str, Any]) -> NarrativeSegment:
    """Enforce the segment schema on a decoded record.

    Hard failures: missing or blank narrative_text, empty or non-string
    choices, unknown mood, non-string image/audio prompt. Choice counts
    outside the instructed range and overlong media prompts are only logged.
    """
    try:
        segment = NarrativeSegment.model_validate(record)
    except ValidationError as e:
        raise MalformedResponse(f"Completion output failed validation: {e}") from e
    _warn_soft_violations(segment)
    return segment


def parse_segment(raw: str) -> NarrativeSegment:
    """Turn raw completion output into a validated NarrativeSegment."""
    return validate_record(decode_record(normalize_response(raw)))


def serialize_segment(segment: NarrativeSegment) -> str:
    """Re-encode a segment in the wire shape the model is asked to produce."""
    return json.dumps(segment.model_dump(mode="json"), ensure_ascii=False)


def _warn_soft_violations(segment: NarrativeSegment) -> None:
    count = len(segment.choices)
    if not MIN_CHOICES <= count <= MAX_CHOICES:
        logger.warning(
            "Segment has %d choices (expected %d-%d)", count, MIN_CHOICES, MAX_CHOICES
        )
    if len(set(segment.choices)) != count:
        logger.warning("Segment has duplicate choices: %r", segment.choices)
    for name, value, limit in (
        ("image_prompt", segment.image_prompt, IMAGE_PROMPT_MAX_WORDS),
        ("audio_prompt", segment.audio_prompt, AUDIO_PROMPT_MAX_WORDS),
    ):
        if value is not None and len(value.split()) > limit:
            logger.warning("%s has %d words (limit %d)", name, len(value.split()), limit)
