"""Handlebars prompt rendering for the narrator.

build_prompt() turns a NarrativeState into the system prompt sent to the
completion service. It is a pure function of the state (and the narrative
language), so identical states always render identical prompts.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import pybars

from narrative_engine.models import (
    AUDIO_PROMPT_MAX_WORDS,
    FINAL_ACT,
    IMAGE_PROMPT_MAX_WORDS,
    MAX_CHOICES,
    MIN_CHOICES,
    MOODS,
    NarrativeSegment,
    NarrativeState,
    check_world_state,
)

DEFAULT_LANGUAGE = "Portuguese (Portugal)"
HISTORY_WINDOW = 5
EXCERPT_LENGTH = 100

BEGIN_INSTRUCTION = "Begin the narrative."

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


# Static text must not contain double braces; every inserted value uses the
# triple-stash so quotes and JSON survive unescaped.
SYSTEM_TEMPLATE = """\
Craft segments of an interactive narrative in {{{language}}}. Your role: a sensory narrator. \
Focus on evoking vivid sensations: sights, sounds, textures, smells, tastes. Employ a premium \
minimalist style, concise and impactful yet deeply immersive. Convey mood subtly through \
environment and action. Each segment presents narrative text and {{min_choices}}-{{max_choices}} \
user choices that shape the evolving world across {{final_act}} acts.

Atmosphere: inspired by brutalist minimalism and sensorial luxury. Describe textures like cold \
concrete, blown glass, diffuse neon lights and the hum of analog synthesizers.

Literary style: avoid "choose your own adventure" cliches. The text must be raw, direct and \
elegant. Write authentic {{{language}}}.

Your output MUST be a single JSON object with exactly these fields:

  "narrative_text": string  - the core narrative passage for this segment.
  "choices": array of strings  - {{min_choices}} to {{max_choices}} distinct choices the user can make.
  "mood": string  - the predominant emotional tone, one of: {{{moods}}}.
  "image_prompt": string  - OPTIONAL. A concise prompt (in English) for an AI image generator \
reflecting the key visual elements of the narrative. Max {{image_max_words}} words. Omit the \
field entirely if you have none.
  "audio_prompt": string  - OPTIONAL. A concise prompt (in English) for an AI audio generator \
reflecting the key sounds or background soundscape. Max {{audio_max_words}} words. Omit the \
field entirely if you have none.

Ensure that "mood" accurately reflects the emotional state conveyed by "narrative_text".
If generating "image_prompt" or "audio_prompt", keep them highly relevant to "narrative_text".

--- Current Story State ---
Act: {{act}}/{{final_act}}
World State: {{{world_state}}}
Last User Choice: {{#if has_last_choice}}"{{{last_choice}}}"{{else}}None (start of the story){{/if}}
Recent Narrative Context (last {{window}} segments):
{{#if recent}}{{#each recent}}- [{{{mood}}}] {{{text_summary}}}{{#if chosen_action}} \
(chosen: "{{{chosen_action}}}"){{/if}}
{{/each}}{{else}}No history yet.
{{/if}}Story Progress: {{progress}} segments completed.

Considering the above, generate the next segment of the story.
Remember to strictly follow the JSON output format and return only the JSON object.
Focus on progressing the plot, reacting to the Last User Choice and evolving the World State.
Maintain the established sensory and minimalist literary style.
"""


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


def excerpt(text: str, length: int = EXCERPT_LENGTH) -> str:
    """First *length* characters of *text*, with an ellipsis when cut."""
    if len(text) <= length:
        return text
    return text[:length] + "..."


def summarize_segment(segment: NarrativeSegment, last_choice: str | None) -> dict[str, Any]:
    """Reduce a history segment to the short form embedded in the prompt."""
    return {
        "text_summary": excerpt(segment.narrative_text),
        "chosen_action": last_choice if last_choice in segment.choices else None,
        "mood": segment.mood,
    }


def build_context(state: NarrativeState, *, language: str = DEFAULT_LANGUAGE) -> dict[str, Any]:
    """Assemble template variables from the story state.

    Only the last HISTORY_WINDOW segments are summarised, so the prompt stays
    roughly the same size however long the session runs. Numbers are passed
    as strings so zero renders as "0".

    Raises InvalidWorldState if the world state cannot be serialised.
    """
    check_world_state(state.world_state)
    recent = [
        summarize_segment(seg, state.last_choice)
        for seg in state.history[-HISTORY_WINDOW:]
    ]
    return {
        "language": language,
        "moods": ", ".join(f'"{m}"' for m in MOODS),
        "min_choices": str(MIN_CHOICES),
        "max_choices": str(MAX_CHOICES),
        "image_max_words": str(IMAGE_PROMPT_MAX_WORDS),
        "audio_max_words": str(AUDIO_PROMPT_MAX_WORDS),
        "act": str(state.current_act),
        "final_act": str(FINAL_ACT),
        "world_state": json.dumps(state.world_state, indent=2, ensure_ascii=False),
        "has_last_choice": state.last_choice is not None,
        "last_choice": state.last_choice or "",
        "window": str(HISTORY_WINDOW),
        "recent": recent,
        "progress": str(state.progress),
    }


def build_prompt(state: NarrativeState, *, language: str = DEFAULT_LANGUAGE) -> str:
    """Render the full system prompt for the next turn."""
    return render_prompt(SYSTEM_TEMPLATE, build_context(state, language=language))


def build_user_message(choice: str | None) -> str:
    """Short instruction sent alongside the system prompt."""
    if choice is None:
        return BEGIN_INSTRUCTION
    return f'The reader chose: "{choice}". Continue the story from that choice.'
