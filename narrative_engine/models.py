"""Core domain models.

The orchestrator, prompt builder and response parser all operate on these
types. Pydantic is used for validation and serialisation at every data
boundary.
"""

from __future__ import annotations

import copy
import json
from collections.abc import Mapping
from typing import Annotated, Any, Literal, get_args

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    JsonValue,
    ValidationError,
    computed_field,
    field_validator,
    model_serializer,
)

from narrative_engine.errors import InvalidWorldState

Mood = Literal["calm", "tense", "joyful", "sad", "mysterious", "epic"]
MOODS: tuple[str, ...] = get_args(Mood)

# Act transition table: act advanced *from* -> turn at which it advances.
FINAL_ACT = 3
ACT_THRESHOLDS: dict[int, int] = {1: 5, 2: 10}

# Instructed bounds; the parser only warns when a response breaks them.
MIN_CHOICES = 2
MAX_CHOICES = 4
IMAGE_PROMPT_MAX_WORDS = 15
AUDIO_PROMPT_MAX_WORDS = 10

MAX_WORLD_STATE_DEPTH = 8
ELAPSED_TIME_KEY = "time_elapsed_minutes"
MINUTES_PER_TURN = 5

DEFAULT_WORLD_STATE: dict[str, Any] = {
    "player_reputation": 0,
    "current_location": "Entrance of the mysterious cave",
    "unlocked_abilities": [],
    ELAPSED_TIME_KEY: 0,
}

WorldState = dict[str, JsonValue]


def _not_blank(value: str) -> str:
    if not value.strip():
        raise ValueError("must not be empty")
    return value


NonBlankStr = Annotated[str, AfterValidator(_not_blank)]


class NarrativeSegment(BaseModel):
    """One produced unit of story: text, follow-on choices and a mood tag.

    Field names are the wire names the completion service is told to emit.
    Serialisation aliases give the camelCase record used over HTTP.
    """

    model_config = ConfigDict(frozen=True)

    narrative_text: NonBlankStr = Field(serialization_alias="narrativeText")
    choices: tuple[NonBlankStr, ...] = Field(min_length=1)
    mood: Mood
    image_prompt: str | None = Field(default=None, serialization_alias="imagePrompt")
    audio_prompt: str | None = Field(default=None, serialization_alias="audioPrompt")

    @field_validator("image_prompt", "audio_prompt", mode="before")
    @classmethod
    def _present_prompt_is_string(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("must be a string when present")
        return value

    @model_serializer(mode="wrap")
    def _omit_absent_prompts(self, handler):
        # absent optional prompts stay absent instead of becoming null
        return {k: v for k, v in handler(self).items() if v is not None}


class NarrativeState(BaseModel):
    """Turn-by-turn record of one narrative session."""

    current_act: int = Field(default=1, ge=1, le=FINAL_ACT, serialization_alias="currentAct")
    history: list[NarrativeSegment] = Field(default_factory=list)
    world_state: WorldState = Field(default_factory=dict, serialization_alias="worldState")
    last_choice: str | None = Field(default=None, serialization_alias="lastChoice")
    progress: int = Field(default=0, ge=0)

    @computed_field(alias="currentSegment")
    @property
    def current_segment(self) -> NarrativeSegment | None:
        return self.history[-1] if self.history else None

    @classmethod
    def new(cls, world_state: Mapping[str, Any] | None = None) -> NarrativeState:
        """Fresh state at act 1 with a private copy of the world state."""
        if world_state is None:
            world_state = DEFAULT_WORLD_STATE
        world = copy.deepcopy(dict(world_state))
        check_world_state(world)
        try:
            return cls(world_state=world)
        except ValidationError as e:
            raise InvalidWorldState(f"World state rejected: {e}") from e


def check_world_state(world: Any) -> None:
    """Raise InvalidWorldState unless *world* can be embedded in a prompt."""
    if not isinstance(world, dict):
        raise InvalidWorldState(f"World state must be a mapping, got {type(world).__name__}")
    bad_keys = [k for k in world if not isinstance(k, str)]
    if bad_keys:
        raise InvalidWorldState(f"World state keys must be strings: {bad_keys!r}")
    try:
        json.dumps(world, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise InvalidWorldState(f"World state is not JSON-serialisable: {e}") from e
    depth = _depth(world)
    if depth > MAX_WORLD_STATE_DEPTH:
        raise InvalidWorldState(
            f"World state nests {depth} levels deep (limit {MAX_WORLD_STATE_DEPTH})"
        )


def _depth(value: Any) -> int:
    if isinstance(value, dict):
        return 1 + max((_depth(v) for v in value.values()), default=0)
    if isinstance(value, (list, tuple)):
        return 1 + max((_depth(v) for v in value), default=0)
    return 0


def next_act(act: int, progress: int, thresholds: Mapping[int, int] = ACT_THRESHOLDS) -> int:
    """Return the act that follows *act* once *progress* turns are complete.

    Advances at most one act per call and never past FINAL_ACT.
    """
    threshold = thresholds.get(act)
    if act < FINAL_ACT and threshold is not None and progress >= threshold:
        return act + 1
    return act
