"""Story orchestrator — runs one reader turn end-to-end.

Turn flow:
  1. Copy the committed state into a draft; record the reader's choice.
  2. Increment the turn counter.
  3. Apply the per-turn world update (default: advance the in-story clock).
  4. Build the system prompt from the draft.
  5. Call the completion service.
  6. Parse and validate its output into a NarrativeSegment.
  7. Append the segment to the draft history.
  8. Advance the act if the draft crossed its threshold.
  9. Commit the draft.

A failure in steps 4-6 discards the draft, so the committed state never
holds a turn without its segment: progress always equals len(history).
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from narrative_engine.errors import CompletionFailure
from narrative_engine.llm import LLM
from narrative_engine.models import (
    ACT_THRESHOLDS,
    ELAPSED_TIME_KEY,
    MINUTES_PER_TURN,
    NarrativeSegment,
    NarrativeState,
    WorldState,
    next_act,
)
from narrative_engine.parsing import parse_segment
from narrative_engine.prompts import DEFAULT_LANGUAGE, build_prompt, build_user_message

logger = logging.getLogger(__name__)

WorldTick = Callable[[WorldState, int], None]


def advance_clock(world: WorldState, minutes: int) -> None:
    """Default per-turn world update: each segment takes *minutes* of story time."""
    elapsed = world.get(ELAPSED_TIME_KEY, 0)
    if not isinstance(elapsed, (int, float)) or isinstance(elapsed, bool):
        logger.warning("%s is %r, restarting the clock at 0", ELAPSED_TIME_KEY, elapsed)
        elapsed = 0
    world[ELAPSED_TIME_KEY] = elapsed + minutes


class Orchestrator:
    """Owns one NarrativeState and is its only writer.

    Args:
        llm:              Completion callable (see narrative_engine.llm.LLM).
        world_state:      Initial world facts; DEFAULT_WORLD_STATE when None.
        language:         Language the narrator is told to write in.
        minutes_per_turn: Story time added to the world clock each turn.
        act_thresholds:   Act -> turn at which that act advances.
        world_tick:       Per-turn world update; replaces advance_clock.
    """

    def __init__(
        self,
        llm: LLM,
        world_state: Mapping[str, Any] | None = None,
        *,
        language: str = DEFAULT_LANGUAGE,
        minutes_per_turn: int = MINUTES_PER_TURN,
        act_thresholds: Mapping[int, int] = ACT_THRESHOLDS,
        world_tick: WorldTick | None = None,
    ) -> None:
        self._llm = llm
        self._state = NarrativeState.new(world_state)
        self._language = language
        self._minutes_per_turn = minutes_per_turn
        self._act_thresholds = dict(act_thresholds)
        self._world_tick = world_tick or advance_clock

    def get_state(self) -> NarrativeState:
        """Return a deep copy of the current state; changes to it are not seen here."""
        return self._state.model_copy(deep=True)

    async def advance(self, choice: str | None) -> NarrativeSegment:
        """Run one turn for *choice* (None to start the story) and return its segment.

        Raises CompletionFailure or MalformedResponse without changing state;
        the caller may retry with the same choice.
        """
        draft = self._state.model_copy(deep=True)
        draft.last_choice = choice
        draft.progress += 1
        self._world_tick(draft.world_state, self._minutes_per_turn)

        system_prompt = build_prompt(draft, language=self._language)
        user_message = build_user_message(choice)
        logger.debug("turn=%d act=%d prompt_len=%d", draft.progress, draft.current_act, len(system_prompt))

        try:
            raw = await self._llm(system_prompt, user_message)
        except Exception as e:
            logger.warning("Completion failed on turn %d: %s", draft.progress, e)
            raise CompletionFailure(f"Could not get the next story segment: {e}") from e

        segment = parse_segment(raw)

        draft.history.append(segment)
        act = next_act(draft.current_act, draft.progress, self._act_thresholds)
        if act != draft.current_act:
            logger.info("Act advanced to %d at turn %d", act, draft.progress)
            draft.current_act = act

        self._state = draft
        logger.info("turn=%d act=%d mood=%s", draft.progress, draft.current_act, segment.mood)
        return segment
