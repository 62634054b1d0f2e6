import json

import pytest

SEGMENT = {
    "narrative_text": "Cold concrete underfoot. A neon tube hums somewhere above.",
    "choices": ["Follow the hum", "Wait in the dark"],
    "mood": "tense",
}


def segment_json(**overrides) -> str:
    """SEGMENT with *overrides* applied, encoded as the model would return it."""
    return json.dumps({**SEGMENT, **overrides})


class StubLLM:
    """Replays queued responses in order and records every call.

    The last response repeats once the queue is down to one. An Exception
    instance in the queue is raised instead of returned.
    """

    def __init__(self, *responses) -> None:
        self.responses = list(responses) or [segment_json()]
        self.calls: list[tuple[str, str]] = []

    async def __call__(self, system_prompt: str, user_message: str) -> str:
        self.calls.append((system_prompt, user_message))
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def stub_llm() -> StubLLM:
    return StubLLM()
