"""Error kinds surfaced by the story core.

Transport-level failures of the HTTP client are ``llm.LLMError``; the
orchestrator wraps any completion failure in ``CompletionFailure`` so callers
only need to handle the kinds below.
"""


class NarrativeError(Exception):
    """Base class for every failure raised by the narrative engine."""


class CompletionFailure(NarrativeError):
    """The completion service raised. The original error is the ``__cause__``."""


class MalformedResponse(NarrativeError):
    """The completion output could not be turned into a NarrativeSegment."""


class InvalidWorldState(NarrativeError):
    """The world state holds values that cannot be embedded in a prompt."""


class UnknownSession(NarrativeError, KeyError):
    """No session is registered under the requested id."""

    def __str__(self) -> str:
        # KeyError repr-quotes its argument; keep the plain message instead
        return str(self.args[0]) if self.args else ""


class SessionExists(NarrativeError):
    """A session with the requested id is already registered."""
