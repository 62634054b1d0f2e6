"""In-memory session registry.

Each narrative session owns an independent Orchestrator, looked up by id by
the transport layer. Nothing is persisted: sessions live as long as the
process. There is no locking, so one caller should drive a session at a time.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any

from narrative_engine.errors import SessionExists, UnknownSession
from narrative_engine.llm import LLM
from narrative_engine.models import MINUTES_PER_TURN
from narrative_engine.pipeline import Orchestrator
from narrative_engine.prompts import DEFAULT_LANGUAGE

logger = logging.getLogger(__name__)

DEFAULT_SESSION_ID = "default"


@dataclass
class Session:
    id: str
    orchestrator: Orchestrator


class SessionRegistry:
    """Maps session ids to their Orchestrator.

    Args:
        llm_factory:      Called once per new session to get its completion client.
        language:         Narrative language passed to every orchestrator.
        minutes_per_turn: Story time added per turn, passed to every orchestrator.
    """

    def __init__(
        self,
        llm_factory: Callable[[], LLM],
        *,
        language: str = DEFAULT_LANGUAGE,
        minutes_per_turn: int = MINUTES_PER_TURN,
    ) -> None:
        self._llm_factory = llm_factory
        self._language = language
        self._minutes_per_turn = minutes_per_turn
        self._sessions: dict[str, Session] = {}

    def create(
        self,
        world_state: Mapping[str, Any] | None = None,
        session_id: str | None = None,
    ) -> Session:
        """Register a new session. A random id is generated when none is given.

        Raises ValueError for a blank id and SessionExists for a taken one.
        """
        if session_id is None:
            sid = uuid.uuid4().hex
        elif not session_id.strip():
            raise ValueError("Session id must not be blank")
        else:
            sid = session_id
        if sid in self._sessions:
            raise SessionExists(f"Session {sid!r} already exists")
        orchestrator = Orchestrator(
            self._llm_factory(),
            world_state,
            language=self._language,
            minutes_per_turn=self._minutes_per_turn,
        )
        session = Session(id=sid, orchestrator=orchestrator)
        self._sessions[sid] = session
        logger.info("session created id=%s", sid)
        return session

    def get(self, session_id: str) -> Session:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise UnknownSession(f"Session {session_id!r} not found") from None

    def get_or_create(self, session_id: str = DEFAULT_SESSION_ID) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            session = self.create(session_id=session_id)
        return session

    def delete(self, session_id: str) -> bool:
        """Drop a session. Returns False if it did not exist."""
        removed = self._sessions.pop(session_id, None) is not None
        if removed:
            logger.info("session deleted id=%s", session_id)
        return removed

    def ids(self) -> list[str]:
        return list(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))
