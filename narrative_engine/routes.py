"""FastAPI endpoints under /api.

Sessions are created explicitly (POST /sessions) or on demand by
/story/generate, which keeps the single-call shape of the original web
client: {"lastChoice": ...} in, a segment record out.

Segment records are camelCase and omit absent image/audio prompts.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field

from narrative_engine.errors import (
    CompletionFailure,
    InvalidWorldState,
    MalformedResponse,
    SessionExists,
    UnknownSession,
)
from narrative_engine.sessions import DEFAULT_SESSION_ID, Session, SessionRegistry

logger = logging.getLogger(__name__)

router = APIRouter()

# Session ids need at least one non-whitespace character.
SESSION_ID_PATTERN = r"\S"


# ── Request bodies ───────────────────────────────────────


class CreateSessionBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str | None = Field(default=None, alias="sessionId", pattern=SESSION_ID_PATTERN)
    world_state: dict[str, Any] | None = Field(default=None, alias="worldState")


class TurnBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    last_choice: str | None = Field(default=None, alias="lastChoice")


class GenerateBody(TurnBody):
    session_id: str = Field(
        default=DEFAULT_SESSION_ID, alias="sessionId", pattern=SESSION_ID_PATTERN
    )


# ── Helpers ──────────────────────────────────────────────


def get_sessions(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def _error(status: int, message: str, exc: Exception) -> HTTPException:
    return HTTPException(status, {"error": message, "details": str(exc)})


def _lookup(sessions: SessionRegistry, session_id: str) -> Session:
    try:
        return sessions.get(session_id)
    except UnknownSession as e:
        raise _error(404, "Session not found", e) from e


def _session_record(session: Session) -> dict[str, Any]:
    state = session.orchestrator.get_state()
    return {"sessionId": session.id, "state": state.model_dump(mode="json", by_alias=True)}


async def _advance(session: Session, choice: str | None) -> dict[str, Any]:
    try:
        segment = await session.orchestrator.advance(choice)
    except (CompletionFailure, MalformedResponse) as e:
        logger.warning("turn failed session=%s: %s", session.id, e)
        raise _error(502, "Could not generate the next story segment", e) from e
    except InvalidWorldState as e:
        raise _error(422, "World state cannot be sent to the model", e) from e
    return segment.model_dump(mode="json", by_alias=True)


# ── Endpoints ────────────────────────────────────────────


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.post("/sessions", status_code=201)
async def create_session(
    body: CreateSessionBody, sessions: SessionRegistry = Depends(get_sessions)
):
    """Start a new narrative session, optionally with an initial world state."""
    try:
        session = sessions.create(body.world_state, session_id=body.session_id)
    except SessionExists as e:
        raise _error(409, "Session already exists", e) from e
    except InvalidWorldState as e:
        raise _error(422, "Invalid world state", e) from e
    return _session_record(session)


@router.get("/sessions/{session_id}")
async def get_session(session_id: str, sessions: SessionRegistry = Depends(get_sessions)):
    """Get the current narrative state of a session."""
    return _session_record(_lookup(sessions, session_id))


@router.delete("/sessions/{session_id}")
async def delete_session(session_id: str, sessions: SessionRegistry = Depends(get_sessions)):
    """Discard a session and its state."""
    if not sessions.delete(session_id):
        raise _error(404, "Session not found", UnknownSession(session_id))
    return {"ok": True}


@router.post("/sessions/{session_id}/turns")
async def take_turn(
    session_id: str, body: TurnBody, sessions: SessionRegistry = Depends(get_sessions)
):
    """Advance a session by one turn and return the new segment."""
    return await _advance(_lookup(sessions, session_id), body.last_choice)


@router.post("/story/generate")
async def generate(body: GenerateBody, sessions: SessionRegistry = Depends(get_sessions)):
    """Advance the given (or default) session, creating it on first use."""
    return await _advance(sessions.get_or_create(body.session_id), body.last_choice)
