from __future__ import annotations

from typing import Optional

from fastapi import Header, HTTPException, status

from app.core.jwt_utils import jwt_manager
from app.modules.quiz import runtime
from app.modules.quiz.generator import QuestionGenerator
from app.modules.quiz.state import RoomStateMachine
from app.modules.quiz.summarizer import PerformanceSummarizer


def participant_from_token(token: Optional[str]) -> Optional[str]:
    """Return the participant identifier carried by ``token``, or None."""
    if not token:
        return None
    try:
        payload = jwt_manager.verify_token(token)
    except ValueError:
        return None
    return payload.get("sub")


async def current_participant(
    access_token: Optional[str] = None,
    authorization: Optional[str] = Header(default=None),
) -> str:
    """Resolve the participant from Authorization header or `access_token` query param.

    The query param exists for WebSocket clients, where setting custom headers
    is inconvenient. Falls back to it when the header is missing.
    """
    token: Optional[str] = None
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization.split(" ", 1)[1].strip()
    elif access_token:
        token = access_token

    participant_id = participant_from_token(token)
    if not participant_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return participant_id


def get_room_machine() -> RoomStateMachine:
    return runtime.room_machine


def get_question_generator() -> QuestionGenerator:
    return runtime.question_generator


def get_summarizer() -> PerformanceSummarizer:
    return runtime.performance_summarizer
