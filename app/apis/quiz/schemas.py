from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from app.core.config import settings
from app.modules.quiz.models import Answer, Difficulty, Room


class CreateRoomRequest(BaseModel):
    host_name: str = Field(..., min_length=1, description="Display name of room creator")
    topic: str = Field(..., min_length=1)
    difficulty: Difficulty = Difficulty.MEDIUM
    num_questions: int = Field(default=5, ge=1, le=settings.quiz.max_questions)
    timer_seconds: int = Field(
        default=settings.quiz.default_timer_seconds,
        ge=settings.quiz.min_timer_seconds,
        le=settings.quiz.max_timer_seconds,
    )


class CreateRoomResponse(BaseModel):
    room_code: str
    ws_url: str
    room: Room


class JoinRoomRequest(BaseModel):
    display_name: str = Field(..., min_length=1)


class JoinRoomResponse(BaseModel):
    ws_url: str
    room: Room


class RoomResponse(BaseModel):
    room: Room


class SubmitAnswerRequest(BaseModel):
    question_index: int = Field(..., ge=0)
    # omitted when the countdown ran out
    answer_text: Optional[str] = None


class SubmitAnswerResponse(BaseModel):
    answer: Answer
    finished: bool


class SummaryResponse(BaseModel):
    summary: str
