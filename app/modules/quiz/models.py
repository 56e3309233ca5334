"""Pydantic models for the shared quiz room document.

A Room is the only piece of shared state: every client reads it through a
snapshot and mutates it through field-scoped patches. Questions and room
settings are fixed at creation; only ``status`` and the per-player subtrees
change afterwards.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator


OPTIONS_PER_QUESTION = 4

# Recorded as the answer text when the countdown runs out before a submission.
NO_ANSWER = "No Answer"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class RoomStatus(str, Enum):
    LOBBY = "lobby"
    IN_PROGRESS = "in-progress"
    FINISHED = "finished"


class Difficulty(str, Enum):
    EASY = "Easy"
    MEDIUM = "Medium"
    HARD = "Hard"


class Question(BaseModel):
    """A single multiple-choice question."""

    question: str = Field(min_length=1)
    options: list[str]
    correct_answer: str
    explanation: str = ""

    @field_validator("options")
    @classmethod
    def _four_distinct_options(cls, v: list[str]) -> list[str]:
        if len(v) != OPTIONS_PER_QUESTION:
            raise ValueError(f"expected exactly {OPTIONS_PER_QUESTION} options")
        if len(set(v)) != len(v):
            raise ValueError("options must be distinct")
        return v

    @model_validator(mode="after")
    def _correct_answer_is_an_option(self) -> "Question":
        if self.correct_answer not in self.options:
            raise ValueError("correct_answer must equal one of the options")
        return self

    def is_correct(self, answer_text: str) -> bool:
        return answer_text == self.correct_answer


class Answer(BaseModel):
    question_index: int = Field(ge=0)
    answer_text: str
    is_correct: bool


class Player(BaseModel):
    id: str
    name: str
    score: int = Field(default=0, ge=0)
    answers: list[Answer] = Field(default_factory=list)

    def answered(self, question_index: int) -> bool:
        return any(a.question_index == question_index for a in self.answers)

    @property
    def correct_count(self) -> int:
        return sum(1 for a in self.answers if a.is_correct)


class Room(BaseModel):
    code: str
    topic: str
    difficulty: Difficulty = Difficulty.MEDIUM
    timer_seconds: int = Field(gt=0)
    questions: list[Question] = Field(min_length=1)
    host_id: str
    status: RoomStatus = RoomStatus.LOBBY
    players: dict[str, Player] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_now_utc)

    @property
    def last_index(self) -> int:
        return len(self.questions) - 1

    def player(self, participant_id: str) -> Optional[Player]:
        return self.players.get(participant_id)

    def leaderboard(self) -> list[Player]:
        return sorted(self.players.values(), key=lambda p: p.score, reverse=True)
