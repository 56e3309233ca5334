"""AI performance summaries for the results screen.

The host gets a class-wide analysis, players get individual coaching. A
failed summary never affects the room: ``summarize_room`` falls back to a
fixed apology.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any

from pydantic_ai import Agent

from app.core.logging import get_logger, log_context
from app.modules.quiz.errors import PlayerNotFound, SummaryFailed
from app.modules.quiz.generator import build_model_by_settings
from app.modules.quiz.models import Room

logger = get_logger(__name__)

FALLBACK_SUMMARY = SummaryFailed.default_message


class SummaryRole(str, Enum):
    HOST = "host"
    PLAYER = "player"


def _host_prompt(topic: str, performance: Any) -> str:
    return (
        "You are an insightful teaching assistant. A teacher has just hosted a quiz on "
        f'"{topic}". Here are the results for all players in JSON: '
        f"{json.dumps(performance, ensure_ascii=False)}. "
        "Analyze the overall performance. First, provide a one-paragraph summary of how "
        "the class performed as a whole. Then, identify the question(s) that most students "
        "struggled with and explain the potential common misconception for each difficult "
        "question. Finally, suggest what the teacher might want to review with the class. "
        "Format your response clearly using Markdown (bolding, lists)."
    )


def _player_prompt(topic: str, performance: Any) -> str:
    return (
        "You are a friendly and encouraging learning coach. A student has just completed a "
        f'quiz on "{topic}". Here are the questions and the student\'s answers: '
        f"{json.dumps(performance, ensure_ascii=False)}. "
        "Provide a concise, encouraging summary of their performance in one paragraph. "
        'Then, create a "Strengths" section highlighting topics they did well on. In an '
        '"Areas for Review" section, gently point out concepts they struggled with and '
        "suggest specific things to study based on their incorrect answers. Keep the tone "
        "positive and helpful. Format your response clearly using Markdown (bolding, lists)."
    )


def performance_data(room: Room, role: SummaryRole, participant_id: str) -> Any:
    if role == SummaryRole.HOST:
        return [
            {
                "name": p.name,
                "score": p.score,
                "correct": p.correct_count,
                "answers": [a.model_dump() for a in p.answers],
            }
            for p in room.leaderboard()
        ]
    player = room.player(participant_id)
    if player is None:
        raise PlayerNotFound(participant_id)
    return {
        "questions": [{"question": q.question} for q in room.questions],
        "answers": [a.model_dump() for a in player.answers],
        "correct": player.correct_count,
    }


class PerformanceSummarizer:
    def __init__(self, *, model=None) -> None:
        self._model = model

    async def _complete(self, prompt: str) -> str:
        agent: Agent[None, str] = Agent[None, str](
            model=self._model or build_model_by_settings(),
            output_type=str,
        )
        res = await agent.run(prompt)
        return res.output

    async def summarize(self, role: SummaryRole, topic: str, performance: Any) -> str:
        if role == SummaryRole.HOST:
            prompt = _host_prompt(topic, performance)
        else:
            prompt = _player_prompt(topic, performance)
        try:
            text = await self._complete(prompt)
        except Exception as e:
            logger.exception(f"Summary request failed for topic '{topic}'")
            raise SummaryFailed() from e
        if not text or not text.strip():
            raise SummaryFailed()
        return text.strip()

    async def summarize_room(self, room: Room, participant_id: str) -> str:
        role = SummaryRole.HOST if room.host_id == participant_id else SummaryRole.PLAYER
        try:
            performance = performance_data(room, role, participant_id)
            return await self.summarize(role, room.topic, performance)
        except SummaryFailed:
            return FALLBACK_SUMMARY
        except PlayerNotFound:
            logger.warning(
                "Summary requested by a non-player",
                extra=log_context(room=room.code, participant=participant_id),
            )
            return FALLBACK_SUMMARY
