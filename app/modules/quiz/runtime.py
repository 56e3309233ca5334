"""Process-wide quiz services built from settings.

Used by the API layer through ``app.apis.deps``; tests replace them with
``app.dependency_overrides``.
"""

from __future__ import annotations

from app.core.config import Settings, settings
from app.modules.quiz.generator import AIQuestionGenerator
from app.modules.quiz.state import RejoinPolicy, RoomStateMachine
from app.modules.quiz.store import InMemoryRoomStore, RoomStore
from app.modules.quiz.summarizer import PerformanceSummarizer


def build_store(cfg: Settings) -> RoomStore:
    backend = (cfg.quiz.store_backend or "memory").lower()
    if backend == "redis":
        from app.modules.quiz.redis_store import RedisRoomStore

        return RedisRoomStore.from_settings(cfg)
    if backend != "memory":
        raise ValueError(f"Unknown QUIZ_STORE_BACKEND: {cfg.quiz.store_backend}")
    return InMemoryRoomStore(
        ttl_seconds=cfg.quiz.room_ttl_seconds,
        sweep_interval=cfg.quiz.sweep_interval_seconds,
    )


def build_machine(store: RoomStore, cfg: Settings) -> RoomStateMachine:
    return RoomStateMachine(
        store,
        points_per_correct=cfg.quiz.points_per_correct,
        rejoin_policy=RejoinPolicy(cfg.quiz.rejoin_policy.lower()),
        code_length=cfg.quiz.code_length,
        code_attempts=cfg.quiz.code_attempts,
        min_timer_seconds=cfg.quiz.min_timer_seconds,
        max_timer_seconds=cfg.quiz.max_timer_seconds,
        max_questions=cfg.quiz.max_questions,
    )


room_store = build_store(settings)
room_machine = build_machine(room_store, settings)
question_generator = AIQuestionGenerator()
performance_summarizer = PerformanceSummarizer()
