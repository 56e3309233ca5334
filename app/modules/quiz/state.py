"""Quiz room state machine.

Rooms move ``lobby -> in-progress -> finished`` and never back. Every
operation reads the current document, checks the status precondition and
writes a batch of field-scoped patches through the store:

- create: new document in ``lobby`` with the host as the only player
- join: upsert the caller's player entry, only while in ``lobby``
- start: ``lobby -> in-progress``
- submit: append the caller's answer, add points when correct, and move the
  room to ``finished`` when the answer is for the last question

Nothing here coordinates players: each submission touches only the caller's
subtree, and the finishing write sets the same status no matter who sends it.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional, Sequence

from pydantic import ValidationError

from app.core.logging import get_logger, log_context
from app.modules.quiz.codes import (
    generate_room_code,
    is_valid_room_code,
    normalize_room_code,
)
from app.modules.quiz.errors import (
    AlreadyStarted,
    AnswerRejected,
    GenerationFailed,
    InvalidSettings,
    InvalidTransition,
    PlayerNotFound,
    RoomAlreadyExists,
    RoomNotFound,
)
from app.modules.quiz.models import Answer, Difficulty, Player, Question, Room, RoomStatus
from app.modules.quiz.patches import (
    AppendAnswer,
    IncrementScore,
    Patch,
    SetStatus,
    UpsertPlayer,
)
from app.modules.quiz.store import RoomStore

logger = get_logger(__name__)


class RejoinPolicy(str, Enum):
    RESET = "reset"
    RESUME = "resume"


def ensure_well_formed(questions: Sequence) -> list[Question]:
    """Validate generated questions; anything malformed is a generation failure."""
    if not questions:
        raise GenerationFailed()
    try:
        return [Question.model_validate(q) for q in questions]
    except ValidationError as e:
        logger.warning(f"Rejected malformed questions: {e.error_count()} error(s)")
        raise GenerationFailed() from e


class RoomStateMachine:
    def __init__(
        self,
        store: RoomStore,
        *,
        points_per_correct: int = 10,
        rejoin_policy: RejoinPolicy = RejoinPolicy.RESET,
        code_length: int = 5,
        code_attempts: int = 5,
        min_timer_seconds: int = 1,
        max_timer_seconds: Optional[int] = None,
        max_questions: Optional[int] = None,
    ) -> None:
        self.store = store
        self.points_per_correct = points_per_correct
        self.rejoin_policy = RejoinPolicy(rejoin_policy)
        self.code_length = code_length
        self.code_attempts = max(1, int(code_attempts))
        self.min_timer_seconds = min_timer_seconds
        self.max_timer_seconds = max_timer_seconds
        self.max_questions = max_questions

    def check_settings(self, *, timer_seconds: int, num_questions: int) -> None:
        """Raise ``InvalidSettings`` for a timer or question count out of bounds."""
        if timer_seconds < self.min_timer_seconds or (
            self.max_timer_seconds is not None and timer_seconds > self.max_timer_seconds
        ):
            if self.max_timer_seconds is None:
                raise InvalidSettings(
                    f"The timer must be at least {self.min_timer_seconds} seconds."
                )
            raise InvalidSettings(
                f"The timer must be between {self.min_timer_seconds} "
                f"and {self.max_timer_seconds} seconds."
            )
        if num_questions < 1 or (
            self.max_questions is not None and num_questions > self.max_questions
        ):
            limit = f"between 1 and {self.max_questions}" if self.max_questions is not None else "at least 1"
            raise InvalidSettings(f"The number of questions must be {limit}.")

    # Room lifecycle -----------------------------------------------------
    async def create_room(
        self,
        *,
        topic: str,
        difficulty: Difficulty,
        timer_seconds: int,
        questions: Sequence,
        host_id: str,
        host_name: str,
    ) -> str:
        checked = ensure_well_formed(questions)
        timer_seconds = int(timer_seconds)
        self.check_settings(timer_seconds=timer_seconds, num_questions=len(checked))

        host = Player(id=host_id, name=host_name)
        for _ in range(self.code_attempts):
            code = generate_room_code(self.code_length)
            room = Room(
                code=code,
                topic=topic,
                difficulty=difficulty,
                timer_seconds=timer_seconds,
                questions=checked,
                host_id=host_id,
                players={host_id: host},
            )
            try:
                await self.store.create_room(room)
            except RoomAlreadyExists:
                logger.warning(f"Room code collision, regenerating: {code}")
                continue
            logger.info(
                f"Created room on '{topic}' with {len(checked)} question(s)",
                extra=log_context(room=code, role="host", participant=host_id),
            )
            return code
        raise RoomAlreadyExists(code)

    async def get_room(self, code: str) -> Room:
        code = normalize_room_code(code)
        if not is_valid_room_code(code, self.code_length):
            raise RoomNotFound(code)
        room = await self.store.get_room(code)
        if room is None:
            raise RoomNotFound(code)
        return room

    async def join_room(self, code: str, *, participant_id: str, name: str) -> Room:
        room = await self.get_room(code)
        if room.status != RoomStatus.LOBBY:
            raise AlreadyStarted()

        existing = room.player(participant_id)
        if existing is not None and self.rejoin_policy == RejoinPolicy.RESUME:
            player = existing.model_copy(update={"name": name})
        else:
            player = Player(id=participant_id, name=name)

        await self.store.apply_patch(room.code, [UpsertPlayer(player=player)])
        logger.info(
            f"{name} joined",
            extra=log_context(room=room.code, role="player", participant=participant_id),
        )
        room.players[participant_id] = player
        return room

    async def start_quiz(self, code: str) -> None:
        room = await self.get_room(code)
        if room.status == RoomStatus.IN_PROGRESS:
            return
        if room.status != RoomStatus.LOBBY:
            raise InvalidTransition("This quiz has already finished.")
        await self.store.apply_patch(room.code, [SetStatus(status=RoomStatus.IN_PROGRESS)])
        logger.info(
            f"Quiz started with {len(room.players)} player(s)",
            extra=log_context(room=room.code, role="host"),
        )

    # Answers ------------------------------------------------------------
    async def submit_answer(
        self,
        code: str,
        *,
        participant_id: str,
        question_index: int,
        answer_text: str,
    ) -> Answer:
        room = await self.get_room(code)
        is_last = question_index == room.last_index

        if room.status == RoomStatus.LOBBY:
            raise InvalidTransition("The quiz has not started yet.")
        # A finished room still takes a final answer that raced the finishing write.
        if room.status == RoomStatus.FINISHED and not is_last:
            raise InvalidTransition("This quiz has already finished.")

        player = room.player(participant_id)
        if player is None:
            raise PlayerNotFound(participant_id)
        if not 0 <= question_index <= room.last_index:
            raise AnswerRejected(f"Question {question_index} does not exist.")
        if player.answered(question_index):
            raise AnswerRejected(f"Question {question_index + 1} was already answered.")

        question = room.questions[question_index]
        answer = Answer(
            question_index=question_index,
            answer_text=answer_text,
            is_correct=question.is_correct(answer_text),
        )
        patches: list[Patch] = [AppendAnswer(player_id=participant_id, answer=answer)]
        if answer.is_correct:
            patches.append(
                IncrementScore(player_id=participant_id, delta=self.points_per_correct)
            )
        if is_last:
            patches.append(SetStatus(status=RoomStatus.FINISHED))

        await self.store.apply_patch(room.code, patches)
        if is_last and room.status != RoomStatus.FINISHED:
            logger.info(
                "Quiz finished",
                extra=log_context(room=room.code, participant=participant_id),
            )
        return answer
