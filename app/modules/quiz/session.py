"""Per-client quiz session.

``SessionState`` is the local view of one participant: which screen they are
on, the last room snapshot, their position in the quiz and the countdown.
It only changes through the pure reducers below, which are driven by three
event sources:

- room events from the store subscription (``RoomSnapshot`` / ``RoomRemoved``)
- ``Tick`` events from the one-second countdown timer
- user actions (join, start, answer, ...)

``SessionController`` feeds all three into a single inbox and applies them in
order, running store operations for actions and for the answer submissions
the reducers emit as effects.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Union

from pydantic import BaseModel, ConfigDict

from app.core.logging import get_logger, log_context
from app.modules.quiz.codes import normalize_room_code
from app.modules.quiz.errors import (
    AnswerRejected,
    GenerationFailed,
    InvalidTransition,
    NotHost,
    PlayerNotFound,
    QuizError,
)
from app.modules.quiz.generator import QuestionGenerator
from app.modules.quiz.models import NO_ANSWER, Answer, Difficulty, Room, RoomStatus
from app.modules.quiz.state import RoomStateMachine
from app.modules.quiz.store import RoomRemoved, RoomSnapshot, Subscription
from app.modules.quiz.summarizer import FALLBACK_SUMMARY, PerformanceSummarizer

logger = get_logger(__name__)

ROOM_REMOVED_MESSAGE = "Quiz room not found."


class View(str, Enum):
    HOME = "home"
    CREATE = "create"
    JOIN = "join"
    LOBBY = "lobby"
    QUIZ = "quiz"
    RESULTS = "results"


class SessionState(BaseModel):
    model_config = ConfigDict(frozen=True)

    participant_id: str
    view: View = View.HOME
    room_code: Optional[str] = None
    room: Optional[Room] = None
    is_host: bool = False
    current_question_index: int = 0
    selected_answer: Optional[str] = None
    time_left: Optional[int] = None
    submitted: bool = False
    finished: bool = False
    local_answers: tuple[Answer, ...] = ()
    error: Optional[str] = None
    summary: Optional[str] = None


# Events -----------------------------------------------------------------
@dataclass(frozen=True)
class Tick:
    # id of the countdown that posted it; ticks from a replaced countdown are dropped
    countdown: Optional[int] = None


@dataclass(frozen=True)
class OpenCreate:
    pass


@dataclass(frozen=True)
class OpenJoin:
    pass


@dataclass(frozen=True)
class CreateRoom:
    topic: str
    host_name: str
    difficulty: Difficulty = Difficulty.MEDIUM
    num_questions: int = 5
    timer_seconds: int = 30


@dataclass(frozen=True)
class JoinRoom:
    code: str
    name: str


@dataclass(frozen=True)
class EnterRoom:
    """Attach to a room the participant already belongs to."""

    code: str


@dataclass(frozen=True)
class StartQuiz:
    pass


@dataclass(frozen=True)
class SelectAnswer:
    answer_text: str


@dataclass(frozen=True)
class SubmitAnswer:
    # None submits the currently selected answer
    answer_text: Optional[str] = None


@dataclass(frozen=True)
class RequestSummary:
    pass


@dataclass(frozen=True)
class ReturnHome:
    pass


@dataclass(frozen=True)
class SubmitAnswerEffect:
    code: str
    question_index: int
    answer_text: str


SessionEvent = Union[
    RoomSnapshot,
    RoomRemoved,
    Tick,
    OpenCreate,
    OpenJoin,
    CreateRoom,
    JoinRoom,
    EnterRoom,
    StartQuiz,
    SelectAnswer,
    SubmitAnswer,
    RequestSummary,
    ReturnHome,
]

Effects = tuple[SubmitAnswerEffect, ...]


# Reducers ---------------------------------------------------------------
def with_error(state: SessionState, message: Optional[str]) -> SessionState:
    return state.model_copy(update={"error": message})


def leave_room(state: SessionState, error: Optional[str] = None) -> SessionState:
    return SessionState(participant_id=state.participant_id, error=error)


def _server_answers(state: SessionState, room: Room) -> tuple[Answer, ...]:
    player = room.player(state.participant_id)
    if player is None:
        return ()
    return tuple(sorted(player.answers, key=lambda a: a.question_index))


def begin_quiz(state: SessionState) -> SessionState:
    """Open the first question this participant has not answered yet.

    A fresh start lands on question 0; a reconnect mid-quiz resumes from the
    answers the room already holds.
    """
    room = state.room
    answers = _server_answers(state, room)
    answered = {a.question_index for a in answers}
    pending = [i for i in range(len(room.questions)) if i not in answered]
    state = state.model_copy(
        update={
            "view": View.QUIZ,
            "selected_answer": None,
            "local_answers": answers,
            "submitted": False,
            "finished": False,
        }
    )
    if not pending:
        return _finish(state.model_copy(update={"submitted": True}))
    return state.model_copy(
        update={"current_question_index": pending[0], "time_left": room.timer_seconds}
    )


def _finish(state: SessionState) -> SessionState:
    return state.model_copy(
        update={"view": View.RESULTS, "finished": True, "time_left": None}
    )


def enter_room(state: SessionState, room: Room, *, is_host: bool) -> SessionState:
    state = state.model_copy(
        update={
            "room_code": room.code,
            "room": room,
            "is_host": is_host,
            "view": View.LOBBY,
            "local_answers": _server_answers(state, room),
            "finished": False,
            "summary": None,
            "error": None,
        }
    )
    return apply_snapshot(state, room)


def apply_snapshot(state: SessionState, room: Room) -> SessionState:
    if room.code != state.room_code:
        return state
    state = state.model_copy(update={"room": room})
    if room.status == RoomStatus.IN_PROGRESS and state.view != View.QUIZ and not state.finished:
        state = begin_quiz(state)
    if room.status == RoomStatus.FINISHED and not state.finished:
        state = _finish(state)
    return state


def apply_removed(state: SessionState, code: str) -> SessionState:
    if code != state.room_code:
        return state
    return leave_room(state, error=ROOM_REMOVED_MESSAGE)


def select_answer(state: SessionState, answer_text: str) -> SessionState:
    if state.view != View.QUIZ or state.submitted:
        return state
    return state.model_copy(update={"selected_answer": answer_text})


def submit_answer(
    state: SessionState, answer_text: Optional[str] = None
) -> tuple[SessionState, Effects]:
    text = answer_text if answer_text is not None else state.selected_answer
    room = state.room
    if text is None or room is None or state.view != View.QUIZ or state.submitted:
        return state, ()
    index = state.current_question_index
    if index > room.last_index:
        return state, ()

    answer = Answer(
        question_index=index,
        answer_text=text,
        is_correct=room.questions[index].is_correct(text),
    )
    effect = SubmitAnswerEffect(code=room.code, question_index=index, answer_text=text)
    answers = (*state.local_answers, answer)

    if index < room.last_index:
        state = state.model_copy(
            update={
                "current_question_index": index + 1,
                "selected_answer": None,
                "local_answers": answers,
                "time_left": room.timer_seconds,
                "submitted": False,
            }
        )
    else:
        state = _finish(
            state.model_copy(
                update={"local_answers": answers, "selected_answer": None, "submitted": True}
            )
        )
    return state, (effect,)


def tick(state: SessionState) -> tuple[SessionState, Effects]:
    if state.view != View.QUIZ or state.submitted or state.time_left is None:
        return state, ()
    if state.time_left > 1:
        return state.model_copy(update={"time_left": state.time_left - 1}), ()
    state = state.model_copy(update={"time_left": 0})
    return submit_answer(state, NO_ANSWER)


def require_host(room: Room, participant_id: str) -> None:
    if room.host_id != participant_id:
        raise NotHost()
    if not room.players:
        raise InvalidTransition("At least one player is needed to start.")


# Controller -------------------------------------------------------------
StateListener = Callable[[SessionState], Awaitable[None]]


def _question_key(state: SessionState) -> tuple:
    return (state.view, state.room_code, state.current_question_index)


class SessionController:
    def __init__(
        self,
        participant_id: str,
        machine: RoomStateMachine,
        *,
        generator: Optional[QuestionGenerator] = None,
        summarizer: Optional[PerformanceSummarizer] = None,
        on_state: Optional[StateListener] = None,
        tick_seconds: float = 1.0,
    ) -> None:
        self.machine = machine
        self.inbox: asyncio.Queue = asyncio.Queue()
        self._generator = generator
        self._summarizer = summarizer
        self._on_state = on_state
        self._tick_seconds = tick_seconds
        self._state = SessionState(participant_id=participant_id)
        self._subscription: Optional[Subscription] = None
        self._ticker: Optional[asyncio.Task] = None
        self._countdown = 0

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def countdown(self) -> int:
        """Id of the running countdown; it changes whenever a new question opens."""
        return self._countdown

    def post(self, event: SessionEvent) -> None:
        self.inbox.put_nowait(event)

    async def run(self) -> None:
        """Consume the inbox until cancelled."""
        self._restart_ticker()
        try:
            while True:
                event = await self.inbox.get()
                await self.handle(event)
        finally:
            self._stop_ticker()

    async def drain(self) -> SessionState:
        """Handle everything already queued; used where no ``run`` loop is active."""
        while not self.inbox.empty():
            await self.handle(self.inbox.get_nowait())
        return self._state

    async def close(self) -> None:
        self._unsubscribe()
        self._stop_ticker()

    async def handle(self, event: SessionEvent) -> SessionState:
        before = self._state
        try:
            await self._dispatch(event)
        except QuizError as e:
            logger.warning(
                f"{type(event).__name__} failed: {e}",
                extra=log_context(
                    room=self._state.room_code,
                    role="host" if self._state.is_host else "player",
                    participant=self._state.participant_id,
                ),
            )
            self._state = with_error(self._state, str(e))
        if self._ticker is not None and _question_key(before) != _question_key(self._state):
            self._restart_ticker()
        if self._on_state is not None and self._state != before:
            await self._on_state(self._state)
        return self._state

    async def _dispatch(self, event: SessionEvent) -> None:
        if isinstance(event, RoomSnapshot):
            self._state = apply_snapshot(self._state, event.room)
        elif isinstance(event, RoomRemoved):
            if event.code == self._state.room_code:
                self._unsubscribe()
            self._state = apply_removed(self._state, event.code)
        elif isinstance(event, Tick):
            if event.countdown is not None and event.countdown != self._countdown:
                return
            await self._submit(*tick(self._state))
        elif isinstance(event, SelectAnswer):
            self._state = select_answer(self._state, event.answer_text)
        elif isinstance(event, SubmitAnswer):
            await self._submit(*submit_answer(self._state, event.answer_text))
        elif isinstance(event, OpenCreate):
            self._state = self._state.model_copy(update={"view": View.CREATE, "error": None})
        elif isinstance(event, OpenJoin):
            self._state = self._state.model_copy(update={"view": View.JOIN, "error": None})
        elif isinstance(event, CreateRoom):
            await self._create_room(event)
        elif isinstance(event, JoinRoom):
            await self._join_room(event)
        elif isinstance(event, EnterRoom):
            await self._enter_room(event.code)
        elif isinstance(event, StartQuiz):
            await self._start_quiz()
        elif isinstance(event, RequestSummary):
            await self._request_summary()
        elif isinstance(event, ReturnHome):
            self._unsubscribe()
            self._state = leave_room(self._state)
        else:
            raise TypeError(f"Unknown session event: {event!r}")

    # Actions ------------------------------------------------------------
    async def _create_room(self, event: CreateRoom) -> None:
        self._state = with_error(self._state, None)
        if self._generator is None:
            raise GenerationFailed("Question generation is not available.")
        self.machine.check_settings(
            timer_seconds=event.timer_seconds, num_questions=event.num_questions
        )
        questions = await self._generator.generate(
            event.topic, event.difficulty, event.num_questions
        )
        code = await self.machine.create_room(
            topic=event.topic,
            difficulty=event.difficulty,
            timer_seconds=event.timer_seconds,
            questions=questions,
            host_id=self._state.participant_id,
            host_name=event.host_name,
        )
        await self._attach(await self.machine.get_room(code))

    async def _join_room(self, event: JoinRoom) -> None:
        self._state = with_error(self._state, None)
        room = await self.machine.join_room(
            normalize_room_code(event.code),
            participant_id=self._state.participant_id,
            name=event.name,
        )
        await self._attach(room)

    async def _enter_room(self, code: str) -> None:
        room = await self.machine.get_room(code)
        if room.player(self._state.participant_id) is None:
            raise PlayerNotFound(self._state.participant_id)
        await self._attach(room)

    async def _attach(self, room: Room) -> None:
        self._unsubscribe()
        self._subscription = await self.machine.store.subscribe(room.code, channel=self.inbox)
        is_host = room.host_id == self._state.participant_id
        self._state = enter_room(self._state, room, is_host=is_host)

    async def _start_quiz(self) -> None:
        room = self._state.room
        if room is None or not self._state.is_host:
            raise NotHost()
        require_host(room, self._state.participant_id)
        try:
            await self.machine.start_quiz(room.code)
        except QuizError as e:
            raise InvalidTransition("Could not start the quiz.") from e

    async def _request_summary(self) -> None:
        room = self._state.room
        if room is None:
            return
        if self._summarizer is None:
            summary = FALLBACK_SUMMARY
        else:
            summary = await self._summarizer.summarize_room(room, self._state.participant_id)
        self._state = self._state.model_copy(update={"summary": summary})

    async def _submit(self, state: SessionState, effects: Effects) -> None:
        """Move to ``state`` and record the answers; undo the move if recording fails."""
        before = self._state
        self._state = state
        try:
            await self._run_effects(effects)
        except QuizError as e:
            # AnswerRejected means the room already holds this answer
            if not isinstance(e, AnswerRejected):
                self._state = before
            raise

    async def _run_effects(self, effects: Effects) -> None:
        for effect in effects:
            await self.machine.submit_answer(
                effect.code,
                participant_id=self._state.participant_id,
                question_index=effect.question_index,
                answer_text=effect.answer_text,
            )

    # Resources ----------------------------------------------------------
    def _unsubscribe(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None

    def _restart_ticker(self) -> None:
        self._stop_ticker()
        self._countdown += 1
        self._ticker = asyncio.create_task(self._tick_loop(self._countdown))

    def _stop_ticker(self) -> None:
        if self._ticker and not self._ticker.done():
            self._ticker.cancel()
        self._ticker = None

    async def _tick_loop(self, countdown: int) -> None:
        while True:
            await asyncio.sleep(self._tick_seconds)
            self.post(Tick(countdown))
