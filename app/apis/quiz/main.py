from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from app.core.config import settings
from app.apis.deps import (
    current_participant,
    get_question_generator,
    get_room_machine,
    get_summarizer,
)
from app.apis.quiz.schemas import (
    CreateRoomRequest,
    CreateRoomResponse,
    JoinRoomRequest,
    JoinRoomResponse,
    RoomResponse,
    SubmitAnswerRequest,
    SubmitAnswerResponse,
    SummaryResponse,
)
from app.modules.quiz.errors import (
    AlreadyStarted,
    AnswerRejected,
    ConnectionFailed,
    GenerationFailed,
    InvalidSettings,
    InvalidTransition,
    NotHost,
    PlayerNotFound,
    QuizError,
    RoomAlreadyExists,
    RoomNotFound,
)
from app.modules.quiz.generator import QuestionGenerator
from app.modules.quiz.models import NO_ANSWER, RoomStatus
from app.modules.quiz.session import require_host
from app.modules.quiz.state import RoomStateMachine
from app.modules.quiz.summarizer import PerformanceSummarizer


router = APIRouter()

_STATUS_BY_ERROR: list[tuple[type[QuizError], int]] = [
    (RoomNotFound, status.HTTP_404_NOT_FOUND),
    (PlayerNotFound, status.HTTP_404_NOT_FOUND),
    (NotHost, status.HTTP_403_FORBIDDEN),
    (AlreadyStarted, status.HTTP_409_CONFLICT),
    (RoomAlreadyExists, status.HTTP_409_CONFLICT),
    (InvalidTransition, status.HTTP_409_CONFLICT),
    (AnswerRejected, status.HTTP_409_CONFLICT),
    (InvalidSettings, 422),
    (GenerationFailed, status.HTTP_502_BAD_GATEWAY),
    (ConnectionFailed, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def _http_error(e: QuizError) -> HTTPException:
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(e, error_type):
            return HTTPException(status_code=code, detail=str(e))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


def _ws_url(code: str) -> str:
    return f"/{settings.app.version}/quiz/ws/{code}"


@router.post(
    f"/{settings.app.version}/quiz/rooms",
    response_model=CreateRoomResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["quiz"],
)
async def create_room(
    req: CreateRoomRequest,
    participant_id: str = Depends(current_participant),
    machine: RoomStateMachine = Depends(get_room_machine),
    generator: QuestionGenerator = Depends(get_question_generator),
) -> CreateRoomResponse:
    try:
        questions = await generator.generate(req.topic, req.difficulty, req.num_questions)
        code = await machine.create_room(
            topic=req.topic,
            difficulty=req.difficulty,
            timer_seconds=req.timer_seconds,
            questions=questions,
            host_id=participant_id,
            host_name=req.host_name,
        )
        room = await machine.get_room(code)
    except QuizError as e:
        raise _http_error(e)
    return CreateRoomResponse(room_code=code, ws_url=_ws_url(code), room=room)


@router.get(
    f"/{settings.app.version}/quiz/rooms/{{code}}",
    response_model=RoomResponse,
    tags=["quiz"],
)
async def get_room(
    code: str, machine: RoomStateMachine = Depends(get_room_machine)
) -> RoomResponse:
    try:
        room = await machine.get_room(code)
    except QuizError as e:
        raise _http_error(e)
    return RoomResponse(room=room)


@router.post(
    f"/{settings.app.version}/quiz/rooms/{{code}}/join",
    response_model=JoinRoomResponse,
    tags=["quiz"],
)
async def join_room(
    code: str,
    req: JoinRoomRequest,
    participant_id: str = Depends(current_participant),
    machine: RoomStateMachine = Depends(get_room_machine),
) -> JoinRoomResponse:
    try:
        room = await machine.join_room(
            code, participant_id=participant_id, name=req.display_name
        )
    except QuizError as e:
        raise _http_error(e)
    return JoinRoomResponse(ws_url=_ws_url(room.code), room=room)


@router.post(
    f"/{settings.app.version}/quiz/rooms/{{code}}/start",
    response_model=RoomResponse,
    tags=["quiz"],
)
async def start_quiz(
    code: str,
    participant_id: str = Depends(current_participant),
    machine: RoomStateMachine = Depends(get_room_machine),
) -> RoomResponse:
    try:
        room = await machine.get_room(code)
        require_host(room, participant_id)
        await machine.start_quiz(room.code)
        room = await machine.get_room(room.code)
    except QuizError as e:
        raise _http_error(e)
    return RoomResponse(room=room)


@router.post(
    f"/{settings.app.version}/quiz/rooms/{{code}}/answers",
    response_model=SubmitAnswerResponse,
    tags=["quiz"],
)
async def submit_answer(
    code: str,
    req: SubmitAnswerRequest,
    participant_id: str = Depends(current_participant),
    machine: RoomStateMachine = Depends(get_room_machine),
) -> SubmitAnswerResponse:
    try:
        answer = await machine.submit_answer(
            code,
            participant_id=participant_id,
            question_index=req.question_index,
            answer_text=req.answer_text if req.answer_text is not None else NO_ANSWER,
        )
        room = await machine.get_room(code)
    except QuizError as e:
        raise _http_error(e)
    return SubmitAnswerResponse(answer=answer, finished=room.status == RoomStatus.FINISHED)


@router.post(
    f"/{settings.app.version}/quiz/rooms/{{code}}/summary",
    response_model=SummaryResponse,
    tags=["quiz"],
)
async def performance_summary(
    code: str,
    participant_id: str = Depends(current_participant),
    machine: RoomStateMachine = Depends(get_room_machine),
    summarizer: PerformanceSummarizer = Depends(get_summarizer),
) -> SummaryResponse:
    try:
        room = await machine.get_room(code)
    except QuizError as e:
        raise _http_error(e)
    if room.player(participant_id) is None:
        raise HTTPException(status_code=404, detail="Player not found")
    summary = await summarizer.summarize_room(room, participant_id)
    return SummaryResponse(summary=summary)
