from __future__ import annotations

import asyncio
import json
from typing import Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from app.core.config import settings
from app.core.logging import get_logger, log_context
from app.apis.deps import get_room_machine, get_summarizer, participant_from_token
from app.modules.quiz.errors import RoomNotFound
from app.modules.quiz.session import (
    EnterRoom,
    RequestSummary,
    ReturnHome,
    SelectAnswer,
    SessionController,
    SessionEvent,
    SessionState,
    StartQuiz,
    SubmitAnswer,
)
from app.modules.quiz.state import RoomStateMachine
from app.modules.quiz.summarizer import PerformanceSummarizer

logger = get_logger(__name__)
ws_router = APIRouter()


def parse_client_message(msg: object) -> Optional[SessionEvent]:
    """Map an inbound client message to a session event; None for anything unknown."""
    if not isinstance(msg, dict):
        return None
    mtype = msg.get("type")
    if mtype == "select" and isinstance(msg.get("answer"), str):
        return SelectAnswer(msg["answer"])
    if mtype == "answer":
        answer = msg.get("answer")
        return SubmitAnswer(answer if isinstance(answer, str) else None)
    if mtype == "start":
        return StartQuiz()
    if mtype == "summary":
        return RequestSummary()
    if mtype == "leave":
        return ReturnHome()
    return None


@ws_router.websocket(f"/{settings.app.version}/quiz/ws/{{code}}")
async def ws_room(
    websocket: WebSocket,
    code: str,
    machine: RoomStateMachine = Depends(get_room_machine),
    summarizer: PerformanceSummarizer = Depends(get_summarizer),
) -> None:
    participant_id = participant_from_token(websocket.query_params.get("access_token"))
    if not participant_id:
        await websocket.close(code=4401)
        return
    try:
        room = await machine.get_room(code)
    except RoomNotFound:
        await websocket.close(code=4404)
        return
    if room.player(participant_id) is None:
        await websocket.close(code=4404)
        return

    await websocket.accept()
    logger.info("WS connected", extra=log_context(room=room.code, participant=participant_id))

    async def push(state: SessionState) -> None:
        try:
            await websocket.send_json(
                {"type": "session", "data": state.model_dump(mode="json")}
            )
        except (WebSocketDisconnect, RuntimeError):
            # Best-effort; the receive loop notices the disconnect
            logger.debug("WS send after close", extra=log_context(room=room.code))

    controller = SessionController(
        participant_id,
        machine,
        summarizer=summarizer,
        on_state=push,
        tick_seconds=settings.quiz.tick_seconds,
    )
    await controller.handle(EnterRoom(room.code))
    runner = asyncio.create_task(controller.run())
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                continue
            event = parse_client_message(msg)
            if event is not None:
                controller.post(event)
    except WebSocketDisconnect:
        logger.info("WS disconnected", extra=log_context(room=room.code, participant=participant_id))
    finally:
        runner.cancel()
        try:
            await runner
        except asyncio.CancelledError:
            pass
        await controller.close()
