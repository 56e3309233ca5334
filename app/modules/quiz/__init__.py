"""Quiz rooms module exports."""

from .models import NO_ANSWER, Answer, Difficulty, Player, Question, Room, RoomStatus
from .state import RejoinPolicy, RoomStateMachine
from .store import InMemoryRoomStore, RoomRemoved, RoomSnapshot, RoomStore, Subscription
from .session import SessionController, SessionState, View

__all__ = [
    "NO_ANSWER",
    "Answer",
    "Difficulty",
    "Player",
    "Question",
    "Room",
    "RoomStatus",
    "RejoinPolicy",
    "RoomStateMachine",
    "InMemoryRoomStore",
    "RoomRemoved",
    "RoomSnapshot",
    "RoomStore",
    "Subscription",
    "SessionController",
    "SessionState",
    "View",
]
