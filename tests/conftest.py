import pytest

from app.modules.quiz.state import RoomStateMachine
from app.modules.quiz.store import InMemoryRoomStore


@pytest.fixture
def store():
    return InMemoryRoomStore(ttl_seconds=3600)


@pytest.fixture
def machine(store):
    return RoomStateMachine(store, max_timer_seconds=120, max_questions=20)
