import asyncio

import pytest

from app.modules.quiz.errors import RoomAlreadyExists, RoomNotFound
from app.modules.quiz.models import Player, Room, RoomStatus
from app.modules.quiz.patches import SetStatus, UpsertPlayer
from app.modules.quiz.store import InMemoryRoomStore, RoomRemoved, RoomSnapshot
from tests.helpers import make_questions


def make_room(code="ROOM1"):
    return Room(
        code=code,
        topic="Oceans",
        timer_seconds=30,
        questions=make_questions(2),
        host_id="ada",
        players={"ada": Player(id="ada", name="Ada")},
    )


async def test_create_and_get(store):
    await store.create_room(make_room())
    room = await store.get_room("ROOM1")
    assert room is not None
    assert room.status == RoomStatus.LOBBY
    assert list(room.players) == ["ada"]


async def test_get_missing_room(store):
    assert await store.get_room("ZZZZZ") is None


async def test_create_collision(store):
    await store.create_room(make_room())
    with pytest.raises(RoomAlreadyExists):
        await store.create_room(make_room())


async def test_reads_are_copies(store):
    await store.create_room(make_room())
    room = await store.get_room("ROOM1")
    room.players["ada"].score = 99
    assert (await store.get_room("ROOM1")).players["ada"].score == 0


async def test_patch_missing_room(store):
    with pytest.raises(RoomNotFound):
        await store.apply_patch("ZZZZZ", [SetStatus(status=RoomStatus.IN_PROGRESS)])


async def test_subscribe_delivers_initial_snapshot_and_changes(store):
    await store.create_room(make_room())
    sub = await store.subscribe("ROOM1")

    first = sub.channel.get_nowait()
    assert isinstance(first, RoomSnapshot)
    assert first.room.status == RoomStatus.LOBBY

    await store.apply_patch("ROOM1", [UpsertPlayer(player=Player(id="bo", name="Bo"))])
    second = sub.channel.get_nowait()
    assert set(second.room.players) == {"ada", "bo"}


async def test_subscribe_to_missing_room(store):
    sub = await store.subscribe("ZZZZZ")
    assert sub.channel.get_nowait() == RoomRemoved("ZZZZZ")


async def test_delete_notifies_subscribers(store):
    await store.create_room(make_room())
    sub = await store.subscribe("ROOM1")
    sub.channel.get_nowait()

    await store.delete_room("ROOM1")
    assert sub.channel.get_nowait() == RoomRemoved("ROOM1")
    assert await store.get_room("ROOM1") is None


async def test_cancel_is_idempotent_and_stops_delivery(store):
    await store.create_room(make_room())
    sub = await store.subscribe("ROOM1")
    sub.channel.get_nowait()

    sub.cancel()
    sub.cancel()
    assert sub.cancelled
    assert store.subscriber_count("ROOM1") == 0

    await store.apply_patch("ROOM1", [SetStatus(status=RoomStatus.IN_PROGRESS)])
    # only the wake-up sentinel is left
    assert sub.channel.get_nowait() is None
    assert sub.channel.empty()


async def test_iterating_a_subscription(store):
    await store.create_room(make_room())
    sub = await store.subscribe("ROOM1")
    await store.apply_patch("ROOM1", [SetStatus(status=RoomStatus.IN_PROGRESS)])
    sub.cancel()

    statuses = [event.room.status async for event in sub]
    assert statuses == [RoomStatus.LOBBY, RoomStatus.IN_PROGRESS]


async def test_shared_channel(store):
    inbox = asyncio.Queue()
    await store.create_room(make_room("ROOM1"))
    await store.create_room(make_room("ROOM2"))
    await store.subscribe("ROOM1", channel=inbox)
    await store.subscribe("ROOM2", channel=inbox)

    codes = [inbox.get_nowait().room.code for _ in range(2)]
    assert sorted(codes) == ["ROOM1", "ROOM2"]


async def test_sweep_removes_idle_rooms():
    store = InMemoryRoomStore(ttl_seconds=60)
    await store.create_room(make_room())
    sub = await store.subscribe("ROOM1")
    sub.channel.get_nowait()

    assert await store.sweep(now=0) == []
    expired = await store.sweep(now=10**9)
    assert expired == ["ROOM1"]
    assert sub.channel.get_nowait() == RoomRemoved("ROOM1")


async def test_start_and_stop_sweeper():
    store = InMemoryRoomStore(ttl_seconds=60, sweep_interval=1)
    await store.start()
    await store.stop()
    await store.stop()
