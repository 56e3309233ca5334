"""Room store boundary.

``RoomStore`` is the contract the state machine writes through: create, read,
patch, delete and subscribe. Subscribers receive full-document events on an
``asyncio.Queue`` channel; they reconcile against each snapshot rather than
diffing consecutive ones.

``InMemoryRoomStore`` keeps documents in-process (single worker deployments
and tests). ``app.modules.quiz.redis_store.RedisRoomStore`` shares them across
processes.
"""

from __future__ import annotations

import abc
import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Union

from app.core.logging import get_logger, log_context
from app.modules.quiz.errors import RoomAlreadyExists, RoomNotFound
from app.modules.quiz.models import Room
from app.modules.quiz.patches import Patch, apply_patches

logger = get_logger(__name__)


@dataclass(frozen=True)
class RoomSnapshot:
    room: Room


@dataclass(frozen=True)
class RoomRemoved:
    code: str


RoomEvent = Union[RoomSnapshot, RoomRemoved]


class Subscription:
    """A live feed of one room's documents.

    Events go to ``channel``: either a queue owned by the subscription (then
    the subscription itself is async-iterable) or one supplied by the
    consumer, so several sources can share a single inbox.
    """

    def __init__(self, code: str, channel: Optional[asyncio.Queue] = None) -> None:
        self.code = code
        self._owns_channel = channel is None
        self.channel: asyncio.Queue = channel if channel is not None else asyncio.Queue()
        self._cancel_callbacks: list[Callable[[], None]] = []
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def add_cancel_callback(self, cb: Callable[[], None]) -> None:
        self._cancel_callbacks.append(cb)

    def deliver(self, event: RoomEvent) -> None:
        if self._cancelled:
            return
        self.channel.put_nowait(event)

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._cancel_callbacks = self._cancel_callbacks, []
        for cb in callbacks:
            cb()
        if self._owns_channel:
            # wake a pending __anext__
            self.channel.put_nowait(None)

    def __aiter__(self) -> "Subscription":
        if not self._owns_channel:
            raise TypeError("subscription writes to a shared channel; read that instead")
        return self

    async def __anext__(self) -> RoomEvent:
        event = await self.channel.get()
        if event is None:
            raise StopAsyncIteration
        return event


class RoomStore(abc.ABC):
    """Document store holding one Room per room code."""

    async def start(self) -> None:
        return None

    async def stop(self) -> None:
        return None

    @abc.abstractmethod
    async def create_room(self, room: Room) -> None:
        """Persist a new room; raises ``RoomAlreadyExists`` on a code collision."""

    @abc.abstractmethod
    async def get_room(self, code: str) -> Optional[Room]:
        """Point-in-time read; ``None`` when the room does not exist."""

    @abc.abstractmethod
    async def apply_patch(self, code: str, patches: Sequence[Patch]) -> None:
        """Merge ``patches`` into the stored room; raises ``RoomNotFound``."""

    @abc.abstractmethod
    async def delete_room(self, code: str) -> None:
        """Drop the room; subscribers receive ``RoomRemoved``."""

    @abc.abstractmethod
    async def subscribe(
        self, code: str, channel: Optional[asyncio.Queue] = None
    ) -> Subscription:
        """Start delivering events for ``code``, beginning with the current state."""


class InMemoryRoomStore(RoomStore):
    def __init__(self, *, ttl_seconds: int = 3600, sweep_interval: int = 60) -> None:
        self._rooms: dict[str, Room] = {}
        self._touched: dict[str, float] = {}
        self._subscribers: dict[str, set[Subscription]] = {}
        self._ttl_seconds = ttl_seconds
        self._sweep_interval = max(1, int(sweep_interval))
        self._sweeper: Optional[asyncio.Task] = None

    # Lifecycle ----------------------------------------------------------
    async def start(self) -> None:
        if self._ttl_seconds <= 0:
            return
        if self._sweeper and not self._sweeper.done():
            return
        self._sweeper = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        if self._sweeper and not self._sweeper.done():
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
        self._sweeper = None

    # Documents ----------------------------------------------------------
    async def create_room(self, room: Room) -> None:
        if room.code in self._rooms:
            raise RoomAlreadyExists(room.code)
        self._rooms[room.code] = room.model_copy(deep=True)
        self._touch(room.code)
        self._publish(room.code)

    async def get_room(self, code: str) -> Optional[Room]:
        room = self._rooms.get(code)
        return room.model_copy(deep=True) if room else None

    async def apply_patch(self, code: str, patches: Sequence[Patch]) -> None:
        room = self._rooms.get(code)
        if room is None:
            raise RoomNotFound(code)
        self._rooms[code] = apply_patches(room, list(patches))
        self._touch(code)
        self._publish(code)

    async def delete_room(self, code: str) -> None:
        if self._rooms.pop(code, None) is None:
            return
        self._touched.pop(code, None)
        logger.info("Room deleted", extra=log_context(room=code))
        self._publish(code)

    # Subscriptions ------------------------------------------------------
    async def subscribe(
        self, code: str, channel: Optional[asyncio.Queue] = None
    ) -> Subscription:
        sub = Subscription(code, channel)
        self._subscribers.setdefault(code, set()).add(sub)
        sub.add_cancel_callback(lambda: self._discard(code, sub))
        sub.deliver(self._event_for(code))
        return sub

    def subscriber_count(self, code: str) -> int:
        return len(self._subscribers.get(code, ()))

    def _discard(self, code: str, sub: Subscription) -> None:
        subs = self._subscribers.get(code)
        if not subs:
            return
        subs.discard(sub)
        if not subs:
            self._subscribers.pop(code, None)

    def _event_for(self, code: str) -> RoomEvent:
        room = self._rooms.get(code)
        if room is None:
            return RoomRemoved(code)
        return RoomSnapshot(room.model_copy(deep=True))

    def _publish(self, code: str) -> None:
        subs = self._subscribers.get(code)
        if not subs:
            return
        event = self._event_for(code)
        for sub in list(subs):
            sub.deliver(event)

    # Expiry -------------------------------------------------------------
    def _touch(self, code: str) -> None:
        self._touched[code] = time.monotonic()

    async def sweep(self, now: Optional[float] = None) -> list[str]:
        """Delete rooms idle for longer than the TTL; returns their codes."""
        now = time.monotonic() if now is None else now
        expired = [
            code
            for code, touched in self._touched.items()
            if now - touched > self._ttl_seconds
        ]
        for code in expired:
            await self.delete_room(code)
        return expired

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            expired = await self.sweep()
            if expired:
                logger.info(f"Expired {len(expired)} idle room(s)")
