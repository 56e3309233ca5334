"""Redis-backed room store.

Layout per room::

    quiz:room:<code>                  hash  meta | status | player:<id> | score:<id>
    quiz:room:<code>:answers:<id>     list  one JSON Answer per entry
    quiz:room:<code>:changes          pub/sub channel, one message per write

Every patch kind maps to a single-field command (HSET, HINCRBY, RPUSH), so
writes from different players never touch the same key. Subscribers re-read
the whole document whenever a change is announced. Key expiry is not
announced on the channel, so subscriptions also check for the room between
messages and report ``RoomRemoved`` once it is gone.

Any Redis failure surfaces as ``ConnectionFailed``.
"""

from __future__ import annotations

import asyncio
import json
from contextlib import contextmanager
from typing import Iterator, Optional, Sequence

import redis.asyncio as redis

from app.core.config import Settings
from app.core.logging import get_logger, log_context
from app.modules.quiz.errors import ConnectionFailed, RoomAlreadyExists, RoomNotFound
from app.modules.quiz.models import Answer, Player, Room
from app.modules.quiz.patches import (
    AppendAnswer,
    IncrementScore,
    Patch,
    SetStatus,
    UpsertPlayer,
)
from app.modules.quiz.store import RoomEvent, RoomRemoved, RoomSnapshot, RoomStore, Subscription

logger = get_logger(__name__)

_META_FIELDS = {"code", "topic", "difficulty", "timer_seconds", "questions", "host_id", "created_at"}


def _room_key(code: str) -> str:
    return f"quiz:room:{code}"


def _answers_key(code: str, player_id: str) -> str:
    return f"quiz:room:{code}:answers:{player_id}"


def _channel(code: str) -> str:
    return f"quiz:room:{code}:changes"


def _player_ids(fields) -> list[str]:
    return [f.split(":", 1)[1] for f in fields if f.startswith("player:")]


@contextmanager
def _redis_errors(action: str, code: Optional[str] = None) -> Iterator[None]:
    try:
        yield
    except redis.RedisError as e:
        logger.error(f"Redis {action} failed: {e}", extra=log_context(room=code))
        raise ConnectionFailed() from e


class RedisRoomStore(RoomStore):
    def __init__(
        self,
        client: redis.Redis,
        *,
        ttl_seconds: int = 3600,
        expiry_check_seconds: float = 60.0,
    ) -> None:
        self._redis = client
        self._ttl_seconds = ttl_seconds
        self._expiry_check_seconds = expiry_check_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedisRoomStore":
        client = redis.Redis.from_url(
            str(settings.redis.dsn),
            decode_responses=True,
            socket_timeout=settings.redis.timeout_seconds,
            socket_connect_timeout=settings.redis.timeout_seconds,
        )
        return cls(
            client,
            ttl_seconds=settings.quiz.room_ttl_seconds,
            expiry_check_seconds=settings.quiz.sweep_interval_seconds,
        )

    async def start(self) -> None:
        with _redis_errors("ping"):
            await self._redis.ping()

    async def stop(self) -> None:
        await self._redis.aclose()

    # Documents ----------------------------------------------------------
    async def create_room(self, room: Room) -> None:
        key = _room_key(room.code)
        meta = room.model_dump_json(include=_META_FIELDS)
        with _redis_errors("create", room.code):
            if not await self._redis.hsetnx(key, "meta", meta):
                raise RoomAlreadyExists(room.code)

            pipe = self._redis.pipeline(transaction=True)
            pipe.hset(key, "status", room.status.value)
            for player in room.players.values():
                self._queue_upsert(pipe, room.code, player)
            self._queue_expire(pipe, room.code, room.players.keys())
            await pipe.execute()
            await self._redis.publish(_channel(room.code), "created")

    async def get_room(self, code: str) -> Optional[Room]:
        with _redis_errors("read", code):
            fields = await self._redis.hgetall(_room_key(code))
            if not fields or "meta" not in fields:
                return None

            player_ids = _player_ids(fields)
            pipe = self._redis.pipeline(transaction=False)
            for pid in player_ids:
                pipe.lrange(_answers_key(code, pid), 0, -1)
            answer_lists = await pipe.execute() if player_ids else []

        players: dict[str, Player] = {}
        for pid, raw_answers in zip(player_ids, answer_lists):
            base = json.loads(fields[f"player:{pid}"])
            players[pid] = Player(
                id=pid,
                name=base["name"],
                score=int(fields.get(f"score:{pid}", 0)),
                answers=[Answer.model_validate_json(a) for a in raw_answers],
            )

        doc = json.loads(fields["meta"])
        doc["status"] = fields.get("status")
        doc["players"] = players
        return Room.model_validate(doc)

    async def apply_patch(self, code: str, patches: Sequence[Patch]) -> None:
        key = _room_key(code)
        with _redis_errors("patch", code):
            fields = await self._redis.hkeys(key)
            if "meta" not in fields:
                raise RoomNotFound(code)

            player_ids = set(_player_ids(fields))
            pipe = self._redis.pipeline(transaction=True)
            for patch in patches:
                if isinstance(patch, SetStatus):
                    pipe.hset(key, "status", patch.status.value)
                elif isinstance(patch, UpsertPlayer):
                    self._queue_upsert(pipe, code, patch.player)
                    player_ids.add(patch.player.id)
                elif isinstance(patch, AppendAnswer):
                    pipe.rpush(_answers_key(code, patch.player_id), patch.answer.model_dump_json())
                elif isinstance(patch, IncrementScore):
                    pipe.hincrby(key, f"score:{patch.player_id}", patch.delta)
                else:
                    raise TypeError(f"Unknown patch: {patch!r}")
            self._queue_expire(pipe, code, player_ids)
            await pipe.execute()
            await self._redis.publish(_channel(code), "patched")

    async def delete_room(self, code: str) -> None:
        key = _room_key(code)
        with _redis_errors("delete", code):
            fields = await self._redis.hkeys(key)
            if not fields:
                return
            keys = [key] + [_answers_key(code, pid) for pid in _player_ids(fields)]
            await self._redis.delete(*keys)
            await self._redis.publish(_channel(code), "deleted")
        logger.info("Room deleted", extra=log_context(room=code))

    def _queue_upsert(self, pipe, code: str, player: Player) -> None:
        key = _room_key(code)
        answers_key = _answers_key(code, player.id)
        pipe.hset(
            key,
            mapping={
                f"player:{player.id}": json.dumps({"id": player.id, "name": player.name}),
                f"score:{player.id}": player.score,
            },
        )
        pipe.delete(answers_key)
        if player.answers:
            pipe.rpush(answers_key, *[a.model_dump_json() for a in player.answers])

    def _queue_expire(self, pipe, code: str, player_ids) -> None:
        if self._ttl_seconds <= 0:
            return
        pipe.expire(_room_key(code), self._ttl_seconds)
        for pid in player_ids:
            pipe.expire(_answers_key(code, pid), self._ttl_seconds)

    # Subscriptions ------------------------------------------------------
    async def subscribe(
        self, code: str, channel: Optional[asyncio.Queue] = None
    ) -> Subscription:
        sub = Subscription(code, channel)
        pubsub = self._redis.pubsub()
        with _redis_errors("subscribe", code):
            await pubsub.subscribe(_channel(code))
        event = await self._event_for(code)
        sub.deliver(event)
        task = asyncio.create_task(
            self._forward(code, pubsub, sub, present=isinstance(event, RoomSnapshot))
        )
        sub.add_cancel_callback(task.cancel)
        return sub

    async def _event_for(self, code: str) -> RoomEvent:
        room = await self.get_room(code)
        if room is None:
            return RoomRemoved(code)
        return RoomSnapshot(room)

    async def _forward(self, code: str, pubsub, sub: Subscription, *, present: bool) -> None:
        try:
            while True:
                with _redis_errors("listen", code):
                    message = await pubsub.get_message(
                        ignore_subscribe_messages=True,
                        timeout=self._expiry_check_seconds,
                    )
                    if message is None:
                        if not present or await self._redis.exists(_room_key(code)):
                            continue
                        event: RoomEvent = RoomRemoved(code)
                        logger.info("Room expired", extra=log_context(room=code))
                    else:
                        event = await self._event_for(code)
                present = isinstance(event, RoomSnapshot)
                sub.deliver(event)
        except ConnectionFailed:
            logger.warning("Room subscription lost", extra=log_context(room=code))
        finally:
            await pubsub.aclose()
