"""Field-scoped updates to a stored Room.

Each patch touches one field path of the document: the room-level status or a
single player's subtree. Clients only ever write their own player subtree, so
patches from different players never overlap; the status target is the same
value for every writer, so repeated status writes are harmless.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from app.modules.quiz.errors import PlayerNotFound
from app.modules.quiz.models import Answer, Player, Room, RoomStatus


class SetStatus(BaseModel):
    kind: Literal["set_status"] = "set_status"
    status: RoomStatus


class UpsertPlayer(BaseModel):
    kind: Literal["upsert_player"] = "upsert_player"
    player: Player


class AppendAnswer(BaseModel):
    kind: Literal["append_answer"] = "append_answer"
    player_id: str
    answer: Answer


class IncrementScore(BaseModel):
    kind: Literal["increment_score"] = "increment_score"
    player_id: str
    delta: int


Patch = Annotated[
    Union[SetStatus, UpsertPlayer, AppendAnswer, IncrementScore],
    Field(discriminator="kind"),
]


def apply_patch(room: Room, patch: Patch) -> Room:
    """Return a new Room with ``patch`` merged in; ``room`` is left untouched."""
    if isinstance(patch, SetStatus):
        return room.model_copy(update={"status": patch.status})

    if isinstance(patch, UpsertPlayer):
        players = dict(room.players)
        players[patch.player.id] = patch.player.model_copy(deep=True)
        return room.model_copy(update={"players": players})

    player = room.players.get(patch.player_id)
    if player is None:
        raise PlayerNotFound(patch.player_id)

    if isinstance(patch, AppendAnswer):
        updated = player.model_copy(
            update={"answers": [*player.answers, patch.answer.model_copy()]}
        )
    elif isinstance(patch, IncrementScore):
        updated = player.model_copy(update={"score": player.score + patch.delta})
    else:
        raise TypeError(f"Unknown patch: {patch!r}")

    players = dict(room.players)
    players[updated.id] = updated
    return room.model_copy(update={"players": players})


def apply_patches(room: Room, patches: list[Patch]) -> Room:
    for patch in patches:
        room = apply_patch(room, patch)
    return room
