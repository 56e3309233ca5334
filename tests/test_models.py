import pytest
from pydantic import ValidationError

from app.modules.quiz.codes import generate_room_code, is_valid_room_code, normalize_room_code
from app.modules.quiz.models import Answer, Player, Question, Room
from app.modules.quiz.patches import (
    AppendAnswer,
    IncrementScore,
    SetStatus,
    UpsertPlayer,
    apply_patch,
    apply_patches,
)
from app.modules.quiz.errors import PlayerNotFound
from app.modules.quiz.models import RoomStatus
from tests.helpers import make_questions


def make_room(**kwargs):
    params = dict(
        code="ABCDE",
        topic="Oceans",
        timer_seconds=30,
        questions=make_questions(3),
        host_id="ada",
        players={"ada": Player(id="ada", name="Ada")},
    )
    params.update(kwargs)
    return Room(**params)


class TestQuestion:
    def test_valid_question(self):
        q = Question(question="Largest ocean?", options=["Pacific", "Atlantic", "Indian", "Arctic"], correct_answer="Pacific")
        assert q.is_correct("Pacific")
        assert not q.is_correct("pacific")

    def test_correct_answer_must_be_an_option(self):
        with pytest.raises(ValidationError):
            Question(question="Q?", options=["A", "B", "C", "D"], correct_answer="E")

    def test_exactly_four_options(self):
        with pytest.raises(ValidationError):
            Question(question="Q?", options=["A", "B", "C"], correct_answer="A")

    def test_options_distinct(self):
        with pytest.raises(ValidationError):
            Question(question="Q?", options=["A", "A", "C", "D"], correct_answer="A")


class TestRoom:
    def test_room_needs_questions(self):
        with pytest.raises(ValidationError):
            make_room(questions=[])

    def test_leaderboard_sorted_by_score(self):
        room = make_room(
            players={
                "ada": Player(id="ada", name="Ada", score=10),
                "bo": Player(id="bo", name="Bo", score=30),
            }
        )
        assert [p.name for p in room.leaderboard()] == ["Bo", "Ada"]


class TestCodes:
    def test_generated_code_shape(self):
        for _ in range(50):
            code = generate_room_code()
            assert is_valid_room_code(code)
            assert code == code.upper()

    def test_normalize(self):
        assert normalize_room_code(" ab1cd ") == "AB1CD"


class TestPatches:
    def test_set_status(self):
        room = make_room()
        updated = apply_patch(room, SetStatus(status=RoomStatus.IN_PROGRESS))
        assert updated.status == RoomStatus.IN_PROGRESS
        assert room.status == RoomStatus.LOBBY

    def test_upsert_player_replaces_entry(self):
        room = make_room(
            players={
                "ada": Player(id="ada", name="Ada"),
                "bo": Player(
                    id="bo",
                    name="Bo",
                    score=10,
                    answers=[Answer(question_index=0, answer_text="A", is_correct=True)],
                ),
            }
        )
        updated = apply_patch(room, UpsertPlayer(player=Player(id="bo", name="Bo")))
        assert updated.players["bo"].score == 0
        assert updated.players["bo"].answers == []
        assert room.players["bo"].score == 10

    def test_answer_and_score_touch_only_one_player(self):
        room = make_room(
            players={"ada": Player(id="ada", name="Ada"), "bo": Player(id="bo", name="Bo")}
        )
        answer = Answer(question_index=0, answer_text="A", is_correct=True)
        updated = apply_patches(
            room,
            [
                AppendAnswer(player_id="bo", answer=answer),
                IncrementScore(player_id="bo", delta=10),
            ],
        )
        assert updated.players["bo"].answers == [answer]
        assert updated.players["bo"].score == 10
        assert updated.players["ada"] == room.players["ada"]

    def test_patch_for_unknown_player(self):
        with pytest.raises(PlayerNotFound):
            apply_patch(make_room(), IncrementScore(player_id="ghost", delta=10))
