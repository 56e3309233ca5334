import asyncio

import pytest

from app.modules.quiz.errors import ConnectionFailed
from app.modules.quiz.models import NO_ANSWER, Answer, Difficulty, Player, Room, RoomStatus
from app.modules.quiz.session import (
    ROOM_REMOVED_MESSAGE,
    CreateRoom,
    EnterRoom,
    JoinRoom,
    OpenCreate,
    OpenJoin,
    RequestSummary,
    ReturnHome,
    SelectAnswer,
    SessionController,
    SessionState,
    StartQuiz,
    SubmitAnswer,
    SubmitAnswerEffect,
    Tick,
    View,
    apply_removed,
    apply_snapshot,
    enter_room,
    submit_answer,
    tick,
)
from app.modules.quiz.state import RoomStateMachine
from app.modules.quiz.store import InMemoryRoomStore
from tests.helpers import FakeGenerator, FakeSummarizer, create_room, make_questions


def make_room(status=RoomStatus.LOBBY, code="ABCDE", n=3, timer=30):
    return Room(
        code=code,
        topic="Oceans",
        timer_seconds=timer,
        questions=make_questions(n),
        host_id="ada",
        status=status,
        players={"ada": Player(id="ada", name="Ada"), "bo": Player(id="bo", name="Bo")},
    )


def in_quiz(n=3, timer=30):
    state = SessionState(participant_id="bo")
    state = enter_room(state, make_room(n=n, timer=timer), is_host=False)
    return apply_snapshot(state, make_room(RoomStatus.IN_PROGRESS, n=n, timer=timer))


class TestReducers:
    def test_enter_lobby(self):
        state = enter_room(SessionState(participant_id="bo"), make_room(), is_host=False)
        assert state.view == View.LOBBY
        assert state.room_code == "ABCDE"
        assert not state.is_host

    def test_start_snapshot_opens_first_question(self):
        state = in_quiz(timer=20)
        assert state.view == View.QUIZ
        assert state.current_question_index == 0
        assert state.time_left == 20

    def test_snapshot_for_another_room_is_ignored(self):
        state = enter_room(SessionState(participant_id="bo"), make_room(), is_host=False)
        other = make_room(RoomStatus.IN_PROGRESS, code="OTHER")
        assert apply_snapshot(state, other) == state

    def test_snapshot_does_not_reset_progress(self):
        state, _ = submit_answer(in_quiz(), "A")
        state = apply_snapshot(state, make_room(RoomStatus.IN_PROGRESS))
        assert state.current_question_index == 1

    def test_finished_snapshot_shows_results(self):
        state = apply_snapshot(in_quiz(), make_room(RoomStatus.FINISHED))
        assert state.view == View.RESULTS
        assert state.finished

    def test_submit_advances_and_emits_effect(self):
        state, effects = submit_answer(in_quiz(timer=15), "A")
        assert state.current_question_index == 1
        assert state.time_left == 15
        assert state.local_answers[0].is_correct
        assert effects == (SubmitAnswerEffect(code="ABCDE", question_index=0, answer_text="A"),)

    def test_submit_without_selection_does_nothing(self):
        state = in_quiz()
        assert submit_answer(state) == (state, ())

    def test_submit_last_question_finishes(self):
        state, effects = submit_answer(in_quiz(n=1), "B")
        assert state.view == View.RESULTS
        assert state.submitted
        assert state.finished
        assert len(effects) == 1

        # further submissions are ignored
        assert submit_answer(state, "A") == (state, ())

    def test_tick_counts_down(self):
        state, effects = tick(in_quiz(timer=5))
        assert state.time_left == 4
        assert effects == ()

    def test_tick_at_one_submits_no_answer(self):
        state = in_quiz(timer=1)
        state, effects = tick(state)
        assert effects[0].answer_text == NO_ANSWER
        assert not state.local_answers[0].is_correct
        assert state.current_question_index == 1

    def test_tick_outside_quiz_is_ignored(self):
        state = enter_room(SessionState(participant_id="bo"), make_room(), is_host=False)
        assert tick(state) == (state, ())

    def test_removed_room_returns_home(self):
        state = apply_removed(in_quiz(), "ABCDE")
        assert state.view == View.HOME
        assert state.room is None
        assert state.error == ROOM_REMOVED_MESSAGE
        assert state.participant_id == "bo"

    def test_reconnect_resumes_at_first_unanswered_question(self):
        room = make_room(RoomStatus.IN_PROGRESS, timer=25)
        room.players["bo"].answers.append(
            Answer(question_index=0, answer_text="A", is_correct=True)
        )
        state = enter_room(SessionState(participant_id="bo"), room, is_host=False)

        assert state.view == View.QUIZ
        assert state.current_question_index == 1
        assert state.time_left == 25
        assert [a.question_index for a in state.local_answers] == [0]

    def test_reconnect_after_last_answer_shows_results(self):
        room = make_room(RoomStatus.IN_PROGRESS, n=1)
        room.players["bo"].answers.append(
            Answer(question_index=0, answer_text="B", is_correct=False)
        )
        state = enter_room(SessionState(participant_id="bo"), room, is_host=False)

        assert state.view == View.RESULTS
        assert state.submitted
        assert len(state.local_answers) == 1


@pytest.fixture
def generator():
    return FakeGenerator()


def controller(machine, pid, **kwargs):
    return SessionController(pid, machine, **kwargs)


async def test_host_creates_room(machine, generator):
    host = controller(machine, "ada-id", generator=generator)
    host.post(OpenCreate())
    host.post(CreateRoom(topic="Oceans", host_name="Ada", difficulty=Difficulty.EASY, num_questions=3))
    state = await host.drain()

    assert generator.calls == [("Oceans", Difficulty.EASY, 3)]
    assert state.view == View.LOBBY
    assert state.is_host
    assert list(state.room.players) == ["ada-id"]


async def test_create_failure_keeps_form(machine):
    host = controller(machine, "ada-id", generator=FakeGenerator(fail=True))
    host.post(OpenCreate())
    host.post(CreateRoom(topic="Oceans", host_name="Ada"))
    state = await host.drain()

    assert state.view == View.CREATE
    assert "correct format" in state.error


async def test_join_unknown_room_stays_on_join_form(machine):
    player = controller(machine, "bo-id")
    player.post(OpenJoin())
    player.post(JoinRoom(code="zzzzz", name="Bo"))
    state = await player.drain()

    assert state.view == View.JOIN
    assert state.error == "Room not found. Please check the code."


async def test_full_game(machine):
    code = await create_room(machine, timer_seconds=2)
    host = controller(machine, "ada-id")
    player = controller(machine, "bo-id")

    host.post(EnterRoom(code))
    player.post(JoinRoom(code=code.lower(), name="Bo"))
    await host.drain()
    state = await player.drain()
    assert state.view == View.LOBBY
    assert set(state.room.players) == {"ada-id", "bo-id"}

    # the host sees the player arrive
    assert set((await host.drain()).room.players) == {"ada-id", "bo-id"}

    host.post(StartQuiz())
    await host.drain()
    state = await player.drain()
    assert state.view == View.QUIZ
    assert state.current_question_index == 0
    assert host.state.view == View.QUIZ

    player.post(SelectAnswer("A"))
    player.post(SubmitAnswer())
    state = await player.drain()
    assert state.current_question_index == 1
    assert state.room.players["bo-id"].score == 10
    assert [a.is_correct for a in state.room.players["bo-id"].answers] == [True]

    player.post(SubmitAnswer("C"))
    await player.drain()

    # countdown runs out on the last question
    player.post(Tick())
    player.post(Tick())
    state = await player.drain()
    assert state.view == View.RESULTS
    assert state.room.status == RoomStatus.FINISHED
    last = state.room.players["bo-id"].answers[-1]
    assert last.answer_text == NO_ANSWER
    assert not last.is_correct

    # the host is pulled into results by the snapshot
    assert (await host.drain()).view == View.RESULTS


async def test_only_host_can_start(machine):
    code = await create_room(machine)
    player = controller(machine, "bo-id")
    player.post(JoinRoom(code=code, name="Bo"))
    player.post(StartQuiz())
    state = await player.drain()

    assert state.error == "Only the host can start the quiz."
    assert (await machine.get_room(code)).status == RoomStatus.LOBBY


async def test_join_started_room_is_rejected(machine):
    code = await create_room(machine)
    await machine.start_quiz(code)
    player = controller(machine, "bo-id")
    player.post(OpenJoin())
    player.post(JoinRoom(code=code, name="Bo"))
    state = await player.drain()

    assert state.view == View.JOIN
    assert state.error == "This quiz is already in progress or has finished."


async def test_room_removed_returns_home(machine):
    code = await create_room(machine)
    host = controller(machine, "ada-id")
    host.post(EnterRoom(code))
    await host.drain()

    await machine.store.delete_room(code)
    state = await host.drain()
    assert state.view == View.HOME
    assert state.error == ROOM_REMOVED_MESSAGE


async def test_return_home_stops_updates(machine):
    code = await create_room(machine)
    host = controller(machine, "ada-id")
    host.post(EnterRoom(code))
    host.post(ReturnHome())
    await host.drain()

    await machine.start_quiz(code)
    state = await host.drain()
    assert state.view == View.HOME
    assert machine.store.subscriber_count(code) == 0


async def test_summary_request(machine):
    code = await create_room(machine, questions=make_questions(1))
    summarizer = FakeSummarizer("Well done, Ada.")
    host = controller(machine, "ada-id", summarizer=summarizer)
    host.post(EnterRoom(code))
    await host.drain()
    await machine.start_quiz(code)
    host.post(SubmitAnswer("A"))
    host.post(RequestSummary())
    state = await host.drain()

    assert state.view == View.RESULTS
    assert state.summary == "Well done, Ada."


async def test_run_loop_times_out_unanswered_questions(machine):
    code = await create_room(machine, questions=make_questions(2), timer_seconds=1)
    done = asyncio.Event()
    seen = []

    async def on_state(state):
        seen.append(state.view)
        if state.view == View.RESULTS:
            done.set()

    host = SessionController("ada-id", machine, on_state=on_state, tick_seconds=0.01)
    runner = asyncio.create_task(host.run())
    try:
        host.post(EnterRoom(code))
        host.post(StartQuiz())
        await asyncio.wait_for(done.wait(), timeout=5)
    finally:
        runner.cancel()
        await asyncio.gather(runner, return_exceptions=True)
        await host.close()

    assert View.QUIZ in seen
    answers = (await machine.get_room(code)).players["ada-id"].answers
    assert [a.answer_text for a in answers] == [NO_ANSWER, NO_ANSWER]


async def wait_until(predicate, timeout=5):
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout=timeout)


async def test_too_many_questions_skips_generation(machine, generator):
    host = controller(machine, "ada-id", generator=generator)
    host.post(OpenCreate())
    host.post(CreateRoom(topic="Oceans", host_name="Ada", num_questions=50))
    state = await host.drain()

    assert generator.calls == []
    assert state.view == View.CREATE
    assert state.error == "The number of questions must be between 1 and 20."


async def test_reconnect_resumes_quiz(machine):
    code = await create_room(machine)
    await machine.join_room(code, participant_id="bo-id", name="Bo")
    await machine.start_quiz(code)
    await machine.submit_answer(code, participant_id="bo-id", question_index=0, answer_text="A")

    player = controller(machine, "bo-id")
    player.post(EnterRoom(code))
    state = await player.drain()
    assert state.view == View.QUIZ
    assert state.current_question_index == 1
    assert len(state.local_answers) == 1

    player.post(SubmitAnswer("A"))
    state = await player.drain()
    assert state.error is None
    assert state.current_question_index == 2
    answers = (await machine.get_room(code)).players["bo-id"].answers
    assert [a.question_index for a in answers] == [0, 1]


class FlakyStore(InMemoryRoomStore):
    def __init__(self):
        super().__init__(ttl_seconds=3600)
        self.down = False

    async def apply_patch(self, code, patches):
        if self.down:
            raise ConnectionFailed()
        await super().apply_patch(code, patches)


async def test_failed_submission_keeps_question_open():
    machine = RoomStateMachine(FlakyStore())
    code = await create_room(machine)
    await machine.start_quiz(code)
    host = controller(machine, "ada-id")
    host.post(EnterRoom(code))
    await host.drain()

    machine.store.down = True
    host.post(SelectAnswer("B"))
    host.post(SubmitAnswer())
    state = await host.drain()
    assert state.error == "Could not connect to the service."
    assert state.current_question_index == 0
    assert state.selected_answer == "B"
    assert state.local_answers == ()

    machine.store.down = False
    host.post(SubmitAnswer())
    state = await host.drain()
    assert state.current_question_index == 1
    assert [a.answer_text for a in state.local_answers] == ["B"]


async def test_countdown_restarts_for_each_question(machine):
    code = await create_room(machine, timer_seconds=30)
    await machine.start_quiz(code)
    host = SessionController("ada-id", machine, tick_seconds=60)
    runner = asyncio.create_task(host.run())
    try:
        host.post(EnterRoom(code))
        await wait_until(lambda: host.state.view == View.QUIZ)
        stale = host.countdown

        host.post(SubmitAnswer("A"))
        await wait_until(lambda: host.state.current_question_index == 1)
        assert host.countdown != stale

        host.post(Tick(stale))
        host.post(Tick(host.countdown))
        await wait_until(lambda: host.state.time_left != 30)
        assert host.state.time_left == 29
    finally:
        runner.cancel()
        await asyncio.gather(runner, return_exceptions=True)
        await host.close()
