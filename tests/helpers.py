from app.modules.quiz.errors import GenerationFailed
from app.modules.quiz.models import Difficulty, Question
from app.modules.quiz.summarizer import PerformanceSummarizer


def make_questions(n=3):
    return [
        Question(
            question=f"Question {i + 1}?",
            options=["A", "B", "C", "D"],
            correct_answer="A",
            explanation=f"A is right for question {i + 1}.",
        )
        for i in range(n)
    ]


class FakeGenerator:
    """Stands in for the LLM question generator."""

    def __init__(self, questions=None, fail=False):
        self.questions = questions
        self.fail = fail
        self.calls = []

    async def generate(self, topic, difficulty, num_questions):
        self.calls.append((topic, Difficulty(difficulty), num_questions))
        if self.fail:
            raise GenerationFailed()
        if self.questions is not None:
            return self.questions
        return make_questions(num_questions)


class FakeSummarizer(PerformanceSummarizer):
    def __init__(self, text="Great job!", fail=False):
        super().__init__()
        self.text = text
        self.fail = fail
        self.prompts = []

    async def _complete(self, prompt):
        self.prompts.append(prompt)
        if self.fail:
            raise RuntimeError("model unavailable")
        return self.text


async def create_room(machine, questions=None, host_id="ada-id", host_name="Ada", **kwargs):
    params = dict(topic="Oceans", difficulty=Difficulty.MEDIUM, timer_seconds=30)
    params.update(kwargs)
    return await machine.create_room(
        questions=questions if questions is not None else make_questions(3),
        host_id=host_id,
        host_name=host_name,
        **params,
    )
