"""Quiz question generator backed by pydantic-ai.

Provides ``AIQuestionGenerator.generate(topic, difficulty, num_questions)``,
which returns exactly ``num_questions`` validated questions or raises
``GenerationFailed``. Provider imports are kept lazy so the module loads
without credentials.
"""

from __future__ import annotations

from typing import Protocol

from pydantic import BaseModel, Field
from pydantic_ai import Agent

from app.core.config import settings
from app.core.logging import get_logger
from app.modules.quiz.errors import GenerationFailed
from app.modules.quiz.models import Difficulty, Question
from app.modules.quiz.state import ensure_well_formed

logger = get_logger(__name__)


class QuestionDraft(BaseModel):
    """A question as returned by the model, before validation."""

    question: str
    options: list[str] = Field(default_factory=list)
    correct_answer: str
    explanation: str = ""


class QuestionSet(BaseModel):
    """Structured output for MCQ generation."""

    questions: list[QuestionDraft] = Field(default_factory=list)


class QuestionGenerator(Protocol):
    async def generate(
        self, topic: str, difficulty: Difficulty, num_questions: int
    ) -> list[Question]: ...


def _build_google_model():
    """Build Google Gemini model for pydantic-ai (lazy import)."""
    from pydantic_ai.models.google import GoogleModel
    from pydantic_ai.providers.google import GoogleProvider

    provider = GoogleProvider(api_key=settings.gemini_api_key)
    return GoogleModel(settings.quiz_model_name, provider=provider)


def _build_openrouter_model():
    """Build OpenRouter model via OpenAI-compatible provider (lazy import)."""
    from pydantic_ai.models.openai import OpenAIChatModel
    from pydantic_ai.providers.openai import OpenAIProvider

    if not settings.openrouter_api_key:
        raise RuntimeError(
            "OpenRouter API key not configured. Set OPENROUTER_API_KEY in your environment."
        )

    provider = OpenAIProvider(
        api_key=settings.openrouter_api_key,
        base_url="https://openrouter.ai/api/v1",
    )
    return OpenAIChatModel(settings.openrouter_model, provider=provider)


def build_model_by_settings():
    provider = (settings.model_provider or "google").lower()
    if provider == "openrouter":
        return _build_openrouter_model()
    return _build_google_model()


SYSTEM_PROMPT = (
    "You are an expert quiz author. Generate high-quality MULTIPLE-CHOICE questions. "
    "Return a JSON object that validates as QuestionSet: {questions}. "
    "Each question has: {question, options, correct_answer, explanation}. Rules: "
    "- Create exactly N questions (provided in the instruction). "
    "- Each question must have EXACTLY 4 distinct, concise options (plain text). "
    "- correct_answer must be copied verbatim from one of the options. "
    "- explanation is one or two sentences on why the answer is correct. "
    "- Avoid markdown; do not include code fences."
)


def _build_instruction(topic: str, difficulty: Difficulty, n: int) -> str:
    return (
        "Create N multiple-choice questions for the topic below. "
        "Return only the JSON object.\n\n"
        f"Topic: {topic}\n"
        f"Difficulty: {Difficulty(difficulty).value}\n"
        f"N: {int(n)}"
    )


def normalize_questions(drafts: list[QuestionDraft], n: int) -> list[Question]:
    """Trim whitespace, keep the first ``n`` and validate them."""
    cleaned = []
    for d in drafts[:n]:
        cleaned.append(
            {
                "question": d.question.strip(),
                "options": [str(o).strip() for o in d.options],
                "correct_answer": d.correct_answer.strip(),
                "explanation": (d.explanation or "").strip(),
            }
        )
    if len(cleaned) < n:
        logger.warning(f"Model returned {len(cleaned)} of {n} requested questions")
        raise GenerationFailed()
    return ensure_well_formed(cleaned)


class AIQuestionGenerator:
    def __init__(self, *, model=None, retries: int = 2) -> None:
        # ``model`` may be a pydantic-ai model instance; built from settings when omitted
        self._model = model
        self._retries = retries

    def _agent(self) -> Agent[None, QuestionSet]:
        return Agent[None, QuestionSet](
            model=self._model or build_model_by_settings(),
            output_type=QuestionSet,
            system_prompt=SYSTEM_PROMPT,
            retries=self._retries,
        )

    async def generate(
        self, topic: str, difficulty: Difficulty, num_questions: int
    ) -> list[Question]:
        try:
            res = await self._agent().run(
                _build_instruction(topic, difficulty, num_questions)
            )
        except Exception as e:
            logger.exception(f"Question generation failed for topic '{topic}'")
            raise GenerationFailed() from e
        return normalize_questions(res.output.questions, num_questions)
