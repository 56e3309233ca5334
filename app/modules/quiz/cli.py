from __future__ import annotations

import argparse
import asyncio
import json

from app.modules.quiz.errors import GenerationFailed
from app.modules.quiz.generator import AIQuestionGenerator
from app.modules.quiz.models import Difficulty


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="quiz-gen", description="Quiz question generator CLI"
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    g = sub.add_parser("generate", help="Generate a question set for a topic")
    g.add_argument("--topic", "-t", required=True, help="Quiz topic")
    g.add_argument(
        "--difficulty",
        "-d",
        choices=[d.value for d in Difficulty],
        default=Difficulty.MEDIUM.value,
    )
    g.add_argument("-n", "--num-questions", type=int, default=5)

    args = parser.parse_args(argv)

    if args.cmd == "generate":
        generator = AIQuestionGenerator()
        try:
            questions = asyncio.run(
                generator.generate(args.topic, Difficulty(args.difficulty), args.num_questions)
            )
        except GenerationFailed as e:
            raise SystemExit(str(e))
        print(
            json.dumps(
                [q.model_dump() for q in questions], ensure_ascii=False, indent=2
            )
        )
        return 0

    parser.print_help()
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
