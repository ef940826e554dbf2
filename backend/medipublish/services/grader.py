# backend/medipublish/services/grader.py

from dataclasses import dataclass
from typing import Any, Sequence

from medipublish.errors import GradingConfigurationError


@dataclass(frozen=True)
class GradingResult:
    correct_answers: int
    total_questions: int
    score: int
    passing_score: int
    passed: bool


def _is_answer_index(value: Any) -> bool:
    # bool is an int subclass; True must not match option 1
    return isinstance(value, int) and not isinstance(value, bool)


def percentage_score(correct: int, total: int) -> int:
    """round(correct / total * 100), rounding halves up."""
    return (200 * correct + total) // (2 * total)


def grade(activity: Any, answers: Sequence[Any]) -> GradingResult:
    """
    Score submitted answers against an activity's question bank.

    answers[i] is compared with questions[i].correct_answer. Missing,
    non-integer and out-of-range entries simply count as wrong; extra
    entries are ignored.
    """
    questions = getattr(activity, "questions", None)
    if not questions:
        raise GradingConfigurationError(
            f"Activity {getattr(activity, 'id', None)} has no question bank."
        )

    passing_score = getattr(activity, "passing_score", None)
    if passing_score is None:
        raise GradingConfigurationError(
            f"Activity {getattr(activity, 'id', None)} has no passing score."
        )

    answers = list(answers or [])
    correct = 0
    for index, question in enumerate(questions):
        if index >= len(answers):
            break
        answer = answers[index]
        if _is_answer_index(answer) and answer == question.correct_answer:
            correct += 1

    total = len(questions)
    score = percentage_score(correct, total)

    return GradingResult(
        correct_answers=correct,
        total_questions=total,
        score=score,
        passing_score=int(passing_score),
        passed=score >= passing_score,
    )
