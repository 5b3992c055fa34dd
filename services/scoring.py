from dataclasses import dataclass
from typing import Iterable, Protocol


class ScoredAnswer(Protocol):
    is_correct: bool
    points_earned: int


@dataclass(frozen=True)
class ScoreResult:
    correct_answers: int
    total_points: int
    percent_score: int


def percent_score(correct_answers: int, total_questions: int) -> int:
    """Round-half-up percentage, in integer arithmetic to avoid float drift."""
    if total_questions <= 0:
        raise ValueError("total_questions must be positive")
    return (correct_answers * 200 + total_questions) // (2 * total_questions)


def is_answer_correct(user_answer: str, correct_answer: str) -> bool:
    # Exact, case-sensitive match after trimming surrounding whitespace
    if user_answer is None:
        return False
    return user_answer.strip() == correct_answer.strip()


def score_attempt(total_questions: int, question_attempts: Iterable[ScoredAnswer]) -> ScoreResult:
    """
    Score an attempt from its persisted question records.

    Pure and deterministic: the same records always give the same result,
    no matter when finalize runs or how many times it is replayed.
    """
    correct_answers = 0
    total_points = 0
    for qa in question_attempts:
        if qa.is_correct:
            correct_answers += 1
        total_points += qa.points_earned

    if correct_answers > total_questions:
        raise ValueError(
            f"correct_answers ({correct_answers}) exceeds total_questions ({total_questions})"
        )

    return ScoreResult(
        correct_answers=correct_answers,
        total_points=total_points,
        percent_score=percent_score(correct_answers, total_questions),
    )
