"""
Exact-set scoring of attempts.

A question is correct only when the chosen option set equals the correct
set, ignoring order. Unanswered questions count as incorrect. Scores are
re-computable at any time from the stored answers, the stored orders and the
quiz definition.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from qcm.assessments.models import Attempt, QuestionResult, Quiz, ScoreResult
from qcm.assessments.randomizer import AttemptRandomizer


def round_half_up(value: Decimal, places: int = 1) -> float:
    """Round to ``places`` decimals with halves rounded away from zero."""
    quantum = Decimal(1).scaleb(-places)
    return float(value.quantize(quantum, rounding=ROUND_HALF_UP))


def percentage(correct: int, total: int) -> float:
    """Percentage of ``correct`` out of ``total``, one decimal, 0.0 for an empty quiz."""
    if total == 0:
        return 0.0
    return round_half_up(Decimal(correct) * 100 / Decimal(total))


class ScoringEngine:
    """Scores attempts against their quiz."""

    def __init__(self, randomizer: Optional[AttemptRandomizer] = None):
        self.randomizer = randomizer or AttemptRandomizer()

    def score(self, attempt: Attempt, quiz: Quiz) -> ScoreResult:
        """
        Score an attempt.

        Args:
            attempt: Attempt with recorded answers and fixed orders
            quiz: Quiz the attempt belongs to

        Returns:
            The score, pass status and per-question results
        """
        view = self.randomizer.rebuild(quiz, attempt)

        results = []
        for presented in view.questions:
            chosen = attempt.selected_options(presented.position)
            correct = presented.correct_options
            results.append(QuestionResult(
                position=presented.position,
                question_index=presented.question_index,
                question_id=presented.question.id,
                prompt=presented.question.prompt,
                chosen=chosen,
                correct_options=correct,
                is_correct=chosen == correct,
                explanation=presented.question.explanation,
            ))

        correct_count = sum(1 for r in results if r.is_correct)
        score = percentage(correct_count, len(results))

        return ScoreResult(
            attempt_id=attempt.id,
            quiz_id=quiz.id,
            percentage=score,
            passed=score >= quiz.passing_score,
            correct_count=correct_count,
            total_questions=len(results),
            question_results=results,
        )
