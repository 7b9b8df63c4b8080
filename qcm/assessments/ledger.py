"""
Cross-attempt bookkeeping.

The ledger answers questions about all of a student's attempts on a quiz:
whether another attempt may start, how many remain, the best score and the
pass status. It also aggregates quiz-wide statistics over submitted attempts.
"""

from decimal import Decimal
from typing import Dict, List, Optional

from qcm.assessments.models import (
    UNLIMITED,
    Attempt,
    AttemptStatus,
    Limit,
    QuestionStatistics,
    Quiz,
    QuizStatistics,
)
from qcm.assessments.repositories import AttemptRepository
from qcm.assessments.scoring import percentage, round_half_up
from qcm.assessments.time_limit import TimeLimitGuard


class AttemptLedger:
    """
    Read-only view over a student's attempts.

    An in-progress attempt past its deadline is counted as expired even
    before lazy expiry has persisted it.
    """

    def __init__(self, attempts: AttemptRepository, time_guard: Optional[TimeLimitGuard] = None):
        self.attempts_repository = attempts
        self.time_guard = time_guard or TimeLimitGuard()

    def _is_active(self, attempt: Attempt) -> bool:
        return attempt.is_in_progress and not self.time_guard.is_expired(attempt)

    async def attempts(self, student_id: str, quiz_id: str) -> List[Attempt]:
        """All attempts of a student on a quiz, ordered by attempt number."""
        return await self.attempts_repository.list_for_student(student_id, quiz_id)

    async def latest_attempt(self, student_id: str, quiz_id: str) -> Optional[Attempt]:
        attempts = await self.attempts(student_id, quiz_id)
        return attempts[-1] if attempts else None

    async def next_attempt_number(self, student_id: str, quiz_id: str) -> int:
        latest = await self.latest_attempt(student_id, quiz_id)
        return latest.attempt_number + 1 if latest else 1

    async def terminal_count(self, student_id: str, quiz_id: str) -> int:
        attempts = await self.attempts(student_id, quiz_id)
        return sum(1 for a in attempts if not self._is_active(a))

    async def has_active_attempt(self, student_id: str, quiz_id: str) -> bool:
        attempts = await self.attempts(student_id, quiz_id)
        return any(self._is_active(a) for a in attempts)

    async def can_attempt(self, student_id: str, quiz: Quiz) -> bool:
        """
        Whether the student may start a new attempt.

        True iff no attempt is in progress and fewer than ``max_attempts``
        attempts have ended (always, when attempts are unlimited).
        """
        attempts = await self.attempts(student_id, quiz.id)
        if any(self._is_active(a) for a in attempts):
            return False
        if quiz.max_attempts is None:
            return True
        return len(attempts) < quiz.max_attempts

    async def remaining_attempts(self, student_id: str, quiz: Quiz) -> Limit:
        if quiz.max_attempts is None:
            return UNLIMITED
        used = await self.terminal_count(student_id, quiz.id)
        return max(0, quiz.max_attempts - used)

    async def best_score(self, student_id: str, quiz_id: str) -> Optional[float]:
        scores = [
            a.score for a in await self.attempts(student_id, quiz_id)
            if a.status is AttemptStatus.SUBMITTED and a.score is not None
        ]
        return max(scores) if scores else None

    async def has_passed(self, student_id: str, quiz: Quiz) -> bool:
        # Compared against the current passing score, not the stored flag
        return any(
            a.status is AttemptStatus.SUBMITTED and a.score is not None
            and a.score >= quiz.passing_score
            for a in await self.attempts(student_id, quiz.id)
        )

    async def _submitted(self, quiz_id: str) -> List[Attempt]:
        return [
            a for a in await self.attempts_repository.list_for_quiz(quiz_id)
            if a.status is AttemptStatus.SUBMITTED
        ]

    async def quiz_statistics(self, quiz: Quiz) -> QuizStatistics:
        """
        Aggregate scores and time spent over every submitted attempt of a quiz.

        Args:
            quiz: The quiz

        Returns:
            Statistics; averages and extremes are None without submissions
        """
        submitted = await self._submitted(quiz.id)
        scores = [a.score for a in submitted if a.score is not None]
        times = [a.time_spent_seconds for a in submitted if a.time_spent_seconds is not None]

        return QuizStatistics(
            quiz_id=quiz.id,
            total_students=len({a.student_id for a in submitted}),
            total_attempts=len(submitted),
            average_score=_average(scores),
            max_score=max(scores) if scores else None,
            min_score=min(scores) if scores else None,
            average_time_spent_seconds=_average(times),
            passed_count=sum(1 for s in scores if s >= quiz.passing_score),
        )

    async def question_statistics(self, quiz: Quiz) -> List[QuestionStatistics]:
        """
        Success rate of every question of a quiz over submitted attempts.

        Args:
            quiz: The quiz

        Returns:
            One entry per question, in quiz order
        """
        totals: Dict[int, int] = {i: 0 for i in range(quiz.question_count)}
        correct: Dict[int, int] = {i: 0 for i in range(quiz.question_count)}

        for attempt in await self._submitted(quiz.id):
            results = attempt.question_results or []
            for position, question_index in enumerate(attempt.randomized_question_order):
                if question_index not in totals:
                    continue
                totals[question_index] += 1
                if position < len(results) and results[position]:
                    correct[question_index] += 1

        return [
            QuestionStatistics(
                question_index=i,
                question_id=question.id,
                total_attempts=totals[i],
                correct_answers=correct[i],
                success_rate=percentage(correct[i], totals[i]),
            )
            for i, question in enumerate(quiz.questions)
        ]


def _average(values) -> Optional[float]:
    if not values:
        return None
    return round_half_up(sum(Decimal(str(v)) for v in values) / len(values))
