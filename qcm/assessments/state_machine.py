"""
Attempt lifecycle.

    NotStarted -> InProgress -> Submitted | Abandoned | Expired

Creation is serialized per (student, quiz) pair and backed by the
repository's atomic ``create_active``. Every other transition goes through
AttemptWriter, which serializes it per attempt and applies lazy expiry.
"""

import uuid
import logging
from typing import Callable, Optional, Tuple

from qcm.assessments.ledger import AttemptLedger
from qcm.assessments.models import Attempt, AttemptStatus, Quiz, ScoreResult
from qcm.assessments.randomizer import AttemptRandomizer
from qcm.assessments.scoring import ScoringEngine
from qcm.assessments.writer import AttemptWriter
from qcm.common.error_handling import (
    AttemptLimitExceededError,
    ConflictError,
    InvalidAttemptStateError,
    StaleAttemptError,
)
from qcm.common.events import (
    AttemptAbandonedEvent,
    AttemptStartedEvent,
    AttemptSubmittedEvent,
)
from qcm.common.logger import attempt_logger, log_execution_time

logger = logging.getLogger(__name__)


def _new_attempt_id() -> str:
    return str(uuid.uuid4())


class AttemptStateMachine(AttemptWriter):
    """Creates attempts and drives them to a terminal status."""

    def __init__(
        self,
        *args,
        ledger: Optional[AttemptLedger] = None,
        randomizer: Optional[AttemptRandomizer] = None,
        scoring: Optional[ScoringEngine] = None,
        id_factory: Callable[[], str] = _new_attempt_id,
        **kwargs
    ):
        super().__init__(*args, **kwargs)
        self.randomizer = randomizer or AttemptRandomizer()
        self.scoring = scoring or ScoringEngine(self.randomizer)
        self.ledger = ledger or AttemptLedger(self.attempts, self.time_guard)
        self.id_factory = id_factory

    @staticmethod
    def _pair_key(student_id: str, quiz_id: str) -> str:
        return f"{student_id}:{quiz_id}"

    async def create(self, student_id: str, quiz: Quiz) -> Attempt:
        """
        Start a new attempt.

        Args:
            student_id: The student
            quiz: The quiz to attempt

        Returns:
            The new in-progress attempt

        Raises:
            InvalidAttemptStateError: If an attempt is already in progress
            AttemptLimitExceededError: If every allowed attempt has been used
        """
        async with self.locks.acquire(self._pair_key(student_id, quiz.id)):
            active = await self._active_attempt(student_id, quiz.id)
            if active is not None:
                raise InvalidAttemptStateError(active.id, active.status.value, "start a new attempt alongside")
            return await self._create(student_id, quiz)

    async def resume(self, student_id: str, quiz: Quiz) -> Attempt:
        """
        Return the in-progress attempt, creating one if none exists.

        Raises:
            AttemptLimitExceededError: If no attempt is in progress and every
                allowed attempt has been used
        """
        async with self.locks.acquire(self._pair_key(student_id, quiz.id)):
            active = await self._active_attempt(student_id, quiz.id)
            if active is not None:
                return active
            return await self._create(student_id, quiz)

    async def _active_attempt(self, student_id: str, quiz_id: str) -> Optional[Attempt]:
        current = await self.attempts.find_in_progress(student_id, quiz_id)
        if current is None:
            return None
        current = await self.refresh(current.id)
        return current if current.is_in_progress else None

    @log_execution_time(logger)
    async def _create(self, student_id: str, quiz: Quiz) -> Attempt:
        if not await self.ledger.can_attempt(student_id, quiz):
            raise AttemptLimitExceededError(student_id, quiz.id, quiz.max_attempts)

        attempt_id = self.id_factory()
        view = self.randomizer.materialize(quiz, attempt_id)
        started_at = self.time_guard.now()

        attempt = Attempt(
            id=attempt_id,
            quiz_id=quiz.id,
            student_id=student_id,
            attempt_number=await self.ledger.next_attempt_number(student_id, quiz.id),
            status=AttemptStatus.IN_PROGRESS,
            started_at=started_at,
            expires_at=self.time_guard.deadline(quiz, started_at),
            randomized_question_order=view.question_order,
            option_orders=view.option_orders(),
        )

        try:
            await self.attempts.create_active(attempt)
        except ConflictError as e:
            # Another process created an attempt for the same pair first
            raise InvalidAttemptStateError(
                attempt.id, AttemptStatus.IN_PROGRESS.value, "create", cause=e
            )

        attempt_logger(logger, attempt).info(
            f"Started attempt {attempt.attempt_number} of student {student_id} on quiz {quiz.id}"
        )
        self.publish(AttemptStartedEvent(
            attempt.id, student_id, quiz.id,
            attempt_number=attempt.attempt_number, expires_at=attempt.expires_at
        ))
        return attempt

    async def submit(self, attempt_id: str) -> Tuple[Attempt, ScoreResult]:
        """
        Score and close an attempt.

        Returns:
            The submitted attempt and its score

        Raises:
            NoActiveAttemptError: If the attempt does not exist
            InvalidAttemptStateError: If the attempt is already terminal
            ExpiredAttemptError: If the deadline passed; the attempt is
                persisted as Expired without a score
        """
        outcome = {}

        def close(attempt: Attempt, quiz: Quiz) -> AttemptSubmittedEvent:
            result = self.scoring.score(attempt, quiz)
            now = self.time_guard.now()
            attempt.status = AttemptStatus.SUBMITTED
            attempt.submitted_at = now
            attempt.ended_at = now
            attempt.score = result.percentage
            attempt.passed = result.passed
            attempt.question_results = [r.is_correct for r in result.question_results]
            attempt.time_spent_seconds = self.time_guard.elapsed_seconds(attempt, now)
            outcome["result"] = result
            return AttemptSubmittedEvent(
                attempt.id, attempt.student_id, attempt.quiz_id,
                score=result.percentage, passed=result.passed
            )

        attempt = await self._transition(attempt_id, "submit", close)
        return attempt, outcome["result"]

    async def abandon(self, attempt_id: str) -> Attempt:
        """
        Give up an attempt. No score is recorded.

        Raises:
            NoActiveAttemptError: If the attempt does not exist
            InvalidAttemptStateError: If the attempt is already terminal
            ExpiredAttemptError: If the deadline passed first
        """
        def close(attempt: Attempt, quiz: Quiz) -> AttemptAbandonedEvent:
            now = self.time_guard.now()
            attempt.status = AttemptStatus.ABANDONED
            attempt.ended_at = now
            attempt.time_spent_seconds = self.time_guard.elapsed_seconds(attempt, now)
            return AttemptAbandonedEvent(attempt.id, attempt.student_id, attempt.quiz_id)

        return await self._transition(attempt_id, "abandon", close)

    async def expire(self, attempt_id: str) -> Attempt:
        """
        Expire an overdue in-progress attempt.

        An attempt whose deadline has not passed is returned unchanged.

        Raises:
            NoActiveAttemptError: If the attempt does not exist
            InvalidAttemptStateError: If the attempt is already terminal
        """
        async with self.locks.acquire(attempt_id):
            for retry in range(self.max_retries + 1):
                attempt = await self.load_attempt(attempt_id)
                if attempt.is_terminal:
                    raise InvalidAttemptStateError(attempt.id, attempt.status.value, "expire")
                try:
                    await self.time_guard.expire_if_due(attempt, self.attempts)
                    return attempt
                except StaleAttemptError:
                    if retry == self.max_retries:
                        raise
        raise AssertionError("unreachable")

    async def _transition(self, attempt_id, operation, close) -> Attempt:
        try:
            return await self.mutate(attempt_id, operation, close)
        except StaleAttemptError as e:
            # Lost every retry to concurrent writers
            raise InvalidAttemptStateError(attempt_id, "unknown", operation, cause=e)
