"""
Guarded attempt mutation.

AttemptWriter is the common base of the components that change an attempt.
It serializes writers per attempt with a keyed lock, applies lazy expiry
before any change, and retries the read-modify-write cycle when the
repository reports a concurrent modification.
"""

import logging
from typing import Callable, Optional

from qcm.assessments.models import Attempt, Quiz
from qcm.assessments.repositories import AttemptRepository, QuizRepository
from qcm.assessments.time_limit import TimeLimitGuard
from qcm.common.error_handling import (
    ExpiredAttemptError,
    InvalidAttemptStateError,
    NoActiveAttemptError,
    QuizNotFoundError,
    StaleAttemptError,
)
from qcm.common.events import DomainEvent, EventDispatcher
from qcm.common.locking import KeyedLock
from qcm.common.logger import attempt_logger

logger = logging.getLogger(__name__)

Mutation = Callable[[Attempt, Quiz], Optional[DomainEvent]]

DEFAULT_SAVE_RETRIES = 3


class AttemptWriter:
    """Base class for components that mutate attempts."""

    def __init__(
        self,
        attempts: AttemptRepository,
        quizzes: QuizRepository,
        time_guard: TimeLimitGuard,
        dispatcher: Optional[EventDispatcher] = None,
        locks: Optional[KeyedLock] = None,
        max_retries: int = DEFAULT_SAVE_RETRIES
    ):
        self.attempts = attempts
        self.quizzes = quizzes
        self.time_guard = time_guard
        self.dispatcher = dispatcher or EventDispatcher()
        self.locks = locks or KeyedLock()
        self.max_retries = max_retries

    async def load_attempt(self, attempt_id: str) -> Attempt:
        attempt = await self.attempts.get_by_id(attempt_id)
        if attempt is None:
            raise NoActiveAttemptError(attempt_id)
        return attempt

    async def load_quiz(self, quiz_id: str) -> Quiz:
        quiz = await self.quizzes.get_by_id(quiz_id)
        if quiz is None:
            raise QuizNotFoundError(quiz_id)
        return quiz

    def publish(self, event: Optional[DomainEvent]) -> None:
        if event is not None:
            self.dispatcher.dispatch(event)

    async def refresh(self, attempt_id: str) -> Attempt:
        """
        Return the current state of an attempt, expiring it first if overdue.

        Raises:
            NoActiveAttemptError: If the attempt does not exist
        """
        async with self.locks.acquire(attempt_id):
            for retry in range(self.max_retries + 1):
                attempt = await self.load_attempt(attempt_id)
                try:
                    await self.time_guard.expire_if_due(attempt, self.attempts)
                    return attempt
                except StaleAttemptError:
                    if retry == self.max_retries:
                        raise
                    attempt_logger(logger, attempt).debug(
                        "Attempt changed while expiring, retrying", extra={"data": {"retry": retry + 1}}
                    )
        raise AssertionError("unreachable")

    async def mutate(self, attempt_id: str, operation: str, mutation: Mutation) -> Attempt:
        """
        Apply ``mutation`` to an in-progress attempt and persist it.

        The mutation receives a fresh copy of the attempt and its quiz and may
        raise to leave the stored attempt unchanged. It returns the event to
        publish once the write has succeeded.

        Args:
            attempt_id: Attempt to change
            operation: Operation name used in error messages
            mutation: Callable changing the attempt in place

        Returns:
            The persisted attempt

        Raises:
            NoActiveAttemptError: If the attempt does not exist
            InvalidAttemptStateError: If the attempt is already terminal
            ExpiredAttemptError: If the deadline passed; the attempt is
                persisted as Expired first
            StaleAttemptError: If concurrent writers won every retry
        """
        async with self.locks.acquire(attempt_id):
            for retry in range(self.max_retries + 1):
                attempt = await self.load_attempt(attempt_id)
                if attempt.is_terminal:
                    raise InvalidAttemptStateError(attempt.id, attempt.status.value, operation)

                try:
                    if await self.time_guard.expire_if_due(attempt, self.attempts):
                        raise ExpiredAttemptError(attempt.id, attempt.expires_at)

                    quiz = await self.load_quiz(attempt.quiz_id)
                    event = mutation(attempt, quiz)
                    await self.attempts.update(attempt)
                except StaleAttemptError:
                    if retry == self.max_retries:
                        raise
                    attempt_logger(logger, attempt).debug(
                        f"Attempt changed during {operation}, retrying", extra={"data": {"retry": retry + 1}}
                    )
                    continue

                self.publish(event)
                return attempt
        raise AssertionError("unreachable")

