"""
Server-side time limit enforcement.

Remaining time is always derived from the server-recorded ``started_at`` and
``expires_at``. Expiry is pull-based: an overdue in-progress attempt is
switched to Expired the next time anything reads or acts on it.
"""

import math
import datetime
import logging
from typing import Callable, Optional

from qcm.assessments.models import (
    UNLIMITED,
    Attempt,
    AttemptStatus,
    Limit,
    Quiz,
    RemainingTime,
)
from qcm.assessments.repositories import AttemptRepository
from qcm.common.events import AttemptExpiredEvent, EventDispatcher
from qcm.common.logger import attempt_logger

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime.datetime]


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class TimeLimitGuard:
    """Computes deadlines and remaining time, and applies lazy expiry."""

    def __init__(self, clock: Clock = utc_now, dispatcher: Optional[EventDispatcher] = None):
        self.clock = clock
        self.dispatcher = dispatcher

    def now(self) -> datetime.datetime:
        return self.clock()

    @staticmethod
    def deadline(quiz: Quiz, started_at: datetime.datetime) -> Optional[datetime.datetime]:
        """Return ``started_at`` plus the quiz time limit, or None when unlimited."""
        limit = quiz.time_limit
        return started_at + limit if limit is not None else None

    def remaining(self, attempt: Attempt) -> Limit:
        """
        Seconds left on the attempt, rounded up, never negative.

        Returns UNLIMITED when the attempt has no deadline. The clock of a
        terminal attempt stops when it ended, so a submitted or abandoned
        attempt keeps the time it had left and an expired one reads 0.
        """
        if attempt.expires_at is None:
            return UNLIMITED

        reference = self.now()
        if attempt.is_terminal and attempt.ended_at is not None:
            reference = attempt.ended_at

        left = (attempt.expires_at - reference).total_seconds()
        return max(0, math.ceil(left))

    def is_expired(self, attempt: Attempt) -> bool:
        """True exactly when the attempt has a deadline and no time remains."""
        return attempt.expires_at is not None and self.remaining(attempt) == 0

    def snapshot(self, attempt: Attempt) -> RemainingTime:
        return RemainingTime(seconds=self.remaining(attempt), expired=self.is_expired(attempt))

    def elapsed_seconds(self, attempt: Attempt, until: datetime.datetime) -> int:
        """Whole seconds between the start of the attempt and ``until``."""
        return max(0, int((until - attempt.started_at).total_seconds()))

    def apply_expiry(self, attempt: Attempt) -> bool:
        """
        Switch an overdue in-progress attempt to Expired, in place.

        The attempt ends at its deadline, so the recorded time spent never
        exceeds the time limit.

        Returns:
            True if the attempt was changed
        """
        if not attempt.is_in_progress or not self.is_expired(attempt):
            return False

        attempt.status = AttemptStatus.EXPIRED
        attempt.ended_at = attempt.expires_at
        attempt.time_spent_seconds = self.elapsed_seconds(attempt, attempt.expires_at)
        return True

    async def expire_if_due(self, attempt: Attempt, repository: AttemptRepository) -> bool:
        """
        Apply lazy expiry and persist it.

        Args:
            attempt: Attempt read from ``repository``
            repository: Store to write the expired attempt to

        Returns:
            True if the attempt was expired by this call

        Raises:
            StaleAttemptError: If the attempt changed since it was read
        """
        if not self.apply_expiry(attempt):
            return False

        await repository.update(attempt)
        attempt_logger(logger, attempt).debug(f"Attempt expired at {attempt.expires_at.isoformat()}")
        if self.dispatcher is not None:
            self.dispatcher.dispatch(AttemptExpiredEvent(
                attempt.id, attempt.student_id, attempt.quiz_id, expires_at=attempt.expires_at
            ))
        return True
