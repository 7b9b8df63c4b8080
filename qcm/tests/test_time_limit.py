"""
Tests for remaining-time computation and lazy expiry.
"""

import datetime

import pytest

from qcm.assessments.memory_repository import MemoryAttemptRepository
from qcm.assessments.models import UNLIMITED, Attempt, AttemptStatus
from qcm.assessments.time_limit import TimeLimitGuard
from qcm.common.events import AttemptExpiredEvent, EventDispatcher
from qcm.tests.conftest import START


def _attempt(limit_minutes=10, status=AttemptStatus.IN_PROGRESS):
    expires_at = START + datetime.timedelta(minutes=limit_minutes) if limit_minutes else None
    return Attempt(
        id="a1",
        quiz_id="quiz",
        student_id="s1",
        attempt_number=1,
        status=status,
        started_at=START,
        expires_at=expires_at,
        randomized_question_order=[0],
    )


@pytest.fixture
def guard(clock):
    return TimeLimitGuard(clock)


class TestRemaining:

    def test_unlimited_without_deadline(self, guard):
        attempt = _attempt(limit_minutes=None)

        assert guard.remaining(attempt) is UNLIMITED
        assert not guard.is_expired(attempt)

    def test_counts_down_from_server_start(self, guard, clock):
        attempt = _attempt()
        clock.advance(minutes=4)

        assert guard.remaining(attempt) == 360

    def test_rounds_partial_seconds_up(self, guard, clock):
        attempt = _attempt()
        clock.advance(minutes=9, seconds=59, milliseconds=500)

        assert guard.remaining(attempt) == 1
        assert not guard.is_expired(attempt)

    def test_zero_exactly_at_deadline(self, guard, clock):
        attempt = _attempt()
        clock.advance(minutes=10)

        assert guard.remaining(attempt) == 0
        assert guard.is_expired(attempt)

    def test_never_negative(self, guard, clock):
        attempt = _attempt()
        clock.advance(hours=3)

        assert guard.remaining(attempt) == 0

    def test_submitted_attempt_keeps_the_time_it_had_left(self, guard, clock):
        # Arrange
        attempt = _attempt(status=AttemptStatus.SUBMITTED)
        attempt.ended_at = START + datetime.timedelta(minutes=4)
        clock.advance(hours=1)

        # Act
        snapshot = guard.snapshot(attempt)

        # Assert
        assert snapshot.seconds == 360
        assert not snapshot.expired
        assert (snapshot.seconds == 0) == snapshot.expired

    @pytest.mark.parametrize("status", [AttemptStatus.SUBMITTED, AttemptStatus.ABANDONED, AttemptStatus.EXPIRED])
    def test_expired_iff_nothing_remains(self, guard, clock, status):
        attempt = _attempt(status=status)
        attempt.ended_at = START + datetime.timedelta(minutes=10 if status is AttemptStatus.EXPIRED else 2)
        clock.advance(minutes=30)

        snapshot = guard.snapshot(attempt)

        assert (snapshot.seconds == 0) == snapshot.expired
        assert snapshot.expired == (status is AttemptStatus.EXPIRED)


class TestApplyExpiry:

    def test_not_due(self, guard, clock):
        attempt = _attempt()
        clock.advance(minutes=5)

        assert not guard.apply_expiry(attempt)
        assert attempt.status is AttemptStatus.IN_PROGRESS

    def test_expires_at_deadline_with_capped_time_spent(self, guard, clock):
        # Arrange
        attempt = _attempt()
        clock.advance(minutes=11)

        # Act
        changed = guard.apply_expiry(attempt)

        # Assert
        assert changed
        assert attempt.status is AttemptStatus.EXPIRED
        assert attempt.ended_at == attempt.expires_at
        assert attempt.time_spent_seconds == 600
        assert attempt.score is None
        assert guard.snapshot(attempt).expired

    @pytest.mark.asyncio
    async def test_expire_if_due_persists_and_dispatches(self, clock):
        # Arrange
        dispatcher = EventDispatcher()
        events = []
        dispatcher.subscribe(AttemptExpiredEvent, events.append)
        guard = TimeLimitGuard(clock, dispatcher)
        repository = MemoryAttemptRepository()
        attempt = await repository.create_active(_attempt())
        clock.advance(minutes=10)

        # Act
        expired = await guard.expire_if_due(attempt, repository)

        # Assert
        stored = await repository.get_by_id("a1")
        assert expired
        assert stored.status is AttemptStatus.EXPIRED
        assert stored.version == 1
        assert [e.attempt_id for e in events] == ["a1"]

    @pytest.mark.asyncio
    async def test_expire_if_due_is_a_no_op_before_deadline(self, guard):
        repository = MemoryAttemptRepository()
        attempt = await repository.create_active(_attempt())

        assert not await guard.expire_if_due(attempt, repository)
        assert (await repository.get_by_id("a1")).version == 0
