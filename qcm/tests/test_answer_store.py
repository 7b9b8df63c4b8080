"""
Tests for answer saving on in-progress attempts.
"""

import asyncio
import logging

import pytest

from qcm.assessments.answer_store import AnswerStore
from qcm.assessments.models import AttemptStatus
from qcm.assessments.state_machine import AttemptStateMachine
from qcm.assessments.time_limit import TimeLimitGuard
from qcm.common.error_handling import (
    ExpiredAttemptError,
    InvalidAnswerError,
    InvalidAttemptStateError,
    NoActiveAttemptError,
)
from qcm.common.events import AnswerSavedEvent, EventDispatcher
from qcm.common.locking import KeyedLock


@pytest.fixture
def components(quiz_repository, attempt_repository, clock):
    dispatcher = EventDispatcher()
    guard = TimeLimitGuard(clock, dispatcher)
    locks = KeyedLock()
    store = AnswerStore(attempt_repository, quiz_repository, guard, dispatcher=dispatcher, locks=locks)
    machine = AttemptStateMachine(attempt_repository, quiz_repository, guard, dispatcher=dispatcher, locks=locks)
    return store, machine, dispatcher


class TestAnswerStore:

    @pytest.mark.asyncio
    async def test_latest_save_wins(self, components, four_question_quiz, attempt_repository):
        # Arrange
        store, machine, _ = components
        attempt = await machine.create("s1", four_question_quiz)

        # Act
        await store.save_answer(attempt.id, 1, [0])
        await store.save_answer(attempt.id, 1, [2, 3])
        await store.save_answer(attempt.id, 1, [2, 3])

        # Assert
        stored = await attempt_repository.get_by_id(attempt.id)
        assert stored.answers == {1: frozenset({2, 3})}

    @pytest.mark.asyncio
    async def test_empty_selection_clears_answer(self, components, four_question_quiz, attempt_repository):
        store, machine, _ = components
        attempt = await machine.create("s1", four_question_quiz)
        await store.save_answer(attempt.id, 0, [1])

        await store.save_answer(attempt.id, 0, [])

        assert (await attempt_repository.get_by_id(attempt.id)).answers == {}

    @pytest.mark.asyncio
    async def test_question_index_out_of_range(self, components, four_question_quiz, attempt_repository):
        # Arrange
        store, machine, _ = components
        attempt = await machine.create("s1", four_question_quiz)
        await store.save_answer(attempt.id, 0, [1])
        before = await attempt_repository.get_by_id(attempt.id)

        # Act
        with pytest.raises(InvalidAnswerError) as exc_info:
            await store.save_answer(attempt.id, 5, [0])

        # Assert
        after = await attempt_repository.get_by_id(attempt.id)
        assert exc_info.value.details["question_index"] == 5
        assert after == before

    @pytest.mark.parametrize("question_index, options", [
        (-1, [0]),
        (0, [4]),
        (0, [-1]),
        (0, ["1"]),
        (0, [True]),
        ("0", [1]),
    ])
    @pytest.mark.asyncio
    async def test_rejects_invalid_input(self, components, four_question_quiz, question_index, options):
        store, machine, _ = components
        attempt = await machine.create("s1", four_question_quiz)

        with pytest.raises(InvalidAnswerError):
            await store.save_answer(attempt.id, question_index, options)

    @pytest.mark.asyncio
    async def test_rejects_non_collection(self, components, four_question_quiz):
        store, machine, _ = components
        attempt = await machine.create("s1", four_question_quiz)

        with pytest.raises(InvalidAnswerError):
            await store.save_answer(attempt.id, 0, 3)

    @pytest.mark.asyncio
    async def test_unknown_attempt(self, components):
        store, _, _ = components

        with pytest.raises(NoActiveAttemptError):
            await store.save_answer("missing", 0, [0])

    @pytest.mark.asyncio
    async def test_rejected_after_terminal(self, components, four_question_quiz):
        store, machine, _ = components
        attempt = await machine.create("s1", four_question_quiz)
        await machine.abandon(attempt.id)

        with pytest.raises(InvalidAttemptStateError):
            await store.save_answer(attempt.id, 0, [0])

    @pytest.mark.asyncio
    async def test_rejected_once_expired(self, components, timed_quiz, attempt_repository, clock):
        # Arrange
        store, machine, _ = components
        attempt = await machine.create("s1", timed_quiz)
        clock.advance(minutes=10)

        # Act
        with pytest.raises(ExpiredAttemptError):
            await store.save_answer(attempt.id, 0, [0])

        # Assert
        stored = await attempt_repository.get_by_id(attempt.id)
        assert stored.status is AttemptStatus.EXPIRED
        assert stored.answers == {}

    @pytest.mark.asyncio
    async def test_dispatches_answer_saved(self, components, four_question_quiz):
        store, machine, dispatcher = components
        events = []
        dispatcher.subscribe(AnswerSavedEvent, events.append)
        attempt = await machine.create("s1", four_question_quiz)

        await store.save_answer(attempt.id, 2, {3, 1})

        assert len(events) == 1
        assert events[0].question_index == 2
        assert events[0].option_indices == [1, 3]

    @pytest.mark.asyncio
    async def test_concurrent_saves_to_different_positions_all_survive(
        self, components, four_question_quiz, attempt_repository
    ):
        # Arrange
        store, machine, _ = components
        attempt = await machine.create("s1", four_question_quiz)

        # Act
        await asyncio.gather(*(store.save_answer(attempt.id, i, [i]) for i in range(4)))

        # Assert
        stored = await attempt_repository.get_by_id(attempt.id)
        assert stored.answers == {i: frozenset({i}) for i in range(4)}
        assert stored.version == 4

    @pytest.mark.asyncio
    async def test_concurrent_saves_to_one_position_keep_one_value(
        self, components, four_question_quiz, attempt_repository
    ):
        # Arrange
        store, machine, _ = components
        attempt = await machine.create("s1", four_question_quiz)
        selections = [[0], [1], [2, 3], [3]]

        # Act
        await asyncio.gather(*(store.save_answer(attempt.id, 1, s) for s in selections))

        # Assert
        stored = await attempt_repository.get_by_id(attempt.id)
        assert list(stored.answers) == [1]
        assert stored.answers[1] in {frozenset(s) for s in selections}
        assert stored.version == len(selections)

    @pytest.mark.asyncio
    async def test_log_records_carry_attempt_context(self, components, four_question_quiz, caplog):
        store, machine, _ = components
        attempt = await machine.create("s1", four_question_quiz)

        with caplog.at_level(logging.DEBUG, logger="qcm.assessments.answer_store"):
            await store.save_answer(attempt.id, 2, [1])

        record = next(r for r in caplog.records if r.name == "qcm.assessments.answer_store")
        assert record.data == {
            "attempt_id": attempt.id,
            "student_id": "s1",
            "quiz_id": "quiz-four",
            "question_index": 2,
        }

    @pytest.mark.asyncio
    async def test_options_are_presented_positions(self, components, shuffled_quiz, attempt_repository):
        # Arrange
        store, machine, _ = components
        attempt = await machine.create("s1", shuffled_quiz)
        presented = machine.randomizer.rebuild(shuffled_quiz, attempt)[0]

        # Act
        await store.save_answer(attempt.id, 0, presented.correct_options)

        # Assert
        stored = await attempt_repository.get_by_id(attempt.id)
        assert stored.answers[0] == presented.correct_options
