"""
Tests for the quiz and attempt models.
"""

import datetime

import pytest

from qcm.assessments.models import (
    UNLIMITED,
    Attempt,
    AttemptStatus,
    Option,
    Question,
    Quiz,
    RemainingTime,
    format_duration,
)
from qcm.common.error_handling import ValidationError
from qcm.tests.conftest import START, make_question


class TestQuestion:

    def test_plain_labels_become_options(self):
        question = Question(id="q", prompt="?", options=["a", "b"], correct_options={1})

        assert question.options == [Option(0, "a"), Option(1, "b")]
        assert question.correct_options == frozenset({1})
        assert not question.is_multiple_choice

    def test_multiple_correct_options_is_multi_select(self):
        assert make_question("q", correct=(0, 2)).is_multiple_choice

    @pytest.mark.parametrize("correct", [(), (4,), (-1,)])
    def test_rejects_invalid_correct_set(self, correct):
        with pytest.raises(ValidationError):
            make_question("q", option_count=4, correct=correct)

    def test_rejects_misnumbered_options(self):
        with pytest.raises(ValidationError):
            Question(id="q", prompt="?", options=[Option(1, "a")], correct_options={0})


class TestQuiz:

    @pytest.mark.parametrize("kwargs", [
        {"passing_score": 101},
        {"passing_score": -1},
        {"time_limit_minutes": 0},
        {"max_attempts": 0},
    ])
    def test_rejects_invalid_settings(self, kwargs):
        with pytest.raises(ValidationError):
            Quiz(id="x", title="x", questions=[], **kwargs)

    @pytest.mark.parametrize("minutes, expected", [
        (None, "Unlimited"),
        (45, "45min"),
        (60, "1h"),
        (90, "1h30min"),
    ])
    def test_formatted_time_limit(self, minutes, expected):
        quiz = Quiz(id="x", title="x", questions=[], time_limit_minutes=minutes)
        assert quiz.formatted_time_limit == expected

    def test_from_dict(self):
        quiz = Quiz.from_dict({
            "id": 7,
            "title": "Loaded",
            "time_limit_minutes": 20,
            "max_attempts": 3,
            "passing_score": 70,
            "randomize_options": True,
            "questions": [
                {"id": "q1", "prompt": "2 + 2?", "options": ["3", "4"], "correct_options": [1]},
            ],
        })

        assert quiz.id == "7"
        assert quiz.question_count == 1
        assert quiz.questions[0].options[1].label == "4"
        assert quiz.randomize_options and not quiz.randomize_questions
        assert quiz.time_limit == datetime.timedelta(minutes=20)


class TestAttempt:

    def _attempt(self, **overrides):
        data = dict(
            id="a1",
            quiz_id="quiz",
            student_id="s1",
            attempt_number=1,
            status=AttemptStatus.IN_PROGRESS,
            started_at=START,
            expires_at=START + datetime.timedelta(minutes=10),
            randomized_question_order=[2, 0, 1],
            option_orders={0: [1, 0, 2, 3]},
            answers={0: frozenset({1}), 2: frozenset({0, 3})},
        )
        data.update(overrides)
        return Attempt(**data)

    def test_dict_round_trip_keeps_types(self):
        # Arrange
        attempt = self._attempt()

        # Act
        data = attempt.to_dict()
        restored = Attempt.from_dict(data)

        # Assert
        assert data["status"] == "in_progress"
        assert data["answers"] == {"0": [1], "2": [0, 3]}
        assert restored == attempt
        assert restored.answers[2] == frozenset({0, 3})
        assert restored.started_at.tzinfo is not None

    def test_naive_timestamps_are_read_as_utc(self):
        attempt = self._attempt(started_at="2025-03-01T09:00:00")
        assert attempt.started_at == START

    def test_from_dict_requires_core_fields(self):
        data = self._attempt().to_dict()
        del data["student_id"]
        with pytest.raises(ValueError):
            Attempt.from_dict(data)

    def test_status_helpers(self):
        attempt = self._attempt(status="abandoned")
        assert attempt.status is AttemptStatus.ABANDONED
        assert attempt.is_terminal and not attempt.is_in_progress
        assert attempt.selected_options(1) == frozenset()

    def test_formatted_time_spent(self):
        assert self._attempt(time_spent_seconds=250).formatted_time_spent == "4min 10s"


@pytest.mark.parametrize("seconds, expected", [
    (None, "0s"),
    (0, "0s"),
    (45, "45s"),
    (240, "4min"),
    (250, "4min 10s"),
])
def test_format_duration(seconds, expected):
    assert format_duration(seconds) == expected


def test_unlimited_is_distinct_from_zero():
    remaining = RemainingTime(seconds=UNLIMITED, expired=False)
    assert remaining.is_unlimited
    assert UNLIMITED != 0
    assert remaining.to_dict() == {"seconds": None, "unlimited": True, "expired": False}
