"""
Shared fixtures for the attempt engine tests.
"""

import datetime

import pytest

from qcm.assessments.memory_repository import MemoryAttemptRepository, MemoryQuizRepository
from qcm.assessments.models import Option, Question, Quiz
from qcm.assessments.service import AttemptService
from qcm.common.events import EventDispatcher

START = datetime.datetime(2025, 3, 1, 9, 0, 0, tzinfo=datetime.timezone.utc)


class FrozenClock:
    """A clock that only moves when told to."""

    def __init__(self, now: datetime.datetime = START):
        self.now = now

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, **kwargs) -> datetime.datetime:
        self.now += datetime.timedelta(**kwargs)
        return self.now


def make_question(qid: str, option_count: int = 4, correct=(0,), explanation: str = "") -> Question:
    return Question(
        id=qid,
        prompt=f"Prompt of {qid}",
        options=[Option(index=i, label=f"{qid}-option-{i}") for i in range(option_count)],
        correct_options=frozenset(correct),
        explanation=explanation or f"Explanation of {qid}",
    )


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def three_question_quiz():
    """Three questions, two attempts allowed, pass mark 60."""
    return Quiz(
        id="quiz-a",
        title="Accounting basics",
        questions=[
            make_question("q1", correct=(0,)),
            make_question("q2", correct=(1, 2)),
            make_question("q3", correct=(3,)),
        ],
        max_attempts=2,
        passing_score=60,
    )


@pytest.fixture
def timed_quiz():
    """Ten-minute quiz with unlimited attempts."""
    return Quiz(
        id="quiz-timed",
        title="Timed quiz",
        questions=[make_question("t1"), make_question("t2")],
        time_limit_minutes=10,
        passing_score=50,
    )


@pytest.fixture
def four_question_quiz():
    return Quiz(
        id="quiz-four",
        title="Four questions",
        questions=[make_question(f"f{i}") for i in range(4)],
        passing_score=50,
    )


@pytest.fixture
def shuffled_quiz():
    """Eight questions with shuffled questions and options."""
    return Quiz(
        id="quiz-shuffled",
        title="Shuffled quiz",
        questions=[make_question(f"s{i}", option_count=5, correct=(i % 5,)) for i in range(8)],
        randomize_questions=True,
        randomize_options=True,
        passing_score=50,
    )


@pytest.fixture
def quiz_repository(three_question_quiz, timed_quiz, four_question_quiz, shuffled_quiz):
    return MemoryQuizRepository([three_question_quiz, timed_quiz, four_question_quiz, shuffled_quiz])


@pytest.fixture
def attempt_repository():
    return MemoryAttemptRepository()


@pytest.fixture
def dispatcher():
    return EventDispatcher()


@pytest.fixture
def service(quiz_repository, attempt_repository, clock, dispatcher):
    return AttemptService(quiz_repository, attempt_repository, clock=clock, dispatcher=dispatcher)
