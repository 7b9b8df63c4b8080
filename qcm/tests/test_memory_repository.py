"""
Tests for the in-memory quiz and attempt repositories.
"""

import json

import pytest
import yaml

from qcm.assessments.memory_repository import MemoryAttemptRepository, MemoryQuizRepository
from qcm.assessments.models import Attempt, AttemptStatus
from qcm.common.error_handling import ConflictError, RepositoryError, StaleAttemptError
from qcm.tests.conftest import START

QUIZ_DATA = {
    "id": "geo-1",
    "title": "Capitals",
    "time_limit_minutes": 15,
    "max_attempts": 2,
    "passing_score": 75,
    "randomize_questions": True,
    "questions": [
        {
            "id": "fr",
            "prompt": "Capital of France?",
            "options": ["Lyon", "Paris", "Nice"],
            "correct_options": [1],
            "explanation": "Paris has been the capital since 987.",
        },
        {
            "id": "multi",
            "prompt": "Which are in Europe?",
            "options": [{"label": "Spain"}, {"label": "Peru"}, {"label": "Italy"}],
            "correct_options": [0, 2],
        },
    ],
}


def _attempt(attempt_id="a1", number=1, status=AttemptStatus.IN_PROGRESS):
    return Attempt(
        id=attempt_id,
        quiz_id="geo-1",
        student_id="s1",
        attempt_number=number,
        status=status,
        started_at=START,
        randomized_question_order=[1, 0],
    )


class TestMemoryQuizRepository:

    @pytest.mark.asyncio
    async def test_from_yaml_mapping(self, tmp_path):
        path = tmp_path / "quizzes.yaml"
        path.write_text(yaml.safe_dump({"quizzes": [QUIZ_DATA]}))

        repository = MemoryQuizRepository.from_file(path)
        quiz = await repository.get_by_id("geo-1")

        assert quiz.title == "Capitals"
        assert quiz.questions[1].is_multiple_choice
        assert quiz.questions[1].options[2].label == "Italy"
        assert quiz.formatted_time_limit == "15min"

    @pytest.mark.asyncio
    async def test_from_json_list(self, tmp_path):
        path = tmp_path / "quizzes.json"
        path.write_text(json.dumps([QUIZ_DATA]))

        repository = MemoryQuizRepository.from_file(path)

        assert [q.id for q in await repository.get_all()] == ["geo-1"]

    def test_rejects_unknown_format(self, tmp_path):
        path = tmp_path / "quizzes.txt"
        path.write_text("")

        with pytest.raises(ValueError):
            MemoryQuizRepository.from_file(path)

    @pytest.mark.asyncio
    async def test_unknown_quiz(self):
        assert await MemoryQuizRepository().get_by_id("nope") is None


class TestMemoryAttemptRepository:

    @pytest.mark.asyncio
    async def test_returns_private_copies(self):
        repository = MemoryAttemptRepository()
        await repository.create_active(_attempt())

        loaded = await repository.get_by_id("a1")
        loaded.answers[0] = frozenset({1})

        assert (await repository.get_by_id("a1")).answers == {}

    @pytest.mark.asyncio
    async def test_one_in_progress_attempt_per_pair(self):
        repository = MemoryAttemptRepository()
        await repository.create_active(_attempt("a1", 1))

        with pytest.raises(ConflictError):
            await repository.create_active(_attempt("a2", 2))

    @pytest.mark.asyncio
    async def test_duplicate_attempt_id(self):
        repository = MemoryAttemptRepository()
        await repository.create_active(_attempt("a1", 1, status=AttemptStatus.ABANDONED))

        with pytest.raises(RepositoryError):
            await repository.create_active(_attempt("a1", 2))

    @pytest.mark.asyncio
    async def test_compare_and_swap(self):
        # Arrange
        repository = MemoryAttemptRepository()
        await repository.create_active(_attempt())
        first = await repository.get_by_id("a1")
        second = await repository.get_by_id("a1")

        # Act
        await repository.update(first)

        # Assert
        with pytest.raises(StaleAttemptError):
            await repository.update(second)
        assert first.version == 1

    @pytest.mark.asyncio
    async def test_update_unknown_attempt(self):
        with pytest.raises(RepositoryError):
            await MemoryAttemptRepository().update(_attempt())
