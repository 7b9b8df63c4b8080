"""
Memory Attempt Repositories

In-memory implementations of the QuizRepository and AttemptRepository
interfaces for development and testing purposes.
"""

import json
import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

import yaml

from qcm.assessments.models import Attempt, AttemptStatus, Quiz
from qcm.assessments.repositories import AttemptRepository, QuizRepository
from qcm.common.error_handling import (
    ConflictError,
    RepositoryError,
    StaleAttemptError,
)

# Setup logging
logger = logging.getLogger(__name__)


class MemoryQuizRepository(QuizRepository):
    """
    In-memory quiz catalogue.

    Quizzes are immutable inputs to the engine, so they are stored as-is.
    """

    def __init__(self, initial_data: Optional[List[Quiz]] = None):
        """
        Initialize the repository with optional initial data.

        Args:
            initial_data: Optional list of quizzes to initialize with
        """
        self._quizzes: Dict[str, Quiz] = {}

        if initial_data:
            for quiz in initial_data:
                self._quizzes[quiz.id] = quiz

    async def get_by_id(self, quiz_id: str) -> Optional[Quiz]:
        return self._quizzes.get(quiz_id)

    async def save(self, quiz: Quiz) -> Quiz:
        self._quizzes[quiz.id] = quiz
        return quiz

    async def get_all(self) -> List[Quiz]:
        return list(self._quizzes.values())

    async def clear(self) -> None:
        self._quizzes.clear()

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> 'MemoryQuizRepository':
        """
        Load quizzes from a YAML or JSON file.

        The file holds either a list of quizzes or a mapping with a
        ``quizzes`` key.

        Args:
            path: Path to a .yaml, .yml or .json file

        Returns:
            A repository holding the loaded quizzes
        """
        path = Path(path)
        with path.open("r", encoding="utf-8") as f:
            if path.suffix.lower() in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            elif path.suffix.lower() == ".json":
                data = json.load(f)
            else:
                raise ValueError(f"Unsupported quiz file format: {path.suffix}")

        if isinstance(data, dict):
            data = data.get("quizzes", [])

        quizzes = [Quiz.from_dict(item) for item in data or []]
        logger.info(f"Loaded {len(quizzes)} quizzes from {path}")
        return cls(quizzes)


class MemoryAttemptRepository(AttemptRepository):
    """
    In-memory attempt store.

    Attempts are kept in their serialized form, so callers always receive
    private copies and a write only takes effect through ``update``.
    """

    def __init__(self):
        self._attempts: Dict[str, dict] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def _load(data: dict) -> Attempt:
        return Attempt.from_dict(data)

    async def get_by_id(self, attempt_id: str) -> Optional[Attempt]:
        data = self._attempts.get(attempt_id)
        return self._load(data) if data is not None else None

    async def create_active(self, attempt: Attempt) -> Attempt:
        async with self._lock:
            if attempt.id in self._attempts:
                raise RepositoryError(f"Attempt {attempt.id} already exists")

            for data in self._attempts.values():
                if data["student_id"] != attempt.student_id or data["quiz_id"] != attempt.quiz_id:
                    continue
                if (data["status"] == AttemptStatus.IN_PROGRESS.value
                        or data["attempt_number"] == attempt.attempt_number):
                    raise ConflictError(attempt.student_id, attempt.quiz_id)

            self._attempts[attempt.id] = attempt.to_dict()
            return attempt

    async def update(self, attempt: Attempt) -> Attempt:
        async with self._lock:
            current = self._attempts.get(attempt.id)
            if current is None:
                raise RepositoryError(f"Attempt {attempt.id} does not exist")
            if current["version"] != attempt.version:
                raise StaleAttemptError(attempt.id, attempt.version)

            attempt.version += 1
            self._attempts[attempt.id] = attempt.to_dict()
            return attempt

    async def find_in_progress(self, student_id: str, quiz_id: str) -> Optional[Attempt]:
        for data in self._attempts.values():
            if (data["student_id"] == student_id and data["quiz_id"] == quiz_id
                    and data["status"] == AttemptStatus.IN_PROGRESS.value):
                return self._load(data)
        return None

    async def list_for_student(self, student_id: str, quiz_id: str) -> List[Attempt]:
        attempts = [
            self._load(data) for data in self._attempts.values()
            if data["student_id"] == student_id and data["quiz_id"] == quiz_id
        ]
        return sorted(attempts, key=lambda a: a.attempt_number)

    async def list_for_quiz(self, quiz_id: str) -> List[Attempt]:
        attempts = [self._load(data) for data in self._attempts.values() if data["quiz_id"] == quiz_id]
        return sorted(attempts, key=lambda a: (a.student_id, a.attempt_number))

    async def list_in_progress(self) -> List[Attempt]:
        return [
            self._load(data) for data in self._attempts.values()
            if data["status"] == AttemptStatus.IN_PROGRESS.value
        ]

    async def clear(self) -> None:
        async with self._lock:
            self._attempts.clear()
