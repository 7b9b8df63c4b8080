"""
Attempt Engine Repositories

This module defines the repository interfaces the engine depends on: a
read-only source of quiz definitions and a read/write store of attempts.
Concrete providers live in ``qcm.assessments.memory_repository`` and
``qcm.database.attempt_repository``.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from qcm.assessments.models import Attempt, Quiz


class QuizRepository(ABC):
    """Read-only access to quiz definitions."""

    @abstractmethod
    async def get_by_id(self, quiz_id: str) -> Optional[Quiz]:
        """
        Retrieve a quiz by its ID.

        Args:
            quiz_id: The unique identifier for the quiz

        Returns:
            The quiz if found, None otherwise
        """
        pass


class AttemptRepository(ABC):
    """
    Read/write access to attempts.

    Implementations must guarantee the engine's invariants under concurrent
    callers: ``create_active`` is an atomic check-and-insert, and ``update``
    is a compare-and-swap on ``Attempt.version``.
    """

    @abstractmethod
    async def get_by_id(self, attempt_id: str) -> Optional[Attempt]:
        """
        Retrieve an attempt by its ID.

        Args:
            attempt_id: The unique identifier for the attempt

        Returns:
            A private copy of the attempt if found, None otherwise

        Raises:
            RepositoryError: If an error occurs during retrieval
        """
        pass

    @abstractmethod
    async def create_active(self, attempt: Attempt) -> Attempt:
        """
        Insert a new in-progress attempt.

        Args:
            attempt: The attempt to insert, with ``version`` 0

        Returns:
            The stored attempt

        Raises:
            ConflictError: If the student already has an in-progress attempt
                on the quiz, or the attempt number is already taken
            RepositoryError: If an error occurs during insertion
        """
        pass

    @abstractmethod
    async def update(self, attempt: Attempt) -> Attempt:
        """
        Persist changes to an attempt if nobody else changed it first.

        On success the stored and the passed attempt both carry
        ``version + 1``.

        Args:
            attempt: The modified attempt, carrying the version it was read at

        Returns:
            The stored attempt

        Raises:
            StaleAttemptError: If the stored version differs
            RepositoryError: If the attempt does not exist or the write fails
        """
        pass

    @abstractmethod
    async def find_in_progress(self, student_id: str, quiz_id: str) -> Optional[Attempt]:
        """
        Find the in-progress attempt of a student on a quiz.

        Args:
            student_id: The student
            quiz_id: The quiz

        Returns:
            The in-progress attempt if one exists, None otherwise
        """
        pass

    @abstractmethod
    async def list_for_student(self, student_id: str, quiz_id: str) -> List[Attempt]:
        """
        List every attempt of a student on a quiz, ordered by attempt number.
        """
        pass

    @abstractmethod
    async def list_for_quiz(self, quiz_id: str) -> List[Attempt]:
        """
        List every attempt on a quiz, across students.
        """
        pass

    @abstractmethod
    async def list_in_progress(self) -> List[Attempt]:
        """
        List every in-progress attempt, used by the expiry sweep.
        """
        pass
