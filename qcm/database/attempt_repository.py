"""
SQL attempt repository.

Implements AttemptRepository on SQLAlchemy async sessions. The uniqueness
rules live in the ``quiz_attempt`` schema, so ``create_active`` stays atomic
across processes, and ``update`` is a compare-and-swap on the version column.
"""

import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update as sql_update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from qcm.assessments.models import Attempt, AttemptStatus
from qcm.assessments.repositories import AttemptRepository
from qcm.common.error_handling import (
    ConflictError,
    RepositoryError,
    StaleAttemptError,
)
from qcm.common.logger import get_logger
from qcm.database.init_db import get_session_factory
from qcm.database.models import QuizAttemptRecord

# Set up logger
logger = get_logger(__name__)


def _as_utc(value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


class SqlAttemptRepository(AttemptRepository):
    """AttemptRepository backed by the ``quiz_attempt`` table."""

    def __init__(self, engine: Optional[AsyncEngine] = None):
        """
        Initialize the repository.

        Args:
            engine: Engine to use; the global engine from ``init_db`` otherwise
        """
        self._engine = engine
        self._session_factory: Optional[async_sessionmaker] = None

    @property
    def async_session(self) -> async_sessionmaker:
        """Get the async session factory, creating it if necessary."""
        if self._session_factory is None:
            self._session_factory = get_session_factory(self._engine)
        return self._session_factory

    # --- Mapping between Domain and ORM ---

    @staticmethod
    def _record_values(attempt: Attempt) -> Dict[str, Any]:
        data = attempt.to_dict()
        return {
            "quiz_id": attempt.quiz_id,
            "student_id": attempt.student_id,
            "attempt_number": attempt.attempt_number,
            "status": attempt.status.value,
            "started_at": _as_utc(attempt.started_at),
            "expires_at": _as_utc(attempt.expires_at),
            "submitted_at": _as_utc(attempt.submitted_at),
            "ended_at": _as_utc(attempt.ended_at),
            "score": attempt.score,
            "passed": attempt.passed,
            "answers": data["answers"],
            "question_order": data["randomized_question_order"],
            "option_orders": data["option_orders"],
            "question_results": data["question_results"],
            "time_spent_seconds": attempt.time_spent_seconds,
        }

    @staticmethod
    def _map_orm_to_domain(record: QuizAttemptRecord) -> Attempt:
        try:
            return Attempt(
                id=record.attempt_id,
                quiz_id=record.quiz_id,
                student_id=record.student_id,
                attempt_number=record.attempt_number,
                status=AttemptStatus(record.status),
                started_at=_as_utc(record.started_at),
                expires_at=_as_utc(record.expires_at),
                submitted_at=_as_utc(record.submitted_at),
                ended_at=_as_utc(record.ended_at),
                score=record.score,
                passed=record.passed,
                answers=record.answers or {},
                randomized_question_order=record.question_order or [],
                option_orders=record.option_orders or {},
                question_results=record.question_results,
                time_spent_seconds=record.time_spent_seconds,
                version=record.version,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise RepositoryError(f"Failed to map attempt {record.attempt_id} from ORM", cause=e)

    async def _select(self, *criteria, order_by=None) -> List[Attempt]:
        try:
            async with self.async_session() as session:
                query = select(QuizAttemptRecord).where(*criteria)
                if order_by is not None:
                    query = query.order_by(*order_by)
                result = await session.execute(query)
                return [self._map_orm_to_domain(r) for r in result.scalars().all()]
        except SQLAlchemyError as e:
            raise RepositoryError("Database error listing attempts", cause=e)

    # --- Interface Implementation ---

    async def get_by_id(self, attempt_id: str) -> Optional[Attempt]:
        attempts = await self._select(QuizAttemptRecord.attempt_id == attempt_id)
        return attempts[0] if attempts else None

    async def create_active(self, attempt: Attempt) -> Attempt:
        record = QuizAttemptRecord(attempt_id=attempt.id, version=attempt.version, **self._record_values(attempt))
        try:
            async with self.async_session() as session:
                async with session.begin():
                    session.add(record)
        except IntegrityError as e:
            logger.info(
                f"Rejected attempt {attempt.attempt_number} for student {attempt.student_id} "
                f"on quiz {attempt.quiz_id}: conflicting attempt exists"
            )
            raise ConflictError(attempt.student_id, attempt.quiz_id, cause=e)
        except SQLAlchemyError as e:
            raise RepositoryError(f"Database error creating attempt {attempt.id}", cause=e)
        return attempt

    async def update(self, attempt: Attempt) -> Attempt:
        try:
            async with self.async_session() as session:
                async with session.begin():
                    result = await session.execute(
                        sql_update(QuizAttemptRecord)
                        .where(
                            QuizAttemptRecord.attempt_id == attempt.id,
                            QuizAttemptRecord.version == attempt.version,
                        )
                        .values(version=attempt.version + 1, **self._record_values(attempt))
                    )
                    if result.rowcount == 0:
                        exists = await session.scalar(
                            select(QuizAttemptRecord.attempt_id).where(QuizAttemptRecord.attempt_id == attempt.id)
                        )
                        if exists is None:
                            raise RepositoryError(f"Attempt {attempt.id} does not exist")
                        raise StaleAttemptError(attempt.id, attempt.version)
        except RepositoryError:
            raise
        except SQLAlchemyError as e:
            raise RepositoryError(f"Database error updating attempt {attempt.id}", cause=e)

        attempt.version += 1
        return attempt

    async def find_in_progress(self, student_id: str, quiz_id: str) -> Optional[Attempt]:
        attempts = await self._select(
            QuizAttemptRecord.student_id == student_id,
            QuizAttemptRecord.quiz_id == quiz_id,
            QuizAttemptRecord.status == AttemptStatus.IN_PROGRESS.value,
        )
        return attempts[0] if attempts else None

    async def list_for_student(self, student_id: str, quiz_id: str) -> List[Attempt]:
        return await self._select(
            QuizAttemptRecord.student_id == student_id,
            QuizAttemptRecord.quiz_id == quiz_id,
            order_by=(QuizAttemptRecord.attempt_number,),
        )

    async def list_for_quiz(self, quiz_id: str) -> List[Attempt]:
        return await self._select(
            QuizAttemptRecord.quiz_id == quiz_id,
            order_by=(QuizAttemptRecord.student_id, QuizAttemptRecord.attempt_number),
        )

    async def list_in_progress(self) -> List[Attempt]:
        return await self._select(
            QuizAttemptRecord.status == AttemptStatus.IN_PROGRESS.value,
            order_by=(QuizAttemptRecord.started_at,),
        )
