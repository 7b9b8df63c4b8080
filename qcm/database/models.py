"""
SQLAlchemy ORM models for quiz attempts.

The ``quiz_attempt`` table enforces the engine's uniqueness rules:
- at most one in-progress attempt per (student, quiz), through a partial
  unique index
- attempt numbers unique per (student, quiz)
"""

import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON, Boolean, DateTime, Float, Index, Integer, String, UniqueConstraint, text
)
from sqlalchemy.orm import Mapped, mapped_column

from qcm.assessments.models import AttemptStatus
from qcm.database.base import Base

IN_PROGRESS_CLAUSE = text(f"status = '{AttemptStatus.IN_PROGRESS.value}'")


class QuizAttemptRecord(Base):
    """Row form of an Attempt."""

    __tablename__ = "quiz_attempt"

    attempt_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    quiz_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    student_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=AttemptStatus.IN_PROGRESS.value, index=True
    )
    started_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime(timezone=True))
    submitted_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime(timezone=True))
    ended_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime(timezone=True))
    score: Mapped[Optional[float]] = mapped_column(Float)
    passed: Mapped[Optional[bool]] = mapped_column(Boolean)
    answers: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    question_order: Mapped[List[int]] = mapped_column(JSON, nullable=False, default=list)
    option_orders: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    question_results: Mapped[Optional[List[bool]]] = mapped_column(JSON)
    time_spent_seconds: Mapped[Optional[int]] = mapped_column(Integer)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("student_id", "quiz_id", "attempt_number", name="uq_quiz_attempt_number"),
        Index(
            "uq_quiz_attempt_in_progress",
            "student_id",
            "quiz_id",
            unique=True,
            sqlite_where=IN_PROGRESS_CLAUSE,
            postgresql_where=IN_PROGRESS_CLAUSE,
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<QuizAttemptRecord(attempt_id='{self.attempt_id}', student_id='{self.student_id}', "
            f"quiz_id='{self.quiz_id}', status='{self.status}')>"
        )
