"""
Assessment Attempt Models

This module defines the data models of the attempt engine: the read-only quiz
definition (Quiz, Question, Option), the mutable Attempt record, and the
value objects returned to callers (RemainingTime, QuestionResult, ScoreResult).
"""

import enum
import datetime
from typing import Any, Dict, FrozenSet, List, Optional, Union
from dataclasses import asdict, dataclass, field

from qcm.common.error_handling import ValidationError
from qcm.common.serialization import SerializableMixin, parse_datetime


class _Unlimited:
    """Sentinel for "no limit configured", distinct from zero."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNLIMITED"

    def __reduce__(self):
        return (_Unlimited, ())


UNLIMITED = _Unlimited()

Limit = Union[int, _Unlimited]


def format_duration(seconds: Optional[int]) -> str:
    """
    Format a number of seconds as "45s", "4min" or "4min 10s".

    Args:
        seconds: Duration in whole seconds

    Returns:
        Human-readable duration
    """
    if not seconds:
        return "0s"

    minutes, remainder = divmod(int(seconds), 60)
    if minutes == 0:
        return f"{remainder}s"
    if remainder == 0:
        return f"{minutes}min"
    return f"{minutes}min {remainder}s"


class AttemptStatus(enum.Enum):
    """Lifecycle status of an attempt."""
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    ABANDONED = "abandoned"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not AttemptStatus.IN_PROGRESS


@dataclass(frozen=True)
class Option:
    """A selectable answer option of a question."""
    index: int
    label: str

    def to_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "label": self.label}


@dataclass
class Question:
    """
    A multiple-choice question.

    One correct option makes it single-select, several make it multi-select.
    Option indices are zero-based positions in ``options``.
    """

    id: str
    prompt: str
    options: List[Option]
    correct_options: FrozenSet[int]
    explanation: str = ""

    def __post_init__(self):
        """Validate and normalize after creation."""
        self.options = [
            opt if isinstance(opt, Option) else Option(index=i, label=str(opt))
            for i, opt in enumerate(self.options)
        ]
        self.correct_options = frozenset(int(i) for i in self.correct_options)

        if not self.options:
            raise ValidationError(f"Question {self.id} has no options", details={"question_id": self.id})

        for position, option in enumerate(self.options):
            if option.index != position:
                raise ValidationError(
                    f"Option index {option.index} of question {self.id} does not match its position {position}",
                    details={"question_id": self.id}
                )

        if not self.correct_options:
            raise ValidationError(
                f"Question {self.id} needs at least one correct option",
                details={"question_id": self.id}
            )

        out_of_range = [i for i in self.correct_options if not 0 <= i < len(self.options)]
        if out_of_range:
            raise ValidationError(
                f"Correct options {sorted(out_of_range)} of question {self.id} are out of range",
                details={"question_id": self.id}
            )

    @property
    def is_multiple_choice(self) -> bool:
        return len(self.correct_options) > 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "prompt": self.prompt,
            "options": [opt.label for opt in self.options],
            "correct_options": sorted(self.correct_options),
            "explanation": self.explanation,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Question':
        options = [
            Option(index=i, label=opt["label"] if isinstance(opt, dict) else str(opt))
            for i, opt in enumerate(data.get("options", []))
        ]
        return cls(
            id=str(data["id"]),
            prompt=data["prompt"],
            options=options,
            correct_options=frozenset(data.get("correct_options", [])),
            explanation=data.get("explanation") or "",
        )


@dataclass
class Quiz:
    """
    A quiz definition. Read-only input to the engine.

    ``time_limit_minutes`` and ``max_attempts`` are None when unlimited.
    """

    id: str
    title: str
    questions: List[Question]
    time_limit_minutes: Optional[int] = None
    max_attempts: Optional[int] = None
    passing_score: float = 50.0
    randomize_questions: bool = False
    randomize_options: bool = False
    show_correct_answers: bool = True
    show_explanations: bool = True
    description: str = ""

    def __post_init__(self):
        if not 0 <= self.passing_score <= 100:
            raise ValidationError(
                f"Passing score must be between 0 and 100, got {self.passing_score}",
                details={"quiz_id": self.id}
            )
        if self.time_limit_minutes is not None and self.time_limit_minutes <= 0:
            raise ValidationError(
                f"Time limit must be positive, got {self.time_limit_minutes}",
                details={"quiz_id": self.id}
            )
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValidationError(
                f"Max attempts must be at least 1, got {self.max_attempts}",
                details={"quiz_id": self.id}
            )

    @property
    def question_count(self) -> int:
        return len(self.questions)

    @property
    def time_limit(self) -> Optional[datetime.timedelta]:
        if self.time_limit_minutes is None:
            return None
        return datetime.timedelta(minutes=self.time_limit_minutes)

    @property
    def formatted_time_limit(self) -> str:
        """Time limit as "Unlimited", "45min", "1h" or "1h30min"."""
        if self.time_limit_minutes is None:
            return "Unlimited"
        if self.time_limit_minutes < 60:
            return f"{self.time_limit_minutes}min"

        hours, minutes = divmod(self.time_limit_minutes, 60)
        if minutes == 0:
            return f"{hours}h"
        return f"{hours}h{minutes}min"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "questions": [q.to_dict() for q in self.questions],
            "time_limit_minutes": self.time_limit_minutes,
            "max_attempts": self.max_attempts,
            "passing_score": self.passing_score,
            "randomize_questions": self.randomize_questions,
            "randomize_options": self.randomize_options,
            "show_correct_answers": self.show_correct_answers,
            "show_explanations": self.show_explanations,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Quiz':
        """
        Create a quiz from dictionary data, as loaded from YAML or JSON.

        Args:
            data: Dictionary containing quiz data

        Returns:
            New quiz instance
        """
        return cls(
            id=str(data["id"]),
            title=data["title"],
            description=data.get("description") or "",
            questions=[Question.from_dict(q) for q in data.get("questions", [])],
            time_limit_minutes=data.get("time_limit_minutes"),
            max_attempts=data.get("max_attempts"),
            passing_score=float(data.get("passing_score", 50.0)),
            randomize_questions=bool(data.get("randomize_questions", False)),
            randomize_options=bool(data.get("randomize_options", False)),
            show_correct_answers=bool(data.get("show_correct_answers", True)),
            show_explanations=bool(data.get("show_explanations", True)),
        )


@dataclass
class Attempt(SerializableMixin):
    """
    One student's attempt at a quiz.

    ``answers`` maps a presented position to the set of presented option
    positions chosen there. ``randomized_question_order`` and
    ``option_orders`` are fixed at creation so the attempt can always be
    re-presented and re-scored from the quiz definition alone.
    """

    __serializable_fields__ = [
        "id", "quiz_id", "student_id", "attempt_number", "status",
        "started_at", "expires_at", "submitted_at", "ended_at",
        "score", "passed", "answers", "randomized_question_order",
        "option_orders", "question_results", "time_spent_seconds", "version"
    ]
    __optional_fields__ = [
        "expires_at", "submitted_at", "ended_at", "score", "passed", "answers",
        "option_orders", "question_results", "time_spent_seconds", "version"
    ]

    id: str
    quiz_id: str
    student_id: str
    attempt_number: int
    status: AttemptStatus
    started_at: datetime.datetime
    randomized_question_order: List[int]
    expires_at: Optional[datetime.datetime] = None
    submitted_at: Optional[datetime.datetime] = None
    ended_at: Optional[datetime.datetime] = None
    score: Optional[float] = None
    passed: Optional[bool] = None
    answers: Dict[int, FrozenSet[int]] = field(default_factory=dict)
    option_orders: Dict[int, List[int]] = field(default_factory=dict)
    question_results: Optional[List[bool]] = None
    time_spent_seconds: Optional[int] = None
    version: int = 0

    def __post_init__(self):
        """Coerce stored representations back into domain types."""
        if isinstance(self.status, str):
            self.status = AttemptStatus(self.status)

        self.started_at = parse_datetime(self.started_at)
        self.expires_at = parse_datetime(self.expires_at)
        self.submitted_at = parse_datetime(self.submitted_at)
        self.ended_at = parse_datetime(self.ended_at)

        self.randomized_question_order = [int(i) for i in self.randomized_question_order]
        self.answers = {int(k): frozenset(int(i) for i in v) for k, v in (self.answers or {}).items()}
        self.option_orders = {int(k): [int(i) for i in v] for k, v in (self.option_orders or {}).items()}
        if self.question_results is not None:
            self.question_results = [bool(r) for r in self.question_results]

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_in_progress(self) -> bool:
        return self.status is AttemptStatus.IN_PROGRESS

    @property
    def question_count(self) -> int:
        return len(self.randomized_question_order)

    @property
    def answered_count(self) -> int:
        return len(self.answers)

    @property
    def formatted_time_spent(self) -> str:
        return format_duration(self.time_spent_seconds)

    def selected_options(self, position: int) -> FrozenSet[int]:
        """Options chosen at a presented position; empty when unanswered."""
        return self.answers.get(position, frozenset())

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["answers"] = {str(k): sorted(v) for k, v in self.answers.items()}
        result["option_orders"] = {str(k): list(v) for k, v in self.option_orders.items()}
        return result


@dataclass(frozen=True)
class RemainingTime:
    """Server-computed time left on an attempt."""
    seconds: Limit
    expired: bool

    @property
    def is_unlimited(self) -> bool:
        return self.seconds is UNLIMITED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seconds": None if self.is_unlimited else self.seconds,
            "unlimited": self.is_unlimited,
            "expired": self.expired,
        }


@dataclass(frozen=True)
class QuestionResult:
    """Correctness of one presented question; option positions are presented positions."""
    position: int
    question_index: int
    question_id: str
    prompt: str
    chosen: FrozenSet[int]
    correct_options: FrozenSet[int]
    is_correct: bool
    explanation: str = ""

    def to_dict(self, reveal_answers: bool = False, reveal_explanations: bool = False) -> Dict[str, Any]:
        result = {
            "position": self.position,
            "question_id": self.question_id,
            "prompt": self.prompt,
            "chosen": sorted(self.chosen),
            "is_correct": self.is_correct,
        }
        if reveal_answers:
            result["correct_options"] = sorted(self.correct_options)
        if reveal_explanations and self.explanation:
            result["explanation"] = self.explanation
        return result


@dataclass(frozen=True)
class ScoreResult:
    """Outcome of scoring an attempt."""
    attempt_id: str
    quiz_id: str
    percentage: float
    passed: bool
    correct_count: int
    total_questions: int
    question_results: List[QuestionResult] = field(default_factory=list)

    def to_dict(self, reveal_answers: bool = False, reveal_explanations: bool = False) -> Dict[str, Any]:
        """
        Convert the result for display.

        Args:
            reveal_answers: Include the correct options of each question
            reveal_explanations: Include each question's explanation

        Returns:
            Dictionary representation of the result
        """
        return {
            "attempt_id": self.attempt_id,
            "quiz_id": self.quiz_id,
            "percentage": self.percentage,
            "passed": self.passed,
            "correct_count": self.correct_count,
            "total_questions": self.total_questions,
            "questions": [
                r.to_dict(reveal_answers, reveal_explanations) for r in self.question_results
            ],
        }


@dataclass(frozen=True)
class QuizStatistics:
    """Aggregates over the submitted attempts of a quiz."""
    quiz_id: str
    total_students: int
    total_attempts: int
    average_score: Optional[float]
    max_score: Optional[float]
    min_score: Optional[float]
    average_time_spent_seconds: Optional[float]
    passed_count: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class QuestionStatistics:
    """Success rate of one question across submitted attempts."""
    question_index: int
    question_id: str
    total_attempts: int
    correct_answers: int
    success_rate: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
