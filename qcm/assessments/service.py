"""
Attempt Service

The facade the presentation layer calls. It resolves quizzes and attempts by
ID, wires the engine components to a shared clock, lock registry and event
dispatcher, and exposes the attempt operations and history queries.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from qcm.assessments.answer_store import AnswerStore
from qcm.assessments.ledger import AttemptLedger
from qcm.assessments.models import (
    Attempt,
    AttemptStatus,
    Limit,
    QuestionStatistics,
    Quiz,
    QuizStatistics,
    RemainingTime,
    ScoreResult,
)
from qcm.assessments.randomizer import AttemptRandomizer
from qcm.assessments.repositories import AttemptRepository, QuizRepository
from qcm.assessments.scoring import ScoringEngine
from qcm.assessments.state_machine import AttemptStateMachine
from qcm.assessments.time_limit import Clock, TimeLimitGuard, utc_now
from qcm.assessments.writer import DEFAULT_SAVE_RETRIES
from qcm.common.error_handling import (
    InvalidAttemptStateError,
    QuizNotFoundError,
    RepositoryError,
    log_error,
)
from qcm.common.events import EventDispatcher, log_attempt_events
from qcm.common.locking import KeyedLock
from qcm.common.logger import app_logger, log_execution_time

logger = app_logger.getChild("assessments.service")


class AttemptService:
    """
    Entry point for attempt operations.

    Every read of an attempt applies lazy expiry first, so callers never
    observe an overdue attempt as in progress.
    """

    def __init__(
        self,
        quizzes: QuizRepository,
        attempts: AttemptRepository,
        clock: Clock = utc_now,
        dispatcher: Optional[EventDispatcher] = None,
        max_retries: int = DEFAULT_SAVE_RETRIES,
        log_events: bool = True
    ):
        """
        Initialize the service.

        Args:
            quizzes: Source of quiz definitions
            attempts: Attempt store
            clock: Returns the current aware UTC time
            dispatcher: Event dispatcher; a private one is created if omitted
            max_retries: Retries after a concurrent modification
            log_events: Subscribe the structured event logger
        """
        self.quizzes = quizzes
        self.attempts = attempts
        self.dispatcher = dispatcher or EventDispatcher()
        self.time_guard = TimeLimitGuard(clock, self.dispatcher)
        self.randomizer = AttemptRandomizer()
        self.scoring = ScoringEngine(self.randomizer)
        self.ledger = AttemptLedger(attempts, self.time_guard)

        locks = KeyedLock()
        shared = dict(
            dispatcher=self.dispatcher,
            locks=locks,
            max_retries=max_retries,
        )
        self.answer_store = AnswerStore(
            attempts, quizzes, self.time_guard, randomizer=self.randomizer, **shared
        )
        self.state_machine = AttemptStateMachine(
            attempts, quizzes, self.time_guard,
            ledger=self.ledger,
            randomizer=self.randomizer,
            scoring=self.scoring,
            **shared
        )

        if log_events:
            log_attempt_events(self.dispatcher, app_logger.getChild("events"))

    async def _quiz(self, quiz_id: str) -> Quiz:
        quiz = await self.quizzes.get_by_id(quiz_id)
        if quiz is None:
            raise QuizNotFoundError(quiz_id)
        return quiz

    async def _refresh_active(self, student_id: str, quiz_id: str) -> Optional[Attempt]:
        active = await self.attempts.find_in_progress(student_id, quiz_id)
        if active is None:
            return None
        active = await self.state_machine.refresh(active.id)
        return active if active.is_in_progress else None

    # --- Attempt operations ---

    @log_execution_time(logger)
    async def start_or_resume(self, student_id: str, quiz_id: str) -> Attempt:
        """
        Return the student's in-progress attempt, starting one if needed.

        Raises:
            QuizNotFoundError: If the quiz does not exist
            AttemptLimitExceededError: If a new attempt is needed but every
                allowed attempt has been used
        """
        quiz = await self._quiz(quiz_id)
        return await self.state_machine.resume(student_id, quiz)

    async def save_answer(self, attempt_id: str, question_index: int, option_indices: Iterable[int]) -> None:
        """
        Record the options chosen at a presented position of an attempt.

        Raises:
            NoActiveAttemptError, InvalidAttemptStateError,
            ExpiredAttemptError, InvalidAnswerError
        """
        await self.answer_store.save_answer(attempt_id, question_index, option_indices)

    @log_execution_time(logger)
    async def submit(self, attempt_id: str) -> ScoreResult:
        """
        Submit an attempt and return its score.

        Raises:
            NoActiveAttemptError, InvalidAttemptStateError, ExpiredAttemptError
        """
        _, result = await self.state_machine.submit(attempt_id)
        return result

    async def abandon(self, attempt_id: str) -> Attempt:
        return await self.state_machine.abandon(attempt_id)

    async def remaining_time(self, attempt_id: str) -> RemainingTime:
        """Server-side remaining time of an attempt, expiring it if overdue."""
        attempt = await self.state_machine.refresh(attempt_id)
        return self.time_guard.snapshot(attempt)

    async def expire_overdue_attempts(self) -> int:
        """
        Expire every overdue in-progress attempt.

        Intended for a periodic job; expiry otherwise happens lazily.

        Returns:
            Number of attempts expired by this call
        """
        expired = 0
        for attempt in await self.attempts.list_in_progress():
            if not self.time_guard.is_expired(attempt):
                continue
            try:
                result = await self.state_machine.expire(attempt.id)
            except InvalidAttemptStateError as e:
                # Closed by a concurrent operation since it was listed
                log_error(e, level=logging.DEBUG, log=logger)
                continue
            except RepositoryError as e:
                # Skipped until the next sweep
                log_error(e, level=logging.WARNING, log=logger)
                continue
            if result.status is AttemptStatus.EXPIRED:
                expired += 1

        if expired:
            logger.info(f"Expired {expired} overdue attempts")
        return expired

    # --- Ledger queries ---

    async def can_attempt(self, student_id: str, quiz_id: str) -> bool:
        quiz = await self._quiz(quiz_id)
        await self._refresh_active(student_id, quiz_id)
        return await self.ledger.can_attempt(student_id, quiz)

    async def best_score(self, student_id: str, quiz_id: str) -> Optional[float]:
        await self._quiz(quiz_id)
        return await self.ledger.best_score(student_id, quiz_id)

    async def has_passed(self, student_id: str, quiz_id: str) -> bool:
        quiz = await self._quiz(quiz_id)
        return await self.ledger.has_passed(student_id, quiz)

    async def remaining_attempts(self, student_id: str, quiz_id: str) -> Limit:
        quiz = await self._quiz(quiz_id)
        await self._refresh_active(student_id, quiz_id)
        return await self.ledger.remaining_attempts(student_id, quiz)

    # --- History ---

    async def get_attempt(self, attempt_id: str) -> Attempt:
        return await self.state_machine.refresh(attempt_id)

    async def get_attempts(self, student_id: str, quiz_id: str) -> List[Attempt]:
        await self._refresh_active(student_id, quiz_id)
        return await self.ledger.attempts(student_id, quiz_id)

    async def get_latest_attempt(self, student_id: str, quiz_id: str) -> Optional[Attempt]:
        await self._refresh_active(student_id, quiz_id)
        return await self.ledger.latest_attempt(student_id, quiz_id)

    async def get_active_attempt(self, student_id: str, quiz_id: str) -> Optional[Attempt]:
        """The in-progress attempt, or None when there is none or it just expired."""
        return await self._refresh_active(student_id, quiz_id)

    async def get_presented_questions(self, attempt_id: str) -> List[Dict[str, Any]]:
        """
        The attempt's questions as presented, with the current selections.

        Correct answers are never included.
        """
        attempt = await self.state_machine.refresh(attempt_id)
        quiz = await self._quiz(attempt.quiz_id)
        view = self.randomizer.rebuild(quiz, attempt)

        return [
            {
                "position": presented.position,
                "question_id": presented.question.id,
                "prompt": presented.question.prompt,
                "multiple_choice": presented.question.is_multiple_choice,
                "options": [option.to_dict() for option in presented.options],
                "selected": sorted(attempt.selected_options(presented.position)),
            }
            for presented in view.questions
        ]

    async def get_review(self, attempt_id: str) -> Dict[str, Any]:
        """
        Score breakdown of a submitted attempt, revealing answers and
        explanations only as far as the quiz allows.

        Raises:
            InvalidAttemptStateError: If the attempt was not submitted
        """
        attempt = await self.state_machine.refresh(attempt_id)
        if attempt.status is not AttemptStatus.SUBMITTED:
            raise InvalidAttemptStateError(attempt.id, attempt.status.value, "review")

        quiz = await self._quiz(attempt.quiz_id)
        result = self.scoring.score(attempt, quiz)
        review = result.to_dict(
            reveal_answers=quiz.show_correct_answers,
            reveal_explanations=quiz.show_explanations,
        )
        review.update({
            "attempt_number": attempt.attempt_number,
            "submitted_at": attempt.submitted_at.isoformat(),
            "time_spent": attempt.formatted_time_spent,
            "passing_score": quiz.passing_score,
        })
        return review

    # --- Statistics ---

    async def get_quiz_statistics(self, quiz_id: str) -> QuizStatistics:
        return await self.ledger.quiz_statistics(await self._quiz(quiz_id))

    async def get_question_statistics(self, quiz_id: str) -> List[QuestionStatistics]:
        return await self.ledger.question_statistics(await self._quiz(quiz_id))


async def create_attempt_service(
    quizzes: QuizRepository,
    settings=None,
    attempts: Optional[AttemptRepository] = None,
    **kwargs
) -> AttemptService:
    """
    Build a service from settings.

    Without an explicit attempt store, the database named by
    ``settings.DATABASE_URL`` is initialized, its schema created and a
    SqlAttemptRepository used.

    Args:
        quizzes: Source of quiz definitions
        settings: ``qcm.config.Settings``; the global settings if omitted
        attempts: Attempt store to use instead of the database
        **kwargs: Passed through to AttemptService

    Returns:
        The configured service
    """
    if settings is None:
        from qcm.config import settings

    if attempts is None:
        from qcm.database.attempt_repository import SqlAttemptRepository
        from qcm.database.init_db import create_schema, initialize_from_settings

        engine = await initialize_from_settings(settings)
        await create_schema(engine)
        attempts = SqlAttemptRepository(engine)

    return AttemptService(
        quizzes,
        attempts,
        max_retries=settings.ATTEMPT_SAVE_RETRIES,
        **kwargs
    )
