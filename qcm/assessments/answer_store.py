"""
Answer persistence for in-progress attempts.

Answers are keyed by presented position and hold presented option positions.
Saving is an idempotent upsert: the latest call for a position wins, and an
empty selection clears the answer. Nothing is checked for correctness here.
"""

import logging
from typing import Any, FrozenSet, Iterable, Optional

from qcm.assessments.models import Attempt, Quiz
from qcm.assessments.randomizer import AttemptRandomizer
from qcm.assessments.writer import AttemptWriter
from qcm.common.error_handling import InvalidAnswerError
from qcm.common.events import AnswerSavedEvent
from qcm.common.logger import attempt_logger

logger = logging.getLogger(__name__)


class AnswerStore(AttemptWriter):
    """Validates and records answers on in-progress attempts."""

    def __init__(self, *args, randomizer: Optional[AttemptRandomizer] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.randomizer = randomizer or AttemptRandomizer()

    async def save_answer(
        self,
        attempt_id: str,
        question_index: int,
        chosen_option_indices: Iterable[int]
    ) -> Attempt:
        """
        Record the options chosen at a presented position.

        Args:
            attempt_id: The attempt to answer in
            question_index: Presented position of the question (0-based)
            chosen_option_indices: Presented positions of the chosen options

        Returns:
            The updated attempt

        Raises:
            NoActiveAttemptError: If the attempt does not exist
            InvalidAttemptStateError: If the attempt is already terminal
            ExpiredAttemptError: If the time limit has elapsed
            InvalidAnswerError: If the position or an option is out of range;
                the attempt is left unchanged
        """
        try:
            chosen_input = list(chosen_option_indices)
        except TypeError as e:
            raise InvalidAnswerError(
                f"Option indices must be a collection, got {chosen_option_indices!r}",
                attempt_id,
                question_index,
                cause=e
            )

        def record(attempt: Attempt, quiz: Quiz) -> AnswerSavedEvent:
            chosen = self._validate(attempt, quiz, question_index, chosen_input)
            if chosen:
                attempt.answers[question_index] = chosen
            else:
                attempt.answers.pop(question_index, None)
            attempt_logger(logger, attempt).with_context(question_index=question_index).debug(
                f"Recorded options {sorted(chosen)}" if chosen else "Cleared answer"
            )
            return AnswerSavedEvent(
                attempt.id, attempt.student_id, attempt.quiz_id,
                question_index=question_index, option_indices=sorted(chosen)
            )

        return await self.mutate(attempt_id, "save an answer in", record)

    def _validate(
        self,
        attempt: Attempt,
        quiz: Quiz,
        question_index: Any,
        chosen: list
    ) -> FrozenSet[int]:
        if isinstance(question_index, bool) or not isinstance(question_index, int):
            raise InvalidAnswerError(
                f"Question index must be an integer, got {question_index!r}", attempt.id
            )
        if not 0 <= question_index < attempt.question_count:
            raise InvalidAnswerError(
                f"Question index {question_index} is out of range for an attempt of "
                f"{attempt.question_count} questions",
                attempt.id,
                question_index
            )

        presented = self.randomizer.rebuild(quiz, attempt)[question_index]
        for option in chosen:
            if isinstance(option, bool) or not isinstance(option, int):
                raise InvalidAnswerError(
                    f"Option index must be an integer, got {option!r}", attempt.id, question_index
                )
            if not 0 <= option < presented.option_count:
                raise InvalidAnswerError(
                    f"Option {option} is out of range for question {question_index} with "
                    f"{presented.option_count} options",
                    attempt.id,
                    question_index,
                    details={"option_index": option}
                )

        return frozenset(chosen)
