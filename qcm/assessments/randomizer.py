"""
Deterministic per-attempt question and option ordering.

Orderings are derived from a seed (the attempt ID) with a SHA-256 keyed
Fisher-Yates shuffle, so they never touch global random state and the same
seed always yields the same view of a quiz.
"""

import hashlib
from typing import Dict, FrozenSet, List, Optional
from dataclasses import dataclass

from qcm.assessments.models import Attempt, Option, Question, Quiz
from qcm.common.error_handling import ValidationError


def _draw(seed: str, label: str, i: int) -> int:
    digest = hashlib.sha256(f"{seed}:{label}:{i}".encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") % (i + 1)


def seeded_permutation(n: int, seed: str, label: str) -> List[int]:
    """
    Return a permutation of ``range(n)`` fully determined by ``seed`` and ``label``.

    Args:
        n: Number of items
        seed: Seed shared by all permutations of one attempt
        label: Distinguishes independent permutations under the same seed

    Returns:
        List of indices in shuffled order
    """
    items = list(range(n))
    for i in range(n - 1, 0, -1):
        j = _draw(seed, label, i)
        items[i], items[j] = items[j], items[i]
    return items


@dataclass(frozen=True)
class PresentedQuestion:
    """A question as shown in one attempt."""
    position: int
    question_index: int
    question: Question
    option_order: List[int]

    @property
    def options(self) -> List[Option]:
        """Options re-indexed by presented position."""
        return [
            Option(index=position, label=self.question.options[original].label)
            for position, original in enumerate(self.option_order)
        ]

    @property
    def correct_options(self) -> FrozenSet[int]:
        """Correct options remapped to presented positions."""
        return frozenset(
            position for position, original in enumerate(self.option_order)
            if original in self.question.correct_options
        )

    @property
    def option_count(self) -> int:
        return len(self.option_order)


@dataclass(frozen=True)
class MaterializedQuiz:
    """The ordered questions and options of one attempt."""
    quiz_id: str
    questions: List[PresentedQuestion]

    @property
    def question_order(self) -> List[int]:
        return [q.question_index for q in self.questions]

    def option_orders(self, shuffled_only: bool = True) -> Dict[int, List[int]]:
        """Option order per position, omitting identity orders when ``shuffled_only``."""
        return {
            q.position: list(q.option_order)
            for q in self.questions
            if not shuffled_only or q.option_order != list(range(q.option_count))
        }

    def __len__(self) -> int:
        return len(self.questions)

    def __getitem__(self, position: int) -> PresentedQuestion:
        return self.questions[position]


class AttemptRandomizer:
    """Builds the per-attempt view of a quiz."""

    def materialize(self, quiz: Quiz, attempt_seed: str) -> MaterializedQuiz:
        """
        Fix the question and option order for an attempt.

        Args:
            quiz: Quiz definition
            attempt_seed: Seed for the shuffles, normally the attempt ID

        Returns:
            The materialized quiz
        """
        count = quiz.question_count
        if quiz.randomize_questions:
            order = seeded_permutation(count, attempt_seed, "questions")
        else:
            order = list(range(count))

        presented = []
        for position, question_index in enumerate(order):
            question = quiz.questions[question_index]
            if quiz.randomize_options:
                # Keyed by the original index so an option order does not depend on question order
                option_order = seeded_permutation(
                    len(question.options), attempt_seed, f"options:{question_index}"
                )
            else:
                option_order = list(range(len(question.options)))
            presented.append(PresentedQuestion(position, question_index, question, option_order))

        return MaterializedQuiz(quiz_id=quiz.id, questions=presented)

    def rebuild(self, quiz: Quiz, attempt: Attempt) -> MaterializedQuiz:
        """
        Reconstruct an attempt's view from its persisted orders.

        Args:
            quiz: Quiz definition the attempt was created from
            attempt: Attempt carrying the fixed orders

        Returns:
            The same view that was presented when the attempt started

        Raises:
            ValidationError: If the quiz no longer matches the stored orders
        """
        presented = []
        for position, question_index in enumerate(attempt.randomized_question_order):
            if not 0 <= question_index < quiz.question_count:
                raise ValidationError(
                    f"Attempt {attempt.id} references question {question_index} missing from quiz {quiz.id}",
                    details={"attempt_id": attempt.id, "quiz_id": quiz.id}
                )
            question = quiz.questions[question_index]
            option_order = self._stored_option_order(attempt, position, question)
            presented.append(PresentedQuestion(position, question_index, question, option_order))

        return MaterializedQuiz(quiz_id=quiz.id, questions=presented)

    @staticmethod
    def _stored_option_order(attempt: Attempt, position: int, question: Question) -> List[int]:
        stored: Optional[List[int]] = attempt.option_orders.get(position)
        if stored is None:
            return list(range(len(question.options)))
        if sorted(stored) != list(range(len(question.options))):
            raise ValidationError(
                f"Stored option order of attempt {attempt.id} does not match question {question.id}",
                details={"attempt_id": attempt.id, "question_id": question.id}
            )
        return list(stored)
