"""Service holding the active question set and grading answers against it."""

from __future__ import annotations

import random
from typing import Iterable, Mapping, Sequence

from prize_quiz.constants.quiz_constants import SINGLE_CHOICE_TYPES
from prize_quiz.core.models import GradedAnswer, Question


def grade_question(question: Question, given: Sequence[int]) -> tuple[int, bool]:
    """Return ``(points_awarded, is_correct)`` for the given choice indices.

    Single-choice and judge questions need exactly one choice, matching the only
    correct index. Multi-select questions need the exact correct set; partial
    or repeated answers earn nothing.
    """
    if question.type in SINGLE_CHOICE_TYPES:
        if (
            len(given) == 1
            and len(question.correct_choices) == 1
            and given[0] in question.correct_choices
        ):
            return question.reward, True
        return 0, False

    if (
        question.correct_choices
        and len(given) == len(question.correct_choices)
        and set(given) == question.correct_choices
    ):
        return question.reward, True
    return 0, False


class QuestionBank:
    """Immutable collection of questions, replaced as a whole on reload."""

    def __init__(self, questions: Iterable[Question] = (), rng: random.Random | None = None) -> None:
        self._questions: tuple[Question, ...] = tuple(questions)
        seen_ids: set[str] = set()
        for question in self._questions:
            if question.id in seen_ids:
                raise ValueError(f"Duplicate question id '{question.id}'.")
            seen_ids.add(question.id)
        self._rng = rng or random.Random()

    def __len__(self) -> int:
        return len(self._questions)

    @property
    def questions(self) -> tuple[Question, ...]:
        return self._questions

    def total_points(self) -> int:
        return sum(question.reward for question in self._questions)

    def set_shuffle_seed(self, seed: int | None) -> None:
        self._rng.seed(seed)

    def deliver_shuffled(self) -> list[Question]:
        """Return every question exactly once in a fresh random order."""
        shuffled = list(self._questions)
        self._rng.shuffle(shuffled)
        return shuffled

    def grade_answers(
        self, answers: Mapping[str, Sequence[int]]
    ) -> tuple[int, int, list[GradedAnswer]]:
        """Grade a full answer map against the bank.

        Answers for ids outside the bank are ignored; questions without an
        answer count as incorrect. Returns ``(score, total, graded)``.
        """
        score = 0
        total = 0
        graded: list[GradedAnswer] = []
        for question in self._questions:
            given = list(answers.get(question.id, ()))
            points, is_correct = grade_question(question, given)
            total += question.reward
            score += points
            graded.append(
                GradedAnswer(
                    question_id=question.id,
                    given_labels=tuple(question.option_labels(given)),
                    points_awarded=points,
                    is_correct=is_correct,
                )
            )
        return score, total, graded
