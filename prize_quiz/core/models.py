"""Domain models for the prize quiz."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable

from prize_quiz.constants.quiz_constants import DEFAULT_QUESTION_POINTS


@dataclass(frozen=True, slots=True)
class Question:
    """A gradable question; ``correct_choices`` index into ``options``."""

    id: str
    type: str
    prompt: str
    options: tuple[str, ...]
    correct_choices: frozenset[int]
    points: int = DEFAULT_QUESTION_POINTS

    @property
    def reward(self) -> int:
        """Points granted for a correct answer."""
        return self.points if self.points > 0 else DEFAULT_QUESTION_POINTS

    def option_labels(self, indices: Iterable[int]) -> list[str]:
        """Map selected indices to their option text, dropping out-of-range entries."""
        return [self.options[index] for index in indices if 0 <= index < len(self.options)]


@dataclass(frozen=True, slots=True)
class PrizeTier:
    """Named prize level with the minimum score percentage that qualifies for it."""

    level: str
    threshold_percent: int


@dataclass(slots=True)
class PrizeCode:
    """Redeemable code belonging to a prize tier. ``used`` flips exactly once."""

    code: str
    level: str
    used: bool = False


@dataclass(frozen=True, slots=True)
class GradedAnswer:
    """Grading outcome for one question of a submission."""

    question_id: str
    given_labels: tuple[str, ...]
    points_awarded: int
    is_correct: bool

    def to_detail(self) -> dict[str, Any]:
        return {"given": list(self.given_labels), "correct": self.is_correct}


@dataclass(frozen=True, slots=True)
class SubmissionRecord:
    """One persisted row of the record store."""

    timestamp: datetime
    participant_name: str
    phone_hash: str
    id_hash: str
    score: int
    total: int
    assigned_code: str = ""
    detail: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class SubmissionResult:
    """Outcome returned to the participant after a successful submission."""

    score: int
    total: int
    percentage: int
    code: str
    prize_level: str

    def to_payload(self) -> dict[str, object]:
        return {
            "score": self.score,
            "total": self.total,
            "percentage": self.percentage,
            "code": self.code,
            "prize_level": self.prize_level,
        }
