"""Helpers that build quiz fixtures and workbooks for the tests."""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Iterable, Sequence

from openpyxl import Workbook

from prize_quiz.core.models import Question


def identity_hash(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def make_question(
    question_id: str = "q1",
    question_type: str = "single",
    options: Sequence[str] = ("Yes", "No"),
    correct: Iterable[int] = (0,),
    points: int = 1,
) -> Question:
    return Question(
        id=question_id,
        type=question_type,
        prompt=f"Prompt for {question_id}",
        options=tuple(options),
        correct_choices=frozenset(correct),
        points=points,
    )


def write_workbook(path: Path, sheets: dict[str, list[Sequence[object]]]) -> Path:
    """Write ``{sheet title: rows}`` to ``path``; the first row is the header."""
    workbook = Workbook()
    workbook.remove(workbook.active)
    for title, rows in sheets.items():
        sheet = workbook.create_sheet(title)
        for row in rows:
            sheet.append(list(row))
    workbook.save(path)
    return path
