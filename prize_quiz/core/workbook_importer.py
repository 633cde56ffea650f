"""Utilities for importing questions, prizes and the results path from workbooks.

Question workbook (two sheets):

    Sheet1  type | description | quantity       (quota per question type)
    Sheet2  id | type | question | options | answer | score

    Only the first ``quantity`` questions of each type in Sheet1 are loaded, in
    sheet order; types without a quota row are skipped. A workbook with a single
    sheet is read as the question table without quotas.

    options:  "A:Paris;B:Rome;C:Berlin"   (labels are optional)
    answer:   "B", "A;C", "A,C", "AC" or literal indices such as "0;2"
    score:    positive integer, defaults to 1

Prize workbook:

    Sheet1  level | threshold                    (minimum score percentage)
    Sheet2  level | code

Results-path workbook: cell A2 of Sheet1 holds the record store path.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
import re
from typing import Any, Iterator
from zipfile import BadZipFile

from openpyxl import load_workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.workbook.workbook import Workbook

from prize_quiz.constants.quiz_constants import (
    DEFAULT_QUESTION_POINTS,
    QUESTION_TYPE_MULTI,
    QUESTION_TYPES,
    SINGLE_CHOICE_TYPES,
)
from prize_quiz.constants.storage_constants import (
    PRIZE_CODE_SHEET,
    PRIZE_TIER_SHEET,
    QUESTION_QUOTA_SHEET,
    QUESTION_SHEET,
    RESULTS_PATH_SHEET,
)
from prize_quiz.core.models import PrizeCode, PrizeTier, Question

logger = logging.getLogger(__name__)

_OPTION_SEPARATOR = re.compile(r"[;；]")
_OPTION_LABEL = re.compile(r"^[A-Za-z]\s*[:：]\s*")
_ANSWER_SEPARATOR = re.compile(r"[;,，；\s]+")


class WorkbookImportError(Exception):
    """Raised when a workbook cannot be read or holds malformed rows."""


@dataclass(slots=True)
class ImportedQuestionBank:
    """Questions read from a question workbook."""

    source_path: Path
    questions: list[Question]


@dataclass(slots=True)
class ImportedPrizes:
    """Tiers and codes read from a prize workbook."""

    source_path: Path
    tiers: list[PrizeTier]
    codes: list[PrizeCode]


def load_questions_from_workbook(file_path: Path) -> ImportedQuestionBank:
    workbook = _open_workbook(file_path)
    try:
        quotas: dict[str, int] | None = None
        if QUESTION_SHEET in workbook.sheetnames:
            quotas = _read_quotas(_require_sheet(workbook, QUESTION_QUOTA_SHEET, file_path))
            sheet = workbook[QUESTION_SHEET]
        else:
            sheet = workbook.worksheets[0]
        questions = _read_questions(sheet, quotas)
    finally:
        workbook.close()
    logger.info("Loaded %d question(s) from %s", len(questions), file_path)
    return ImportedQuestionBank(source_path=Path(file_path), questions=questions)


def load_prizes_from_workbook(file_path: Path) -> ImportedPrizes:
    workbook = _open_workbook(file_path)
    try:
        tiers = _read_tiers(_require_sheet(workbook, PRIZE_TIER_SHEET, file_path))
        codes = _read_codes(_require_sheet(workbook, PRIZE_CODE_SHEET, file_path))
    finally:
        workbook.close()

    known_levels = {tier.level for tier in tiers}
    orphaned = sorted({code.level for code in codes} - known_levels)
    if orphaned:
        logger.warning("Prize codes reference unknown level(s) %s; they can never be issued", orphaned)
    logger.info("Loaded %d prize tier(s) and %d code(s) from %s", len(tiers), len(codes), file_path)
    return ImportedPrizes(source_path=Path(file_path), tiers=tiers, codes=codes)


def load_results_path_from_workbook(file_path: Path) -> Path:
    workbook = _open_workbook(file_path)
    try:
        sheet = _require_sheet(workbook, RESULTS_PATH_SHEET, file_path)
        value = ""
        for row in sheet.iter_rows(min_row=2, max_row=2, max_col=1, values_only=True):
            value = _cell_text(row[0]) if row else ""
    finally:
        workbook.close()
    if not value:
        raise WorkbookImportError(
            f"{file_path}: the second row of the first column must hold the results path."
        )
    return Path(value)


def _open_workbook(file_path: Path) -> Workbook:
    try:
        return load_workbook(file_path, read_only=True, data_only=True)
    except (OSError, BadZipFile, InvalidFileException, KeyError) as exc:
        raise WorkbookImportError(f"Cannot open workbook {file_path}: {exc}") from exc


def _require_sheet(workbook: Workbook, title: str, file_path: Path):
    if title not in workbook.sheetnames:
        raise WorkbookImportError(f"{file_path}: missing sheet '{title}'.")
    return workbook[title]


def _data_rows(sheet) -> Iterator[tuple[int, list[str]]]:
    """Yield ``(row_number, cells)`` for non-empty rows below the header."""
    for row_number, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        cells = [_cell_text(value) for value in row]
        if any(cells):
            yield row_number, cells


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return ILLEGAL_CHARACTERS_RE.sub("", str(value)).strip()


def _parse_int(text: str) -> int | None:
    try:
        return int(float(text))
    except (ValueError, OverflowError):
        return None


def _read_quotas(sheet) -> dict[str, int]:
    quotas: dict[str, int] = {}
    for _, cells in _data_rows(sheet):
        if len(cells) < 3:
            continue
        quantity = _parse_int(cells[2])
        if quantity is not None:
            quotas[cells[0].lower()] = quantity
    return quotas


def _read_questions(sheet, quotas: dict[str, int] | None) -> list[Question]:
    questions: list[Question] = []
    seen_ids: set[str] = set()
    type_counts: dict[str, int] = {}

    for row_number, cells in _data_rows(sheet):
        if len(cells) < 4:
            continue
        question_type = cells[1].lower()
        if quotas is not None:
            if question_type not in quotas:
                continue
            if type_counts.get(question_type, 0) >= quotas[question_type]:
                continue

        question = _parse_question(row_number, cells)
        if question.id in seen_ids:
            raise WorkbookImportError(f"Row {row_number}: duplicate question id '{question.id}'.")
        seen_ids.add(question.id)
        questions.append(question)
        type_counts[question_type] = type_counts.get(question_type, 0) + 1
    return questions


def _parse_question(row_number: int, cells: list[str]) -> Question:
    question_id = cells[0]
    if not question_id:
        raise WorkbookImportError(f"Row {row_number}: question id is missing.")
    question_type = cells[1].lower()
    if question_type not in QUESTION_TYPES:
        raise WorkbookImportError(
            f"Row {row_number}: unknown question type '{cells[1]}' (expected one of {', '.join(QUESTION_TYPES)})."
        )

    options = _parse_options(cells[3])
    if not options:
        raise WorkbookImportError(f"Row {row_number}: question '{question_id}' has no options.")

    answer_text = cells[4] if len(cells) > 4 else ""
    correct = _parse_answer(answer_text)
    if any(not 0 <= index < len(options) for index in correct):
        raise WorkbookImportError(
            f"Row {row_number}: answer '{answer_text}' does not match the {len(options)} option(s)."
        )
    if question_type in SINGLE_CHOICE_TYPES and len(correct) != 1:
        raise WorkbookImportError(
            f"Row {row_number}: {question_type} question '{question_id}' needs exactly one answer."
        )
    if question_type == QUESTION_TYPE_MULTI and not correct:
        raise WorkbookImportError(f"Row {row_number}: multi question '{question_id}' has no answer.")

    points = DEFAULT_QUESTION_POINTS
    if len(cells) > 5 and cells[5]:
        parsed = _parse_int(cells[5])
        if parsed is not None:
            points = parsed

    return Question(
        id=question_id,
        type=question_type,
        prompt=cells[2],
        options=tuple(options),
        correct_choices=frozenset(correct),
        points=points,
    )


def _parse_options(raw: str) -> list[str]:
    options: list[str] = []
    for part in _OPTION_SEPARATOR.split(raw):
        text = _OPTION_LABEL.sub("", part.strip(), count=1).strip()
        if text:
            options.append(text)
    return options


def _parse_answer(raw: str) -> list[int]:
    indices: list[int] = []
    for token in _ANSWER_SEPARATOR.split(raw.strip()):
        if not token:
            continue
        if token.isdigit():
            indices.append(int(token))
        elif token.isascii() and token.isalpha():
            indices.extend(ord(letter) - ord("A") for letter in token.upper())
    return indices


def _read_tiers(sheet) -> list[PrizeTier]:
    tiers: list[PrizeTier] = []
    for row_number, cells in _data_rows(sheet):
        if len(cells) < 2 or not cells[0] or not cells[1]:
            continue
        threshold = _parse_int(cells[1])
        if threshold is None:
            continue
        if not 0 <= threshold <= 100:
            raise WorkbookImportError(
                f"Row {row_number}: threshold for level '{cells[0]}' must be between 0 and 100."
            )
        tiers.append(PrizeTier(level=cells[0], threshold_percent=threshold))
    return tiers


def _read_codes(sheet) -> list[PrizeCode]:
    codes: list[PrizeCode] = []
    seen: set[str] = set()
    for row_number, cells in _data_rows(sheet):
        if len(cells) < 2 or not cells[0] or not cells[1]:
            continue
        if cells[1] in seen:
            logger.warning("Row %d: duplicate prize code %s ignored", row_number, cells[1])
            continue
        seen.add(cells[1])
        codes.append(PrizeCode(code=cells[1], level=cells[0]))
    return codes
