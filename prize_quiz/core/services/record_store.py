"""Append-only workbook holding every submission.

The workbook is read in full on every scan and rewritten in full on every
append. Both operations run on a dedicated single-thread executor so they stay
strictly ordered and can be abandoned after ``timeout_seconds``. A timeout is
reported as a failure, never waited out, although the queued operation
still finishes later.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from datetime import datetime
import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, TypeVar
from zipfile import BadZipFile

from openpyxl import Workbook, load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from prize_quiz.constants.storage_constants import (
    RECORD_HEADER,
    RECORD_SHEET_TITLE,
    STORE_IO_TIMEOUT_SECONDS,
)
from prize_quiz.core.models import SubmissionRecord

logger = logging.getLogger(__name__)

_T = TypeVar("_T")
_OPEN_ERRORS = (OSError, BadZipFile, InvalidFileException, KeyError, ValueError)
# Malformed sheet XML surfaces as SyntaxError (ElementTree.ParseError) while iterating.
_PARSE_ERRORS = (BadZipFile, KeyError, ValueError, SyntaxError)


class StoreUnavailableError(RuntimeError):
    """Raised when the record store cannot be read or written in time."""


class StoreTimeoutError(StoreUnavailableError):
    """Raised when store I/O outlives its timeout. The abandoned operation still
    runs to completion in the background, so a timed-out append may yet be saved.
    """


class RecordStore:
    """Workbook-backed table of :class:`SubmissionRecord` rows."""

    def __init__(self, path: Path, *, timeout_seconds: float = STORE_IO_TIMEOUT_SECONDS) -> None:
        self._path = Path(path)
        self._timeout_seconds = timeout_seconds
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="RecordStoreIO")

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.exists()

    def read_records(self) -> list[SubmissionRecord]:
        """Return all persisted records; a missing workbook holds none."""
        return self._run("read", self._read_records)

    def append(self, record: SubmissionRecord) -> None:
        """Append one record, creating the workbook with a header row if needed."""
        self._run("append", self._append_record, record)

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def _run(self, action: str, func: Callable[..., _T], *args: Any) -> _T:
        future = self._executor.submit(func, *args)
        try:
            return future.result(timeout=self._timeout_seconds)
        except FutureTimeoutError as exc:
            raise StoreTimeoutError(
                f"Record store {action} on {self._path} timed out after {self._timeout_seconds}s."
            ) from exc

    def _read_records(self) -> list[SubmissionRecord]:
        if not self._path.exists():
            return []
        try:
            workbook = load_workbook(self._path, read_only=True)
        except _OPEN_ERRORS as exc:
            raise StoreUnavailableError(f"Cannot open record store {self._path}: {exc}") from exc
        try:
            if RECORD_SHEET_TITLE not in workbook.sheetnames:
                raise StoreUnavailableError(
                    f"Record store {self._path} has no sheet named '{RECORD_SHEET_TITLE}'."
                )
            sheet = workbook[RECORD_SHEET_TITLE]
            records: list[SubmissionRecord] = []
            rows = enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2)
            for row_number, row in rows:
                record = _record_from_row(row, row_number)
                if record is not None:
                    records.append(record)
            return records
        except _PARSE_ERRORS as exc:
            raise StoreUnavailableError(f"Cannot parse record store {self._path}: {exc}") from exc
        finally:
            workbook.close()

    def _append_record(self, record: SubmissionRecord) -> None:
        if self._path.exists():
            try:
                workbook = load_workbook(self._path)
            except _OPEN_ERRORS as exc:
                raise StoreUnavailableError(f"Cannot open record store {self._path}: {exc}") from exc
            if RECORD_SHEET_TITLE in workbook.sheetnames:
                sheet = workbook[RECORD_SHEET_TITLE]
            else:
                sheet = workbook.create_sheet(RECORD_SHEET_TITLE, 0)
                sheet.append(list(RECORD_HEADER))
        else:
            workbook = Workbook()
            sheet = workbook.active
            sheet.title = RECORD_SHEET_TITLE
            sheet.append(list(RECORD_HEADER))

        temporary_path = self._path.with_name(f".{self._path.name}.tmp")
        try:
            sheet.append(_row_from_record(record))
            # Participant-supplied text must never be evaluated as a formula.
            for cell in sheet[sheet.max_row]:
                if cell.data_type == "f":
                    cell.data_type = "s"
            self._path.parent.mkdir(parents=True, exist_ok=True)
            workbook.save(temporary_path)
            os.replace(temporary_path, self._path)
        except OSError as exc:
            raise StoreUnavailableError(f"Cannot write record store {self._path}: {exc}") from exc
        except Exception as exc:
            # Any other failure still means the record was not written.
            raise StoreUnavailableError(f"Cannot record submission in {self._path}: {exc}") from exc
        finally:
            workbook.close()


def _row_from_record(record: SubmissionRecord) -> list[object]:
    return [
        record.timestamp.isoformat(timespec="seconds"),
        record.participant_name,
        record.phone_hash,
        record.id_hash,
        record.score,
        record.total,
        record.assigned_code,
        json.dumps(record.detail, ensure_ascii=False),
    ]


def _record_from_row(row: tuple[Any, ...], row_number: int) -> SubmissionRecord | None:
    cells = list(row) + [None] * (len(RECORD_HEADER) - len(row))
    if all(value is None or str(value).strip() == "" for value in cells):
        return None
    timestamp = _parse_timestamp(cells[0])
    if timestamp is None:
        logger.warning("Skipping record row %d with unreadable timestamp %r", row_number, cells[0])
        return None
    return SubmissionRecord(
        timestamp=timestamp,
        participant_name=_text(cells[1]),
        phone_hash=_text(cells[2]),
        id_hash=_text(cells[3]),
        score=_integer(cells[4]),
        total=_integer(cells[5]),
        assigned_code=_text(cells[6]),
        detail=_parse_detail(cells[7], row_number),
    )


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _integer(value: Any) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 0


def _parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    text = _text(value)
    if not text:
        return None
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def _parse_detail(value: Any, row_number: int) -> dict[str, Any]:
    text = _text(value)
    if not text:
        return {}
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        logger.warning("Record row %d has a malformed detail column", row_number)
        return {}
    return parsed if isinstance(parsed, dict) else {}
