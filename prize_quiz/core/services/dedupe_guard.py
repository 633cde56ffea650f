"""Same-day duplicate detection backed by the record store."""

from __future__ import annotations

from datetime import date, datetime
from typing import Callable, Iterator

from prize_quiz.core.models import SubmissionRecord
from prize_quiz.core.services.record_store import RecordStore


def _local_date(timestamp: datetime) -> date:
    if timestamp.tzinfo is not None:
        return timestamp.astimezone().date()
    return timestamp.date()


class DedupeGuard:
    """Answers "was this participant or code already used today?".

    Every query rescans the store. Store failures propagate as
    ``StoreUnavailableError`` so an unreadable store never reads as "unused".
    """

    def __init__(self, store: RecordStore, today: Callable[[], date] = date.today) -> None:
        self._store = store
        self._today = today

    def _records_today(self) -> Iterator[SubmissionRecord]:
        today = self._today()
        for record in self._store.read_records():
            if _local_date(record.timestamp) == today:
                yield record

    def has_answered_today(self, phone_hash: str, id_hash: str) -> bool:
        return any(
            record.phone_hash == phone_hash or record.id_hash == id_hash
            for record in self._records_today()
        )

    def is_code_used_today(self, code: str) -> bool:
        return any(record.assigned_code == code for record in self._records_today())

    def codes_used_today(self) -> set[str]:
        return {record.assigned_code for record in self._records_today() if record.assigned_code}
