"""Business logic for running submissions against the shared quiz state.

All shared state (question bank, prize inventory, record store) is owned by
:class:`SubmissionCoordinator` and only touched inside its exclusive region, so
a reload can never interleave with a dedupe/grade/claim/persist cycle.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import date, datetime
import logging
from pathlib import Path
import random
import re
from threading import Lock
from typing import Callable, Iterable, Iterator, Mapping, Sequence

from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE

from prize_quiz.constants.quiz_constants import IDENTITY_HASH_LENGTH
from prize_quiz.constants.storage_constants import (
    DEFAULT_RESULTS_FILENAME,
    EXCLUSIVE_REGION_TIMEOUT_SECONDS,
    STORE_IO_TIMEOUT_SECONDS,
)
from prize_quiz.core.models import (
    PrizeCode,
    PrizeTier,
    Question,
    SubmissionRecord,
    SubmissionResult,
)
from prize_quiz.core.services.dedupe_guard import DedupeGuard
from prize_quiz.core.services.prize_inventory import PrizeInventory, score_percentage
from prize_quiz.core.services.question_bank import QuestionBank
from prize_quiz.core.services.record_store import (
    RecordStore,
    StoreTimeoutError,
    StoreUnavailableError,
)

logger = logging.getLogger(__name__)

_IDENTITY_HASH = re.compile(rf"[0-9a-fA-F]{{{IDENTITY_HASH_LENGTH}}}")


class SubmissionValidationError(ValueError):
    """Raised when identity fields are missing or malformed."""


class AlreadyAnsweredError(RuntimeError):
    """Raised when the participant already submitted today."""


class CoordinatorBusyError(RuntimeError):
    """Raised when the exclusive region could not be entered in time."""


@dataclass(frozen=True, slots=True)
class SubmissionRequest:
    """Answers submitted by one participant, keyed by question id."""

    name: str
    phone_hash: str
    id_hash: str
    answers: Mapping[str, Sequence[int]] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class CoordinatorStatus:
    """Snapshot of the loaded configuration for operators."""

    question_count: int
    total_points: int
    tier_count: int
    available_codes: int
    issued_codes: int
    results_path: str

    def to_payload(self) -> dict[str, object]:
        return {
            "question_count": self.question_count,
            "total_points": self.total_points,
            "tier_count": self.tier_count,
            "available_codes": self.available_codes,
            "issued_codes": self.issued_codes,
            "results_path": self.results_path,
        }


def validate_identity(phone_hash: str, id_hash: str) -> tuple[str, str]:
    """Check both identity hashes and return them lower-cased."""
    for label, value in (("phone hash", phone_hash), ("id hash", id_hash)):
        if not isinstance(value, str) or not _IDENTITY_HASH.fullmatch(value):
            raise SubmissionValidationError(
                f"The {label} must be {IDENTITY_HASH_LENGTH} hexadecimal characters."
            )
    return phone_hash.lower(), id_hash.lower()


def validate_submission(request: SubmissionRequest) -> SubmissionRequest:
    """Return a normalised copy of ``request`` or raise ``SubmissionValidationError``."""
    name = request.name.strip() if isinstance(request.name, str) else ""
    if not name:
        raise SubmissionValidationError("Name must not be empty.")
    # Control characters cannot be stored in a workbook cell.
    if ILLEGAL_CHARACTERS_RE.search(name):
        raise SubmissionValidationError("Name contains characters that cannot be recorded.")
    phone_hash, id_hash = validate_identity(request.phone_hash, request.id_hash)
    return replace(request, name=name, phone_hash=phone_hash, id_hash=id_hash)


class SubmissionCoordinator:
    """Facade over the question bank, prize inventory, dedupe guard and record store."""

    def __init__(
        self,
        results_path: Path | None = None,
        *,
        data_dir: Path = Path("."),
        highest_tier_first: bool = False,
        lock_timeout_seconds: float = EXCLUSIVE_REGION_TIMEOUT_SECONDS,
        store_timeout_seconds: float = STORE_IO_TIMEOUT_SECONDS,
        today: Callable[[], date] = date.today,
        now: Callable[[], datetime] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._lock = Lock()
        self._lock_timeout_seconds = lock_timeout_seconds
        self._store_timeout_seconds = store_timeout_seconds
        self._highest_tier_first = highest_tier_first
        self._today = today
        self._now = now or (lambda: datetime.now().astimezone())
        self._rng = rng or random.Random()

        self._bank = QuestionBank(rng=self._rng)
        self._inventory = PrizeInventory(highest_tier_first=highest_tier_first)
        self._store = RecordStore(
            results_path or Path(data_dir) / DEFAULT_RESULTS_FILENAME,
            timeout_seconds=store_timeout_seconds,
        )
        self._guard = DedupeGuard(self._store, today=today)

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        if not self._lock.acquire(timeout=self._lock_timeout_seconds):
            raise CoordinatorBusyError("The quiz server is busy, please try again.")
        try:
            yield
        finally:
            self._lock.release()

    # --- Configuration ---

    @property
    def results_path(self) -> Path:
        return self._store.path

    def set_results_path(self, path: Path) -> None:
        with self._exclusive():
            previous = self._store
            self._store = RecordStore(Path(path), timeout_seconds=self._store_timeout_seconds)
            self._guard = DedupeGuard(self._store, today=self._today)
            previous.close()
        logger.info("Record store set to %s", path)

    def load_question_bank(self, questions: Iterable[Question]) -> int:
        bank = QuestionBank(questions, rng=self._rng)
        with self._exclusive():
            self._bank = bank
        logger.info("Question bank replaced: %d question(s), %d point(s)", len(bank), bank.total_points())
        return len(bank)

    def load_prize_inventory(self, tiers: Iterable[PrizeTier], codes: Iterable[PrizeCode]) -> int:
        """Replace the inventory, dropping codes the record store shows as spent today."""
        tiers = list(tiers)
        codes = list(codes)
        with self._exclusive():
            used_today = self._guard.codes_used_today()
            available = [code for code in codes if code.code not in used_today]
            self._inventory = PrizeInventory(
                tiers, available, highest_tier_first=self._highest_tier_first
            )
            available_count = self._inventory.available_count()
        skipped = len(codes) - len(available)
        if skipped:
            logger.info("Skipped %d prize code(s) already issued today", skipped)
        logger.info("Prize inventory replaced: %d tier(s), %d available code(s)", len(tiers), available_count)
        return available_count

    def status(self) -> CoordinatorStatus:
        with self._exclusive():
            return CoordinatorStatus(
                question_count=len(self._bank),
                total_points=self._bank.total_points(),
                tier_count=len(self._inventory.tiers),
                available_codes=self._inventory.available_count(),
                issued_codes=len(self._inventory.issued_codes()),
                results_path=str(self._store.path),
            )

    # --- Participant operations ---

    def deliver_questions(self) -> list[Question]:
        with self._exclusive():
            bank = self._bank
        return bank.deliver_shuffled()

    def has_answered_today(self, phone_hash: str, id_hash: str) -> bool:
        phone_hash, id_hash = validate_identity(phone_hash, id_hash)
        with self._exclusive():
            return self._guard.has_answered_today(phone_hash, id_hash)

    def submit(self, request: SubmissionRequest) -> SubmissionResult:
        """Grade, dedupe, allocate and persist one submission.

        Once the exclusive region is entered the submission runs to completion.
        A code claimed before a failed persist stays used; it is logged so an
        operator can reconcile it by hand.
        """
        request = validate_submission(request)
        with self._exclusive():
            if self._guard.has_answered_today(request.phone_hash, request.id_hash):
                logger.warning("Rejected repeat submission from %s", request.name)
                raise AlreadyAnsweredError("This participant has already answered today.")

            score, total, graded = self._bank.grade_answers(request.answers)
            percentage = score_percentage(score, total)
            code, level = ("", "") if total <= 0 else self._inventory.claim(percentage)

            record = SubmissionRecord(
                timestamp=self._now(),
                participant_name=request.name,
                phone_hash=request.phone_hash,
                id_hash=request.id_hash,
                score=score,
                total=total,
                assigned_code=code,
                detail={answer.question_id: answer.to_detail() for answer in graded},
            )
            try:
                self._store.append(record)
            except StoreUnavailableError as exc:
                late_write = (
                    "; the write timed out and may still be saved, check the store before reissuing"
                    if isinstance(exc, StoreTimeoutError)
                    else ""
                )
                if code:
                    logger.error(
                        "Prize code %s (level %s) was claimed for %s but the submission was not "
                        "persisted; reconcile manually%s",
                        code,
                        level,
                        request.name,
                        late_write,
                    )
                else:
                    logger.error("Submission from %s could not be persisted%s", request.name, late_write)
                raise

        if code:
            logger.info("Issued %s code %s to %s (%d/%d)", level, code, request.name, score, total)
        return SubmissionResult(
            score=score,
            total=total,
            percentage=percentage,
            code=code,
            prize_level=level,
        )

    def close(self) -> None:
        with self._exclusive():
            self._store.close()
