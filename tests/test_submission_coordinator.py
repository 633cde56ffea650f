from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime
from pathlib import Path
import tempfile
import threading
import unittest
from unittest import mock

from prize_quiz.core.models import PrizeCode, PrizeTier
from prize_quiz.core.services.record_store import (
    RecordStore,
    StoreTimeoutError,
    StoreUnavailableError,
)
from prize_quiz.core.submission_coordinator import (
    AlreadyAnsweredError,
    CoordinatorBusyError,
    SubmissionCoordinator,
    SubmissionRequest,
    SubmissionValidationError,
    validate_submission,
)
from sheet_builders import identity_hash, make_question

TODAY = date(2026, 10, 18)
NOW = datetime(2026, 10, 18, 10, 0).astimezone()


def _request(person: str = "alice", answer: int = 0, name: str | None = None) -> SubmissionRequest:
    return SubmissionRequest(
        name=name if name is not None else person.title(),
        phone_hash=identity_hash(f"phone:{person}"),
        id_hash=identity_hash(f"id:{person}"),
        answers={"q1": [answer]},
    )


class ValidationTests(unittest.TestCase):
    def test_name_is_required(self) -> None:
        with self.assertRaises(SubmissionValidationError):
            validate_submission(_request(name="   "))

    def test_hashes_must_be_64_hex_characters(self) -> None:
        for phone_hash in ("", "abc", "z" * 64, "a" * 63, "a" * 65, "a" * 64 + "\n"):
            with self.subTest(phone_hash=phone_hash):
                request = SubmissionRequest(name="Ada", phone_hash=phone_hash, id_hash="b" * 64)
                with self.assertRaises(SubmissionValidationError):
                    validate_submission(request)

    def test_request_is_normalised(self) -> None:
        request = SubmissionRequest(name="  Ada ", phone_hash="A" * 64, id_hash="B" * 64)
        normalised = validate_submission(request)
        self.assertEqual(normalised.name, "Ada")
        self.assertEqual(normalised.phone_hash, "a" * 64)
        self.assertEqual(normalised.id_hash, "b" * 64)


class SubmissionCoordinatorTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.results_path = Path(self._tmp.name) / "out" / "records.xlsx"
        self.coordinator = SubmissionCoordinator(
            self.results_path,
            today=lambda: TODAY,
            now=lambda: NOW,
            lock_timeout_seconds=5,
        )
        self.coordinator.load_question_bank(
            [make_question("q1", options=("Right", "Wrong"), correct=(0,), points=10)]
        )
        self.coordinator.load_prize_inventory([PrizeTier("gold", 80)], [PrizeCode("G1", "gold")])

    def tearDown(self) -> None:
        self.coordinator.close()
        self._tmp.cleanup()

    def _stored_records(self):
        store = RecordStore(self.results_path)
        try:
            return store.read_records()
        finally:
            store.close()

    def test_correct_answer_wins_the_gold_code(self) -> None:
        result = self.coordinator.submit(_request())
        self.assertEqual(
            result.to_payload(),
            {"score": 10, "total": 10, "percentage": 100, "code": "G1", "prize_level": "gold"},
        )

        records = self._stored_records()
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0].assigned_code, "G1")
        self.assertEqual(records[0].participant_name, "Alice")
        self.assertEqual(records[0].detail, {"q1": {"given": ["Right"], "correct": True}})

    def test_second_attempt_on_the_same_day_is_rejected(self) -> None:
        self.coordinator.submit(_request())
        with self.assertRaises(AlreadyAnsweredError):
            self.coordinator.submit(_request())
        self.assertEqual(len(self._stored_records()), 1)
        self.assertTrue(
            self.coordinator.has_answered_today(identity_hash("phone:alice"), identity_hash("id:alice"))
        )

    def test_matching_either_hash_counts_as_answered(self) -> None:
        self.coordinator.submit(_request())
        same_phone = SubmissionRequest(
            name="Mallory",
            phone_hash=identity_hash("phone:alice"),
            id_hash=identity_hash("id:mallory"),
            answers={"q1": [0]},
        )
        with self.assertRaises(AlreadyAnsweredError):
            self.coordinator.submit(same_phone)

    def test_wrong_answer_earns_nothing(self) -> None:
        result = self.coordinator.submit(_request(answer=1))
        self.assertEqual(
            result.to_payload(),
            {"score": 0, "total": 10, "percentage": 0, "code": "", "prize_level": ""},
        )
        self.assertEqual(self.coordinator.status().available_codes, 1)

    def test_exhausted_pool_returns_no_code(self) -> None:
        self.coordinator.submit(_request("alice"))
        result = self.coordinator.submit(_request("bob"))
        self.assertEqual((result.score, result.code, result.prize_level), (10, "", ""))

    def test_empty_bank_scores_zero_without_prize(self) -> None:
        self.coordinator.load_question_bank([])
        result = self.coordinator.submit(_request())
        self.assertEqual((result.total, result.percentage, result.code), (0, 0, ""))
        self.assertEqual(self.coordinator.status().available_codes, 1)

    def test_validation_failure_has_no_side_effects(self) -> None:
        with self.assertRaises(SubmissionValidationError):
            self.coordinator.submit(_request(name=""))
        self.assertFalse(self.results_path.exists())

    def test_reload_skips_codes_already_issued_today(self) -> None:
        self.coordinator.submit(_request())
        available = self.coordinator.load_prize_inventory(
            [PrizeTier("gold", 80)], [PrizeCode("G1", "gold"), PrizeCode("G2", "gold")]
        )
        self.assertEqual(available, 1)
        self.assertEqual(self.coordinator.submit(_request("bob")).code, "G2")

    def test_failed_persist_keeps_the_code_claimed(self) -> None:
        with mock.patch.object(RecordStore, "append", side_effect=StoreUnavailableError("disk full")):
            with self.assertLogs("prize_quiz.core.submission_coordinator", level="ERROR") as logs:
                with self.assertRaises(StoreUnavailableError):
                    self.coordinator.submit(_request())
        self.assertIn("G1", logs.output[0])
        status = self.coordinator.status()
        self.assertEqual(status.available_codes, 0)
        self.assertEqual(status.issued_codes, 1)
        self.assertFalse(self.results_path.exists())

    def test_unrecordable_name_is_rejected_before_claiming(self) -> None:
        self.coordinator.load_prize_inventory(
            [PrizeTier("gold", 80)], [PrizeCode("G1", "gold"), PrizeCode("G2", "gold")]
        )
        for _ in range(2):
            with self.assertRaises(SubmissionValidationError):
                self.coordinator.submit(_request(name="Eve\x07"))
        status = self.coordinator.status()
        self.assertEqual((status.available_codes, status.issued_codes), (2, 0))
        self.assertFalse(self.results_path.exists())

    def test_unexpected_write_failure_still_logs_the_orphaned_claim(self) -> None:
        with mock.patch(
            "prize_quiz.core.services.record_store._row_from_record",
            side_effect=ValueError("cell rejected"),
        ):
            with self.assertLogs("prize_quiz.core.submission_coordinator", level="ERROR") as logs:
                with self.assertRaises(StoreUnavailableError):
                    self.coordinator.submit(_request())
        self.assertIn("G1", logs.output[0])
        self.assertEqual(self.coordinator.status().issued_codes, 1)

    def test_timed_out_write_is_flagged_for_reconciliation(self) -> None:
        with mock.patch.object(RecordStore, "append", side_effect=StoreTimeoutError("slow disk")):
            with self.assertLogs("prize_quiz.core.submission_coordinator", level="ERROR") as logs:
                with self.assertRaises(StoreUnavailableError):
                    self.coordinator.submit(_request())
        self.assertIn("G1", logs.output[0])
        self.assertIn("may still be saved", logs.output[0])

    def test_unreadable_store_aborts_before_claiming(self) -> None:
        self.results_path.parent.mkdir(parents=True, exist_ok=True)
        self.results_path.write_bytes(b"corrupt")
        with self.assertRaises(StoreUnavailableError):
            self.coordinator.submit(_request())
        self.assertEqual(self.coordinator.status().available_codes, 1)

    def test_busy_coordinator_times_out(self) -> None:
        coordinator = SubmissionCoordinator(self.results_path, lock_timeout_seconds=0.05)
        try:
            coordinator._lock.acquire()
            try:
                with self.assertRaises(CoordinatorBusyError):
                    coordinator.submit(_request())
            finally:
                coordinator._lock.release()
        finally:
            coordinator.close()

    def test_set_results_path_switches_store(self) -> None:
        other = Path(self._tmp.name) / "other.xlsx"
        self.coordinator.set_results_path(other)
        self.coordinator.submit(_request())
        self.assertEqual(self.coordinator.results_path, other)
        self.assertTrue(other.exists())
        self.assertFalse(self.results_path.exists())

    def test_deliver_questions_returns_the_loaded_bank(self) -> None:
        questions = self.coordinator.deliver_questions()
        self.assertEqual([q.id for q in questions], ["q1"])

    def test_concurrent_submissions_from_one_participant_succeed_once(self) -> None:
        barrier = threading.Barrier(8)

        def attempt(_: int) -> str:
            barrier.wait()
            try:
                return self.coordinator.submit(_request()).code or "none"
            except AlreadyAnsweredError:
                return "rejected"

        with ThreadPoolExecutor(max_workers=8) as pool:
            outcomes = list(pool.map(attempt, range(8)))
        self.assertEqual(outcomes.count("G1"), 1)
        self.assertEqual(outcomes.count("rejected"), 7)
        self.assertEqual(len(self._stored_records()), 1)

    def test_concurrent_submissions_never_share_a_code(self) -> None:
        codes = [PrizeCode(f"G{i}", "gold") for i in range(5)]
        self.coordinator.load_prize_inventory([PrizeTier("gold", 80)], codes)
        people = [f"person{i}" for i in range(8)]

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda person: self.coordinator.submit(_request(person)), people))
        issued = [result.code for result in results if result.code]
        self.assertEqual(sorted(issued), [f"G{i}" for i in range(5)])
        self.assertEqual(len(self._stored_records()), 8)


if __name__ == "__main__":
    unittest.main()
