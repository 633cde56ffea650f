from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
import unittest

from prize_quiz.core.models import PrizeCode, PrizeTier
from prize_quiz.core.services.prize_inventory import PrizeInventory, score_percentage


def _codes(level: str, *codes: str) -> list[PrizeCode]:
    return [PrizeCode(code=code, level=level) for code in codes]


class ScorePercentageTests(unittest.TestCase):
    def test_floor_percentage(self) -> None:
        self.assertEqual(score_percentage(2, 3), 66)
        self.assertEqual(score_percentage(10, 10), 100)

    def test_empty_total_scores_zero(self) -> None:
        self.assertEqual(score_percentage(0, 0), 0)


class PrizeInventoryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tiers = [PrizeTier("gold", 90), PrizeTier("silver", 60)]
        self.codes = _codes("gold", "G1") + _codes("silver", "S1", "S2")

    def test_claims_first_qualifying_tier(self) -> None:
        inventory = PrizeInventory(self.tiers, self.codes)
        self.assertEqual(inventory.claim(95), ("G1", "gold"))
        self.assertEqual(inventory.claim(70), ("S1", "silver"))

    def test_exhausted_tier_falls_through_to_next_qualifying_tier(self) -> None:
        inventory = PrizeInventory(self.tiers, self.codes)
        inventory.claim(100)
        self.assertEqual(inventory.claim(100), ("S1", "silver"))

    def test_below_every_threshold_returns_empty(self) -> None:
        inventory = PrizeInventory(self.tiers, self.codes)
        self.assertEqual(inventory.claim(59), ("", ""))
        self.assertEqual(inventory.available_count(), 3)

    def test_tiers_are_walked_in_load_order(self) -> None:
        inventory = PrizeInventory(list(reversed(self.tiers)), self.codes)
        self.assertEqual(inventory.claim(100), ("S1", "silver"))

    def test_highest_tier_first_sorts_by_threshold(self) -> None:
        inventory = PrizeInventory(list(reversed(self.tiers)), self.codes, highest_tier_first=True)
        self.assertEqual([tier.level for tier in inventory.tiers], ["gold", "silver"])
        self.assertEqual(inventory.claim(100), ("G1", "gold"))

    def test_empty_inventory_never_issues(self) -> None:
        self.assertEqual(PrizeInventory().claim(100), ("", ""))

    def test_claim_marks_code_used_and_tracks_issue(self) -> None:
        inventory = PrizeInventory(self.tiers, self.codes)
        inventory.claim(100)
        self.assertTrue(self.codes[0].used)
        self.assertEqual(inventory.issued_codes(), ["G1"])
        self.assertEqual(inventory.available_count("gold"), 0)
        self.assertEqual(inventory.available_count("silver"), 2)

    def test_used_and_duplicate_codes_are_not_offered(self) -> None:
        codes = [PrizeCode("G1", "gold", used=True), PrizeCode("G2", "gold"), PrizeCode("G2", "gold")]
        inventory = PrizeInventory(self.tiers, codes)
        self.assertEqual(inventory.claim(100), ("G2", "gold"))
        self.assertEqual(inventory.claim(100), ("", ""))

    def test_sequential_claims_never_repeat_a_code(self) -> None:
        inventory = PrizeInventory(self.tiers, self.codes)
        claimed = [inventory.claim(100)[0] for _ in range(5)]
        issued = [code for code in claimed if code]
        self.assertEqual(sorted(issued), ["G1", "S1", "S2"])

    def test_concurrent_claims_never_repeat_a_code(self) -> None:
        codes = _codes("gold", *(f"G{i}" for i in range(200)))
        inventory = PrizeInventory([PrizeTier("gold", 0)], codes)
        with ThreadPoolExecutor(max_workers=16) as pool:
            results = list(pool.map(lambda _: inventory.claim(50)[0], range(400)))
        issued = [code for code in results if code]
        self.assertEqual(len(issued), 200)
        self.assertEqual(len(set(issued)), 200)


if __name__ == "__main__":
    unittest.main()
