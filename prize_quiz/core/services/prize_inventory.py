"""Service managing prize tiers and their pools of redeemable codes."""

from __future__ import annotations

from collections import deque
import logging
from threading import Lock
from typing import Iterable

from prize_quiz.core.models import PrizeCode, PrizeTier

logger = logging.getLogger(__name__)


def score_percentage(score: int, total: int) -> int:
    """Floor percentage of ``score`` over ``total``; an empty quiz scores 0."""
    if total <= 0:
        return 0
    return score * 100 // total


class PrizeInventory:
    """Ordered prize tiers with per-tier code pools and an exclusive claim."""

    def __init__(
        self,
        tiers: Iterable[PrizeTier] = (),
        codes: Iterable[PrizeCode] = (),
        *,
        highest_tier_first: bool = False,
    ) -> None:
        ordered = list(tiers)
        if highest_tier_first:
            ordered.sort(key=lambda tier: tier.threshold_percent, reverse=True)
        self._tiers: tuple[PrizeTier, ...] = tuple(ordered)
        self._lock = Lock()
        self._pools: dict[str, deque[PrizeCode]] = {}
        self._issued: list[PrizeCode] = []
        seen: set[str] = set()
        for prize in codes:
            if prize.code in seen:
                logger.warning("Ignoring duplicate prize code %s", prize.code)
                continue
            seen.add(prize.code)
            if prize.used:
                self._issued.append(prize)
                continue
            self._pools.setdefault(prize.level, deque()).append(prize)

    @property
    def tiers(self) -> tuple[PrizeTier, ...]:
        return self._tiers

    def claim(self, achieved_percent: int) -> tuple[str, str]:
        """Claim one code from the first qualifying tier that still has stock.

        Tiers are walked in configured order; a qualifying tier whose pool is
        exhausted falls through to the next qualifying tier. Returns
        ``("", "")`` when nothing can be issued.
        """
        with self._lock:
            for tier in self._tiers:
                if tier.threshold_percent > achieved_percent:
                    continue
                pool = self._pools.get(tier.level)
                while pool:
                    prize = pool.popleft()
                    if prize.used:
                        continue
                    prize.used = True
                    self._issued.append(prize)
                    return prize.code, tier.level
            return "", ""

    def available_count(self, level: str | None = None) -> int:
        with self._lock:
            if level is not None:
                return sum(1 for prize in self._pools.get(level, ()) if not prize.used)
            return sum(1 for pool in self._pools.values() for prize in pool if not prize.used)

    def issued_codes(self) -> list[str]:
        with self._lock:
            return [prize.code for prize in self._issued]
