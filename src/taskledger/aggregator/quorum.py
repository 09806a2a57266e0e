"""Agreement rule — decides a single (status, result) from operator claims.

Claims are grouped by outcome. The leading outcome is decided when its
supporters exceed ``threshold`` of:

- the eligible operator set, at any time (early decision: the remaining
  operators can no longer overturn it), or
- the claims actually received, once the collection window has closed
  and at least ``min_claims`` claims arrived.

A tie for the lead never decides. With a threshold of at least one half
no two outcomes can both be decided for the same claim set.

Pure computation: no I/O, no clock, no locking.
"""

from __future__ import annotations

from dataclasses import dataclass
from fractions import Fraction
from typing import Any, Iterable, Optional

from taskledger.models.claim import SettlementClaim
from taskledger.models.task import TaskStatus


DEFAULT_THRESHOLD = Fraction(1, 2)


@dataclass(frozen=True)
class QuorumOutcome:
    """The outcome a claim set agrees on."""
    status: TaskStatus
    result: int
    supporters: tuple[str, ...]


class QuorumRule:
    """Strict-threshold agreement rule.

    Parameters (via *config* dict):
        quorum_threshold : str | Fraction — supporters must exceed this share (default "1/2")
        min_claims       : int            — claims required for a window-close decision (default 1)
    """

    def __init__(self, config: Optional[dict[str, Any]] = None) -> None:
        config = config or {}
        self._threshold = Fraction(config.get("quorum_threshold", DEFAULT_THRESHOLD))
        self._min_claims = int(config.get("min_claims", 1))

        if not DEFAULT_THRESHOLD <= self._threshold < 1:
            raise ValueError(
                f"quorum_threshold must be in [1/2, 1), got {self._threshold}"
            )
        if self._min_claims < 1:
            raise ValueError(f"min_claims must be >= 1, got {self._min_claims}")

    @property
    def threshold(self) -> Fraction:
        return self._threshold

    @property
    def min_claims(self) -> int:
        return self._min_claims

    def evaluate(
        self,
        claims: Iterable[SettlementClaim],
        eligible: int,
        window_closed: bool = False,
    ) -> Optional[QuorumOutcome]:
        """Return the decided outcome, or None if there is none yet."""
        claims = list(claims)
        if len(claims) < self._min_claims:
            return None

        groups: dict[tuple[TaskStatus, int], list[str]] = {}
        for claim in claims:
            groups.setdefault(claim.outcome, []).append(claim.operator)

        ranked = sorted(groups.items(), key=lambda kv: len(kv[1]), reverse=True)
        (status, result), supporters = ranked[0]
        if len(ranked) > 1 and len(ranked[1][1]) == len(supporters):
            return None

        count = len(supporters)
        if self._exceeds(count, eligible) or (
            window_closed and self._exceeds(count, len(claims))
        ):
            return QuorumOutcome(
                status=status,
                result=result,
                supporters=tuple(sorted(supporters)),
            )
        return None

    def _exceeds(self, count: int, total: int) -> bool:
        return total > 0 and Fraction(count) > self._threshold * total
