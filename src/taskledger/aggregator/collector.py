"""Claim collector — per-task accumulators guarded against concurrent intake.

Claims arrive from many listeners at once and out of order. Each task
gets one accumulator keyed by operator address; every read-modify-write
of an accumulator happens under one lock, which is also where a task is
reserved for settlement, so a decision can be taken at most once.

Collection lifecycle:
    COLLECTING → SETTLING → SETTLED
               → STALLED  → SETTLING (a late majority can still decide)
    SETTLING → SUBMISSION_FAILED → SETTLING (retried on the next sweep)
    SETTLING → REJECTED (the ledger refused the settlement)

SETTLED and REJECTED collections are kept until prune() drops them, so
late claims are reported as DISCARDED rather than unknown for as long
as the caller's retention period lasts.
"""

from __future__ import annotations

import enum
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from taskledger.aggregator.quorum import QuorumOutcome, QuorumRule
from taskledger.models.claim import Decision, SettlementClaim
from taskledger.models.task import TaskRequest


class CollectionState(str, enum.Enum):
    """Aggregator-side state of one task."""
    COLLECTING = "collecting"
    STALLED = "stalled"
    SETTLING = "settling"
    SUBMISSION_FAILED = "submission_failed"
    SETTLED = "settled"
    REJECTED = "rejected"


_ACCEPTING = (CollectionState.COLLECTING, CollectionState.STALLED)
_FINISHED = (CollectionState.SETTLED, CollectionState.REJECTED)


class ClaimDisposition(str, enum.Enum):
    """What happened to an accepted-for-processing claim."""
    ACCEPTED = "accepted"
    QUORUM_REACHED = "quorum_reached"
    DISCARDED = "discarded"


class ClaimRejected(Exception):
    """A claim that must not count towards any decision."""

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason


@dataclass
class TaskCollection:
    """Accumulator for one task."""
    request: TaskRequest
    eligible: frozenset[str]
    opened_utc: datetime
    deadline_utc: datetime
    round: int = 1
    state: CollectionState = CollectionState.COLLECTING
    claims: dict[str, SettlementClaim] = field(default_factory=dict)
    equivocators: set[str] = field(default_factory=set)
    decision: Optional[Decision] = None
    finished_utc: Optional[datetime] = None


@dataclass(frozen=True)
class ExpiredWindow:
    """A collection window that closed during a sweep.

    state is where the task went when the window closed: SETTLING (with
    the outcome to submit), COLLECTING (another round) or STALLED.
    agreed is False when the outcome is the no-quorum fallback.
    """
    task_id: str
    round: int
    state: CollectionState
    outcome: Optional[QuorumOutcome] = None
    agreed: bool = False


class ClaimCollector:
    """Thread-safe store of task accumulators."""

    def __init__(self, rule: QuorumRule, window: timedelta) -> None:
        self._rule = rule
        self._window = window
        self._lock = threading.Lock()
        self._tasks: dict[str, TaskCollection] = {}

    def open(self, request: TaskRequest, eligible: frozenset[str], now: datetime) -> bool:
        """Start collecting for a task. Returns False if already tracked."""
        with self._lock:
            if request.task_id in self._tasks:
                return False
            self._tasks[request.task_id] = TaskCollection(
                request=request,
                eligible=eligible,
                opened_utc=now,
                deadline_utc=now + self._window,
            )
            return True

    def add(
        self, claim: SettlementClaim, now: datetime,
    ) -> tuple[ClaimDisposition, Optional[QuorumOutcome]]:
        """Record a verified claim and evaluate the early-decision rule.

        On QUORUM_REACHED the task has been reserved for settlement and
        the caller must submit the returned outcome.
        """
        with self._lock:
            collection = self._tasks.get(claim.task_id)
            if collection is None:
                raise ClaimRejected("unknown_task", f"Unknown task: {claim.task_id}")
            if collection.state not in _ACCEPTING:
                return ClaimDisposition.DISCARDED, None

            previous = collection.claims.get(claim.operator)
            if previous is not None:
                if previous.outcome == claim.outcome:
                    raise ClaimRejected(
                        "duplicate",
                        f"Duplicate claim from {claim.operator} for {claim.task_id}",
                    )
                collection.equivocators.add(claim.operator)
                raise ClaimRejected(
                    "equivocation",
                    f"Conflicting claim from {claim.operator} for {claim.task_id}",
                )

            collection.claims[claim.operator] = claim
            outcome = self._rule.evaluate(
                collection.claims.values(), len(collection.eligible)
            )
            if outcome is None:
                return ClaimDisposition.ACCEPTED, None
            self._reserve(collection, outcome, now)
            return ClaimDisposition.QUORUM_REACHED, outcome

    def expire(
        self,
        now: datetime,
        max_rounds: int,
        fallback: Optional[QuorumOutcome] = None,
    ) -> list[ExpiredWindow]:
        """Close every window whose deadline has passed.

        The next state is chosen under the same lock that closed the
        window, so no claim can slip in between. A decided window is
        reserved for settlement. An undecided one gets another round
        until max_rounds; after that it is reserved with *fallback*, or
        left STALLED when there is none.
        """
        expired: list[ExpiredWindow] = []
        with self._lock:
            for task_id, collection in self._tasks.items():
                if collection.state != CollectionState.COLLECTING:
                    continue
                if now < collection.deadline_utc:
                    continue
                closed_round = collection.round
                outcome = self._rule.evaluate(
                    collection.claims.values(),
                    len(collection.eligible),
                    window_closed=True,
                )
                agreed = outcome is not None
                if outcome is None and closed_round < max_rounds:
                    collection.round += 1
                    collection.deadline_utc = now + self._window
                elif outcome is None and fallback is None:
                    collection.state = CollectionState.STALLED
                else:
                    outcome = outcome or fallback
                    self._reserve(collection, outcome, now)
                expired.append(ExpiredWindow(
                    task_id=task_id,
                    round=closed_round,
                    state=collection.state,
                    outcome=outcome,
                    agreed=agreed,
                ))
        return expired

    def prune(self, finished_before: datetime) -> list[str]:
        """Drop SETTLED and REJECTED collections finished by the given time."""
        with self._lock:
            stale = [
                tid for tid, c in self._tasks.items()
                if c.state in _FINISHED
                and c.finished_utc is not None
                and c.finished_utc <= finished_before
            ]
            for tid in stale:
                del self._tasks[tid]
            return stale

    def claim_failed_submissions(self) -> list[TaskCollection]:
        """Move SUBMISSION_FAILED tasks back to SETTLING and return them."""
        with self._lock:
            retry = [
                c for c in self._tasks.values()
                if c.state == CollectionState.SUBMISSION_FAILED
            ]
            for collection in retry:
                collection.state = CollectionState.SETTLING
            return retry

    def mark(self, task_id: str, state: CollectionState, now: datetime) -> None:
        with self._lock:
            collection = self._tasks.get(task_id)
            if collection is None:
                return
            collection.state = state
            if state in _FINISHED:
                collection.finished_utc = now

    def get(self, task_id: str) -> Optional[TaskCollection]:
        with self._lock:
            return self._tasks.get(task_id)

    def task_ids(self, state: Optional[CollectionState] = None) -> list[str]:
        with self._lock:
            return [
                tid for tid, c in self._tasks.items()
                if state is None or c.state == state
            ]

    @staticmethod
    def _reserve(collection: TaskCollection, outcome: QuorumOutcome, now: datetime) -> None:
        collection.state = CollectionState.SETTLING
        collection.decision = Decision(
            task_id=collection.request.task_id,
            status=outcome.status,
            result=outcome.result,
            supporters=outcome.supporters,
            claims_received=len(collection.claims),
            eligible_operators=len(collection.eligible),
            decided_utc=now,
        )
