"""Consensus aggregation service — the sole settlement authority.

Obligations towards the task registry:
1. Observe task-requested notifications (and backfill history on start).
2. Accept claims only when the signature recovers to the claimed
   operator and that operator is active and opted in to the task's
   application. The eligible set is frozen when the task is observed.
3. Decide with the agreement rule (see quorum.py).
4. Call respond_to_task exactly once per task with the decided outcome.
   Claims arriving after that are discarded.
5. Surface tasks that reach no quorum instead of silently settling them;
   what happens next is the configured no-quorum policy.

Retries: transport failures (ConnectionError, TimeoutError) while
submitting are retried. A rejection by the ledger is final.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from eth_account import Account

from taskledger.aggregator.collector import (
    ClaimCollector,
    ClaimDisposition,
    ClaimRejected,
    CollectionState,
    TaskCollection,
)
from taskledger.aggregator.quorum import QuorumOutcome, QuorumRule
from taskledger.crypto.ids import normalize_address, normalize_bytes32
from taskledger.crypto.signing import verify_claim
from taskledger.ledger.errors import LedgerError
from taskledger.ledger.operator_directory import OperatorDirectory
from taskledger.ledger.task_registry import TaskRegistry
from taskledger.models.claim import Decision, SettlementClaim
from taskledger.models.task import TaskRequest, TaskStatus
from taskledger.persistence.event_log import EventKind, EventRecord

logger = logging.getLogger(__name__)


class NoQuorumPolicy(str, enum.Enum):
    """What to do once every collection round closed without a decision."""
    LEAVE_PENDING = "leave_pending"
    SETTLE_FAILED = "settle_failed"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Aggregator:
    """Collects operator claims and settles tasks on the ledger.

    Parameters (via *config* dict):
        quorum_threshold          : str   — see QuorumRule (default "1/2")
        min_claims                : int   — see QuorumRule (default 1)
        collection_window_seconds : int   — length of one collection round (default 60)
        max_collection_rounds     : int   — rounds before the no-quorum policy applies (default 3)
        no_quorum_policy          : str   — "leave_pending" | "settle_failed" (default "leave_pending")
        submit_retries            : int   — transport retries per settlement (default 3)
        retry_backoff_seconds     : float — linear backoff between retries (default 0.5)
        settled_retention_seconds : int   — how long finished tasks stay tracked (default 3600)
    """

    def __init__(
        self,
        private_key: str,
        task_registry: TaskRegistry,
        directory: OperatorDirectory,
        config: Optional[dict[str, Any]] = None,
        *,
        on_stalled: Optional[Callable[[TaskCollection], None]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        config = config or {}
        self._account = Account.from_key(private_key)
        self._registry = task_registry
        self._directory = directory
        self._on_stalled = on_stalled
        self._clock = clock or _utc_now

        self._rule = QuorumRule(config)
        window = timedelta(seconds=config.get("collection_window_seconds", 60))
        self._max_rounds: int = config.get("max_collection_rounds", 3)
        self._policy = NoQuorumPolicy(config.get("no_quorum_policy", "leave_pending"))
        self._submit_retries: int = config.get("submit_retries", 3)
        self._retry_backoff: float = config.get("retry_backoff_seconds", 0.5)
        self._retention = timedelta(seconds=config.get("settled_retention_seconds", 3600))
        if self._max_rounds < 1:
            raise ValueError(f"max_collection_rounds must be >= 1, got {self._max_rounds}")

        self._collector = ClaimCollector(self._rule, window)
        self._unsubscribe: list[Callable[[], None]] = []
        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

    @property
    def address(self) -> str:
        return self._account.address

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, sweep_interval: Optional[float] = None) -> None:
        """Backfill pending tasks, subscribe to notifications, optionally sweep.

        With a sweep_interval, a daemon thread closes expired windows
        every sweep_interval seconds until stop() is called.
        """
        if normalize_address(self._registry.settlement_authority) != self.address:
            logger.warning(
                "Aggregator %s is not the registry's settlement authority (%s); "
                "settlements will be rejected",
                self.address, self._registry.settlement_authority,
            )

        ledger = self._registry.ledger
        self._unsubscribe.append(
            ledger.subscribe(EventKind.TASK_REQUESTED, self._on_task_requested)
        )
        self._unsubscribe.append(
            ledger.subscribe(EventKind.TASK_RESPONDED, self._on_task_responded)
        )
        backfilled = self.backfill()
        logger.info("Aggregator %s started; %d pending task(s) backfilled", self.address, backfilled)

        if sweep_interval is not None:
            self._stop.clear()
            self._sweeper = threading.Thread(
                target=self._sweep_loop, args=(sweep_interval,),
                name="aggregator-sweeper", daemon=True,
            )
            self._sweeper.start()

    def stop(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe.clear()
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join()
            self._sweeper = None

    def backfill(self) -> int:
        """Track every historical task that is still PENDING on the ledger."""
        count = 0
        for event in self._registry.ledger.events(EventKind.TASK_REQUESTED):
            if event.contract != self._registry.address:
                continue
            request = TaskRequest.from_payload(event.payload)
            if self._registry.task_status(request.task_id) != TaskStatus.PENDING:
                continue
            if self.observe(request):
                count += 1
        return count

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    def observe(self, request: TaskRequest, now: Optional[datetime] = None) -> bool:
        """Start collecting claims for a task. Returns False if already tracked."""
        now = now or self._clock()
        eligible = frozenset(self._directory.operators_for(request.app_id))
        opened = self._collector.open(request, eligible, now)
        if opened:
            if not eligible:
                logger.warning(
                    "Task %s: no active operator serves application %s",
                    request.task_id, request.app_id,
                )
            logger.info(
                "Collecting claims for task %s (%d eligible operators)",
                request.task_id, len(eligible),
            )
        return opened

    def submit_claim(
        self, claim: SettlementClaim, now: Optional[datetime] = None,
    ) -> ClaimDisposition:
        """Verify and record one operator claim.

        Raises ClaimRejected for claims that must not count. Returns
        DISCARDED for valid claims that arrived after the decision.
        """
        now = now or self._clock()
        task_id = normalize_bytes32(claim.task_id)
        collection = self._collector.get(task_id)
        if collection is None:
            raise ClaimRejected("unknown_task", f"Unknown task: {task_id}")

        if not claim.status.is_terminal:
            raise ClaimRejected(
                "invalid_status",
                f"Claim status must be completed or failed, got {claim.status.value}",
            )

        if not verify_claim(self._registry.address, claim):
            raise ClaimRejected(
                "bad_signature", f"Signature does not match operator {claim.operator}"
            )

        operator = normalize_address(claim.operator)
        app_id = collection.request.app_id
        if operator not in collection.eligible \
                or not self._directory.is_active(operator) \
                or not self._directory.is_opted_in(operator, app_id):
            raise ClaimRejected(
                "not_eligible", f"{operator} may not claim tasks of application {app_id}"
            )

        normalized = SettlementClaim(
            task_id=task_id,
            status=claim.status,
            result=claim.result,
            operator=operator,
            signature=claim.signature,
        )
        disposition, outcome = self._collector.add(normalized, now)
        if disposition == ClaimDisposition.DISCARDED:
            logger.info("Discarded late claim from %s for task %s", operator, task_id)
        else:
            logger.info(
                "Accepted claim from %s for task %s: %s/%s",
                operator, task_id, claim.status.value, claim.result,
            )
        if outcome is not None:
            self._settle(task_id, outcome)
        return disposition

    # ------------------------------------------------------------------
    # Windows
    # ------------------------------------------------------------------

    def sweep(self, now: Optional[datetime] = None) -> list[str]:
        """Close expired windows and apply the no-quorum policy.

        Also retries settlements whose submission previously failed and
        forgets tasks finished more than settled_retention_seconds ago.
        Returns the ids of the tasks whose windows closed.
        """
        now = now or self._clock()
        for collection in self._collector.claim_failed_submissions():
            decision = collection.decision
            self._submit(collection.request.task_id, decision.status, decision.result)

        fallback = None
        if self._policy == NoQuorumPolicy.SETTLE_FAILED:
            fallback = QuorumOutcome(status=TaskStatus.FAILED, result=0, supporters=())

        closed: list[str] = []
        for window in self._collector.expire(now, self._max_rounds, fallback):
            closed.append(window.task_id)
            if window.state == CollectionState.COLLECTING:
                logger.warning(
                    "Task %s: no quorum in round %d; collecting again (round %d of %d)",
                    window.task_id, window.round, window.round + 1, self._max_rounds,
                )
            elif window.state == CollectionState.STALLED:
                logger.warning(
                    "Task %s: no quorum after %d rounds; left pending on the ledger",
                    window.task_id, window.round,
                )
                if self._on_stalled is not None:
                    self._on_stalled(self._collector.get(window.task_id))
            else:
                if not window.agreed:
                    logger.warning(
                        "Task %s: no quorum after %d rounds; settling as failed",
                        window.task_id, window.round,
                    )
                self._settle(window.task_id, window.outcome)

        pruned = self._collector.prune(now - self._retention)
        if pruned:
            logger.debug("Pruned %d finished task(s)", len(pruned))
        return closed

    def _sweep_loop(self, interval: float) -> None:
        while not self._stop.wait(interval):
            self.sweep()

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    def _settle(self, task_id: str, outcome: QuorumOutcome) -> None:
        logger.info(
            "Task %s decided: %s/%s supported by %d operator(s)",
            task_id, outcome.status.value, outcome.result, len(outcome.supporters),
        )
        self._submit(task_id, outcome.status, outcome.result)

    def _submit(self, task_id: str, status: TaskStatus, result: int) -> bool:
        attempt = 0
        while True:
            try:
                self._registry.respond_to_task(task_id, status, result, sender=self.address)
            except LedgerError as e:
                logger.error("Settlement of task %s rejected: %s", task_id, e)
                self._collector.mark(task_id, CollectionState.REJECTED, self._clock())
                return False
            except (ConnectionError, TimeoutError) as e:
                attempt += 1
                if attempt > self._submit_retries:
                    logger.error(
                        "Settlement of task %s failed after %d attempt(s): %s",
                        task_id, attempt, e,
                    )
                    self._collector.mark(
                        task_id, CollectionState.SUBMISSION_FAILED, self._clock(),
                    )
                    return False
                logger.warning(
                    "Settlement of task %s failed (%s); retry %d of %d",
                    task_id, e, attempt, self._submit_retries,
                )
                time.sleep(self._retry_backoff * attempt)
                continue
            self._collector.mark(task_id, CollectionState.SETTLED, self._clock())
            return True

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def _on_task_requested(self, event: EventRecord) -> None:
        if event.contract != self._registry.address:
            return
        self.observe(TaskRequest.from_payload(event.payload))

    def _on_task_responded(self, event: EventRecord) -> None:
        if event.contract != self._registry.address:
            return
        collection = self._collector.get(event.payload["task_id"])
        if collection is not None and collection.state != CollectionState.SETTLED:
            # Settled by another authority; stop collecting.
            self._collector.mark(
                collection.request.task_id, CollectionState.SETTLED, self._clock(),
            )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def collection_state(self, task_id: str) -> Optional[CollectionState]:
        collection = self._collector.get(normalize_bytes32(task_id))
        return collection.state if collection is not None else None

    def decision(self, task_id: str) -> Optional[Decision]:
        collection = self._collector.get(normalize_bytes32(task_id))
        return collection.decision if collection is not None else None

    def equivocators(self, task_id: str) -> set[str]:
        collection = self._collector.get(normalize_bytes32(task_id))
        return set(collection.equivocators) if collection is not None else set()

    def tracked_tasks(self, state: Optional[CollectionState] = None) -> list[str]:
        return self._collector.task_ids(state)
