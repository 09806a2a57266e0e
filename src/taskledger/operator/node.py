"""Operator node — discovers tasks, runs the workload, signs claims.

Flow:
    register() → opt_in(app_id) → start()
    task-requested notification → bounded queue → worker
    worker: metadata lookup → workload → sign claim → transport

The workload and the transport are supplied by the caller. A workload
that raises produces a FAILED claim rather than no claim, so the
aggregator can still reach agreement on failure.
"""

from __future__ import annotations

import logging
import queue
import secrets
import threading
from typing import Any, Callable, Optional

from eth_account import Account

from taskledger.crypto.ids import check_uint256
from taskledger.crypto.signing import sign_claim, sign_registration
from taskledger.ledger.app_registry import ApplicationRegistry
from taskledger.ledger.operator_directory import OperatorDirectory
from taskledger.ledger.task_registry import TaskRegistry
from taskledger.models.application import ApplicationMetadata
from taskledger.models.claim import SettlementClaim
from taskledger.models.task import TaskRequest, TaskStatus
from taskledger.persistence.event_log import EventKind, EventRecord

logger = logging.getLogger(__name__)

Workload = Callable[[TaskRequest, ApplicationMetadata], tuple[TaskStatus, int]]
Transport = Callable[[SettlementClaim], Any]


class OperatorNode:
    """One execution node.

    Parameters (via *config* dict):
        queue_capacity              : int — pending task buffer size (default 100)
        registration_expiry_seconds : int — validity of a registration proof (default 3600)
    """

    def __init__(
        self,
        private_key: str,
        directory: OperatorDirectory,
        app_registry: ApplicationRegistry,
        task_registry: TaskRegistry,
        workload: Workload,
        transport: Transport,
        config: Optional[dict[str, Any]] = None,
    ) -> None:
        config = config or {}
        self._private_key = private_key
        self._account = Account.from_key(private_key)
        self._directory = directory
        self._app_registry = app_registry
        self._task_registry = task_registry
        self._workload = workload
        self._transport = transport
        self._expiry_seconds: int = config.get("registration_expiry_seconds", 3600)
        self._queue: queue.Queue[TaskRequest] = queue.Queue(
            maxsize=config.get("queue_capacity", 100)
        )
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._stop = threading.Event()
        self._worker: Optional[threading.Thread] = None

    @property
    def address(self) -> str:
        return self._account.address

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, salt: Optional[str] = None) -> bool:
        """Register with the directory. Returns False if already active."""
        if self._directory.is_active(self.address):
            logger.info("Operator %s already registered", self.address)
            return False
        salt = salt or "0x" + secrets.token_hex(32)
        expiry = self._task_registry.ledger.now() + self._expiry_seconds
        proof = sign_registration(self._private_key, self._directory.address, salt, expiry)
        self._directory.register_operator(self.address, proof, sender=self.address)
        logger.info("Operator %s registered", self.address)
        return True

    def opt_in(self, app_id: str) -> bool:
        """Opt in to an application. Returns False if already opted in."""
        if self._directory.is_opted_in(self.address, app_id):
            logger.info("Operator %s already serves application %s", self.address, app_id)
            return False
        self._directory.opt_in(app_id, sender=self.address)
        logger.info("Operator %s opted in to application %s", self.address, app_id)
        return True

    def opt_out(self, app_id: str) -> None:
        self._directory.opt_out(app_id, sender=self.address)
        logger.info("Operator %s opted out of application %s", self.address, app_id)

    # ------------------------------------------------------------------
    # Task discovery
    # ------------------------------------------------------------------

    def start(self, threaded: bool = False, backfill: bool = True) -> None:
        """Subscribe to task notifications.

        With backfill, tasks requested earlier that are still PENDING are
        queued too. With threaded, a daemon worker drains the queue;
        otherwise call process_pending().
        """
        ledger = self._task_registry.ledger
        self._unsubscribe = ledger.subscribe(EventKind.TASK_REQUESTED, self._on_task_requested)
        if backfill:
            for event in ledger.events(EventKind.TASK_REQUESTED):
                request = TaskRequest.from_payload(event.payload)
                if self._task_registry.task_status(request.task_id) == TaskStatus.PENDING:
                    self._on_task_requested(event)
        if threaded:
            self._stop.clear()
            self._worker = threading.Thread(
                target=self._run, name=f"operator-{self.address[:10]}", daemon=True,
            )
            self._worker.start()
        logger.info("Operator %s listening for tasks", self.address)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._stop.set()
        if self._worker is not None:
            self._worker.join()
            self._worker = None

    def _on_task_requested(self, event: EventRecord) -> None:
        if event.contract != self._task_registry.address:
            return
        request = TaskRequest.from_payload(event.payload)
        if not self._directory.is_opted_in(self.address, request.app_id):
            return
        try:
            self._queue.put_nowait(request)
        except queue.Full:
            logger.error(
                "Operator %s queue full; dropping task %s", self.address, request.task_id,
            )

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def process_pending(self) -> list[SettlementClaim]:
        """Process every queued task on the calling thread."""
        claims: list[SettlementClaim] = []
        while True:
            try:
                request = self._queue.get_nowait()
            except queue.Empty:
                return claims
            claim = self._process(request)
            if claim is not None:
                claims.append(claim)

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                request = self._queue.get(timeout=0.1)
            except queue.Empty:
                continue
            try:
                self._process(request)
            except Exception:
                # Keep the worker alive for the tasks still queued.
                logger.exception(
                    "Operator %s could not process task %s", self.address, request.task_id,
                )

    def _process(self, request: TaskRequest) -> Optional[SettlementClaim]:
        claim = self.execute(request)
        try:
            self._transport(claim)
        except Exception:
            logger.exception(
                "Operator %s could not deliver claim for task %s",
                self.address, request.task_id,
            )
            return None
        return claim

    def execute(self, request: TaskRequest) -> SettlementClaim:
        """Run the workload for a task and sign the outcome."""
        metadata = self._app_registry.get_metadata(request.app_id)
        logger.info("Operator %s processing task %s", self.address, request.task_id)
        try:
            status, result = self._workload(request, metadata)
            status = TaskStatus(status)
            check_uint256(result)
            if not status.is_terminal:
                raise ValueError(f"Workload returned non-terminal status {status.value}")
        except Exception:
            logger.exception("Workload failed for task %s", request.task_id)
            status, result = TaskStatus.FAILED, 0
        return sign_claim(
            self._private_key, self._task_registry.address, request.task_id, status, result,
        )
