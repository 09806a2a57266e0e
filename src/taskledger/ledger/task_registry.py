"""Task registry — the authoritative task state machine.

createTask:
    - the application id must be registered (InvalidApplication),
    - the id is derived from (sender, app id, block timestamp[, salt]),
    - the derived id must be EMPTY (AlreadyExists),
    - status becomes PENDING and a task-requested notification is emitted.
      That notification is the only way operators discover work.

respondToTask:
    - only the settlement authority may call (Unauthorized, checked first),
    - the proposed status must be COMPLETED or FAILED (InvalidOperation),
    - the task must currently be PENDING (InvalidOperation — covers both
      unknown and already-settled tasks),
    - status and result are stored and a task-responded notification is
      emitted. Settlement is therefore accepted exactly once per task.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from taskledger.crypto.ids import (
    UINT256_MAX,
    normalize_address,
    normalize_bytes32,
    task_id as derive_task_id,
)
from taskledger.engine.task_state_machine import TaskStateMachine
from taskledger.ledger.chain import Ledger
from taskledger.ledger.errors import (
    AlreadyExists,
    InvalidApplication,
    InvalidOperation,
    Unauthorized,
)
from taskledger.ledger.ownership import Ownable
from taskledger.models.task import TaskRecord, TaskStatus
from taskledger.persistence.event_log import EventKind

logger = logging.getLogger(__name__)


class TaskRegistry(Ownable):
    """Task lifecycle contract."""

    def __init__(
        self,
        ledger: Ledger,
        owner: str,
        app_registry: str,
        settlement_authority: str,
        address: Optional[str] = None,
    ) -> None:
        super().__init__(ledger, owner, address)
        self._app_registry = normalize_address(app_registry)
        self._settlement_authority = normalize_address(settlement_authority)
        self._tasks: dict[str, TaskRecord] = {}
        self._state_machine = TaskStateMachine()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_task(self, app_id: str, *, sender: str, salt: Optional[str] = None) -> str:
        """Admit a new task for a registered application. Returns the task id."""
        with self._ledger.transaction(sender) as tx:
            app_id = normalize_bytes32(app_id)
            if not self._application_exists(app_id):
                raise InvalidApplication(f"Application not registered: {app_id}")

            tid = derive_task_id(tx.sender, app_id, tx.timestamp, salt)
            record = self._tasks.get(tid, TaskRecord())
            errors = self._state_machine.validate_transition(record, TaskStatus.PENDING)
            if errors:
                raise AlreadyExists(f"Task already exists: {tid}")

            self._tasks[tid] = TaskRecord(status=TaskStatus.PENDING)
            tx.on_rollback(lambda: self._tasks.pop(tid, None))
            self._emit(EventKind.TASK_REQUESTED, {
                "task_id": tid,
                "app_id": app_id,
                "requester": tx.sender,
                "requested_at": tx.timestamp,
            })

        logger.info("Task %s requested for application %s", tid, app_id)
        return tid

    def respond_to_task(
        self, task_id: str, status: TaskStatus, result: int, *, sender: str,
    ) -> None:
        """Settle a PENDING task. Settlement authority only; accepted once."""
        with self._ledger.transaction(sender) as tx:
            if tx.sender != self._settlement_authority:
                raise Unauthorized(f"{tx.sender} is not the settlement authority")

            status = TaskStatus(status)
            if not status.is_terminal:
                raise InvalidOperation(
                    f"Settlement status must be completed or failed, got {status.value}"
                )

            tid = normalize_bytes32(task_id)
            record = self._tasks.get(tid, TaskRecord())
            if record.status != TaskStatus.PENDING:
                raise InvalidOperation(
                    f"Task {tid} is not pending (status: {record.status.value})"
                )

            if isinstance(result, bool) or not isinstance(result, int) \
                    or not 0 <= result <= UINT256_MAX:
                raise InvalidOperation(f"Result out of uint256 range: {result!r}")

            errors = self._state_machine.apply_transition(record, status)
            if errors:
                raise InvalidOperation("; ".join(errors))
            record.result = result

            def _rollback() -> None:
                record.status = TaskStatus.PENDING
                record.result = None

            tx.on_rollback(_rollback)
            self._emit(EventKind.TASK_RESPONDED, {
                "task_id": tid,
                "status": status.value,
                "result": result,
            })

        logger.info("Task %s settled as %s (result=%s)", tid, status.value, result)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def set_settlement_authority(self, authority: str, *, sender: str) -> None:
        """Replace the settlement authority address. Owner-only, not validated."""
        with self._ledger.transaction(sender) as tx:
            self._only_owner(tx.sender)
            authority = normalize_address(authority)
            previous = self._settlement_authority
            self._settlement_authority = authority
            tx.on_rollback(lambda: setattr(self, "_settlement_authority", previous))
            self._emit(EventKind.SETTLEMENT_AUTHORITY_UPDATED, {
                "previous": previous,
                "settlement_authority": authority,
            })

    def set_application_registry(self, registry: str, *, sender: str) -> None:
        """Point task creation at another application registry. Owner-only."""
        with self._ledger.transaction(sender) as tx:
            self._only_owner(tx.sender)
            registry = normalize_address(registry)
            previous = self._app_registry
            self._app_registry = registry
            tx.on_rollback(lambda: setattr(self, "_app_registry", previous))
            self._emit(EventKind.APPLICATION_REGISTRY_UPDATED, {
                "previous": previous,
                "application_registry": registry,
            })

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_task(self, task_id: str) -> TaskRecord:
        """Current record for a task id; unknown ids report EMPTY."""
        record = self._tasks.get(normalize_bytes32(task_id))
        if record is None:
            return TaskRecord()
        return TaskRecord(status=record.status, result=record.result)

    def task_status(self, task_id: str) -> TaskStatus:
        return self.get_task(task_id).status

    @property
    def settlement_authority(self) -> str:
        return self._settlement_authority

    @property
    def application_registry(self) -> str:
        return self._app_registry

    def _application_exists(self, app_id: str) -> bool:
        # An address that hosts no registry vouches for nothing.
        registry = self._ledger.contract_at(self._app_registry)
        return registry is not None and registry.is_registered(app_id)

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        return {
            **self._ownership_snapshot(),
            "application_registry": self._app_registry,
            "settlement_authority": self._settlement_authority,
            "tasks": {
                tid: {"status": r.status.value, "result": r.result}
                for tid, r in self._tasks.items()
            },
        }

    def restore(self, data: dict[str, Any]) -> None:
        self._restore_ownership(data)
        self._app_registry = normalize_address(data["application_registry"])
        self._settlement_authority = normalize_address(data["settlement_authority"])
        self._tasks = {
            tid: TaskRecord(status=TaskStatus(r["status"]), result=r.get("result"))
            for tid, r in data.get("tasks", {}).items()
        }
