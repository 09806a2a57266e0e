"""Task models — status, ledger record, and the request notification body.

Task lifecycle: EMPTY → PENDING → COMPLETED / FAILED

State semantics:
- EMPTY: no task has ever been created under this id.
- PENDING: task admitted, waiting for the settlement authority.
- COMPLETED: terminal — consensus reached on a successful outcome.
- FAILED: terminal — consensus reached on failure, or abandoned.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional


class TaskStatus(str, enum.Enum):
    """Lifecycle state of a task."""
    EMPTY = "empty"
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def code(self) -> int:
        """uint8 wire code, used when the status is hashed or signed."""
        return _STATUS_CODES[self]

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


_STATUS_CODES: dict[TaskStatus, int] = {
    TaskStatus.EMPTY: 0,
    TaskStatus.PENDING: 1,
    TaskStatus.COMPLETED: 2,
    TaskStatus.FAILED: 3,
}


@dataclass
class TaskRecord:
    """Ledger-side state of one task id."""
    status: TaskStatus = TaskStatus.EMPTY
    result: Optional[int] = None


@dataclass(frozen=True)
class TaskRequest:
    """Body of a task-requested notification.

    This is everything an operator learns about new work: there is no
    listing endpoint, so the notification must be self-contained.
    """
    task_id: str
    app_id: str
    requester: str
    requested_at: int  # block timestamp, unix seconds

    @classmethod
    def from_payload(cls, payload: dict) -> TaskRequest:
        return cls(
            task_id=payload["task_id"],
            app_id=payload["app_id"],
            requester=payload["requester"],
            requested_at=int(payload["requested_at"]),
        )
