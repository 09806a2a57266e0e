"""Settlement claims and aggregation decisions.

A claim is an operator's signed statement about the outcome of one task.
Claims live only off-ledger: the ledger sees nothing but the single
decision the aggregation service submits.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from taskledger.models.task import TaskStatus


@dataclass(frozen=True)
class SettlementClaim:
    """An operator-signed (task id, status, result) tuple."""
    task_id: str
    status: TaskStatus
    result: int
    operator: str
    signature: str  # 0x-prefixed 65-byte ECDSA signature

    @property
    def outcome(self) -> tuple[TaskStatus, int]:
        return (self.status, self.result)

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "status": self.status.value,
            "result": self.result,
            "operator": self.operator,
            "signature": self.signature,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SettlementClaim:
        return cls(
            task_id=data["task_id"],
            status=TaskStatus(data["status"]),
            result=int(data["result"]),
            operator=data["operator"],
            signature=data["signature"],
        )


@dataclass(frozen=True)
class Decision:
    """The outcome the aggregation service settled (or will settle)."""
    task_id: str
    status: TaskStatus
    result: int
    supporters: tuple[str, ...]
    claims_received: int
    eligible_operators: int
    decided_utc: datetime
