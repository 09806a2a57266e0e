"""Data models — tasks, applications, and settlement claims."""

from taskledger.models.application import ApplicationMetadata
from taskledger.models.claim import Decision, SettlementClaim
from taskledger.models.task import TaskRecord, TaskRequest, TaskStatus

__all__ = [
    "ApplicationMetadata",
    "Decision",
    "SettlementClaim",
    "TaskRecord",
    "TaskRequest",
    "TaskStatus",
]
