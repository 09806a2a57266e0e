"""Task state machine — enforces valid lifecycle transitions.

Task lifecycle:
    EMPTY → PENDING → COMPLETED
                    → FAILED

COMPLETED and FAILED are absorbing. There is no cancellation edge: a
task that should be abandoned is settled as FAILED by the settlement
authority.

Fail-closed: any transition not listed below is rejected.
"""

from __future__ import annotations

from taskledger.models.task import TaskRecord, TaskStatus


# Valid transitions: {from_state: {allowed_to_states}}
_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.EMPTY: {TaskStatus.PENDING},
    TaskStatus.PENDING: {TaskStatus.COMPLETED, TaskStatus.FAILED},
    # Terminal states: no outgoing transitions
    TaskStatus.COMPLETED: set(),
    TaskStatus.FAILED: set(),
}


class TaskStateMachine:
    """Validates and applies task state transitions.

    Pure computation: side effects (notifications, persistence) are the
    task registry's job.
    """

    @staticmethod
    def validate_transition(record: TaskRecord, target: TaskStatus) -> list[str]:
        """Check if a transition is valid. Returns errors (empty = OK)."""
        current = record.status
        allowed = _TRANSITIONS.get(current, set())

        if target not in allowed:
            allowed_str = ", ".join(s.value for s in sorted(allowed, key=lambda x: x.value))
            return [
                f"Invalid task transition: {current.value} → {target.value}. "
                f"Allowed from {current.value}: [{allowed_str}]"
            ]
        return []

    @staticmethod
    def apply_transition(record: TaskRecord, target: TaskStatus) -> list[str]:
        """Validate and apply a transition. Mutates record.status on success."""
        errors = TaskStateMachine.validate_transition(record, target)
        if errors:
            return errors
        record.status = target
        return []
