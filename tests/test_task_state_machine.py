"""Tests for the task state machine — lifecycle transitions."""

from taskledger.engine.task_state_machine import TaskStateMachine
from taskledger.models.task import TaskRecord, TaskStatus


class TestValidTransitions:
    def test_empty_to_pending(self) -> None:
        errors = TaskStateMachine.validate_transition(TaskRecord(), TaskStatus.PENDING)
        assert errors == []

    def test_pending_to_terminal(self) -> None:
        for target in (TaskStatus.COMPLETED, TaskStatus.FAILED):
            record = TaskRecord(status=TaskStatus.PENDING)
            errors = TaskStateMachine.validate_transition(record, target)
            assert errors == [], f"pending → {target.value} should be valid"


class TestInvalidTransitions:
    def test_empty_to_terminal(self) -> None:
        errors = TaskStateMachine.validate_transition(TaskRecord(), TaskStatus.COMPLETED)
        assert len(errors) == 1
        assert "Invalid task transition" in errors[0]

    def test_pending_to_pending(self) -> None:
        record = TaskRecord(status=TaskStatus.PENDING)
        assert TaskStateMachine.validate_transition(record, TaskStatus.PENDING)

    def test_terminal_states_absorb(self) -> None:
        for terminal in (TaskStatus.COMPLETED, TaskStatus.FAILED):
            for target in TaskStatus:
                record = TaskRecord(status=terminal)
                errors = TaskStateMachine.validate_transition(record, target)
                assert errors, f"{terminal.value} → {target.value} should be rejected"


class TestApplyTransition:
    def test_apply_mutates_status(self) -> None:
        record = TaskRecord(status=TaskStatus.PENDING)
        assert TaskStateMachine.apply_transition(record, TaskStatus.FAILED) == []
        assert record.status == TaskStatus.FAILED

    def test_rejected_apply_leaves_record(self) -> None:
        record = TaskRecord(status=TaskStatus.COMPLETED, result=7)
        assert TaskStateMachine.apply_transition(record, TaskStatus.FAILED)
        assert record.status == TaskStatus.COMPLETED
        assert record.result == 7


class TestStatus:
    def test_is_terminal(self) -> None:
        assert TaskStatus.COMPLETED.is_terminal
        assert TaskStatus.FAILED.is_terminal
        assert not TaskStatus.PENDING.is_terminal
        assert not TaskStatus.EMPTY.is_terminal

    def test_status_codes(self) -> None:
        assert [s.code for s in TaskStatus] == [0, 1, 2, 3]
