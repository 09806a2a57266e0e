"""Task lifecycle engine."""

from taskledger.engine.task_state_machine import TaskStateMachine

__all__ = ["TaskStateMachine"]
