"""Operator side — registration, opt-in, task execution, claim signing."""

from taskledger.operator.config import OperatorConfig
from taskledger.operator.node import OperatorNode

__all__ = ["OperatorConfig", "OperatorNode"]
