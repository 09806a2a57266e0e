"""Ledger-side contracts and their runtime."""

from taskledger.ledger.app_registry import ApplicationRegistry
from taskledger.ledger.chain import Ledger
from taskledger.ledger.errors import (
    AlreadyExists,
    InvalidApplication,
    InvalidOperation,
    LedgerError,
    OperatorNotRegistered,
    RegistrationRejected,
    Unauthorized,
)
from taskledger.ledger.operator_directory import (
    InMemoryRegistrationAuthority,
    OperatorDirectory,
    RegistrationAuthority,
)
from taskledger.ledger.ownership import Ownable
from taskledger.ledger.task_registry import TaskRegistry

__all__ = [
    "AlreadyExists",
    "ApplicationRegistry",
    "InMemoryRegistrationAuthority",
    "InvalidApplication",
    "InvalidOperation",
    "Ledger",
    "LedgerError",
    "OperatorDirectory",
    "OperatorNotRegistered",
    "Ownable",
    "RegistrationAuthority",
    "RegistrationRejected",
    "TaskRegistry",
    "Unauthorized",
]
