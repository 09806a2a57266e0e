"""Named rejections raised by ledger calls.

Every rejection is synchronous and atomic: when one of these is raised,
no state change and no notification from the call has been committed.
None of them is retryable as-is; the caller decides whether to retry
with different arguments or give up.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for all ledger call rejections."""
    code = "ledger_error"


class Unauthorized(LedgerError):
    """Caller is not the owner, pending owner, or settlement authority."""
    code = "unauthorized"


class AlreadyExists(LedgerError):
    """Application id, task id, registration, or opt-in already present."""
    code = "already_exists"


class InvalidApplication(LedgerError):
    """Referenced application id is not registered."""
    code = "invalid_application"


class InvalidOperation(LedgerError):
    """Settlement with a non-terminal status, or of a task that is not PENDING."""
    code = "invalid_operation"


class OperatorNotRegistered(LedgerError):
    """Operator has no active registration."""
    code = "operator_not_registered"


class RegistrationRejected(LedgerError):
    """The external identity authority refused the registration proof."""
    code = "registration_rejected"
