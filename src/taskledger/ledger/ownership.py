"""Ownership authority — two-step administrative handover.

A single-step transfer can hand control to a mistyped or unreachable
address and lock administration out forever. Here the owner only
nominates a candidate; control moves when the candidate accepts.

    transfer_ownership(B)   by owner A   → pending = B, owner still A
    accept_ownership()      by B         → owner = B, pending cleared
    cancel_transfer_ownership() by A     → pending cleared
"""

from __future__ import annotations

from typing import Any, Optional

from taskledger.crypto.ids import normalize_address
from taskledger.ledger.chain import Contract, Ledger
from taskledger.ledger.errors import InvalidOperation, Unauthorized
from taskledger.persistence.event_log import EventKind


class Ownable(Contract):
    """Contract base with an explicit (owner, pending owner) record."""

    def __init__(self, ledger: Ledger, owner: str, address: Optional[str] = None) -> None:
        super().__init__(ledger, address)
        self._owner = normalize_address(owner)
        self._pending_owner: Optional[str] = None

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def pending_owner(self) -> Optional[str]:
        return self._pending_owner

    def transfer_ownership(self, candidate: str, *, sender: str) -> None:
        """Nominate a new owner. Owner-only; does not change the owner."""
        with self._ledger.transaction(sender) as tx:
            self._only_owner(tx.sender)
            candidate = normalize_address(candidate)
            previous = self._pending_owner
            self._pending_owner = candidate
            tx.on_rollback(lambda: setattr(self, "_pending_owner", previous))
            self._emit(EventKind.OWNERSHIP_TRANSFER_STARTED, {
                "owner": self._owner,
                "pending_owner": candidate,
            })

    def accept_ownership(self, *, sender: str) -> None:
        """Complete a transfer. Only the pending owner may call this."""
        with self._ledger.transaction(sender) as tx:
            if self._pending_owner is None or tx.sender != self._pending_owner:
                raise Unauthorized(f"{tx.sender} is not the pending owner")
            previous_owner = self._owner
            self._owner = tx.sender
            self._pending_owner = None

            def _rollback() -> None:
                self._pending_owner = self._owner
                self._owner = previous_owner

            tx.on_rollback(_rollback)
            self._emit(EventKind.OWNERSHIP_TRANSFERRED, {
                "previous_owner": previous_owner,
                "owner": self._owner,
            })

    def cancel_transfer_ownership(self, *, sender: str) -> None:
        """Withdraw a nomination. Owner-only."""
        with self._ledger.transaction(sender) as tx:
            self._only_owner(tx.sender)
            if self._pending_owner is None:
                raise InvalidOperation("No ownership transfer is pending")
            cancelled = self._pending_owner
            self._pending_owner = None
            tx.on_rollback(lambda: setattr(self, "_pending_owner", cancelled))
            self._emit(EventKind.OWNERSHIP_TRANSFER_CANCELLED, {
                "owner": self._owner,
                "cancelled_owner": cancelled,
            })

    def _only_owner(self, sender: str) -> None:
        if sender != self._owner:
            raise Unauthorized(f"{sender} is not the owner of {self.address}")

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def _ownership_snapshot(self) -> dict[str, Any]:
        return {"owner": self._owner, "pending_owner": self._pending_owner}

    def _restore_ownership(self, data: dict[str, Any]) -> None:
        self._owner = normalize_address(data["owner"])
        pending = data.get("pending_owner")
        self._pending_owner = normalize_address(pending) if pending else None
