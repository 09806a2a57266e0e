"""Operator directory — which operators are active and what they serve.

Whether an operator is real is decided entirely by an external identity
/ staking authority. The directory forwards the operator's registration
proof to that authority and caches the boolean outcome as the operator's
active flag.

Opt-in rules:
- The application id must be registered in the application registry.
- The operator must be active.
- Opting in twice to the same application is rejected.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol

from taskledger.crypto.ids import normalize_address, normalize_bytes32
from taskledger.crypto.signing import RegistrationProof, recover_registration_signer
from taskledger.ledger.chain import Ledger
from taskledger.ledger.errors import (
    AlreadyExists,
    InvalidApplication,
    InvalidOperation,
    OperatorNotRegistered,
    RegistrationRejected,
    Unauthorized,
)
from taskledger.ledger.ownership import Ownable
from taskledger.persistence.event_log import EventKind


class RegistrationAuthority(Protocol):
    """External identity / staking authority the directory defers to."""

    def register_operator(
        self, operator: str, service: str, proof: RegistrationProof, now: int,
    ) -> bool: ...

    def deregister_operator(self, operator: str, service: str) -> bool: ...


class InMemoryRegistrationAuthority:
    """Registration authority that accepts any operator proving key ownership.

    A proof is accepted when:
    - it was signed by the operator over (operator, service, salt, expiry),
    - it has not expired,
    - its salt has not been used by that operator before.
    """

    def __init__(self) -> None:
        self._registered: set[tuple[str, str]] = set()
        self._used_salts: dict[str, set[str]] = {}

    def register_operator(
        self, operator: str, service: str, proof: RegistrationProof, now: int,
    ) -> bool:
        operator = normalize_address(operator)
        service = normalize_address(service)
        if proof.expiry <= now:
            return False
        salt = normalize_bytes32(proof.salt)
        if salt in self._used_salts.get(operator, set()):
            return False
        try:
            signer = recover_registration_signer(operator, service, proof)
        except ValueError:
            return False
        if signer != operator:
            return False
        self._used_salts.setdefault(operator, set()).add(salt)
        self._registered.add((operator, service))
        return True

    def deregister_operator(self, operator: str, service: str) -> bool:
        key = (normalize_address(operator), normalize_address(service))
        if key not in self._registered:
            return False
        self._registered.discard(key)
        return True

    def is_registered(self, operator: str, service: str) -> bool:
        return (normalize_address(operator), normalize_address(service)) in self._registered

    def snapshot(self) -> dict[str, Any]:
        return {
            "registered": sorted([op, svc] for op, svc in self._registered),
            "used_salts": {op: sorted(salts) for op, salts in self._used_salts.items()},
        }

    def restore(self, data: dict[str, Any]) -> None:
        self._registered = {(op, svc) for op, svc in data.get("registered", [])}
        self._used_salts = {op: set(s) for op, s in data.get("used_salts", {}).items()}


class OperatorDirectory(Ownable):
    """Active flags and the operator ↔ application opt-in relation."""

    def __init__(
        self,
        ledger: Ledger,
        owner: str,
        app_registry: str,
        authority: RegistrationAuthority,
        address: Optional[str] = None,
    ) -> None:
        super().__init__(ledger, owner, address)
        self._app_registry = normalize_address(app_registry)
        self._authority = authority
        self._active: dict[str, bool] = {}
        self._opt_ins: dict[str, set[str]] = {}

    # ------------------------------------------------------------------
    # Registration bridge
    # ------------------------------------------------------------------

    def register_operator(
        self, operator: str, proof: RegistrationProof, *, sender: str,
    ) -> None:
        """Activate an operator once the external authority accepts its proof."""
        with self._ledger.transaction(sender) as tx:
            operator = normalize_address(operator)
            if tx.sender != operator:
                raise Unauthorized(f"{tx.sender} cannot register operator {operator}")
            if self._active.get(operator, False):
                raise AlreadyExists(f"Operator already registered: {operator}")
            if not self._authority.register_operator(operator, self.address, proof, tx.timestamp):
                raise RegistrationRejected(
                    f"Registration authority rejected operator {operator}"
                )
            self._active[operator] = True
            tx.on_rollback(lambda: self._active.pop(operator, None))
            self._emit(EventKind.OPERATOR_REGISTERED, {"operator": operator})

    def deregister_operator(self, operator: str, *, sender: str) -> None:
        """Deactivate an operator. Callable by the operator or the owner."""
        with self._ledger.transaction(sender) as tx:
            operator = normalize_address(operator)
            if tx.sender not in (operator, self._owner):
                raise Unauthorized(f"{tx.sender} cannot deregister operator {operator}")
            if not self._active.get(operator, False):
                raise OperatorNotRegistered(f"Operator not registered: {operator}")
            if not self._authority.deregister_operator(operator, self.address):
                raise RegistrationRejected(
                    f"Registration authority refused to deregister {operator}"
                )
            self._active[operator] = False
            tx.on_rollback(lambda: self._active.__setitem__(operator, True))
            self._emit(EventKind.OPERATOR_DEREGISTERED, {"operator": operator})

    # ------------------------------------------------------------------
    # Opt-in
    # ------------------------------------------------------------------

    def opt_in(self, app_id: str, *, sender: str) -> None:
        """Record that the calling operator serves an application."""
        with self._ledger.transaction(sender) as tx:
            operator = tx.sender
            app_id = normalize_bytes32(app_id)
            if not self._application_exists(app_id):
                raise InvalidApplication(f"Application not registered: {app_id}")
            if not self._active.get(operator, False):
                raise OperatorNotRegistered(f"Operator not registered: {operator}")
            served = self._opt_ins.setdefault(operator, set())
            if app_id in served:
                raise AlreadyExists(f"{operator} already opted in to {app_id}")
            served.add(app_id)
            tx.on_rollback(lambda: served.discard(app_id))
            self._emit(EventKind.OPERATOR_OPTED_IN, {"operator": operator, "app_id": app_id})

    def opt_out(self, app_id: str, *, sender: str) -> None:
        """Remove the calling operator's opt-in for an application."""
        with self._ledger.transaction(sender) as tx:
            operator = tx.sender
            app_id = normalize_bytes32(app_id)
            served = self._opt_ins.get(operator, set())
            if app_id not in served:
                raise InvalidOperation(f"{operator} is not opted in to {app_id}")
            served.discard(app_id)
            tx.on_rollback(lambda: served.add(app_id))
            self._emit(EventKind.OPERATOR_OPTED_OUT, {"operator": operator, "app_id": app_id})

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_active(self, operator: str) -> bool:
        return self._active.get(normalize_address(operator), False)

    def is_opted_in(self, operator: str, app_id: str) -> bool:
        served = self._opt_ins.get(normalize_address(operator), set())
        return normalize_bytes32(app_id) in served

    def operators_for(self, app_id: str) -> list[str]:
        """Active operators opted in to an application, sorted by address."""
        app_id = normalize_bytes32(app_id)
        return sorted(
            op for op, served in self._opt_ins.items()
            if app_id in served and self._active.get(op, False)
        )

    @property
    def application_registry(self) -> str:
        return self._app_registry

    def _application_exists(self, app_id: str) -> bool:
        registry = self._ledger.contract_at(self._app_registry)
        return registry is not None and registry.is_registered(app_id)

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        return {
            **self._ownership_snapshot(),
            "active": dict(self._active),
            "opt_ins": {op: sorted(apps) for op, apps in self._opt_ins.items()},
        }

    def restore(self, data: dict[str, Any]) -> None:
        self._restore_ownership(data)
        self._active = {op: bool(flag) for op, flag in data.get("active", {}).items()}
        self._opt_ins = {op: set(apps) for op, apps in data.get("opt_ins", {}).items()}
