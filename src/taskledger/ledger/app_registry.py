"""Application registry — the catalog of client applications allowed to request work.

Only the owner may register. Registration is write-once: an id can never
be re-registered, updated, or removed. Lookups of unknown ids return a
zero-valued result instead of failing.
"""

from __future__ import annotations

from typing import Any, Optional

from taskledger.crypto.ids import normalize_bytes32
from taskledger.ledger.chain import Ledger
from taskledger.ledger.errors import AlreadyExists
from taskledger.ledger.ownership import Ownable
from taskledger.models.application import ApplicationMetadata
from taskledger.persistence.event_log import EventKind


class ApplicationRegistry(Ownable):
    """Authoritative application catalog."""

    def __init__(self, ledger: Ledger, owner: str, address: Optional[str] = None) -> None:
        super().__init__(ledger, owner, address)
        self._apps: dict[str, ApplicationMetadata] = {}

    def register(self, app_id: str, metadata: ApplicationMetadata, *, sender: str) -> None:
        """Register an application id. Owner-only, write-once."""
        with self._ledger.transaction(sender) as tx:
            self._only_owner(tx.sender)
            app_id = normalize_bytes32(app_id)
            if app_id in self._apps:
                raise AlreadyExists(f"Application already registered: {app_id}")
            self._apps[app_id] = metadata
            tx.on_rollback(lambda: self._apps.pop(app_id, None))
            self._emit(EventKind.APPLICATION_REGISTERED, {
                "app_id": app_id,
                "metadata": metadata.to_dict(),
            })

    def is_registered(self, app_id: str) -> bool:
        return normalize_bytes32(app_id) in self._apps

    def get_metadata(self, app_id: str) -> ApplicationMetadata:
        return self._apps.get(normalize_bytes32(app_id), ApplicationMetadata.empty())

    def registered_ids(self) -> list[str]:
        return list(self._apps)

    def snapshot(self) -> dict[str, Any]:
        return {
            **self._ownership_snapshot(),
            "apps": {app_id: m.to_dict() for app_id, m in self._apps.items()},
        }

    def restore(self, data: dict[str, Any]) -> None:
        self._restore_ownership(data)
        self._apps = {
            app_id: ApplicationMetadata.from_dict(m)
            for app_id, m in data.get("apps", {}).items()
        }
