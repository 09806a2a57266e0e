"""Local development network — one ledger with the three contracts deployed.

A devnet lives in a data directory:

    events.jsonl — the hash-chained notification log
    state.json   — contract addresses and a snapshot of their state

Every mutating CLI command loads the devnet, performs one ledger call,
and saves the snapshot again.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from taskledger.ledger.app_registry import ApplicationRegistry
from taskledger.ledger.chain import Ledger
from taskledger.ledger.operator_directory import (
    InMemoryRegistrationAuthority,
    OperatorDirectory,
)
from taskledger.ledger.ownership import Ownable
from taskledger.ledger.task_registry import TaskRegistry
from taskledger.persistence.event_log import EventLog
from taskledger.persistence.state_store import StateStore

logger = logging.getLogger(__name__)

EVENTS_FILE = "events.jsonl"
STATE_FILE = "state.json"

CONTRACT_NAMES = ("app_registry", "operator_directory", "task_registry")


@dataclass
class Devnet:
    ledger: Ledger
    app_registry: ApplicationRegistry
    directory: OperatorDirectory
    task_registry: TaskRegistry
    authority: InMemoryRegistrationAuthority
    store: Optional[StateStore] = None

    @classmethod
    def create(
        cls,
        owner: str,
        settlement_authority: str,
        data_dir: Optional[Path] = None,
        clock: Optional[Callable[[], int]] = None,
    ) -> Devnet:
        """Deploy a fresh set of contracts.

        Raises FileExistsError if data_dir already holds a devnet.
        """
        store = None
        event_log = EventLog()
        if data_dir is not None:
            if (data_dir / STATE_FILE).exists() or (data_dir / EVENTS_FILE).exists():
                raise FileExistsError(f"A devnet already exists in {data_dir}")
            data_dir.mkdir(parents=True, exist_ok=True)
            store = StateStore(storage_path=data_dir / STATE_FILE)
            event_log = EventLog(storage_path=data_dir / EVENTS_FILE)

        ledger = Ledger(event_log, clock=clock)
        authority = InMemoryRegistrationAuthority()
        app_registry = ApplicationRegistry(ledger, owner)
        directory = OperatorDirectory(ledger, owner, app_registry.address, authority)
        task_registry = TaskRegistry(ledger, owner, app_registry.address, settlement_authority)
        devnet = cls(ledger, app_registry, directory, task_registry, authority, store)
        devnet.save()
        logger.info("Devnet deployed: %s", devnet.addresses())
        return devnet

    @classmethod
    def load(
        cls,
        data_dir: Path,
        clock: Optional[Callable[[], int]] = None,
    ) -> Devnet:
        """Reopen a devnet from its data directory.

        Raises FileNotFoundError if there is none, and ValueError if the
        snapshot was not taken at the current head of the event log.
        """
        store = StateStore(storage_path=data_dir / STATE_FILE)
        state = store.load()
        if state is None:
            raise FileNotFoundError(f"No devnet in {data_dir}; run 'init' first")

        ledger = Ledger(EventLog(storage_path=data_dir / EVENTS_FILE), clock=clock)
        if state["head_hash"] != ledger.head_hash:
            raise ValueError(
                f"State snapshot is at {state['head_hash']} but the event log "
                f"head is {ledger.head_hash}"
            )

        addresses = state["contracts"]
        snapshots = state["snapshots"]
        authority = InMemoryRegistrationAuthority()
        authority.restore(state.get("authority", {}))

        app_registry = ApplicationRegistry(
            ledger, snapshots["app_registry"]["owner"], addresses["app_registry"],
        )
        directory = OperatorDirectory(
            ledger,
            snapshots["operator_directory"]["owner"],
            app_registry.address,
            authority,
            addresses["operator_directory"],
        )
        task_registry = TaskRegistry(
            ledger,
            snapshots["task_registry"]["owner"],
            snapshots["task_registry"]["application_registry"],
            snapshots["task_registry"]["settlement_authority"],
            addresses["task_registry"],
        )
        devnet = cls(ledger, app_registry, directory, task_registry, authority, store)
        for name, contract in devnet.contracts().items():
            contract.restore(snapshots[name])
        return devnet

    def contracts(self) -> dict[str, Ownable]:
        return {
            "app_registry": self.app_registry,
            "operator_directory": self.directory,
            "task_registry": self.task_registry,
        }

    def addresses(self) -> dict[str, str]:
        return {name: c.address for name, c in self.contracts().items()}

    def snapshot(self) -> dict[str, Any]:
        return {
            "head_hash": self.ledger.head_hash,
            "block_number": self.ledger.block_number,
            "contracts": self.addresses(),
            "snapshots": {name: c.snapshot() for name, c in self.contracts().items()},
            "authority": self.authority.snapshot(),
        }

    def save(self) -> None:
        if self.store is not None:
            self.store.save(self.snapshot())

    def status(self) -> dict[str, Any]:
        tasks = self.task_registry.snapshot()["tasks"]
        active = [op for op, flag in self.directory.snapshot()["active"].items() if flag]
        return {
            "block_number": self.ledger.block_number,
            "head_hash": self.ledger.head_hash,
            "events": self.ledger.event_log.count,
            "contracts": self.addresses(),
            "owners": {name: c.owner for name, c in self.contracts().items()},
            "settlement_authority": self.task_registry.settlement_authority,
            "applications": len(self.app_registry.registered_ids()),
            "active_operators": len(active),
            "tasks": dict(Counter(t["status"] for t in tasks.values())),
        }
