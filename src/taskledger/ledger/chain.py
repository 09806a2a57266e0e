"""Ledger runtime — serial, atomic execution of contract calls.

The ledger hosts contracts at deterministic addresses and executes each
mutating call as one indivisible transaction:

1. The ledger lock is taken; calls never interleave.
2. The call sees a single block timestamp for its whole duration.
3. Notifications emitted by the call are buffered.
4. On success the buffered notifications are appended to the event log
   as one batch and the block number advances.
5. On any exception the buffered notifications are discarded and the
   undo closures registered by the contract are replayed in reverse.

Subscribers are notified after the lock has been released, so a
subscriber may itself submit a new call.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Optional

from taskledger.crypto.ids import contract_address, normalize_address
from taskledger.persistence.event_log import EventKind, EventLog, EventRecord

logger = logging.getLogger(__name__)

Subscriber = Callable[[EventRecord], None]

# Deployer identity used to derive contract addresses.
LEDGER_DEPLOYER = "0x000000000000000000000000000000000000dEaD"


def _wall_clock() -> int:
    return int(time.time())


@dataclass
class Transaction:
    """The in-flight state of one ledger call."""
    sender: str
    block_number: int
    timestamp: int
    notifications: list[tuple[str, EventKind, dict[str, Any]]] = field(default_factory=list)
    undo: list[Callable[[], None]] = field(default_factory=list)

    def on_rollback(self, fn: Callable[[], None]) -> None:
        """Register a closure that reverts one mutation made by this call."""
        self.undo.append(fn)


class Ledger:
    """A single ledger instance.

    Usage:
        ledger = Ledger(EventLog(storage_path=path))
        registry = ApplicationRegistry(ledger, owner=admin)
        registry.register(app_id, metadata, sender=admin)
        ledger.subscribe(EventKind.TASK_REQUESTED, on_task)
    """

    def __init__(
        self,
        event_log: Optional[EventLog] = None,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self._lock = threading.RLock()
        self._event_log = event_log if event_log is not None else EventLog()
        self._clock = clock or _wall_clock
        self._subscribers: dict[Optional[EventKind], list[Subscriber]] = {}
        self._contracts: dict[str, Any] = {}
        self._deploy_nonce = 0
        self._tx: Optional[Transaction] = None

        last = self._event_log.last_event
        self._block_number = last.block_number if last is not None else 0

    # ------------------------------------------------------------------
    # Contracts
    # ------------------------------------------------------------------

    def deploy(self, contract: Any, address: Optional[str] = None) -> str:
        """Host a contract and return its address.

        Without an explicit address, the address is derived from the
        deployment order, so redeploying the same contracts in the same
        order reproduces the same addresses.
        """
        with self._lock:
            if address is None:
                address = contract_address(LEDGER_DEPLOYER, self._deploy_nonce)
            else:
                address = normalize_address(address)
            if address in self._contracts:
                raise ValueError(f"Address already in use: {address}")
            self._deploy_nonce += 1
            self._contracts[address] = contract
            return address

    def contract_at(self, address: str) -> Optional[Any]:
        return self._contracts.get(normalize_address(address))

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self, sender: str) -> Iterator[Transaction]:
        """Run one call atomically on behalf of sender."""
        sender = normalize_address(sender)
        with self._lock:
            if self._tx is not None:
                raise RuntimeError("Re-entrant ledger call inside an open transaction")
            tx = Transaction(
                sender=sender,
                block_number=self._block_number + 1,
                timestamp=self._clock(),
            )
            self._tx = tx
            try:
                yield tx
                records = self._commit(tx)
            except BaseException:
                self._rollback(tx)
                raise
            finally:
                self._tx = None
        self._dispatch(records)

    def emit(self, contract: str, kind: EventKind, payload: dict[str, Any]) -> None:
        """Buffer a notification on the open transaction."""
        if self._tx is None:
            raise RuntimeError("Notifications can only be emitted inside a transaction")
        self._tx.notifications.append((contract, kind, payload))

    def _commit(self, tx: Transaction) -> list[EventRecord]:
        ts = datetime.fromtimestamp(tx.timestamp, tz=timezone.utc)
        records: list[EventRecord] = []
        prev_hash = self._event_log.head_hash
        for index, (contract, kind, payload) in enumerate(tx.notifications):
            record = EventRecord.create(
                event_id=f"{tx.block_number}-{index}",
                event_kind=kind,
                block_number=tx.block_number,
                contract=contract,
                sender=tx.sender,
                payload=payload,
                prev_hash=prev_hash,
                timestamp_utc=ts,
            )
            records.append(record)
            prev_hash = record.event_hash

        self._event_log.append_batch(records)
        self._block_number = tx.block_number
        for record in records:
            logger.debug("Committed %s %s", record.event_kind.value, record.payload)
        return records

    @staticmethod
    def _rollback(tx: Transaction) -> None:
        for fn in reversed(tx.undo):
            fn()
        tx.notifications.clear()

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def subscribe(
        self,
        kind: Optional[EventKind],
        callback: Subscriber,
    ) -> Callable[[], None]:
        """Deliver future notifications of a kind (None = all kinds).

        Returns a function that removes the subscription.
        """
        with self._lock:
            self._subscribers.setdefault(kind, []).append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                callbacks = self._subscribers.get(kind, [])
                if callback in callbacks:
                    callbacks.remove(callback)

        return _unsubscribe

    def _dispatch(self, records: list[EventRecord]) -> None:
        for record in records:
            with self._lock:
                callbacks = (
                    list(self._subscribers.get(record.event_kind, []))
                    + list(self._subscribers.get(None, []))
                )
            for callback in callbacks:
                try:
                    callback(record)
                except Exception:
                    # A broken listener must not affect the ledger or other listeners.
                    logger.exception(
                        "Subscriber %r failed on event %s", callback, record.event_id
                    )

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        return self._event_log.events(kind)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def block_number(self) -> int:
        return self._block_number

    @property
    def head_hash(self) -> str:
        return self._event_log.head_hash

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    def now(self) -> int:
        return self._clock()


class Contract:
    """Base class for contracts hosted on a Ledger."""

    def __init__(self, ledger: Ledger, address: Optional[str] = None) -> None:
        self._ledger = ledger
        self.address = ledger.deploy(self, address)

    def _emit(self, kind: EventKind, payload: dict[str, Any]) -> None:
        self._ledger.emit(self.address, kind, payload)

    @property
    def ledger(self) -> Ledger:
        return self._ledger
