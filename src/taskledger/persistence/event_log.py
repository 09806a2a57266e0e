"""Append-only notification log — the only record off-ledger parties see.

Every committed ledger call produces zero or more notifications that are
appended here. Notifications are immutable once written and hash-chained:
each record's hash covers the previous record's hash, so editing,
reordering or dropping a record is detected when the log is reloaded.

Off-ledger components (operators, the aggregation service) learn about
state changes exclusively from this log; there is no polling API.
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional


GENESIS_HASH = "sha256:" + "0" * 64


class EventKind(str, enum.Enum):
    """Classification of ledger notifications."""
    # Ownership authority
    OWNERSHIP_TRANSFER_STARTED = "ownership_transfer_started"
    OWNERSHIP_TRANSFER_CANCELLED = "ownership_transfer_cancelled"
    OWNERSHIP_TRANSFERRED = "ownership_transferred"
    # Application registry
    APPLICATION_REGISTERED = "application_registered"
    # Operator directory
    OPERATOR_REGISTERED = "operator_registered"
    OPERATOR_DEREGISTERED = "operator_deregistered"
    OPERATOR_OPTED_IN = "operator_opted_in"
    OPERATOR_OPTED_OUT = "operator_opted_out"
    # Task registry
    TASK_REQUESTED = "task_requested"
    TASK_RESPONDED = "task_responded"
    SETTLEMENT_AUTHORITY_UPDATED = "settlement_authority_updated"
    APPLICATION_REGISTRY_UPDATED = "application_registry_updated"


@dataclass(frozen=True)
class EventRecord:
    """A single immutable notification.

    The event_hash is computed at creation time over the canonical JSON
    of every other field, including prev_hash.
    """
    event_id: str
    event_kind: EventKind
    block_number: int
    timestamp_utc: str
    contract: str
    sender: str
    payload: dict[str, Any]
    prev_hash: str
    event_hash: str  # SHA-256 of canonical JSON

    @staticmethod
    def create(
        event_id: str,
        event_kind: EventKind,
        block_number: int,
        contract: str,
        sender: str,
        payload: dict[str, Any],
        prev_hash: str = GENESIS_HASH,
        timestamp_utc: Optional[datetime] = None,
    ) -> EventRecord:
        """Create a new event record with computed hash."""
        ts = timestamp_utc or datetime.now(timezone.utc)
        ts_str = ts.strftime("%Y-%m-%dT%H:%M:%SZ")
        fields = {
            "event_id": event_id,
            "event_kind": event_kind.value,
            "block_number": block_number,
            "timestamp_utc": ts_str,
            "contract": contract,
            "sender": sender,
            "payload": payload,
            "prev_hash": prev_hash,
        }
        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            block_number=block_number,
            timestamp_utc=ts_str,
            contract=contract,
            sender=sender,
            payload=payload,
            prev_hash=prev_hash,
            event_hash=_canonical_hash(fields),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_kind": self.event_kind.value,
            "block_number": self.block_number,
            "timestamp_utc": self.timestamp_utc,
            "contract": self.contract,
            "sender": self.sender,
            "payload": self.payload,
            "prev_hash": self.prev_hash,
            "event_hash": self.event_hash,
        }

    def verify(self) -> bool:
        """True if event_hash matches the record's other fields."""
        fields = self.to_dict()
        del fields["event_hash"]
        return _canonical_hash(fields) == self.event_hash


class EventLog:
    """Append-only, hash-chained notification log with optional JSONL persistence.

    Events can only be appended, never modified or deleted. Each appended
    record must chain onto the current head.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[EventRecord] = []
        self._storage_path = storage_path
        self._event_ids: set[str] = set()

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    def append(self, event: EventRecord) -> None:
        """Append an event to the log.

        Raises ValueError if event_id is a duplicate (replay protection)
        or the record does not chain onto the current head.
        """
        self.append_batch([event])

    def append_batch(self, events: list[EventRecord]) -> None:
        """Append several chained events as one unit.

        Either every event is appended or none is.
        """
        head = self.head_hash
        seen: set[str] = set()
        for event in events:
            if event.event_id in self._event_ids or event.event_id in seen:
                raise ValueError(f"Duplicate event ID: {event.event_id}")
            if event.prev_hash != head:
                raise ValueError(
                    f"Event {event.event_id} does not extend the log head "
                    f"({event.prev_hash} != {head})"
                )
            seen.add(event.event_id)
            head = event.event_hash

        if self._storage_path and events:
            self._append_to_file(events)

        self._events.extend(events)
        self._event_ids.update(seen)

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        """Return events, optionally filtered by kind."""
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.event_kind == kind]

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def head_hash(self) -> str:
        return self._events[-1].event_hash if self._events else GENESIS_HASH

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._events[-1] if self._events else None

    def _append_to_file(self, events: list[EventRecord]) -> None:
        lines = "".join(
            json.dumps(e.to_dict(), sort_keys=True, ensure_ascii=False) + "\n"
            for e in events
        )
        with self._storage_path.open("a", encoding="utf-8") as f:
            f.write(lines)

    def _load_from_file(self, path: Path) -> None:
        """Load events from a JSONL file with integrity verification.

        Fail-closed: rejects tampered records (hash mismatch), broken
        chain links, and duplicate event IDs.
        """
        head = GENESIS_HASH
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)

                event_id = data["event_id"]
                if event_id in self._event_ids:
                    raise ValueError(
                        f"Duplicate event ID on recovery (line {line_num}): {event_id}"
                    )

                if data["prev_hash"] != head:
                    raise ValueError(
                        f"Broken hash chain (line {line_num}): event {event_id} "
                        f"links to {data['prev_hash']}, expected {head}"
                    )

                stored_hash = data.pop("event_hash")
                expected_hash = _canonical_hash(data)
                if stored_hash != expected_hash:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): event {event_id} "
                        f"stored hash {stored_hash} != computed {expected_hash}"
                    )

                event = EventRecord(
                    event_id=event_id,
                    event_kind=EventKind(data["event_kind"]),
                    block_number=data["block_number"],
                    timestamp_utc=data["timestamp_utc"],
                    contract=data["contract"],
                    sender=data["sender"],
                    payload=data["payload"],
                    prev_hash=data["prev_hash"],
                    event_hash=stored_hash,
                )
                self._events.append(event)
                self._event_ids.add(event_id)
                head = stored_hash


def _canonical_hash(fields: dict[str, Any]) -> str:
    canonical = json.dumps(fields, sort_keys=True, ensure_ascii=False).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"
