"""Invariant checks over a notification log.

The log alone must be enough to confirm the task lifecycle was honoured:

- the hash chain is intact and every record hash is correct,
- every task-responded notification follows a task-requested one for the
  same task on the same registry,
- a task is responded to at most once,
- responses carry a terminal status,
- tasks and opt-ins only reference applications registered earlier.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Iterable

from taskledger.models.task import TaskStatus
from taskledger.persistence.event_log import GENESIS_HASH, EventKind, EventRecord

_TERMINAL = {TaskStatus.COMPLETED.value, TaskStatus.FAILED.value}


def check_log(events: Iterable[EventRecord]) -> list[str]:
    """Return a list of violations. An empty list means the log is sound."""
    errors: list[str] = []
    head = GENESIS_HASH
    registered_apps: set[str] = set()
    requested: set[tuple[str, str]] = set()
    responded: set[tuple[str, str]] = set()

    for event in events:
        if event.prev_hash != head:
            errors.append(f"{event.event_id}: breaks the hash chain")
        if not event.verify():
            errors.append(f"{event.event_id}: hash does not match contents")
        head = event.event_hash

        payload = event.payload
        if event.event_kind == EventKind.APPLICATION_REGISTERED:
            registered_apps.add(payload["app_id"])

        elif event.event_kind == EventKind.OPERATOR_OPTED_IN:
            if payload["app_id"] not in registered_apps:
                errors.append(
                    f"{event.event_id}: opt-in to unregistered application {payload['app_id']}"
                )

        elif event.event_kind == EventKind.TASK_REQUESTED:
            key = (event.contract, payload["task_id"])
            if payload["app_id"] not in registered_apps:
                errors.append(
                    f"{event.event_id}: task for unregistered application {payload['app_id']}"
                )
            if key in requested:
                errors.append(f"{event.event_id}: task {payload['task_id']} requested twice")
            requested.add(key)

        elif event.event_kind == EventKind.TASK_RESPONDED:
            key = (event.contract, payload["task_id"])
            if key not in requested:
                errors.append(
                    f"{event.event_id}: response to unrequested task {payload['task_id']}"
                )
            if key in responded:
                errors.append(
                    f"{event.event_id}: task {payload['task_id']} responded to twice"
                )
            responded.add(key)
            if payload["status"] not in _TERMINAL:
                errors.append(
                    f"{event.event_id}: non-terminal response status {payload['status']}"
                )

    return errors


def read_records(path: Path) -> list[EventRecord]:
    """Parse a JSONL log without rejecting tampered records."""
    records: list[EventRecord] = []
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            data = json.loads(line)
            records.append(EventRecord(
                event_id=data["event_id"],
                event_kind=EventKind(data["event_kind"]),
                block_number=data["block_number"],
                timestamp_utc=data["timestamp_utc"],
                contract=data["contract"],
                sender=data["sender"],
                payload=data["payload"],
                prev_hash=data["prev_hash"],
                event_hash=data["event_hash"],
            ))
    return records
