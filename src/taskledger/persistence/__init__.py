"""Persistence — the notification log and state snapshots."""

from taskledger.persistence.event_log import EventKind, EventLog, EventRecord
from taskledger.persistence.state_store import StateStore

__all__ = ["EventKind", "EventLog", "EventRecord", "StateStore"]
