"""Tests for log invariant checks."""

import dataclasses

from taskledger.audit import check_log, read_records
from taskledger.devnet import EVENTS_FILE, Devnet
from taskledger.models.task import TaskStatus
from taskledger.persistence.event_log import GENESIS_HASH, EventKind, EventRecord

from conftest import AGGREGATOR, OWNER, USER, register_app


def _settled_log(devnet) -> list[EventRecord]:
    app_id = register_app(devnet)
    tid = devnet.task_registry.create_task(app_id, sender=USER)
    devnet.task_registry.respond_to_task(tid, TaskStatus.COMPLETED, 1, sender=AGGREGATOR)
    return devnet.ledger.events()


def _rechain(records: list[EventRecord]) -> list[EventRecord]:
    """Rebuild hashes so only the semantic checks can fail."""
    out = []
    prev = GENESIS_HASH
    for r in records:
        fresh = EventRecord.create(
            r.event_id, r.event_kind, r.block_number, r.contract, r.sender,
            r.payload, prev_hash=prev,
        )
        out.append(fresh)
        prev = fresh.event_hash
    return out


class TestCheckLog:
    def test_clean_log(self, devnet) -> None:
        assert check_log(_settled_log(devnet)) == []

    def test_tampered_record(self, devnet) -> None:
        records = _settled_log(devnet)
        records[1] = dataclasses.replace(records[1], payload={**records[1].payload, "app_id": "0x" + "00" * 32})
        errors = check_log(records)
        assert any("hash does not match" in e for e in errors)

    def test_dropped_record_breaks_chain(self, devnet) -> None:
        records = _settled_log(devnet)
        errors = check_log(records[:1] + records[2:])
        assert any("breaks the hash chain" in e for e in errors)

    def test_response_without_request(self, devnet) -> None:
        records = _settled_log(devnet)
        rebuilt = _rechain([r for r in records if r.event_kind != EventKind.TASK_REQUESTED])
        errors = check_log(rebuilt)
        assert any("unrequested task" in e for e in errors)

    def test_double_response(self, devnet) -> None:
        records = _settled_log(devnet)
        respond = records[-1]
        rebuilt = _rechain(records + [dataclasses.replace(respond, event_id="99-0")])
        errors = check_log(rebuilt)
        assert any("responded to twice" in e for e in errors)

    def test_non_terminal_response(self, devnet) -> None:
        records = _settled_log(devnet)
        respond = records[-1]
        records[-1] = dataclasses.replace(respond, payload={**respond.payload, "status": "pending"})
        errors = check_log(_rechain(records))
        assert any("non-terminal" in e for e in errors)

    def test_task_for_unregistered_application(self, devnet) -> None:
        records = _settled_log(devnet)
        rebuilt = _rechain([r for r in records if r.event_kind != EventKind.APPLICATION_REGISTERED])
        errors = check_log(rebuilt)
        assert any("unregistered application" in e for e in errors)


class TestReadRecords:
    def test_reads_persisted_log(self, tmp_path, clock) -> None:
        devnet = Devnet.create(OWNER, AGGREGATOR, data_dir=tmp_path, clock=clock)
        expected = _settled_log(devnet)
        assert read_records(tmp_path / EVENTS_FILE) == expected
