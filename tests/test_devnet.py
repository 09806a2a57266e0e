"""Tests for devnet persistence — snapshot plus event log survive a restart."""

import json

import pytest

from taskledger.devnet import EVENTS_FILE, STATE_FILE, Devnet
from taskledger.ledger.errors import AlreadyExists
from taskledger.models.task import TaskStatus
from taskledger.persistence.state_store import StateStore

from conftest import AGGREGATOR, OPERATOR_KEYS, OPERATORS, OWNER, USER, register_app, register_operator


class TestStateStore:
    def test_missing_file(self, tmp_path) -> None:
        store = StateStore(storage_path=tmp_path / "state.json")
        assert not store.exists()
        assert store.load() is None

    def test_save_and_load(self, tmp_path) -> None:
        store = StateStore(storage_path=tmp_path / "nested" / "state.json")
        store.save({"result": 2**255})
        assert store.load() == {"result": 2**255}
        assert not (tmp_path / "nested" / "state.json.tmp").exists()


class TestDevnetPersistence:
    def test_create_refuses_existing(self, tmp_path, clock) -> None:
        Devnet.create(OWNER, AGGREGATOR, data_dir=tmp_path, clock=clock)
        with pytest.raises(FileExistsError):
            Devnet.create(OWNER, AGGREGATOR, data_dir=tmp_path, clock=clock)

    def test_load_missing(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            Devnet.load(tmp_path)

    def test_restart_preserves_state(self, tmp_path, clock) -> None:
        devnet = Devnet.create(OWNER, AGGREGATOR, data_dir=tmp_path, clock=clock)
        app_id = register_app(devnet)
        register_operator(devnet, OPERATOR_KEYS[0])
        devnet.directory.opt_in(app_id, sender=OPERATORS[0])
        tid = devnet.task_registry.create_task(app_id, sender=USER)
        devnet.task_registry.respond_to_task(tid, TaskStatus.COMPLETED, 7, sender=AGGREGATOR)
        devnet.app_registry.transfer_ownership(USER, sender=OWNER)
        devnet.save()

        reloaded = Devnet.load(tmp_path, clock=clock)
        assert reloaded.addresses() == devnet.addresses()
        assert reloaded.ledger.block_number == devnet.ledger.block_number
        assert reloaded.app_registry.is_registered(app_id)
        assert reloaded.app_registry.pending_owner == USER
        assert reloaded.directory.is_opted_in(OPERATORS[0], app_id)
        assert reloaded.authority.is_registered(OPERATORS[0], reloaded.directory.address)
        assert reloaded.task_registry.get_task(tid).result == 7
        assert reloaded.task_registry.settlement_authority == AGGREGATOR

        with pytest.raises(AlreadyExists):
            reloaded.task_registry.create_task(app_id, sender=USER)

    def test_stale_snapshot_rejected(self, tmp_path, clock) -> None:
        devnet = Devnet.create(OWNER, AGGREGATOR, data_dir=tmp_path, clock=clock)
        register_app(devnet)
        with pytest.raises(ValueError, match="event log"):
            Devnet.load(tmp_path)

    def test_files_written(self, tmp_path, clock) -> None:
        devnet = Devnet.create(OWNER, AGGREGATOR, data_dir=tmp_path, clock=clock)
        register_app(devnet)
        devnet.save()
        state = json.loads((tmp_path / STATE_FILE).read_text(encoding="utf-8"))
        assert state["head_hash"] == devnet.ledger.head_hash
        assert (tmp_path / EVENTS_FILE).exists()

    def test_status(self, devnet, app_id) -> None:
        devnet.task_registry.create_task(app_id, sender=USER)
        status = devnet.status()
        assert status["applications"] == 1
        assert status["tasks"] == {"pending": 1}
        assert status["owners"]["task_registry"] == OWNER
