"""Tests for the task registry — creation, exactly-once settlement, config."""

import pytest

from taskledger.crypto.ids import UINT256_MAX, application_id, task_id
from taskledger.ledger.errors import (
    AlreadyExists,
    InvalidApplication,
    InvalidOperation,
    Unauthorized,
)
from taskledger.models.task import TaskStatus
from taskledger.persistence.event_log import EventKind

from conftest import AGGREGATOR, OWNER, START_TIME, STRANGER, USER, register_app


class TestCreateTask:
    def test_id_is_derived_from_caller_app_and_time(self, devnet, app_id) -> None:
        tid = devnet.task_registry.create_task(app_id, sender=USER)
        assert tid == task_id(USER, app_id, START_TIME)
        assert devnet.task_registry.task_status(tid) == TaskStatus.PENDING

    def test_notification_is_self_contained(self, devnet, app_id) -> None:
        tid = devnet.task_registry.create_task(app_id, sender=USER)
        [event] = devnet.ledger.events(EventKind.TASK_REQUESTED)
        assert event.contract == devnet.task_registry.address
        assert event.payload == {
            "task_id": tid,
            "app_id": app_id,
            "requester": USER,
            "requested_at": START_TIME,
        }

    def test_unregistered_application(self, devnet) -> None:
        unknown = application_id("nobody")
        with pytest.raises(InvalidApplication):
            devnet.task_registry.create_task(unknown, sender=USER)
        assert devnet.task_registry.task_status(task_id(USER, unknown, START_TIME)) \
            == TaskStatus.EMPTY
        assert devnet.ledger.events(EventKind.TASK_REQUESTED) == []

    def test_same_caller_same_second_collides(self, devnet, app_id) -> None:
        devnet.task_registry.create_task(app_id, sender=USER)
        with pytest.raises(AlreadyExists):
            devnet.task_registry.create_task(app_id, sender=USER)
        assert len(devnet.ledger.events(EventKind.TASK_REQUESTED)) == 1

    def test_distinct_callers_or_times_do_not_collide(self, devnet, app_id, clock) -> None:
        a = devnet.task_registry.create_task(app_id, sender=USER)
        b = devnet.task_registry.create_task(app_id, sender=STRANGER)
        clock.advance()
        c = devnet.task_registry.create_task(app_id, sender=USER)
        assert len({a, b, c}) == 3

    def test_salt_widens_the_key(self, devnet, app_id) -> None:
        a = devnet.task_registry.create_task(app_id, sender=USER)
        b = devnet.task_registry.create_task(app_id, sender=USER, salt="0x" + "01" * 32)
        assert a != b
        assert b == task_id(USER, app_id, START_TIME, "0x" + "01" * 32)

    def test_zero_salt_is_no_salt(self, devnet, app_id) -> None:
        tid = devnet.task_registry.create_task(app_id, sender=USER, salt="0x" + "00" * 32)
        assert tid == task_id(USER, app_id, START_TIME)


class TestRespondToTask:
    def test_settle_completed(self, devnet, app_id) -> None:
        tid = devnet.task_registry.create_task(app_id, sender=USER)
        devnet.task_registry.respond_to_task(tid, TaskStatus.COMPLETED, 42, sender=AGGREGATOR)
        record = devnet.task_registry.get_task(tid)
        assert record.status == TaskStatus.COMPLETED
        assert record.result == 42
        [event] = devnet.ledger.events(EventKind.TASK_RESPONDED)
        assert event.payload == {"task_id": tid, "status": "completed", "result": 42}

    def test_settle_failed(self, devnet, app_id) -> None:
        tid = devnet.task_registry.create_task(app_id, sender=USER)
        devnet.task_registry.respond_to_task(tid, TaskStatus.FAILED, 0, sender=AGGREGATOR)
        assert devnet.task_registry.task_status(tid) == TaskStatus.FAILED

    @pytest.mark.parametrize("status", [TaskStatus.EMPTY, TaskStatus.PENDING])
    def test_non_terminal_status_rejected(self, devnet, app_id, status) -> None:
        tid = devnet.task_registry.create_task(app_id, sender=USER)
        with pytest.raises(InvalidOperation):
            devnet.task_registry.respond_to_task(tid, status, 0, sender=AGGREGATOR)
        assert devnet.task_registry.task_status(tid) == TaskStatus.PENDING

    @pytest.mark.parametrize("first", [TaskStatus.COMPLETED, TaskStatus.FAILED])
    @pytest.mark.parametrize("second", [TaskStatus.COMPLETED, TaskStatus.FAILED])
    def test_settlement_accepted_once(self, devnet, app_id, first, second) -> None:
        tid = devnet.task_registry.create_task(app_id, sender=USER)
        devnet.task_registry.respond_to_task(tid, first, 1, sender=AGGREGATOR)
        with pytest.raises(InvalidOperation):
            devnet.task_registry.respond_to_task(tid, second, 2, sender=AGGREGATOR)
        record = devnet.task_registry.get_task(tid)
        assert record.status == first
        assert record.result == 1
        assert len(devnet.ledger.events(EventKind.TASK_RESPONDED)) == 1

    def test_unknown_task(self, devnet) -> None:
        with pytest.raises(InvalidOperation):
            devnet.task_registry.respond_to_task(
                "0x" + "99" * 32, TaskStatus.COMPLETED, 0, sender=AGGREGATOR,
            )

    @pytest.mark.parametrize("caller", [OWNER, USER, STRANGER])
    def test_only_settlement_authority(self, devnet, app_id, caller) -> None:
        tid = devnet.task_registry.create_task(app_id, sender=USER)
        with pytest.raises(Unauthorized):
            devnet.task_registry.respond_to_task(tid, TaskStatus.COMPLETED, 0, sender=caller)
        assert devnet.task_registry.task_status(tid) == TaskStatus.PENDING

    def test_authorization_checked_before_task_state(self, devnet) -> None:
        with pytest.raises(Unauthorized):
            devnet.task_registry.respond_to_task(
                "0x" + "99" * 32, TaskStatus.EMPTY, 0, sender=STRANGER,
            )

    @pytest.mark.parametrize("result", [-1, UINT256_MAX + 1, True])
    def test_result_must_be_uint256(self, devnet, app_id, result) -> None:
        tid = devnet.task_registry.create_task(app_id, sender=USER)
        with pytest.raises(InvalidOperation):
            devnet.task_registry.respond_to_task(
                tid, TaskStatus.COMPLETED, result, sender=AGGREGATOR,
            )
        assert devnet.task_registry.get_task(tid).result is None

    def test_get_task_returns_copy(self, devnet, app_id) -> None:
        tid = devnet.task_registry.create_task(app_id, sender=USER)
        record = devnet.task_registry.get_task(tid)
        record.status = TaskStatus.COMPLETED
        assert devnet.task_registry.task_status(tid) == TaskStatus.PENDING


class TestConfiguration:
    def test_set_settlement_authority(self, devnet, app_id) -> None:
        tid = devnet.task_registry.create_task(app_id, sender=USER)
        devnet.task_registry.set_settlement_authority(STRANGER, sender=OWNER)
        with pytest.raises(Unauthorized):
            devnet.task_registry.respond_to_task(tid, TaskStatus.COMPLETED, 0, sender=AGGREGATOR)
        devnet.task_registry.respond_to_task(tid, TaskStatus.COMPLETED, 0, sender=STRANGER)
        [event] = devnet.ledger.events(EventKind.SETTLEMENT_AUTHORITY_UPDATED)
        assert event.payload["previous"] == AGGREGATOR

    def test_set_settlement_authority_owner_only(self, devnet) -> None:
        with pytest.raises(Unauthorized):
            devnet.task_registry.set_settlement_authority(STRANGER, sender=AGGREGATOR)
        assert devnet.task_registry.settlement_authority == AGGREGATOR

    def test_set_application_registry_to_empty_address(self, devnet, app_id) -> None:
        devnet.task_registry.set_application_registry(STRANGER, sender=OWNER)
        assert devnet.task_registry.application_registry == STRANGER
        with pytest.raises(InvalidApplication):
            devnet.task_registry.create_task(app_id, sender=USER)

    def test_set_application_registry_owner_only(self, devnet) -> None:
        with pytest.raises(Unauthorized):
            devnet.task_registry.set_application_registry(STRANGER, sender=USER)


class TestScenario:
    def test_settle_once_then_reject_repeat(self, devnet) -> None:
        app1 = register_app(devnet, "APP1")
        h = devnet.task_registry.create_task(app1, sender=USER)
        assert h == task_id(USER, app1, START_TIME)
        assert devnet.task_registry.task_status(h) == TaskStatus.PENDING

        devnet.task_registry.respond_to_task(h, TaskStatus.COMPLETED, 42, sender=AGGREGATOR)
        assert devnet.task_registry.task_status(h) == TaskStatus.COMPLETED

        with pytest.raises(InvalidOperation):
            devnet.task_registry.respond_to_task(h, TaskStatus.FAILED, 0, sender=AGGREGATOR)
        assert devnet.task_registry.task_status(h) == TaskStatus.COMPLETED
