"""
Tests for DirectoryController: commit-after-success, call bookkeeping and
notifications.
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
from prometheus_client import REGISTRY

from src.directory.controller import DirectoryController
from src.directory.errors import (
    CallError,
    FormatError,
    GatewayConnectionError,
    LoadError,
    NotFoundError,
    RemoteError,
    ValidationError,
)
from src.directory.models import RecencyStatus, StoreInput
from src.gateways.base import CallDispatchGateway, CallResult
from src.gateways.memory import InMemoryRecordStore

FIXED_NOW = datetime(2024, 3, 15, 12, 0, 0, tzinfo=timezone.utc)
FIXED_TODAY = "2024-03-15"


def _gateway_failures(operation, kind):
    value = REGISTRY.get_sample_value(
        "store_directory_gateway_failures_total", {"operation": operation, "kind": kind})
    return value or 0.0


async def _seeded(records, dispatcher, notifications, **kwargs):
    store = InMemoryRecordStore(records)
    controller = DirectoryController(
        store, dispatcher, notifier=notifications, clock=lambda: FIXED_NOW, **kwargs
    )
    result = await controller.load_all()
    assert result.ok
    return controller, store


class TestLoadAll:

    @pytest.mark.asyncio
    async def test_replaces_local_list_newest_first(self, make_record, dispatcher, notifications):
        older = make_record("a", created_at="2024-01-01T00:00:00+00:00")
        newer = make_record("b", created_at="2024-02-01T00:00:00+00:00")

        controller, _ = await _seeded([older, newer], dispatcher, notifications)

        assert [r.id for r in controller.records] == ["b", "a"]
        assert notifications.last.title == "Stores loaded"

    @pytest.mark.asyncio
    async def test_failure_keeps_previous_state(self, make_record, dispatcher, notifications):
        controller, store = await _seeded([make_record("a")], dispatcher, notifications)
        store.list = AsyncMock(side_effect=GatewayConnectionError("Failed to connect to record store"))

        result = await controller.load_all()

        assert not result.ok
        assert isinstance(result.error, LoadError)
        assert result.notification.title == "Error loading stores"
        assert result.notification.is_error
        assert [r.id for r in controller.records] == ["a"]


class TestCrud:

    @pytest.mark.asyncio
    async def test_add_then_reload_round_trip(self, controller, notifications):
        result = await controller.add(StoreInput(phone_number="555-1234", store_name="Acme", location="Main"))

        assert result.ok
        record = result.value
        assert record.phone_number == 5551234
        assert record.last_called == ""
        assert controller.records[0] == record
        assert notifications.last.title == "Store added"

        await controller.load_all()
        assert [r for r in controller.records if r.id == record.id] == [record]

    @pytest.mark.asyncio
    async def test_add_prepends(self, controller):
        first = (await controller.add(StoreInput("5550001"))).value
        second = (await controller.add(StoreInput("5550002"))).value
        assert [r.id for r in controller.records] == [second.id, first.id]

    @pytest.mark.asyncio
    async def test_add_rejects_bad_phone_without_gateway_call(self, controller, record_store):
        record_store.insert = AsyncMock()

        result = await controller.add(StoreInput("call me"))

        assert not result.ok
        assert isinstance(result.error, ValidationError)
        assert result.notification.title == "Error adding store"
        record_store.insert.assert_not_called()
        assert controller.records == ()

    @pytest.mark.asyncio
    async def test_add_remote_failure_changes_nothing(self, controller, record_store):
        record_store.insert = AsyncMock(side_effect=RemoteError("duplicate key"))

        result = await controller.add(StoreInput("5551234"))

        assert not result.ok
        assert result.message == "duplicate key"
        assert controller.records == ()

    @pytest.mark.asyncio
    async def test_edit_replaces_in_place(self, make_record, dispatcher, notifications):
        controller, _ = await _seeded(
            [make_record("a", created_at="2024-01-01T00:00:00+00:00"),
             make_record("b", created_at="2024-02-01T00:00:00+00:00", last_called="2024-03-01")],
            dispatcher, notifications,
        )

        result = await controller.edit("b", StoreInput("5559999", location="Elm", store_name="Beta"))

        assert result.ok
        assert [r.id for r in controller.records] == ["b", "a"]
        edited = controller.get("b")
        assert (edited.phone_number, edited.store_name, edited.location) == (5559999, "Beta", "Elm")
        assert edited.last_called == "2024-03-01"
        assert notifications.last.title == "Store updated"

    @pytest.mark.asyncio
    async def test_edit_unknown_id_makes_no_gateway_call(self, controller, record_store):
        record_store.update = AsyncMock()

        result = await controller.edit("missing", StoreInput("5551234"))

        assert not result.ok
        assert isinstance(result.error, NotFoundError)
        record_store.update.assert_not_called()
        assert controller.records == ()

    @pytest.mark.asyncio
    async def test_edit_remote_failure_keeps_old_values(self, make_record, dispatcher, notifications):
        controller, store = await _seeded([make_record("a", store_name="Old")], dispatcher, notifications)
        store.update = AsyncMock(side_effect=GatewayConnectionError())

        result = await controller.edit("a", StoreInput("5551234", store_name="New"))

        assert not result.ok
        assert result.notification.title == "Error updating store"
        assert controller.get("a").store_name == "Old"

    @pytest.mark.asyncio
    async def test_remove_then_search(self, controller):
        added = (await controller.add(StoreInput("5551234", store_name="Acme"))).value

        result = await controller.remove(added.id)

        assert result.ok
        assert result.notification.title == "Store deleted"
        assert controller.search("") == []
        assert controller.search("acme") == []

    @pytest.mark.asyncio
    async def test_remove_failure_keeps_record(self, make_record, dispatcher, notifications):
        controller, store = await _seeded([make_record("a")], dispatcher, notifications)
        store.delete = AsyncMock(side_effect=RemoteError("permission denied"))

        result = await controller.remove("a")

        assert not result.ok
        assert result.notification.title == "Error deleting store"
        assert controller.get("a") is not None


class TestImport:

    @pytest.mark.asyncio
    async def test_import_text_prepends_created_records(self, make_record, dispatcher, notifications):
        controller, _ = await _seeded([make_record("existing")], dispatcher, notifications)

        result = await controller.import_text("phone,store_name\n5550001,A\n,skipped\n5550002,B\n")

        assert result.ok
        assert result.message == "2 stores have been added"
        assert result.notification.title == "Stores uploaded"
        assert [r.phone_number for r in controller.records[:2]] == [5550001, 5550002]
        assert controller.records[2].id == "existing"

    @pytest.mark.asyncio
    async def test_bad_csv_leaves_state_unchanged(self, controller, record_store):
        record_store.bulk_insert = AsyncMock()

        result = await controller.import_text("store_name\nAcme\n")

        assert not result.ok
        assert isinstance(result.error, FormatError)
        assert result.notification.title == "Upload failed"
        record_store.bulk_insert.assert_not_called()
        assert controller.records == ()

    @pytest.mark.asyncio
    async def test_all_blank_phone_rows_is_an_error(self, controller, record_store):
        record_store.bulk_insert = AsyncMock()

        result = await controller.import_text("phone,store\n,Acme\n")

        assert not result.ok
        assert result.message == "No valid store data found in CSV"
        record_store.bulk_insert.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_row_rejects_whole_batch(self, controller, record_store):
        record_store.bulk_insert = AsyncMock()

        result = await controller.import_batch([StoreInput("5550001"), StoreInput("not-a-phone")])

        assert not result.ok
        assert isinstance(result.error, ValidationError)
        assert result.message.startswith("Row 2:")
        assert result.details["rows"] == 2
        record_store.bulk_insert.assert_not_called()

    @pytest.mark.asyncio
    async def test_bulk_insert_failure_adds_nothing(self, controller, record_store):
        record_store.bulk_insert = AsyncMock(side_effect=RemoteError("insert failed"))

        result = await controller.import_batch([StoreInput("5550001")])

        assert not result.ok
        assert result.notification.title == "Error uploading stores"
        assert controller.records == ()


class TestCallOne:

    @pytest.mark.asyncio
    async def test_success_sets_last_called_today(self, make_record, dispatcher, notifications):
        controller, store = await _seeded([make_record("a", phone=5551234)], dispatcher, notifications)

        result = await controller.call_one(controller.get("a"))

        assert result.ok
        assert dispatcher.calls == [5551234]
        assert result.value.last_called == FIXED_TODAY
        assert controller.get("a").last_called == FIXED_TODAY
        assert controller.status_of(controller.get("a")) is RecencyStatus.RECENT
        assert result.message == "Call initiated to 5551234"
        assert (await store.list())[0].last_called == FIXED_TODAY

    @pytest.mark.asyncio
    async def test_reported_failure_surfaces_message(self, make_record, scripted_dispatcher, notifications):
        dispatcher = scripted_dispatcher({5551234: CallResult(success=False, error="busy")})
        controller, store = await _seeded([make_record("a", phone=5551234)], dispatcher, notifications)
        store.bulk_update_last_called = AsyncMock()

        result = await controller.call_one(controller.get("a"))

        assert not result.ok
        assert isinstance(result.error, CallError)
        assert result.message == "busy"
        assert notifications.last.title == "Call failed"
        store.bulk_update_last_called.assert_not_called()
        assert controller.get("a").last_called == ""

    @pytest.mark.asyncio
    async def test_reported_failure_counted_as_call_kind(self, make_record, scripted_dispatcher, notifications):
        dispatcher = scripted_dispatcher({5551234: CallResult(success=False, error="busy")})
        controller, _ = await _seeded([make_record("a", phone=5551234)], dispatcher, notifications)
        before = {kind: _gateway_failures("call_store", kind) for kind in ("call", "remote")}

        await controller.call_one(controller.get("a"))

        assert _gateway_failures("call_store", "call") == before["call"] + 1
        assert _gateway_failures("call_store", "remote") == before["remote"]

    @pytest.mark.asyncio
    async def test_reported_failure_without_message_uses_default(self, make_record, scripted_dispatcher,
                                                                 notifications):
        dispatcher = scripted_dispatcher({5551234: CallResult(success=False)})
        controller, _ = await _seeded([make_record("a", phone=5551234)], dispatcher, notifications)

        result = await controller.call_one(controller.get("a"))

        assert result.message == "Failed to initiate call"

    @pytest.mark.asyncio
    async def test_unreachable_dispatcher(self, make_record, scripted_dispatcher, notifications):
        dispatcher = scripted_dispatcher({5551234: GatewayConnectionError()})
        controller, _ = await _seeded([make_record("a", phone=5551234)], dispatcher, notifications)

        result = await controller.call_one(controller.get("a"))

        assert not result.ok
        assert result.notification.title == "Connection error"
        assert result.message == "Failed to connect to calling service"
        assert controller.get("a").last_called == ""

    @pytest.mark.asyncio
    async def test_persistence_failure_after_call(self, make_record, dispatcher, notifications):
        controller, store = await _seeded([make_record("a")], dispatcher, notifications)
        store.bulk_update_last_called = AsyncMock(side_effect=RemoteError("write failed"))

        result = await controller.call_one(controller.get("a"))

        assert not result.ok
        assert result.details["call_placed"] is True
        assert result.notification.title == "Error updating store"
        assert controller.get("a").last_called == ""


class TestCallAllPending:

    @pytest.mark.asyncio
    async def test_calls_only_pending_and_marks_them(self, make_record, dispatcher, notifications):
        controller, store = await _seeded(
            [make_record("id1", phone=5550001, last_called=""),
             make_record("id2", phone=5550002, last_called="2024-01-01")],
            dispatcher, notifications,
        )

        result = await controller.call_all_pending()

        assert result.ok
        assert dispatcher.calls == [5550001]
        assert controller.get("id1").last_called == FIXED_TODAY
        assert controller.get("id2").last_called == "2024-01-01"
        assert [r.id for r in result.value] == ["id1"]
        assert result.details == {"attempted": 1, "succeeded": 1, "failed": 0}
        assert result.message == "Initiated calls to 1 stores"
        persisted = {r.id: r.last_called for r in await store.list()}
        assert persisted == {"id1": FIXED_TODAY, "id2": "2024-01-01"}

    @pytest.mark.asyncio
    async def test_nothing_pending_is_a_no_op(self, make_record, dispatcher, notifications):
        controller, store = await _seeded([make_record("a", last_called="2024-03-01")], dispatcher, notifications)
        store.bulk_update_last_called = AsyncMock()

        result = await controller.call_all_pending()

        assert result.ok
        assert result.notification.title == "No pending stores"
        assert result.details["attempted"] == 0
        assert dispatcher.calls == []
        store.bulk_update_last_called.assert_not_called()

    @pytest.mark.asyncio
    async def test_marks_every_attempt_by_default(self, make_record, scripted_dispatcher, notifications):
        dispatcher = scripted_dispatcher({
            5550002: CallResult(success=False, error="busy"),
            5550003: GatewayConnectionError(),
        })
        controller, _ = await _seeded(
            [make_record("a", phone=5550001), make_record("b", phone=5550002), make_record("c", phone=5550003)],
            dispatcher, notifications,
        )

        result = await controller.call_all_pending()

        assert result.ok
        assert sorted(dispatcher.calls) == [5550001, 5550002, 5550003]
        assert result.details == {"attempted": 3, "succeeded": 1, "failed": 2}
        assert all(r.last_called == FIXED_TODAY for r in controller.records)

    @pytest.mark.asyncio
    async def test_mark_only_successful(self, make_record, scripted_dispatcher, notifications):
        dispatcher = scripted_dispatcher({5550002: CallResult(success=False, error="busy")})
        controller, _ = await _seeded(
            [make_record("a", phone=5550001), make_record("b", phone=5550002)],
            dispatcher, notifications, mark_only_successful=True,
        )

        result = await controller.call_all_pending()

        assert result.ok
        assert controller.get("a").last_called == FIXED_TODAY
        assert controller.get("b").last_called == ""
        assert controller.pending() == [controller.get("b")]

    @pytest.mark.asyncio
    async def test_mark_only_successful_with_no_successes(self, make_record, scripted_dispatcher, notifications):
        dispatcher = scripted_dispatcher({5550001: CallResult(success=False, error="busy")})
        controller, store = await _seeded(
            [make_record("a", phone=5550001)], dispatcher, notifications, mark_only_successful=True,
        )
        store.bulk_update_last_called = AsyncMock()

        result = await controller.call_all_pending()

        assert not result.ok
        assert result.message == "0 of 1 calls succeeded"
        store.bulk_update_last_called.assert_not_called()

    @pytest.mark.asyncio
    async def test_bulk_update_failure_leaves_records_pending(self, make_record, dispatcher, notifications):
        controller, store = await _seeded([make_record("a"), make_record("b", phone=5550002)],
                                          dispatcher, notifications)
        store.bulk_update_last_called = AsyncMock(side_effect=GatewayConnectionError())

        result = await controller.call_all_pending()

        assert not result.ok
        assert result.notification.title == "Connection error"
        assert result.details["attempted"] == 2
        assert len(controller.pending()) == 2

    @pytest.mark.asyncio
    async def test_bounded_concurrency(self, make_record, notifications):
        state = {"active": 0, "peak": 0}

        class SlowDispatcher(CallDispatchGateway):
            async def call_store(self, phone_number):
                state["active"] += 1
                state["peak"] = max(state["peak"], state["active"])
                await asyncio.sleep(0.01)
                state["active"] -= 1
                return CallResult(success=True)

        records = [make_record(f"r{i}", phone=5550000 + i) for i in range(6)]
        controller, _ = await _seeded(records, SlowDispatcher(), notifications, max_concurrent_calls=2)

        result = await controller.call_all_pending()

        assert result.ok
        assert result.details["attempted"] == 6
        assert state["peak"] == 2
        assert controller.pending() == []


class TestReadAccess:

    @pytest.mark.asyncio
    async def test_counts(self, make_record, dispatcher, notifications):
        controller, _ = await _seeded(
            [make_record("a", store_name="Acme"),
             make_record("b", last_called="2024-03-14"),
             make_record("c", last_called="2023-01-01", store_name="Acme Two")],
            dispatcher, notifications,
        )

        counts = controller.counts("acme")

        assert counts["total"] == 3
        assert counts["shown"] == 2
        assert counts["pending"] == 1
        assert counts["by_status"] == {"Pending": 1, "Recent": 1, "Stale": 0, "Old": 1}

    def test_records_is_read_only_view(self, controller):
        assert isinstance(controller.records, tuple)

    def test_rejects_non_positive_concurrency(self, record_store, dispatcher):
        with pytest.raises(ValueError):
            DirectoryController(record_store, dispatcher, max_concurrent_calls=0)
