# test_sync_client.py
#
# Tests for ClientSyncEngine: full pull-then-push cycles against an in-memory fake remote and over HTTP.
#
# Imports
import asyncio
import json
from datetime import timedelta
from unittest.mock import AsyncMock
#
# Third-Party Imports
import httpx
import pytest
#
# Local Imports
from inventory_sync.Constants import EntityType, ConflictResolution, SyncStatus, SYNC_ENTITY_ORDER, EPOCH_TIMESTAMP
from inventory_sync.DB.Inventory_DB import NotFoundError
from inventory_sync.Sync.Sync_Client import (
    ClientSyncEngine, SyncConfig, SyncSession, SyncPhase, SyncResult, ConflictItem
)
from inventory_sync.Sync.sync_exceptions import NotConfiguredError, AlreadyInProgressError
from inventory_sync.Utils.time_utils import format_timestamp
from inventory_sync.sync_api import InventorySyncAPIClient, PushResult, PullResult, NETWORK_ERROR_PREFIX
#
########################################################################################################################
#
# Functions:

pytestmark = pytest.mark.asyncio


def make_engine(db, remote, policy=ConflictResolution.NEWEST_WINS, **kwargs):
    config = SyncConfig(api_base_url="http://inventory.test", api_key="k", conflict_resolution=policy)
    return ClientSyncEngine(db, session=SyncSession(config=config), client=remote, **kwargs)


def remote_item(item_id, updated_at, **fields):
    return {"id": item_id, "version": 1, "updated_at": updated_at, "name": "Remote item", **fields}


class TestPreconditions:
    async def test_not_configured_fails_before_any_io(self, db_instance, fake_remote):
        engine = ClientSyncEngine(db_instance, client=fake_remote)
        with pytest.raises(NotConfiguredError):
            await engine.perform_full_sync()
        assert fake_remote.pull_calls == []
        assert engine.session.in_progress is False

    async def test_missing_api_key_counts_as_not_configured(self, db_instance, fake_remote):
        config = SyncConfig(api_base_url="http://inventory.test", api_key="  ")
        engine = ClientSyncEngine(db_instance, session=SyncSession(config=config), client=fake_remote)
        with pytest.raises(NotConfiguredError):
            await engine.perform_full_sync()

    async def test_second_call_while_running_is_rejected(self, db_instance, fake_remote, sync_engine):
        release = asyncio.Event()
        original_pull = fake_remote.pull

        async def blocking_pull(entity_type, since):
            await release.wait()
            return await original_pull(entity_type, since)

        fake_remote.pull = blocking_pull
        first = asyncio.create_task(sync_engine.perform_full_sync())
        await asyncio.sleep(0)
        assert sync_engine.session.in_progress is True
        assert sync_engine.session.phase is SyncPhase.PULLING

        with pytest.raises(AlreadyInProgressError):
            await sync_engine.perform_full_sync()

        release.set()
        result = await first
        assert result.success is True
        assert sync_engine.session.in_progress is False
        assert sync_engine.session.phase is SyncPhase.IDLE


class TestPull:
    async def test_pull_order_and_since(self, sync_engine, fake_remote):
        await sync_engine.perform_full_sync()
        assert [entity for entity, _ in fake_remote.pull_calls] == SYNC_ENTITY_ORDER
        assert all(since is None for _, since in fake_remote.pull_calls)
        first_sync_time = sync_engine.session.last_sync_time
        assert first_sync_time is not None

        fake_remote.pull_calls.clear()
        await sync_engine.perform_full_sync()
        assert all(since == first_sync_time for _, since in fake_remote.pull_calls)

    async def test_absent_remote_records_are_inserted_as_synced(self, sync_engine, fake_remote, db_instance):
        fake_remote.add_remote(EntityType.CATEGORIES, {"id": "srv-c", "version": 2,
                                                       "updated_at": "2025-01-01T00:00:00Z", "name": "Tools"})
        fake_remote.add_remote(EntityType.CUSTOMERS, {"id": 42, "updated_at": "2025-01-01T00:00:00Z",
                                                      "name": "Ada"})

        result = await sync_engine.perform_full_sync()

        assert result.total_synced == 2
        assert result.errors == []
        category = db_instance.get_record_by_id(EntityType.CATEGORIES, "srv-c")
        assert category["sync_status"] == SyncStatus.SYNCED.value
        assert category["version"] == 2
        assert db_instance.get_record_by_id(EntityType.CUSTOMERS, "42")["remote_id"] == "42"
        # Pulled records are not pushed back
        assert fake_remote.push_calls == []

    async def test_newest_wins_remote_newer_overwrites_local(self, db_instance, fake_remote, t0):
        db_instance.add_record(EntityType.INVENTORY_ITEMS,
                               {"name": "Bolt", "quantity": 5, "updated_at": format_timestamp(t0)}, record_id="a1")
        db_instance.mark_synced(EntityType.INVENTORY_ITEMS, "a1", "a1")
        fake_remote.add_remote(EntityType.INVENTORY_ITEMS,
                               remote_item("a1", format_timestamp(t0 + timedelta(seconds=60)), quantity=9))
        engine = make_engine(db_instance, fake_remote, ConflictResolution.NEWEST_WINS)

        result = await engine.perform_full_sync()

        record = db_instance.get_record_by_id(EntityType.INVENTORY_ITEMS, "a1")
        assert record["quantity"] == 9
        assert record["sync_status"] == SyncStatus.SYNCED.value
        assert result.total_synced == 1
        assert result.conflicts == []

    async def test_newest_wins_local_newer_is_reported_as_conflict(self, db_instance, fake_remote, t0):
        db_instance.add_record(EntityType.INVENTORY_ITEMS,
                               {"name": "Bolt", "quantity": 5, "updated_at": format_timestamp(t0)}, record_id="a1")
        fake_remote.add_remote(EntityType.INVENTORY_ITEMS,
                               remote_item("a1", format_timestamp(t0 - timedelta(seconds=60)), quantity=9, version=3))
        engine = make_engine(db_instance, fake_remote, ConflictResolution.NEWEST_WINS)

        result = await engine.perform_full_sync()

        assert len(result.conflicts) == 1
        conflict = result.conflicts[0]
        assert isinstance(conflict, ConflictItem)
        assert (conflict.entity_type, conflict.local_id) == ("inventory_items", "a1")
        assert (conflict.local_version, conflict.remote_version) == (1, 3)
        assert conflict.local_data["quantity"] == 5
        assert conflict.remote_data["quantity"] == 9
        # Local copy is kept and, still pending, pushed in the same cycle
        assert db_instance.get_record_by_id(EntityType.INVENTORY_ITEMS, "a1")["quantity"] == 5
        assert [record["id"] for _, record in fake_remote.push_calls] == ["a1"]
        assert result.success is True

    async def test_client_wins_keeps_local(self, db_instance, fake_remote, t0):
        db_instance.add_record(EntityType.CUSTOMERS, {"name": "Local name", "updated_at": format_timestamp(t0)},
                               record_id="c1")
        fake_remote.add_remote(EntityType.CUSTOMERS, {"id": "c1", "version": 5, "name": "Remote name",
                                                      "updated_at": format_timestamp(t0 + timedelta(days=1))})
        engine = make_engine(db_instance, fake_remote, ConflictResolution.CLIENT_WINS)

        result = await engine.perform_full_sync()

        assert [c.local_id for c in result.conflicts] == ["c1"]
        assert db_instance.get_record_by_id(EntityType.CUSTOMERS, "c1")["name"] == "Local name"

    async def test_server_wins_overwrites_newer_local(self, db_instance, fake_remote, t0):
        db_instance.add_record(EntityType.ORDERS, {"order_number": "ORD-1", "customer_name": "Ada",
                                                   "order_date": "2025-01-01", "status": "processing",
                                                   "updated_at": format_timestamp(t0)}, record_id="o1")
        fake_remote.add_remote(EntityType.ORDERS, {"id": "o1", "version": 2, "status": "shipped",
                                                   "updated_at": format_timestamp(t0 - timedelta(days=1))})
        engine = make_engine(db_instance, fake_remote, ConflictResolution.SERVER_WINS)

        result = await engine.perform_full_sync()

        order = db_instance.get_record_by_id(EntityType.ORDERS, "o1")
        assert order["status"] == "shipped"
        assert order["customer_name"] == "Ada"
        assert order["sync_status"] == SyncStatus.SYNCED.value
        assert order["version"] == 2
        assert result.conflicts == []
        assert fake_remote.push_calls == []

    async def test_pull_failure_is_recorded_and_cycle_continues(self, sync_engine, fake_remote, db_instance):
        fake_remote.pull_failures[EntityType.CATEGORIES] = PullResult.rejected("HTTP 500: boom")
        fake_remote.add_remote(EntityType.CUSTOMERS, {"id": "c9", "updated_at": "2025-01-01T00:00:00Z",
                                                      "name": "Still pulled"})
        db_instance.add_record(EntityType.CATEGORIES, {"name": "Local cat"})

        result = await sync_engine.perform_full_sync()

        assert result.errors == ["categories pull error: HTTP 500: boom"]
        assert result.success is False
        assert db_instance.get_record_by_id(EntityType.CUSTOMERS, "c9") is not None
        assert len(fake_remote.push_calls) == 1
        assert sync_engine.session.last_sync_time is not None
        assert sync_engine.session.phase is SyncPhase.IDLE

    async def test_invalid_remote_payload_is_an_error_not_an_abort(self, sync_engine, fake_remote, db_instance):
        fake_remote.add_remote(EntityType.INVENTORY_ITEMS, {"id": "bad", "name": "No timestamp"})
        fake_remote.records[EntityType.INVENTORY_ITEMS]["bad"]["updated_at"] = None
        fake_remote.add_remote(EntityType.INVENTORY_ITEMS, remote_item("good", "2025-01-01T00:00:00Z"))
        fake_remote.add_remote(EntityType.ORDERS, {"id": "o-missing", "updated_at": "2025-01-01T00:00:00Z"})

        result = await sync_engine.perform_full_sync()

        assert len(result.errors) == 2
        assert result.errors[0].startswith("Invalid inventory_items payload from remote: updated_at")
        assert result.errors[1].startswith("Failed to apply remote orders o-missing")
        assert db_instance.get_record_by_id(EntityType.INVENTORY_ITEMS, "good") is not None
        assert result.total_synced == 1


class TestPush:
    async def test_new_category_is_created_remotely(self, sync_engine, fake_remote, db_instance):
        category_id = db_instance.add_record(EntityType.CATEGORIES, {"name": "Tools"})

        result = await sync_engine.perform_full_sync()

        entity, pushed = fake_remote.push_calls[0]
        assert entity is EntityType.CATEGORIES
        assert pushed["remote_id"] is None
        record = db_instance.get_record_by_id(EntityType.CATEGORIES, category_id)
        assert record["remote_id"] == "srv-1"
        assert record["sync_status"] == SyncStatus.SYNCED.value
        assert result.total_synced == 1
        assert result.success is True

    async def test_push_order_follows_entity_order(self, sync_engine, fake_remote, db_instance):
        db_instance.add_record(EntityType.ORDERS, {"order_number": "ORD-1", "customer_name": "Ada",
                                                   "order_date": "2025-01-01"})
        db_instance.add_record(EntityType.CUSTOMERS, {"name": "Ada"})
        db_instance.add_record(EntityType.INVENTORY_ITEMS, {"name": "Bolt"})
        db_instance.add_record(EntityType.CATEGORIES, {"name": "Tools"})

        await sync_engine.perform_full_sync()

        assert [entity for entity, _ in fake_remote.push_calls] == SYNC_ENTITY_ORDER

    async def test_failed_push_marks_failed_and_reports(self, sync_engine, fake_remote, db_instance):
        good = db_instance.add_record(EntityType.INVENTORY_ITEMS, {"name": "Good"})
        bad = db_instance.add_record(EntityType.INVENTORY_ITEMS, {"name": "Bad"})
        fake_remote.push_failures[bad] = PushResult.rejected("HTTP 422: quantity invalid")

        result = await sync_engine.perform_full_sync()

        assert result.success is False
        assert result.errors == [f"Failed to sync inventory_items {bad}: HTTP 422: quantity invalid"]
        assert result.total_synced == 1
        assert db_instance.get_record_by_id(EntityType.INVENTORY_ITEMS, good)["sync_status"] == "synced"
        assert db_instance.get_record_by_id(EntityType.INVENTORY_ITEMS, bad)["sync_status"] == "failed"
        assert db_instance.get_sync_log_entries()[0]["entity_id"] == bad
        assert sync_engine.session.last_sync_time is not None

    async def test_failed_record_is_not_retried_until_edited(self, sync_engine, fake_remote, db_instance):
        bad = db_instance.add_record(EntityType.CUSTOMERS, {"name": "Bad"})
        fake_remote.push_failures[bad] = PushResult.rejected("HTTP 400: nope")
        await sync_engine.perform_full_sync()

        fake_remote.push_calls.clear()
        second = await sync_engine.perform_full_sync()
        assert fake_remote.push_calls == []
        assert second.errors == []

        del fake_remote.push_failures[bad]
        db_instance.update_record(EntityType.CUSTOMERS, bad, {"name": "Fixed"})
        third = await sync_engine.perform_full_sync()
        assert [record["id"] for _, record in fake_remote.push_calls] == [bad]
        assert third.total_synced == 1

    async def test_network_failure_is_distinguishable(self, sync_engine, fake_remote, db_instance):
        record_id = db_instance.add_record(EntityType.CATEGORIES, {"name": "Tools"})
        fake_remote.push_failures[record_id] = PushResult.unreachable(f"{NETWORK_ERROR_PREFIX}connection refused")

        result = await sync_engine.perform_full_sync()

        assert result.errors == [f"Failed to sync categories {record_id}: Network error: connection refused"]

    async def test_batch_size_bounds_each_cycle(self, db_instance, fake_remote):
        ids = [db_instance.add_record(EntityType.INVENTORY_ITEMS, {"name": f"Item {i}"}) for i in range(5)]
        engine = make_engine(db_instance, fake_remote, batch_size=2)

        first = await engine.perform_full_sync()
        assert first.total_synced == 2
        assert [record["id"] for _, record in fake_remote.push_calls] == ids[:2]

        await engine.perform_full_sync()
        await engine.perform_full_sync()
        assert db_instance.get_sync_stats()["synced"] == 5

    async def test_existing_remote_id_updates_in_place(self, sync_engine, fake_remote, db_instance):
        record_id = db_instance.add_record(EntityType.INVENTORY_ITEMS, {"name": "Bolt", "quantity": 1})
        await sync_engine.perform_full_sync()
        db_instance.update_record(EntityType.INVENTORY_ITEMS, record_id, {"quantity": 2})

        await sync_engine.perform_full_sync()

        _, second_push = fake_remote.push_calls[-1]
        assert second_push["remote_id"] == "srv-1"
        assert list(fake_remote.records[EntityType.INVENTORY_ITEMS]) == ["srv-1"]
        assert fake_remote.records[EntityType.INVENTORY_ITEMS]["srv-1"]["quantity"] == 2

    async def test_edit_during_push_stays_pending(self, db_instance):
        record_id = db_instance.add_record(EntityType.CATEGORIES, {"name": "Tools"})
        remote = AsyncMock()
        remote.pull.return_value = PullResult.success([])

        async def push_with_concurrent_edit(entity_type, record):
            db_instance.update_record(EntityType.CATEGORIES, record["id"], {"description": "edited mid-push"})
            return PushResult.success("srv-5")

        remote.push.side_effect = push_with_concurrent_edit
        engine = make_engine(db_instance, remote)

        await engine.perform_full_sync()

        record = db_instance.get_record_by_id(EntityType.CATEGORIES, record_id)
        assert record["sync_status"] == SyncStatus.PENDING.value
        assert record["remote_id"] == "srv-5"
        assert record["version"] == 2


class TestCycleProperties:
    async def test_second_cycle_without_changes_is_a_no_op(self, sync_engine, fake_remote, db_instance, t0):
        db_instance.add_record(EntityType.CATEGORIES, {"name": "Tools", "updated_at": format_timestamp(t0)})
        db_instance.add_record(EntityType.INVENTORY_ITEMS, {"name": "Bolt", "updated_at": format_timestamp(t0)})
        fake_remote.add_remote(EntityType.CUSTOMERS, {"id": "c1", "name": "Ada",
                                                      "updated_at": format_timestamp(t0)})

        first = await sync_engine.perform_full_sync()
        second = await sync_engine.perform_full_sync()

        assert first.total_synced == 3
        assert second.total_synced == 0
        assert second.errors == []

    async def test_report_shape(self, sync_engine):
        result = await sync_engine.perform_full_sync()
        assert isinstance(result, SyncResult)
        assert result.to_dict() == {"success": True, "total_synced": 0, "errors": [], "conflicts": []}
        assert sync_engine.session.last_result is result

    async def test_phase_is_failed_only_transiently(self, sync_engine, fake_remote, mocker):
        fake_remote.pull_failures[EntityType.ORDERS] = PullResult.unreachable(f"{NETWORK_ERROR_PREFIX}timeout")
        phase_spy = mocker.spy(sync_engine, "_set_phase")

        await sync_engine.perform_full_sync()

        phases = [call.args[0] for call in phase_spy.call_args_list]
        assert phases == [SyncPhase.PULLING, SyncPhase.PUSHING, SyncPhase.FAILED, SyncPhase.IDLE]
        assert sync_engine.session.phase is SyncPhase.IDLE


class TestOverHttp:
    """Cycles driven through the real HTTP client over an httpx.MockTransport."""

    @staticmethod
    def http_engine(db, handler):
        config = SyncConfig(api_base_url="http://inventory.test/api", api_key="k")
        client = InventorySyncAPIClient(config.api_base_url, config.api_key, transport=httpx.MockTransport(handler))
        return ClientSyncEngine(db, session=SyncSession(config=config), client=client), client

    async def test_undecodable_error_page_fails_only_that_record(self, db_instance):
        broken = db_instance.add_record(EntityType.CATEGORIES, {"name": "Broken"})
        fine = db_instance.add_record(EntityType.CATEGORIES, {"name": "Fine"})

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(200, json=[])
            if json.loads(request.content)["id"] == broken:
                return httpx.Response(502, content=b"<html>Passerelle d\xe9faillante</html>")
            return httpx.Response(201, json={"id": "srv-fine"})

        engine, client = self.http_engine(db_instance, handler)
        try:
            result = await engine.perform_full_sync()
        finally:
            await client.close()

        assert result.total_synced == 1
        assert len(result.errors) == 1
        assert result.errors[0].startswith(f"Failed to sync categories {broken}: HTTP 502: ")
        assert db_instance.get_record_by_id(EntityType.CATEGORIES, broken)["sync_status"] == "failed"
        assert db_instance.get_record_by_id(EntityType.CATEGORIES, fine)["remote_id"] == "srv-fine"
        assert engine.session.last_sync_time is not None

    async def test_pulled_records_and_since_over_http(self, db_instance):
        seen_since = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen_since.append(request.url.params["since"])
            if request.url.path == "/api/customers":
                return httpx.Response(200, json=[{"id": 7, "version": 2, "name": "Ada",
                                                  "updated_at": "2025-01-01T10:00:00.123456Z"}])
            return httpx.Response(200, json=[])

        engine, client = self.http_engine(db_instance, handler)
        try:
            first = await engine.perform_full_sync()
            engine.session.last_sync_time = None
            second = await engine.perform_full_sync()
        finally:
            await client.close()

        assert first.total_synced == 1
        assert set(seen_since) == {EPOCH_TIMESTAMP}
        customer = db_instance.get_record_by_id(EntityType.CUSTOMERS, "7")
        assert customer["sync_status"] == "synced"
        assert customer["version"] == 2
        # Same remote state again: a tie, so nothing is re-applied
        assert second.total_synced == 0
        assert [c.local_id for c in second.conflicts] == ["7"]


class TestSessionAndHelpers:
    async def test_configure_persists_and_initialize_restores(self, db_instance, fake_remote):
        engine = ClientSyncEngine(db_instance, client=fake_remote)
        await engine.configure({"apiBaseUrl": "http://inventory.test", "apiKey": "secret",
                                "conflictResolution": "server_wins", "syncIntervalMinutes": 15})
        await engine.perform_full_sync()

        restored = ClientSyncEngine(db_instance, client=fake_remote)
        await restored.initialize()
        assert restored.session.is_configured
        assert restored.session.config.conflict_resolution is ConflictResolution.SERVER_WINS
        assert restored.session.config.sync_interval_minutes == 15
        assert restored.session.last_sync_time == engine.session.last_sync_time
        assert restored.auto_sync_running is False

    async def test_sync_single_item(self, sync_engine, fake_remote, db_instance):
        record_id = db_instance.add_record(EntityType.CUSTOMERS, {"name": "Ada"})
        assert await sync_engine.sync_single_item(EntityType.CUSTOMERS, record_id) is True
        assert db_instance.get_record_by_id(EntityType.CUSTOMERS, record_id)["sync_status"] == "synced"
        assert fake_remote.pull_calls == []

        with pytest.raises(NotFoundError):
            await sync_engine.sync_single_item(EntityType.CUSTOMERS, "ghost")
        assert sync_engine.session.in_progress is False

    async def test_sync_single_item_skips_non_pending(self, sync_engine, fake_remote, db_instance):
        record_id = db_instance.add_record(EntityType.CUSTOMERS, {"name": "Ada"})
        db_instance.mark_synced(EntityType.CUSTOMERS, record_id, "srv-3")

        assert await sync_engine.sync_single_item(EntityType.CUSTOMERS, record_id) is False
        assert fake_remote.push_calls == []
        assert sync_engine.session.in_progress is False

    async def test_sync_single_item_failure(self, sync_engine, fake_remote, db_instance):
        record_id = db_instance.add_record(EntityType.CUSTOMERS, {"name": "Ada"})
        fake_remote.push_failures[record_id] = PushResult.rejected("HTTP 409: duplicate")
        assert await sync_engine.sync_single_item("customers", record_id) is False
        assert db_instance.get_record_by_id(EntityType.CUSTOMERS, record_id)["sync_status"] == "failed"

    async def test_get_sync_status(self, sync_engine, fake_remote, db_instance):
        ok = db_instance.add_record(EntityType.CATEGORIES, {"name": "A"})
        bad = db_instance.add_record(EntityType.CATEGORIES, {"name": "B"})
        fake_remote.push_failures[bad] = PushResult.rejected("HTTP 400: no")
        await sync_engine.perform_full_sync()
        db_instance.add_record(EntityType.CATEGORIES, {"name": "C"})

        status = sync_engine.get_sync_status()
        assert status.is_configured is True
        assert status.sync_in_progress is False
        assert status.last_sync_time == sync_engine.session.last_sync_time
        assert (status.pending_count, status.synced_count, status.failed_count) == (1, 1, 1)
        assert db_instance.get_record_by_id(EntityType.CATEGORIES, ok)["sync_status"] == "synced"

    async def test_retry_and_reset_delegate_to_store(self, sync_engine, fake_remote, db_instance):
        bad = db_instance.add_record(EntityType.CATEGORIES, {"name": "B"})
        fake_remote.push_failures[bad] = PushResult.rejected("HTTP 400: no")
        await sync_engine.perform_full_sync()

        assert sync_engine.retry_failed() == 1
        assert sync_engine.reset_sync_status() == 1

    async def test_test_connection(self, db_instance, fake_remote, sync_engine):
        assert await sync_engine.test_connection() is True
        unconfigured = ClientSyncEngine(db_instance, client=fake_remote)
        assert await unconfigured.test_connection() is False

    async def test_close_leaves_injected_client_open(self, sync_engine, fake_remote):
        await sync_engine.close()
        assert fake_remote.closed is False

#
# End of test_sync_client.py
########################################################################################################################
