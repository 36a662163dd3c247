# Tests/conftest.py
# Shared fixtures for the inventory_sync test suite.
#
# Imports
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
#
# Third-Party Imports
import pytest
#
# Local Imports
from inventory_sync.Constants import EntityType, ConflictResolution
from inventory_sync.DB.Inventory_DB import InventoryDB
from inventory_sync.Sync.Sync_Client import ClientSyncEngine, SyncConfig, SyncSession
from inventory_sync.Utils.time_utils import parse_timestamp
from inventory_sync.sync_api import PushResult, PullResult
from inventory_sync.sync_api.utils import record_to_payload
#
########################################################################################################################
#
# Fixtures:

class FakeRemoteClient:
    """
    In-memory stand-in for InventorySyncAPIClient.

    Keeps remote records per entity, assigns ids on create, and filters pulls
    by `updated_at >= since`. Individual pushes/pulls can be forced to fail.
    """
    def __init__(self):
        self.records: Dict[EntityType, Dict[str, Dict[str, Any]]] = {e: {} for e in EntityType}
        self.pull_calls: List[Tuple[EntityType, Optional[str]]] = []
        self.push_calls: List[Tuple[EntityType, Dict[str, Any]]] = []
        self.push_failures: Dict[str, PushResult] = {}
        self.pull_failures: Dict[EntityType, PullResult] = {}
        self.closed = False
        self._next_id = 1

    def add_remote(self, entity_type, payload: Dict[str, Any]):
        self.records[EntityType(entity_type)][str(payload["id"])] = dict(payload)

    async def pull(self, entity_type, since):
        entity = EntityType(entity_type)
        self.pull_calls.append((entity, since))
        if entity in self.pull_failures:
            return self.pull_failures[entity]
        since_dt = parse_timestamp(since) or datetime(1970, 1, 1, tzinfo=timezone.utc)
        changed = [dict(r) for r in self.records[entity].values()
                   if parse_timestamp(r.get("updated_at")) is None or parse_timestamp(r["updated_at"]) >= since_dt]
        return PullResult.success(changed)

    async def push(self, entity_type, record):
        entity = EntityType(entity_type)
        self.push_calls.append((entity, dict(record)))
        if record["id"] in self.push_failures:
            return self.push_failures[record["id"]]
        remote_id = record.get("remote_id")
        if not remote_id:
            remote_id = f"srv-{self._next_id}"
            self._next_id += 1
        payload = record_to_payload(entity, record)
        payload["id"] = remote_id
        self.records[entity][remote_id] = payload
        return PushResult.success(remote_id)

    async def test_connection(self):
        return True

    async def close(self):
        self.closed = True


@pytest.fixture
def client_id():
    return "test_client_inventory"


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "test_inventory.db"


@pytest.fixture
def db_instance(db_path, client_id):
    db = InventoryDB(db_path, client_id)
    yield db
    db.close_connection()


@pytest.fixture
def mem_db_instance(client_id):
    db = InventoryDB(":memory:", client_id)
    yield db
    db.close_connection()


@pytest.fixture
def fake_remote():
    return FakeRemoteClient()


@pytest.fixture
def sync_config():
    return SyncConfig(
        api_base_url="http://inventory.test/api",
        api_key="test-key",
        auto_sync_enabled=False,
        sync_interval_minutes=30,
        conflict_resolution=ConflictResolution.NEWEST_WINS,
    )


@pytest.fixture
def sync_engine(db_instance, fake_remote, sync_config):
    """Engine with a configured session talking to the in-memory fake remote."""
    return ClientSyncEngine(db_instance, session=SyncSession(config=sync_config), client=fake_remote)


@pytest.fixture
def t0():
    """A fixed point in the past used as a local edit time."""
    return datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

#
# End of conftest.py
########################################################################################################################
