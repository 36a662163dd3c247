# Sync_Client.py
# Description: Client-side sync engine: pull-then-push cycles against the remote inventory API
#
"""
Sync_Client.py
--------------

`ClientSyncEngine` runs sync cycles between the local `InventoryDB` and the
remote inventory API:

1. Pull every entity type (categories, inventory items, customers, orders, in
   that order) updated since the last sync. Unknown records are inserted as
   synced; records that already exist locally go through the conflict resolver.
2. Push up to `batch_size` pending local records per entity type, marking each
   one synced or failed.
3. Record the cycle's finish time as the new last sync time, even when some
   items failed.

State that outlives a single call (configuration, last sync time, the
in-progress flag) lives in a `SyncSession`, persisted through the store's
`app_settings` table. Only one cycle runs at a time per engine; an optional
auto-sync task triggers cycles on a fixed interval and drops ticks that land
while a cycle is running.
"""
# Imports
import asyncio
import re
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional, Union, Mapping
#
# 3rd-Party Imports
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
#
# Local Imports
from inventory_sync.Constants import (
    ConflictResolution, EntityType, SyncStatus, SYNC_ENTITY_ORDER, SYNC_BATCH_SIZE, DEFAULT_SYNC_INTERVAL_MINUTES,
    DEFAULT_REQUEST_TIMEOUT, SETTING_SYNC_CONFIG, SETTING_LAST_SYNC_TIME
)
from inventory_sync.DB.Inventory_DB import InventoryDB, InventoryDBError, InputError, NotFoundError
from inventory_sync.Sync.conflict_resolver import resolve
from inventory_sync.Sync.sync_exceptions import SyncError, NotConfiguredError, AlreadyInProgressError
from inventory_sync.Utils.time_utils import utc_now_iso
from inventory_sync.sync_api import InventorySyncAPIClient, RemoteRecord
#
########################################################################################################################
#
# Functions:

class SyncPhase(str, Enum):
    IDLE = "idle"
    PULLING = "pulling"
    PUSHING = "pushing"
    FAILED = "failed"


class SyncConfig(BaseModel):
    """Remote endpoint, credentials and scheduling. camelCase keys are accepted too."""
    model_config = ConfigDict(populate_by_name=True)

    api_base_url: str = Field(default="", alias="apiBaseUrl")
    api_key: str = Field(default="", alias="apiKey")
    auto_sync_enabled: bool = Field(default=False, alias="autoSyncEnabled")
    sync_interval_minutes: float = Field(default=DEFAULT_SYNC_INTERVAL_MINUTES, gt=0, alias="syncIntervalMinutes")
    conflict_resolution: ConflictResolution = Field(default=ConflictResolution.NEWEST_WINS,
                                                    alias="conflictResolution")

    @field_validator("conflict_resolution", mode="before")
    @classmethod
    def _normalize_policy(cls, value: Any) -> Any:
        if isinstance(value, str) and not isinstance(value, ConflictResolution):
            # "ServerWins", "server-wins" and "server" all mean server_wins
            snake = re.sub(r"(?<=[a-z])(?=[A-Z])", "_", value.strip()).lower().replace("-", "_")
            if snake in ("server", "client", "newest"):
                snake += "_wins"
            return snake
        return value

    @property
    def is_configured(self) -> bool:
        return bool(self.api_base_url.strip() and self.api_key.strip())


@dataclass
class ConflictItem:
    entity_type: str
    local_id: str
    local_version: int
    remote_version: int
    local_data: Dict[str, Any]
    remote_data: Dict[str, Any]


@dataclass
class SyncResult:
    total_synced: int = 0
    errors: List[str] = field(default_factory=list)
    conflicts: List[ConflictItem] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def add_error(self, message: str):
        logger.warning(message)
        self.errors.append(message)

    def add_conflict(self, conflict: ConflictItem):
        logger.info(f"Conflict kept local {conflict.entity_type} {conflict.local_id} "
                    f"(local v{conflict.local_version}, remote v{conflict.remote_version})")
        self.conflicts.append(conflict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "total_synced": self.total_synced,
            "errors": list(self.errors),
            "conflicts": [asdict(c) for c in self.conflicts],
        }


@dataclass
class SyncStatusReport:
    is_configured: bool
    last_sync_time: Optional[str]
    sync_in_progress: bool
    phase: SyncPhase
    auto_sync_running: bool
    pending_count: int
    failed_count: int
    synced_count: int
    conflict_count: int


@dataclass
class SyncSession:
    """Per-engine sync state: configuration, last successful sync time and the in-progress flag."""
    config: Optional[SyncConfig] = None
    last_sync_time: Optional[str] = None
    in_progress: bool = False
    phase: SyncPhase = SyncPhase.IDLE
    last_result: Optional[SyncResult] = None

    @property
    def is_configured(self) -> bool:
        return self.config is not None and self.config.is_configured

    @classmethod
    def load(cls, db: InventoryDB) -> "SyncSession":
        raw_config = db.get_setting(SETTING_SYNC_CONFIG)
        config = None
        if raw_config:
            try:
                config = SyncConfig.model_validate(raw_config)
            except ValidationError as e:
                logger.error(f"Stored sync configuration is invalid and was ignored: {e}")
        return cls(config=config, last_sync_time=db.get_setting(SETTING_LAST_SYNC_TIME))

    def save_config(self, db: InventoryDB):
        if self.config is None:
            db.delete_setting(SETTING_SYNC_CONFIG)
        else:
            db.set_setting(SETTING_SYNC_CONFIG, self.config.model_dump(mode="json"))

    def save_last_sync_time(self, db: InventoryDB):
        db.set_setting(SETTING_LAST_SYNC_TIME, self.last_sync_time)


def _describe_validation_error(error: ValidationError) -> str:
    return "; ".join(f"{'.'.join(map(str, err['loc'])) or 'payload'}: {err['msg']}" for err in error.errors())


class ClientSyncEngine:
    def __init__(self, db_instance: InventoryDB, session: Optional[SyncSession] = None,
                 client: Optional[InventorySyncAPIClient] = None, batch_size: int = SYNC_BATCH_SIZE,
                 request_timeout: float = DEFAULT_REQUEST_TIMEOUT):
        self.db = db_instance
        self.session = session or SyncSession()
        self.batch_size = batch_size
        self.request_timeout = request_timeout
        self._client = client
        self._owns_client = client is None
        self._auto_sync_task: Optional[asyncio.Task] = None
        self._scheduled_cycle: Optional[asyncio.Task] = None
        self.skipped_ticks = 0

    # --- Setup ---
    def _get_client(self) -> InventorySyncAPIClient:
        if self._client is None:
            config = self.session.config
            self._client = InventorySyncAPIClient(config.api_base_url, config.api_key, timeout=self.request_timeout)
            self._owns_client = True
        return self._client

    async def _drop_owned_client(self):
        if self._owns_client and self._client is not None:
            await self._client.close()
            self._client = None

    async def initialize(self):
        """Loads the persisted configuration and last sync time, starting auto-sync if enabled."""
        stored = SyncSession.load(self.db)
        self.session.config = stored.config
        self.session.last_sync_time = stored.last_sync_time
        logger.info(f"Sync engine initialized (configured={self.session.is_configured}, "
                    f"last sync={self.session.last_sync_time})")
        if self.session.is_configured and self.session.config.auto_sync_enabled:
            self.start_auto_sync()

    async def configure(self, config: Union[SyncConfig, Mapping[str, Any]]):
        """
        Replaces the sync configuration.

        The configuration is persisted, the remote client is rebuilt on next use,
        and any running auto-sync timer is torn down and restarted if still enabled.
        """
        if not isinstance(config, SyncConfig):
            config = SyncConfig.model_validate(config)
        await self.stop_auto_sync()
        await self._drop_owned_client()
        self.session.config = config
        self.session.save_config(self.db)
        logger.info(f"Sync configured for {config.api_base_url or '<unset>'} "
                    f"(policy={config.conflict_resolution.value}, auto={config.auto_sync_enabled})")
        if config.auto_sync_enabled and config.is_configured:
            self.start_auto_sync()

    def _ensure_ready(self):
        # No await between the check and the set below, so this is atomic on the event loop.
        if not self.session.is_configured:
            raise NotConfiguredError("Sync is not configured: an API base URL and API key are required.")
        if self.session.in_progress:
            raise AlreadyInProgressError("A sync cycle is already in progress.")

    def _set_phase(self, phase: SyncPhase):
        if self.session.phase is not phase:
            logger.debug(f"Sync phase: {self.session.phase.value} -> {phase.value}")
            self.session.phase = phase

    # --- Sync Cycle ---
    async def perform_full_sync(self) -> SyncResult:
        """
        Runs one pull-then-push cycle across all entity types.

        Raises:
            NotConfiguredError: No remote endpoint/API key is configured.
            AlreadyInProgressError: Another cycle is running on this engine.

        Per-item failures never abort the cycle; they are collected in the
        returned `SyncResult.errors`.
        """
        self._ensure_ready()
        self.session.in_progress = True
        result = SyncResult()
        logger.info(f"Starting full sync (since {self.session.last_sync_time or 'the beginning'})")
        try:
            client = self._get_client()
            policy = self.session.config.conflict_resolution

            self._set_phase(SyncPhase.PULLING)
            for entity in SYNC_ENTITY_ORDER:
                await self._pull_entity(client, entity, policy, result)

            self._set_phase(SyncPhase.PUSHING)
            for entity in SYNC_ENTITY_ORDER:
                await self._push_entity(client, entity, result)

            self.session.last_sync_time = utc_now_iso()
            self.session.save_last_sync_time(self.db)
            if result.errors:
                self._set_phase(SyncPhase.FAILED)
        finally:
            self.session.in_progress = False
            self._set_phase(SyncPhase.IDLE)

        self.session.last_result = result
        logger.info(f"Sync finished: synced={result.total_synced}, errors={len(result.errors)}, "
                    f"conflicts={len(result.conflicts)}")
        return result

    async def _pull_entity(self, client: InventorySyncAPIClient, entity: EntityType,
                           policy: ConflictResolution, result: SyncResult):
        pulled = await client.pull(entity, self.session.last_sync_time)
        if not pulled.ok:
            result.add_error(f"{entity.value} pull error: {pulled.message}")
            return

        for raw in pulled.records:
            try:
                remote = RemoteRecord.model_validate(raw)
            except ValidationError as e:
                result.add_error(f"Invalid {entity.value} payload from remote: {_describe_validation_error(e)}")
                continue
            remote_data = remote.model_dump(mode="json")
            try:
                outcome = self.db.upsert_from_remote(entity, remote_data)
                if outcome.created:
                    result.total_synced += 1
                    continue
                local = outcome.record
                if resolve(policy, local, remote_data).use_remote:
                    self.db.apply_remote(entity, local["id"], remote_data)
                    result.total_synced += 1
                else:
                    result.add_conflict(ConflictItem(
                        entity_type=entity.value,
                        local_id=local["id"],
                        local_version=local["version"],
                        remote_version=remote.version,
                        local_data=local,
                        remote_data=remote_data,
                    ))
            except (InventoryDBError, InputError) as e:
                result.add_error(f"Failed to apply remote {entity.value} {remote.id}: {e}")

    async def _push_entity(self, client: InventorySyncAPIClient, entity: EntityType, result: SyncResult):
        try:
            pending = self.db.get_pending(entity, self.batch_size)
        except InventoryDBError as e:
            result.add_error(f"Could not read pending {entity.value}: {e}")
            return

        for record in pending:
            if await self._push_record(client, entity, record, result):
                result.total_synced += 1

    async def _push_record(self, client: InventorySyncAPIClient, entity: EntityType,
                           record: Dict[str, Any], result: SyncResult) -> bool:
        outcome = await client.push(entity, record)
        try:
            if outcome.ok:
                self.db.mark_synced(entity, record["id"], outcome.remote_id, expected_version=record["version"])
                return True
            self.db.mark_failed(entity, record["id"], outcome.message or "unknown error",
                                expected_version=record["version"])
        except InventoryDBError as e:
            result.add_error(f"Failed to record sync outcome for {entity.value} {record['id']}: {e}")
            return False
        result.add_error(f"Failed to sync {entity.value} {record['id']}: {outcome.message}")
        return False

    async def sync_single_item(self, entity_type: Union[str, EntityType], local_id: str) -> bool:
        """
        Pushes one pending local record immediately.

        Returns False without contacting the remote when the record is not
        'pending' (already synced, failed or in conflict).

        Raises:
            NotConfiguredError / AlreadyInProgressError: as for `perform_full_sync`.
            NotFoundError: If the record does not exist.
        """
        entity = EntityType(entity_type)
        self._ensure_ready()
        self.session.in_progress = True
        try:
            self._set_phase(SyncPhase.PUSHING)
            record = self.db.get_record_by_id(entity, local_id)
            if record is None:
                raise NotFoundError(f"{entity.value} record '{local_id}' not found.",
                                    entity=entity.value, entity_id=local_id)
            if record["sync_status"] != SyncStatus.PENDING.value:
                logger.info(f"{entity.value} '{local_id}' is {record['sync_status']}; nothing to push.")
                return False
            result = SyncResult()
            synced = await self._push_record(self._get_client(), entity, record, result)
        finally:
            self.session.in_progress = False
            self._set_phase(SyncPhase.IDLE)
        return synced

    # --- Auto-sync ---
    @property
    def auto_sync_running(self) -> bool:
        return self._auto_sync_task is not None and not self._auto_sync_task.done()

    def start_auto_sync(self):
        """Starts the recurring timer on the running event loop. No-op if already running."""
        if self.auto_sync_running:
            return
        if self.session.config is None:
            raise NotConfiguredError("Cannot start auto-sync without a sync configuration.")
        interval_seconds = self.session.config.sync_interval_minutes * 60
        loop = asyncio.get_running_loop()
        self._auto_sync_task = loop.create_task(self._auto_sync_loop(interval_seconds), name="InventoryAutoSync")
        logger.info(f"Auto-sync started (every {self.session.config.sync_interval_minutes} min).")

    async def stop_auto_sync(self):
        """Cancels the recurring timer and waits for it. A cycle already running is left to finish."""
        task = self._auto_sync_task
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                logger.debug("Auto-sync task cancelled.")
        self._auto_sync_task = None

    async def _auto_sync_loop(self, interval_seconds: float):
        while True:
            await asyncio.sleep(interval_seconds)
            self._on_auto_sync_tick()

    def _on_auto_sync_tick(self):
        if self.session.in_progress or (self._scheduled_cycle is not None and not self._scheduled_cycle.done()):
            self.skipped_ticks += 1
            logger.debug("Auto-sync tick dropped: a sync cycle is already in progress.")
            return
        self._scheduled_cycle = asyncio.get_running_loop().create_task(
            self._run_scheduled_cycle(), name="InventoryAutoSyncCycle")

    async def _run_scheduled_cycle(self):
        try:
            await self.perform_full_sync()
        except SyncError as e:
            logger.info(f"Scheduled sync did not run: {e}")
        except InventoryDBError as e:
            logger.error(f"Scheduled sync aborted by a local store error: {e}")
        except Exception:
            logger.exception("Scheduled sync failed unexpectedly.")

    # --- Status & Maintenance ---
    def get_sync_status(self) -> SyncStatusReport:
        stats = self.db.get_sync_stats()
        return SyncStatusReport(
            is_configured=self.session.is_configured,
            last_sync_time=self.session.last_sync_time,
            sync_in_progress=self.session.in_progress,
            phase=self.session.phase,
            auto_sync_running=self.auto_sync_running,
            pending_count=stats["pending"],
            failed_count=stats["failed"],
            synced_count=stats["synced"],
            conflict_count=stats["conflict"],
        )

    async def test_connection(self) -> bool:
        if not self.session.is_configured:
            return False
        return await self._get_client().test_connection()

    def retry_failed(self, entity_type: Optional[Union[str, EntityType]] = None) -> int:
        return self.db.retry_failed(entity_type)

    def reset_sync_status(self) -> int:
        return self.db.reset_sync_status()

    async def close(self):
        await self.stop_auto_sync()
        if self._scheduled_cycle is not None and not self._scheduled_cycle.done():
            await self._scheduled_cycle
        self._scheduled_cycle = None
        await self._drop_owned_client()

#
# End of Sync_Client.py
########################################################################################################################
