# Inventory_DB.py
# Description: DB Library for inventory records and their sync bookkeeping.
#
"""
Inventory_DB.py
---------------

A SQLite-based library for the locally persisted inventory data: categories,
inventory items, customers and orders, plus the bookkeeping needed to keep
them in sync with a remote API.

This library provides:
- Schema management with versioning.
- Thread-safe database connections using `threading.local`.
- CRUD operations for every syncable entity type.
- Optimistic locking for updates and deletes using a `version` field.
- Per-record sync state (`sync_status`, `remote_id`, `last_synced_at`,
  `synced_version`) and the queries the sync engine needs: pending records,
  marking records synced or failed, and inserting or merging remote records.
- An append-only `sync_log` audit table for failed sync attempts.
- An `app_settings` key/value table for persisted sync configuration.
- A transaction context manager for safe and explicit transaction handling.

Every local mutation increments `version` and flips `sync_status` back to
'pending'. Records created or overwritten from a remote pull are stored as
'synced' directly.
"""
# Imports
import copy
import json
import sqlite3
import threading
import logging
import uuid
from pathlib import Path
from typing import List, Dict, Optional, Any, Union, NamedTuple, Mapping
#
# Third-Party Libraries
#
# Local Imports
from inventory_sync.Constants import (
    EntityType, SyncStatus, MERGE_FIELDS, REQUIRED_FIELDS, FIELD_DEFAULTS, JSON_FIELDS,
    ORDER_STATUSES, DEFAULT_CATEGORIES, SYNC_BATCH_SIZE, SYNC_ENTITY_ORDER
)
from inventory_sync.Utils.time_utils import utc_now_iso, normalize_timestamp
#
########################################################################################################################
#
# Functions:

logger = logging.getLogger(__name__)


# --- Custom Exceptions ---
class InventoryDBError(Exception):
    """Base exception for InventoryDB related errors."""
    pass


class SchemaError(InventoryDBError):
    """Exception for schema version mismatches or migration failures."""
    pass


class InputError(ValueError):
    """Custom exception for input validation errors."""
    pass


class ConflictError(InventoryDBError):
    """
    Indicates a conflict due to concurrent modification or unique constraint violation.

    Raised when a record's version doesn't match the expected version during an
    update/delete (optimistic locking), or when an insert/update violates a
    unique constraint (e.g. a duplicate order number).

    Attributes:
        entity (Optional[str]): The entity type involved (e.g. "orders").
        entity_id (Any): The ID of the record involved.
    """

    def __init__(self, message="Conflict detected.", entity: Optional[str] = None, entity_id: Any = None):
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id

    def __str__(self):
        base = super().__str__()
        details = []
        if self.entity:
            details.append(f"Entity: {self.entity}")
        if self.entity_id:
            details.append(f"ID: {self.entity_id}")
        return f"{base} ({', '.join(details)})" if details else base


class NotFoundError(InventoryDBError):
    """Raised when an operation targets a record that does not exist locally."""

    def __init__(self, message="Record not found.", entity: Optional[str] = None, entity_id: Any = None):
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id


class UpsertResult(NamedTuple):
    """Outcome of `upsert_from_remote`: `created` is False when `record` already existed locally."""
    created: bool
    record: Dict[str, Any]


# --- Database Class ---
class InventoryDB:
    """
    Manages SQLite connections and operations for the inventory database.

    Attributes:
        db_path (Path): The absolute path to the SQLite database file, or Path(":memory:").
        client_id (str): Identifier of this client instance, recorded in the sync log.
        is_memory_db (bool): True if the database is in-memory.
        db_path_str (str): String representation of the database path for SQLite connection.
    """
    _CURRENT_SCHEMA_VERSION = 1
    _SCHEMA_NAME = "inventory_sync_schema"

    _SYNC_COLUMNS_SQL = """
  created_at     TEXT    NOT NULL,
  updated_at     TEXT    NOT NULL,
  version        INTEGER NOT NULL DEFAULT 1,
  sync_status    TEXT    NOT NULL DEFAULT 'pending'
                 CHECK(sync_status IN ('pending','synced','failed','conflict')),
  remote_id      TEXT,
  last_synced_at TEXT,
  synced_version INTEGER"""

    _FULL_SCHEMA_SQL_V1 = f"""
PRAGMA foreign_keys = ON;

/*----------------------------------------------------------------
  0. Schema-version registry
----------------------------------------------------------------*/
CREATE TABLE IF NOT EXISTS db_schema_version(
  schema_name TEXT PRIMARY KEY NOT NULL,
  version     INTEGER NOT NULL
);
INSERT OR IGNORE INTO db_schema_version(schema_name,version)
VALUES('inventory_sync_schema',0);

/*----------------------------------------------------------------
  1. Syncable entities
----------------------------------------------------------------*/
CREATE TABLE IF NOT EXISTS categories(
  id          TEXT PRIMARY KEY NOT NULL,
  name        TEXT NOT NULL,
  description TEXT,
  color       TEXT NOT NULL DEFAULT '#6B7280',{_SYNC_COLUMNS_SQL}
);

CREATE TABLE IF NOT EXISTS inventory_items(
  id            TEXT PRIMARY KEY NOT NULL,
  name          TEXT NOT NULL,
  description   TEXT,
  category_id   TEXT,
  quantity      INTEGER NOT NULL DEFAULT 0,
  unit_price    REAL    NOT NULL DEFAULT 0,
  location      TEXT,
  barcode       TEXT,
  image_uri     TEXT,
  minimum_stock INTEGER,{_SYNC_COLUMNS_SQL}
);

CREATE TABLE IF NOT EXISTS customers(
  id      TEXT PRIMARY KEY NOT NULL,
  name    TEXT NOT NULL,
  email   TEXT,
  phone   TEXT,
  address TEXT,{_SYNC_COLUMNS_SQL}
);

CREATE TABLE IF NOT EXISTS orders(
  id                     TEXT PRIMARY KEY NOT NULL,
  order_number           TEXT UNIQUE NOT NULL,
  customer_id            TEXT,
  customer_name          TEXT NOT NULL,
  items                  TEXT NOT NULL DEFAULT '[]',
  total_amount           REAL NOT NULL DEFAULT 0,
  status                 TEXT NOT NULL DEFAULT 'pending'
                         CHECK(status IN ('pending','processing','shipped','delivered','cancelled')),
  order_date             TEXT NOT NULL,
  expected_delivery_date TEXT,
  notes                  TEXT,{_SYNC_COLUMNS_SQL}
);

CREATE INDEX IF NOT EXISTS idx_categories_sync_status      ON categories(sync_status);
CREATE INDEX IF NOT EXISTS idx_categories_remote_id        ON categories(remote_id);
CREATE INDEX IF NOT EXISTS idx_inventory_items_sync_status ON inventory_items(sync_status);
CREATE INDEX IF NOT EXISTS idx_inventory_items_remote_id   ON inventory_items(remote_id);
CREATE INDEX IF NOT EXISTS idx_inventory_items_category    ON inventory_items(category_id);
CREATE INDEX IF NOT EXISTS idx_customers_sync_status       ON customers(sync_status);
CREATE INDEX IF NOT EXISTS idx_customers_remote_id         ON customers(remote_id);
CREATE INDEX IF NOT EXISTS idx_orders_sync_status          ON orders(sync_status);
CREATE INDEX IF NOT EXISTS idx_orders_remote_id            ON orders(remote_id);

/*----------------------------------------------------------------
  2. Sync audit log (append-only)
----------------------------------------------------------------*/
CREATE TABLE IF NOT EXISTS sync_log(
  id            INTEGER PRIMARY KEY AUTOINCREMENT,
  entity_type   TEXT NOT NULL,
  entity_id     TEXT NOT NULL,
  operation     TEXT NOT NULL,
  sync_status   TEXT NOT NULL,
  error_message TEXT,
  attempted_at  TEXT NOT NULL,
  client_id     TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_sync_log_entity ON sync_log(entity_type, entity_id);

/*----------------------------------------------------------------
  3. Application settings
----------------------------------------------------------------*/
CREATE TABLE IF NOT EXISTS app_settings(
  key        TEXT PRIMARY KEY NOT NULL,
  value      TEXT,
  updated_at TEXT NOT NULL
);

UPDATE db_schema_version
   SET version = 1
 WHERE schema_name = 'inventory_sync_schema'
   AND version < 1;
"""

    def __init__(self, db_path: Union[str, Path], client_id: str):
        """
        Initializes the InventoryDB instance and ensures the schema exists.

        Args:
            db_path: Path to the SQLite database file or ":memory:".
            client_id: A unique identifier for this client instance. Must not be empty.

        Raises:
            ValueError: If `client_id` is empty or None.
            InventoryDBError: If the database directory cannot be created or
                              initialization fails.
            SchemaError: If schema versioning issues occur.
        """
        if isinstance(db_path, Path):
            self.is_memory_db = False
            self.db_path = db_path.resolve()
        else:
            self.is_memory_db = (db_path == ':memory:')
            self.db_path = Path(db_path).resolve() if not self.is_memory_db else Path(":memory:")
        self.db_path_str = str(self.db_path) if not self.is_memory_db else ':memory:'

        if not client_id:
            raise ValueError("Client ID cannot be empty or None.")
        self.client_id = client_id

        if not self.is_memory_db:
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise InventoryDBError(f"Failed to create database directory {self.db_path.parent}: {e}")

        logger.info(f"Initializing InventoryDB for path: {self.db_path_str} [Client ID: {self.client_id}]")
        self._local = threading.local()
        try:
            self._initialize_schema()
        except (InventoryDBError, sqlite3.Error) as e:
            logger.critical(f"FATAL: DB Initialization failed for {self.db_path_str}: {e}", exc_info=True)
            self.close_connection()
            if isinstance(e, SchemaError):
                raise
            raise InventoryDBError(f"Database initialization failed: {e}") from e

    # --- Connection Management ---
    def _get_thread_connection(self) -> sqlite3.Connection:
        """
        Retrieves or creates a thread-local SQLite connection.

        Enables WAL mode for file-based databases and sets PRAGMA foreign_keys=ON.

        Raises:
            InventoryDBError: If connecting to the database fails.
        """
        conn = getattr(self._local, 'conn', None)
        if conn:
            try:
                conn.execute("SELECT 1")
            except (sqlite3.ProgrammingError, sqlite3.OperationalError):
                logger.warning(
                    f"Thread-local connection for {self.db_path_str} was closed or became unusable. Reopening.")
                conn = None

        if not conn:
            try:
                conn = sqlite3.connect(self.db_path_str, check_same_thread=False, timeout=15)
                conn.row_factory = sqlite3.Row
                if not self.is_memory_db:
                    conn.execute("PRAGMA journal_mode=WAL;")
                conn.execute("PRAGMA foreign_keys = ON;")
                self._local.conn = conn
                logger.debug(f"Opened SQLite connection to {self.db_path_str} for thread {threading.get_ident()}")
            except sqlite3.Error as e:
                logger.error(f"Failed to connect to database {self.db_path_str}: {e}", exc_info=True)
                self._local.conn = None
                raise InventoryDBError(f"Failed to connect to database '{self.db_path_str}': {e}") from e
        return self._local.conn

    def get_connection(self) -> sqlite3.Connection:
        return self._get_thread_connection()

    def close_connection(self):
        """
        Closes the current thread's database connection.

        An uncommitted transaction is rolled back first. For WAL databases a
        TRUNCATE checkpoint is attempted before closing.
        """
        conn = getattr(self._local, 'conn', None)
        if conn is None:
            return
        try:
            if conn.in_transaction:
                logger.warning(f"Connection to {self.db_path_str} closed inside a transaction. Rolling back.")
                conn.rollback()
            if not self.is_memory_db:
                mode_row = conn.execute("PRAGMA journal_mode;").fetchone()
                if mode_row and mode_row[0].lower() == 'wal':
                    conn.execute("PRAGMA wal_checkpoint(TRUNCATE);")
            conn.close()
            logger.debug(f"Closed connection for thread {threading.get_ident()} to {self.db_path_str}.")
        except sqlite3.Error as e:
            logger.warning(f"Error during SQLite connection close/checkpoint for {self.db_path_str}: {e}")
        finally:
            self._local.conn = None

    # --- Query Execution ---
    def execute_query(self, query: str, params: Optional[Union[tuple, Dict[str, Any]]] = None, *,
                      commit: bool = False, script: bool = False) -> sqlite3.Cursor:
        """
        Executes a single SQL query or an entire SQL script.

        Args:
            query: The SQL query string or script.
            params: Optional parameters for the query. Ignored when `script` is True.
            commit: If True and not inside `with db.transaction():`, commits after execution.
            script: If True, runs the query with `executescript`.

        Raises:
            ConflictError: On a "unique constraint failed" IntegrityError.
            InventoryDBError: For any other SQLite error.
        """
        conn = self.get_connection()
        # sqlite3 opens an implicit transaction for DML, so check before executing
        owns_commit = commit and not conn.in_transaction
        try:
            cursor = conn.cursor()
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(f"Executing SQL (script={script}): {query[:300]}... Params: {str(params)[:200]}...")
            if script:
                cursor.executescript(query)
            else:
                cursor.execute(query, params or ())
            if owns_commit:
                conn.commit()
            return cursor
        except sqlite3.IntegrityError as e:
            logger.warning(f"Integrity constraint violation: {query[:300]}... Error: {e}")
            if "unique constraint failed" in str(e).lower():
                raise ConflictError(message=f"Unique constraint violation: {e}") from e
            raise InventoryDBError(f"Database constraint violation: {e}") from e
        except sqlite3.Error as e:
            logger.error(f"Query execution failed: {query[:300]}... Error: {e}", exc_info=True)
            raise InventoryDBError(f"Query execution failed: {e}") from e

    def transaction(self) -> 'TransactionContextManager':
        """
        Returns a context manager for database transactions.

        Usage:
            with db.transaction() as conn:
                ...
        Commits on successful exit of the outermost block, rolls back on exception.
        """
        return TransactionContextManager(self)

    # --- Schema Initialization ---
    def _get_db_version(self, conn: sqlite3.Connection) -> int:
        try:
            cursor = conn.execute("SELECT version FROM db_schema_version WHERE schema_name = ? LIMIT 1",
                                  (self._SCHEMA_NAME,))
            result = cursor.fetchone()
            return result['version'] if result else 0
        except sqlite3.Error as e:
            if "no such table" in str(e).lower():
                return 0
            raise SchemaError(f"Could not determine schema version for '{self._SCHEMA_NAME}': {e}") from e

    def _initialize_schema(self):
        """
        Creates the schema on a fresh database, or verifies an existing one.

        Raises:
            SchemaError: If the stored schema version is newer than the code supports,
                         or if applying the schema fails.
        """
        conn = self.get_connection()
        current_version = self._get_db_version(conn)
        target_version = self._CURRENT_SCHEMA_VERSION
        logger.info(f"Checking DB schema '{self._SCHEMA_NAME}'. Current version: {current_version}. "
                    f"Code supports: {target_version}")
        if current_version == target_version:
            return
        if current_version > target_version:
            raise SchemaError(
                f"Database schema '{self._SCHEMA_NAME}' version ({current_version}) is newer than supported "
                f"by code ({target_version}).")
        try:
            # executescript manages its own transaction
            conn.executescript(self._FULL_SCHEMA_SQL_V1)
        except sqlite3.Error as e:
            raise SchemaError(f"DB schema V{target_version} setup failed for '{self._SCHEMA_NAME}': {e}") from e
        final_version = self._get_db_version(conn)
        if final_version != target_version:
            raise SchemaError(f"Schema version update check failed. Expected {target_version}, got: {final_version}")
        logger.info(f"Database schema '{self._SCHEMA_NAME}' initialized to version {final_version}.")

    # --- Internal Helpers ---
    def _get_current_utc_timestamp_iso(self) -> str:
        return utc_now_iso()

    def _generate_uuid(self) -> str:
        return str(uuid.uuid4())

    @staticmethod
    def _resolve_entity(entity_type: Union[str, EntityType]) -> EntityType:
        try:
            return EntityType(entity_type)
        except ValueError:
            raise InputError(f"Unknown entity type: {entity_type!r}") from None

    @staticmethod
    def _row_to_dict(entity: EntityType, row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
        if row is None:
            return None
        record = dict(row)
        for field in JSON_FIELDS.get(entity, []):
            raw = record.get(field)
            if isinstance(raw, str):
                try:
                    record[field] = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning(f"Could not decode JSON field '{field}' for {entity.value} {record.get('id')}")
        return record

    @staticmethod
    def _serialize_field(entity: EntityType, field: str, value: Any) -> Any:
        if field in JSON_FIELDS.get(entity, []) and not isinstance(value, str) and value is not None:
            return json.dumps(value)
        return value

    @staticmethod
    def _extract_payload(entity: EntityType, data: Mapping[str, Any]) -> Dict[str, Any]:
        """Picks the entity's payload fields out of `data`, ignoring everything else."""
        return {field: data[field] for field in MERGE_FIELDS[entity] if field in data}

    @staticmethod
    def _validate_payload(entity: EntityType, fields: Dict[str, Any], *, require_all: bool):
        for required in REQUIRED_FIELDS[entity]:
            if required in fields or require_all:
                value = fields.get(required)
                if value is None or (isinstance(value, str) and not value.strip()):
                    raise InputError(f"Field '{required}' is required for {entity.value}.")
        if entity is EntityType.ORDERS and "status" in fields and fields["status"] not in ORDER_STATUSES:
            raise InputError(f"Invalid order status: {fields['status']!r}")
        if entity is EntityType.INVENTORY_ITEMS:
            for int_field in ("quantity", "minimum_stock"):
                if fields.get(int_field) is not None:
                    try:
                        fields[int_field] = int(fields[int_field])
                    except (TypeError, ValueError):
                        raise InputError(f"Field '{int_field}' must be an integer.") from None
        for float_field in ("unit_price", "total_amount"):
            if fields.get(float_field) is not None:
                try:
                    fields[float_field] = float(fields[float_field])
                except (TypeError, ValueError):
                    raise InputError(f"Field '{float_field}' must be a number.") from None

    def _fetch_row(self, entity: EntityType, record_id: str) -> Optional[sqlite3.Row]:
        cursor = self.execute_query(f"SELECT * FROM {entity.value} WHERE id = ?", (record_id,))
        return cursor.fetchone()

    def _require_row(self, entity: EntityType, record_id: str) -> sqlite3.Row:
        row = self._fetch_row(entity, record_id)
        if row is None:
            raise NotFoundError(f"{entity.value} record '{record_id}' not found.",
                                entity=entity.value, entity_id=record_id)
        return row

    @staticmethod
    def _remote_version(remote_record: Mapping[str, Any]) -> int:
        raw = remote_record.get("version")
        if raw is None:
            return 1
        try:
            return max(int(raw), 1)
        except (TypeError, ValueError):
            raise InputError(f"Remote record has an invalid version: {raw!r}") from None

    # --- CRUD ---
    def add_record(self, entity_type: Union[str, EntityType], data: Mapping[str, Any],
                   record_id: Optional[str] = None) -> str:
        """
        Adds a new locally-created record with version 1 and status 'pending'.

        Args:
            entity_type: One of the `EntityType` values.
            data: Payload fields. `created_at` / `updated_at` may be supplied
                  (e.g. when restoring a backup); otherwise they default to now.
            record_id: Optional explicit ID. A UUID is generated if omitted.

        Returns:
            The ID of the new record.

        Raises:
            InputError: If required fields are missing or invalid.
            ConflictError: If the ID or a unique field already exists.
        """
        entity = self._resolve_entity(entity_type)
        fields = self._extract_payload(entity, data)
        for key, default in FIELD_DEFAULTS[entity].items():
            if fields.get(key) is None:
                fields[key] = copy.deepcopy(default)
        self._validate_payload(entity, fields, require_all=True)

        now = self._get_current_utc_timestamp_iso()
        created_at = normalize_timestamp(data.get("created_at")) or now
        updated_at = normalize_timestamp(data.get("updated_at")) or now
        record_id = record_id or self._generate_uuid()

        columns = ["id", *fields.keys(), "created_at", "updated_at", "version", "sync_status"]
        values = [record_id, *(self._serialize_field(entity, k, v) for k, v in fields.items()),
                  created_at, updated_at, 1, SyncStatus.PENDING.value]
        placeholders = ", ".join("?" for _ in columns)
        try:
            with self.transaction():
                self.execute_query(
                    f"INSERT INTO {entity.value} ({', '.join(columns)}) VALUES ({placeholders})", tuple(values))
        except ConflictError as e:
            raise ConflictError(f"Could not add {entity.value} record: {e}",
                                entity=entity.value, entity_id=record_id) from e
        logger.info(f"Added {entity.value} record '{record_id}'.")
        return record_id

    def get_record_by_id(self, entity_type: Union[str, EntityType], record_id: str) -> Optional[Dict[str, Any]]:
        entity = self._resolve_entity(entity_type)
        return self._row_to_dict(entity, self._fetch_row(entity, record_id))

    def list_records(self, entity_type: Union[str, EntityType], limit: int = 100, offset: int = 0,
                     sync_status: Optional[Union[str, SyncStatus]] = None) -> List[Dict[str, Any]]:
        """Lists records in insertion order, optionally filtered by sync status."""
        entity = self._resolve_entity(entity_type)
        query = f"SELECT * FROM {entity.value}"
        params: List[Any] = []
        if sync_status is not None:
            query += " WHERE sync_status = ?"
            params.append(SyncStatus(sync_status).value)
        query += " ORDER BY rowid ASC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        rows = self.execute_query(query, tuple(params)).fetchall()
        return [self._row_to_dict(entity, row) for row in rows]

    def update_record(self, entity_type: Union[str, EntityType], record_id: str, data: Mapping[str, Any],
                      expected_version: Optional[int] = None) -> int:
        """
        Applies a local edit: payload fields change, `version` is incremented,
        `updated_at` is set to now and `sync_status` returns to 'pending'.

        Args:
            entity_type: One of the `EntityType` values.
            record_id: ID of the record to edit.
            data: Payload fields to change. Unknown keys are ignored.
            expected_version: If given, the edit only applies when the stored
                              version still matches (optimistic locking).

        Returns:
            The new version number.

        Raises:
            InputError: If no payload fields were given or they are invalid.
            NotFoundError: If the record does not exist.
            ConflictError: If `expected_version` does not match the stored version.
        """
        entity = self._resolve_entity(entity_type)
        fields = self._extract_payload(entity, data)
        if not fields:
            raise InputError(f"No updatable fields provided for {entity.value} '{record_id}'.")
        self._validate_payload(entity, fields, require_all=False)

        now = self._get_current_utc_timestamp_iso()
        with self.transaction():
            current_version = self._require_row(entity, record_id)["version"]
            if expected_version is not None and current_version != expected_version:
                raise ConflictError(
                    f"Update failed: version mismatch (db has {current_version}, client expected {expected_version}).",
                    entity=entity.value, entity_id=record_id)
            new_version = current_version + 1
            set_clause = ", ".join(f"{k} = ?" for k in fields)
            params = [self._serialize_field(entity, k, v) for k, v in fields.items()]
            params.extend([now, new_version, SyncStatus.PENDING.value, record_id, current_version])
            cursor = self.execute_query(
                f"UPDATE {entity.value} SET {set_clause}, updated_at = ?, version = ?, sync_status = ? "
                f"WHERE id = ? AND version = ?", tuple(params))
            if cursor.rowcount == 0:
                raise ConflictError(f"Update failed: {entity.value} '{record_id}' changed concurrently.",
                                    entity=entity.value, entity_id=record_id)
        logger.info(f"Updated {entity.value} record '{record_id}' to version {new_version}.")
        return new_version

    def delete_record(self, entity_type: Union[str, EntityType], record_id: str,
                      expected_version: Optional[int] = None) -> bool:
        """
        Deletes a record locally. Deletions are not propagated to the remote.

        Raises:
            NotFoundError: If the record does not exist.
            ConflictError: If `expected_version` does not match the stored version.
        """
        entity = self._resolve_entity(entity_type)
        with self.transaction():
            current_version = self._require_row(entity, record_id)["version"]
            if expected_version is not None and current_version != expected_version:
                raise ConflictError(
                    f"Delete failed: version mismatch (db has {current_version}, client expected {expected_version}).",
                    entity=entity.value, entity_id=record_id)
            self.execute_query(f"DELETE FROM {entity.value} WHERE id = ?", (record_id,))
        logger.info(f"Deleted {entity.value} record '{record_id}'.")
        return True

    # --- Sync Bookkeeping ---
    def get_pending(self, entity_type: Union[str, EntityType], limit: int = SYNC_BATCH_SIZE) -> List[Dict[str, Any]]:
        """
        Returns up to `limit` records with status 'pending', oldest insertion first.

        Failed records are not included until they are edited again or
        explicitly retried with `retry_failed`.
        """
        if limit < 0:
            raise InputError("limit must not be negative.")
        return self.list_records(entity_type, limit=limit, sync_status=SyncStatus.PENDING)

    def mark_synced(self, entity_type: Union[str, EntityType], local_id: str, remote_id: Optional[str],
                    expected_version: Optional[int] = None) -> bool:
        """
        Marks a record as accepted by the remote.

        Sets `sync_status` to 'synced', records `remote_id`, `last_synced_at` and
        `synced_version`. When `expected_version` is given and the record has been
        edited since it was read for pushing, only `remote_id` and `last_synced_at`
        are recorded and the record stays 'pending' so the newer edit is pushed later.

        Returns:
            True if the record is now 'synced', False if a newer local edit kept it pending.

        Raises:
            NotFoundError: If `local_id` does not exist.
        """
        entity = self._resolve_entity(entity_type)
        now = self._get_current_utc_timestamp_iso()
        with self.transaction():
            current_version = self._require_row(entity, local_id)["version"]
            if expected_version is not None and current_version != expected_version:
                self.execute_query(
                    f"UPDATE {entity.value} SET remote_id = COALESCE(?, remote_id), last_synced_at = ? WHERE id = ?",
                    (remote_id, now, local_id))
                logger.info(f"{entity.value} '{local_id}' was edited during push "
                            f"(v{expected_version} -> v{current_version}); leaving it pending.")
                return False
            self.execute_query(
                f"UPDATE {entity.value} SET sync_status = ?, remote_id = COALESCE(?, remote_id), "
                f"last_synced_at = ?, synced_version = version WHERE id = ?",
                (SyncStatus.SYNCED.value, remote_id, now, local_id))
        logger.debug(f"Marked {entity.value} '{local_id}' synced (remote id {remote_id}).")
        return True

    def mark_failed(self, entity_type: Union[str, EntityType], local_id: str, reason: str,
                    expected_version: Optional[int] = None) -> bool:
        """
        Marks a record's push as failed and appends an audit entry to `sync_log`.

        Returns:
            True if the record is now 'failed', False if a newer local edit kept it pending.

        Raises:
            NotFoundError: If `local_id` does not exist.
        """
        entity = self._resolve_entity(entity_type)
        now = self._get_current_utc_timestamp_iso()
        with self.transaction():
            current_version = self._require_row(entity, local_id)["version"]
            stale = expected_version is not None and current_version != expected_version
            if not stale:
                self.execute_query(f"UPDATE {entity.value} SET sync_status = ? WHERE id = ?",
                                   (SyncStatus.FAILED.value, local_id))
            self._log_sync_event(entity, local_id, "push", SyncStatus.FAILED.value, reason, now)
        logger.warning(f"Marked {entity.value} '{local_id}' failed: {reason}")
        return not stale

    def _log_sync_event(self, entity: EntityType, entity_id: str, operation: str, status: str,
                        error_message: Optional[str], attempted_at: str):
        self.execute_query(
            "INSERT INTO sync_log (entity_type, entity_id, operation, sync_status, error_message, attempted_at, "
            "client_id) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (entity.value, entity_id, operation, status, error_message, attempted_at, self.client_id))

    def _find_by_remote_identity(self, entity: EntityType, remote_id: str) -> Optional[sqlite3.Row]:
        row = self.execute_query(f"SELECT * FROM {entity.value} WHERE remote_id = ? ORDER BY rowid LIMIT 1",
                                 (remote_id,)).fetchone()
        if row is None:
            row = self._fetch_row(entity, remote_id)
        return row

    def upsert_from_remote(self, entity_type: Union[str, EntityType],
                           remote_record: Mapping[str, Any]) -> UpsertResult:
        """
        Inserts a pulled remote record if no local record shares its identifier.

        A local record matches when its `remote_id` or its `id` equals the
        remote `id`. A new record is stored with `id = remote_id = remote id`,
        status 'synced' and the remote's `version` and `updated_at`. An existing
        record is returned unmodified for the caller to resolve.

        Raises:
            InputError: If the remote record has no `id` or lacks required fields.
        """
        entity = self._resolve_entity(entity_type)
        remote_id = str(remote_record.get("id") or "")
        if not remote_id:
            raise InputError(f"Remote {entity.value} record has no 'id'.")

        with self.transaction():
            existing = self._find_by_remote_identity(entity, remote_id)
            if existing is not None:
                return UpsertResult(False, self._row_to_dict(entity, existing))

            fields = self._extract_payload(entity, remote_record)
            for key, default in FIELD_DEFAULTS[entity].items():
                if fields.get(key) is None:
                    fields[key] = copy.deepcopy(default)
            self._validate_payload(entity, fields, require_all=True)

            now = self._get_current_utc_timestamp_iso()
            version = self._remote_version(remote_record)
            updated_at = normalize_timestamp(remote_record.get("updated_at")) or now
            created_at = normalize_timestamp(remote_record.get("created_at")) or updated_at
            columns = ["id", *fields.keys(), "created_at", "updated_at", "version", "sync_status",
                       "remote_id", "last_synced_at", "synced_version"]
            values = [remote_id, *(self._serialize_field(entity, k, v) for k, v in fields.items()),
                      created_at, updated_at, version, SyncStatus.SYNCED.value, remote_id, now, version]
            self.execute_query(
                f"INSERT INTO {entity.value} ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})",
                tuple(values))
            record = self._row_to_dict(entity, self._fetch_row(entity, remote_id))
        logger.info(f"Inserted {entity.value} '{remote_id}' from remote.")
        return UpsertResult(True, record)

    def apply_remote(self, entity_type: Union[str, EntityType], local_id: str,
                     remote_record: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Overwrites a local record with a remote payload that won conflict resolution.

        Payload fields present in `remote_record` replace the local values; the
        record becomes 'synced' with the remote's `updated_at`. `version` becomes
        max(local version, remote version) so it never decreases.

        Raises:
            NotFoundError: If `local_id` does not exist.
            InputError: If the remote payload carries invalid values.
        """
        entity = self._resolve_entity(entity_type)
        fields = self._extract_payload(entity, remote_record)
        self._validate_payload(entity, fields, require_all=False)
        remote_id = str(remote_record.get("id") or "") or None
        remote_version = self._remote_version(remote_record)
        now = self._get_current_utc_timestamp_iso()

        with self.transaction():
            row = self._require_row(entity, local_id)
            new_version = max(row["version"], remote_version)
            updated_at = normalize_timestamp(remote_record.get("updated_at")) or row["updated_at"]
            assignments = [f"{k} = ?" for k in fields]
            params = [self._serialize_field(entity, k, v) for k, v in fields.items()]
            assignments += ["updated_at = ?", "version = ?", "sync_status = ?", "remote_id = COALESCE(?, remote_id)",
                            "last_synced_at = ?", "synced_version = ?"]
            params += [updated_at, new_version, SyncStatus.SYNCED.value, remote_id, now, new_version, local_id]
            self.execute_query(f"UPDATE {entity.value} SET {', '.join(assignments)} WHERE id = ?", tuple(params))
            record = self._row_to_dict(entity, self._fetch_row(entity, local_id))
        logger.info(f"Applied remote changes to {entity.value} '{local_id}' (version {new_version}).")
        return record

    def retry_failed(self, entity_type: Optional[Union[str, EntityType]] = None) -> int:
        """Moves 'failed' records back to 'pending' so the next cycle pushes them again."""
        entities = [self._resolve_entity(entity_type)] if entity_type else SYNC_ENTITY_ORDER
        count = 0
        with self.transaction():
            for entity in entities:
                cursor = self.execute_query(f"UPDATE {entity.value} SET sync_status = ? WHERE sync_status = ?",
                                            (SyncStatus.PENDING.value, SyncStatus.FAILED.value))
                count += cursor.rowcount
        logger.info(f"Re-queued {count} failed record(s) for sync.")
        return count

    def reset_sync_status(self) -> int:
        """Marks every record 'pending', forcing a full re-push on the next cycle."""
        count = 0
        with self.transaction():
            for entity in SYNC_ENTITY_ORDER:
                cursor = self.execute_query(f"UPDATE {entity.value} SET sync_status = ?", (SyncStatus.PENDING.value,))
                count += cursor.rowcount
        logger.info(f"Reset sync status of {count} record(s) to pending.")
        return count

    def get_sync_stats(self, entity_type: Optional[Union[str, EntityType]] = None) -> Dict[str, int]:
        entities = [self._resolve_entity(entity_type)] if entity_type else SYNC_ENTITY_ORDER
        stats = {status.value: 0 for status in SyncStatus}
        for entity in entities:
            rows = self.execute_query(
                f"SELECT sync_status, COUNT(*) AS n FROM {entity.value} GROUP BY sync_status").fetchall()
            for row in rows:
                stats[row["sync_status"]] = stats.get(row["sync_status"], 0) + row["n"]
        stats["total"] = sum(stats[status.value] for status in SyncStatus)
        return stats

    def get_sync_log_entries(self, entity_type: Optional[Union[str, EntityType]] = None,
                             limit: int = 100) -> List[Dict[str, Any]]:
        query = "SELECT * FROM sync_log"
        params: List[Any] = []
        if entity_type:
            query += " WHERE entity_type = ?"
            params.append(self._resolve_entity(entity_type).value)
        query += " ORDER BY id ASC LIMIT ?"
        params.append(limit)
        return [dict(row) for row in self.execute_query(query, tuple(params)).fetchall()]

    # --- Settings ---
    def get_setting(self, key: str, default: Any = None) -> Any:
        row = self.execute_query("SELECT value FROM app_settings WHERE key = ?", (key,)).fetchone()
        if row is None or row["value"] is None:
            return default
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError:
            logger.warning(f"Setting '{key}' is not valid JSON; returning raw value.")
            return row["value"]

    def set_setting(self, key: str, value: Any):
        self.execute_query(
            "INSERT OR REPLACE INTO app_settings (key, value, updated_at) VALUES (?, ?, ?)",
            (key, json.dumps(value), self._get_current_utc_timestamp_iso()), commit=True)

    def delete_setting(self, key: str):
        self.execute_query("DELETE FROM app_settings WHERE key = ?", (key,), commit=True)

    # --- Data Management ---
    def insert_default_categories(self) -> int:
        """Seeds the standard categories. Existing ones are left alone. Returns the number inserted."""
        now = self._get_current_utc_timestamp_iso()
        inserted = 0
        with self.transaction():
            for category in DEFAULT_CATEGORIES:
                category_id = "cat-" + category["name"].lower().replace(" ", "-")
                cursor = self.execute_query(
                    "INSERT OR IGNORE INTO categories (id, name, description, color, created_at, updated_at, "
                    "version, sync_status) VALUES (?, ?, ?, ?, ?, ?, 1, ?)",
                    (category_id, category["name"], category["description"], category["color"], now, now,
                     SyncStatus.PENDING.value))
                inserted += cursor.rowcount
        return inserted

    def export_data(self) -> str:
        """Serializes every entity table to a JSON backup string."""
        backup: Dict[str, Any] = {
            "export_date": self._get_current_utc_timestamp_iso(),
            "schema_version": self._CURRENT_SCHEMA_VERSION,
        }
        for entity in SYNC_ENTITY_ORDER:
            rows = self.execute_query(f"SELECT * FROM {entity.value} ORDER BY rowid ASC").fetchall()
            backup[entity.value] = [self._row_to_dict(entity, row) for row in rows]
        return json.dumps(backup, indent=2)

    def import_data(self, json_data: str) -> int:
        """
        Restores records from an `export_data` backup.

        Imported records are treated as local creations (status 'pending',
        version 1) so they are pushed on the next cycle. IDs that already exist
        are skipped.

        Raises:
            InputError: If `json_data` is not a valid backup document.
        """
        try:
            backup = json.loads(json_data)
        except json.JSONDecodeError as e:
            raise InputError(f"Backup is not valid JSON: {e}") from e
        if not isinstance(backup, dict):
            raise InputError("Backup must be a JSON object.")

        imported = 0
        with self.transaction():
            for entity in SYNC_ENTITY_ORDER:
                for record in backup.get(entity.value) or []:
                    record_id = record.get("id")
                    if record_id and self._fetch_row(entity, record_id) is not None:
                        logger.debug(f"Skipping existing {entity.value} '{record_id}' during import.")
                        continue
                    self.add_record(entity, record, record_id=record_id)
                    imported += 1
        logger.info(f"Imported {imported} record(s) from backup.")
        return imported

    def clear_all_data(self):
        """Deletes every entity record and the sync log. Settings are kept."""
        with self.transaction():
            for entity in reversed(SYNC_ENTITY_ORDER):
                self.execute_query(f"DELETE FROM {entity.value}")
            self.execute_query("DELETE FROM sync_log")
        logger.info("Cleared all inventory data.")


# --- Transaction Context Manager Class (Helper for `with db.transaction():`) ---
class TransactionContextManager:
    def __init__(self, db_instance: InventoryDB):
        self.db = db_instance
        self.conn: Optional[sqlite3.Connection] = None
        self.is_outermost_transaction = False

    def __enter__(self) -> sqlite3.Connection:
        self.conn = self.db.get_connection()
        if not self.conn.in_transaction:
            self.conn.execute("BEGIN")
            self.is_outermost_transaction = True
        return self.conn

    def __exit__(self, exc_type, exc_val, exc_tb):
        if not self.is_outermost_transaction:
            return False
        if exc_type:
            logger.debug(f"Transaction failed, rolling back: {exc_type.__name__} - {exc_val}")
            try:
                self.conn.rollback()
            except sqlite3.Error as rb_err:
                logger.critical(f"Rollback FAILED on thread {threading.get_ident()}: {rb_err}", exc_info=True)
        else:
            try:
                self.conn.commit()
            except sqlite3.Error as commit_err:
                logger.error(f"Commit FAILED, attempting rollback: {commit_err}", exc_info=True)
                try:
                    self.conn.rollback()
                except sqlite3.Error as rb_err:
                    logger.critical(f"Rollback after failed commit also FAILED: {rb_err}", exc_info=True)
                raise InventoryDBError(f"Commit failed: {commit_err}") from commit_err
        return False

#
# End of Inventory_DB.py
########################################################################################################################
