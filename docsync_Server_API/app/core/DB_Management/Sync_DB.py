# Sync_DB.py
# Description: DB Library for the shared document store: users, versioned records, access grants and the
#              append-only operation log.
#
# Imports
import sqlite3
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Dict, Optional, Any, Union, Callable, Iterable
#
# Third-Party Libraries
from loguru import logger
#
# Local Imports
from docsync_Server_API.app.core.Utils.Utils import utc_now, format_timestamp, generate_uuid, normalize_email
#
########################################################################################################################
#
# Functions:


# --- Custom Exceptions ---
class SyncDBError(Exception):
    """Base exception for SyncDatabase related errors."""
    pass


class SchemaError(SyncDBError):
    """Exception for schema version mismatches or migration failures."""
    pass


class InputError(ValueError):
    """Custom exception for input validation errors."""
    pass


class ConflictError(SyncDBError):
    """
    Indicates a conflict due to concurrent modification (version mismatch), a missing row,
    or a unique constraint violation.

    `reason` is one of 'already_exists', 'version_mismatch', 'not_found' (or None for generic
    constraint violations). `server_version` carries the stored version when one exists.
    """

    def __init__(self, message="Conflict detected.", entity: Optional[str] = None, entity_id: Any = None,
                 reason: Optional[str] = None, server_version: Optional[int] = None):
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id
        self.reason = reason
        self.server_version = server_version

    def __str__(self):
        base = super().__str__()
        details = []
        if self.entity:
            details.append(f"Entity: {self.entity}")
        if self.entity_id:
            details.append(f"ID: {self.entity_id}")
        if self.reason:
            details.append(f"Reason: {self.reason}")
        return f"{base} ({', '.join(details)})" if details else base


# --- Database Class ---
class SyncDatabase:
    """
    Manages SQLite connection and operations for the shared document store.

    One database holds every user's records so that shared libraries can be resolved with plain joins.
    Connections are thread-local. Because of that, ':memory:' databases are only usable from a single
    thread; the API and the tests use file-backed databases.

    Every mutating record method appends an entry to `operation_log` inside the same transaction as
    the record write. Methods open their own transaction, which nests into an outer
    `with db.transaction():` block when one is active (the outer block then owns commit/rollback).

    Writers take the write lock (BEGIN IMMEDIATE) before stamping, and stamps never repeat, so
    `updated_at` order is commit order. `sync_watermark()` relies on this to hand out pull cursors.
    """
    _CURRENT_SCHEMA_VERSION = 1
    _SCHEMA_NAME = "docsync_schema"  # Used for the db_schema_version table

    _RECORD_PAYLOAD_COLUMNS = ('title', 'content', 'category', 'keywords', 'is_favorite', 'embedding')

    _FULL_SCHEMA_SQL_V1 = """
/*───────────────────────────────────────────────────────────────
  Docsync Schema  –  Version 1
───────────────────────────────────────────────────────────────*/
PRAGMA foreign_keys = ON;

/*----------------------------------------------------------------
  0. Schema-version registry
----------------------------------------------------------------*/
CREATE TABLE IF NOT EXISTS db_schema_version(
  schema_name TEXT PRIMARY KEY NOT NULL,
  version     INTEGER NOT NULL
);
INSERT OR IGNORE INTO db_schema_version(schema_name,version)
VALUES('docsync_schema',0);

/*----------------------------------------------------------------
  1. Users (identity is issued elsewhere; rows are registered on first request)
----------------------------------------------------------------*/
CREATE TABLE IF NOT EXISTS users(
  id         INTEGER PRIMARY KEY,
  email      TEXT    UNIQUE COLLATE NOCASE,
  created_at TEXT    NOT NULL
);

/*----------------------------------------------------------------
  2. Records (synchronised documents)
----------------------------------------------------------------*/
CREATE TABLE IF NOT EXISTS records(
  id          TEXT    PRIMARY KEY NOT NULL,
  owner_id    INTEGER NOT NULL REFERENCES users(id),
  title       TEXT,
  content     TEXT,
  category    TEXT,
  keywords    TEXT,
  is_favorite INTEGER NOT NULL DEFAULT 0,
  embedding   BLOB,
  created_at  TEXT    NOT NULL,
  updated_at  TEXT    NOT NULL,
  deleted_at  TEXT,
  version     INTEGER NOT NULL DEFAULT 1 CHECK (version >= 1)
);

CREATE INDEX IF NOT EXISTS idx_records_owner_updated ON records(owner_id, updated_at);
CREATE INDEX IF NOT EXISTS idx_records_owner_deleted ON records(owner_id, deleted_at);

DROP TRIGGER IF EXISTS records_version_monotonic;
CREATE TRIGGER records_version_monotonic
BEFORE UPDATE OF version ON records
WHEN NEW.version <= OLD.version
BEGIN
  SELECT RAISE(ABORT, 'records.version must strictly increase');
END;

DROP TRIGGER IF EXISTS records_no_hard_delete;
CREATE TRIGGER records_no_hard_delete
BEFORE DELETE ON records
BEGIN
  SELECT RAISE(ABORT, 'records are soft-deleted only');
END;

/*----------------------------------------------------------------
  3. Access grants (owner exposes the whole library to a recipient)
----------------------------------------------------------------*/
CREATE TABLE IF NOT EXISTS access_grants(
  id              TEXT    PRIMARY KEY NOT NULL,
  owner_id        INTEGER NOT NULL REFERENCES users(id),
  recipient_email TEXT    NOT NULL COLLATE NOCASE,
  recipient_id    INTEGER REFERENCES users(id),
  permission      TEXT    NOT NULL CHECK (permission IN ('view','edit')),
  share_token     TEXT    NOT NULL UNIQUE,
  created_at      TEXT    NOT NULL,
  accepted_at     TEXT,
  revoked_at      TEXT
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_grants_active_email
  ON access_grants(owner_id, recipient_email) WHERE revoked_at IS NULL;
CREATE UNIQUE INDEX IF NOT EXISTS idx_grants_active_recipient
  ON access_grants(owner_id, recipient_id) WHERE revoked_at IS NULL AND recipient_id IS NOT NULL;
CREATE INDEX IF NOT EXISTS idx_grants_recipient ON access_grants(recipient_id, revoked_at);

/*----------------------------------------------------------------
  4. Operation log (append-only)
----------------------------------------------------------------*/
CREATE TABLE IF NOT EXISTS operation_log(
  change_id INTEGER PRIMARY KEY AUTOINCREMENT,
  user_id   INTEGER NOT NULL,
  operation TEXT    NOT NULL CHECK (operation IN ('create','update','delete')),
  record_id TEXT    NOT NULL,
  version   INTEGER NOT NULL,
  timestamp TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_operation_log_user ON operation_log(user_id, change_id);

DROP TRIGGER IF EXISTS operation_log_no_update;
CREATE TRIGGER operation_log_no_update
BEFORE UPDATE ON operation_log
BEGIN
  SELECT RAISE(ABORT, 'operation_log is append-only');
END;

DROP TRIGGER IF EXISTS operation_log_no_delete;
CREATE TRIGGER operation_log_no_delete
BEFORE DELETE ON operation_log
BEGIN
  SELECT RAISE(ABORT, 'operation_log is append-only');
END;

UPDATE db_schema_version SET version = 1 WHERE schema_name = 'docsync_schema' AND version = 0;
    """

    _RECORD_SELECT = """
        SELECT r.id, r.owner_id, u.email AS owner_email, r.title, r.content, r.category, r.keywords,
               r.is_favorite, r.embedding, r.created_at, r.updated_at, r.deleted_at, r.version
        FROM records r
        JOIN users u ON u.id = r.owner_id
    """

    def __init__(self, db_path: Union[str, Path], clock: Optional[Callable[[], datetime]] = None):
        if isinstance(db_path, Path):
            self.is_memory_db = False
            self.db_path = db_path.resolve()
        else:
            self.is_memory_db = (db_path == ':memory:')
            self.db_path = Path(db_path).resolve() if not self.is_memory_db else Path(":memory:")
        self.db_path_str = str(self.db_path) if not self.is_memory_db else ':memory:'
        self._clock = clock or utc_now
        self._last_timestamp: Optional[datetime] = None
        self._timestamp_lock = threading.Lock()

        if not self.is_memory_db:
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise SyncDBError(f"Failed to create database directory {self.db_path.parent}: {e}")

        logger.info(f"Initializing SyncDatabase for path: {self.db_path_str}")
        self._local = threading.local()
        self._connections: List[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()
        try:
            self._initialize_schema()
            logger.debug(f"SyncDatabase initialization completed successfully for {self.db_path_str}")
        except (SyncDBError, sqlite3.Error) as e:
            logger.critical(f"FATAL: DB Initialization failed for {self.db_path_str}: {e}")
            self.close_connection()
            raise SyncDBError(f"Database initialization failed: {e}") from e

    # --- Connection Management ---
    def _get_thread_connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, 'conn', None)
        if conn:
            try:
                conn.execute("SELECT 1")
            except (sqlite3.ProgrammingError, sqlite3.OperationalError):
                logger.warning(f"Thread-local connection for {self.db_path_str} was closed or became unusable. Reopening.")
                conn = None

        if not conn:
            try:
                conn = sqlite3.connect(
                    self.db_path_str,
                    check_same_thread=False,  # Required for threading.local approach
                    timeout=15
                )
                conn.row_factory = sqlite3.Row
                if not self.is_memory_db:
                    conn.execute("PRAGMA journal_mode=WAL;")
                conn.execute("PRAGMA foreign_keys = ON;")
                self._local.conn = conn
                with self._connections_lock:
                    self._connections.append(conn)
                logger.debug(f"Opened SQLite connection to {self.db_path_str} for thread {threading.get_ident()}")
            except sqlite3.Error as e:
                logger.error(f"Failed to connect to database {self.db_path_str}: {e}")
                self._local.conn = None
                raise SyncDBError(f"Failed to connect to database '{self.db_path_str}': {e}") from e
        return self._local.conn

    def get_connection(self) -> sqlite3.Connection:
        return self._get_thread_connection()

    def _close(self, conn: sqlite3.Connection):
        try:
            if conn.in_transaction:
                logger.warning(f"Connection to {self.db_path_str} is in an uncommitted transaction during close. Rolling back.")
                conn.rollback()
            conn.close()
        except sqlite3.Error as e:
            logger.warning(f"Error during SQLite connection close for {self.db_path_str}: {e}")
        finally:
            with self._connections_lock:
                if conn in self._connections:
                    self._connections.remove(conn)

    def close_connection(self):
        """Closes the calling thread's connection."""
        conn = getattr(self._local, 'conn', None)
        if conn is not None:
            self._close(conn)
            self._local.conn = None
            logger.debug(f"Closed connection for thread {threading.get_ident()} to {self.db_path_str}.")

    def close_all_connections(self):
        """Closes every connection opened by any thread. Used at application shutdown."""
        with self._connections_lock:
            connections = list(self._connections)
        for conn in connections:
            self._close(conn)
        self._local.conn = None
        logger.info(f"Closed {len(connections)} connection(s) to {self.db_path_str}.")

    # --- Query Execution ---
    def execute_query(self, query: str, params: Optional[Union[tuple, Dict[str, Any]]] = None, *,
                      commit: bool = False) -> sqlite3.Cursor:
        conn = self.get_connection()
        try:
            cursor = conn.execute(query, params or ())
            # Never commit from inside a `with db.transaction():` block; the block owns the commit
            if commit and not getattr(self._local, 'in_managed_transaction', False):
                conn.commit()
            return cursor
        except sqlite3.IntegrityError as e:
            logger.warning(f"Integrity constraint violation: {query[:300]}... Error: {e}")
            if "unique constraint failed" in str(e).lower():
                raise ConflictError(message=f"Unique constraint violation: {e}") from e
            raise SyncDBError(f"Database constraint violation: {e}") from e
        except sqlite3.Error as e:
            logger.error(f"Query execution failed: {query[:300]}... Error: {e}")
            raise SyncDBError(f"Query execution failed: {e}") from e

    # --- Transaction Context ---
    def transaction(self, immediate: bool = False) -> 'TransactionContextManager':
        """
        Returns a transaction context manager. `immediate=True` takes the database write lock up front
        (BEGIN IMMEDIATE), so reads performed inside the block cannot be invalidated by another writer
        before the block commits.
        """
        return TransactionContextManager(self, immediate=immediate)

    # --- Schema Initialization ---
    def _get_db_version(self, conn: sqlite3.Connection) -> int:
        try:
            cursor = conn.execute("SELECT version FROM db_schema_version WHERE schema_name = ? LIMIT 1",
                                  (self._SCHEMA_NAME,))
            result = cursor.fetchone()
            return result['version'] if result else 0
        except sqlite3.Error as e:
            if "no such table" in str(e).lower() and "db_schema_version" in str(e).lower():
                return 0
            logger.error(f"Could not determine database schema version for '{self._SCHEMA_NAME}': {e}")
            raise SchemaError(f"Could not determine schema version for '{self._SCHEMA_NAME}': {e}") from e

    def _apply_schema_v1(self, conn: sqlite3.Connection):
        logger.info(f"Applying schema Version {self._CURRENT_SCHEMA_VERSION} for '{self._SCHEMA_NAME}' to DB: {self.db_path_str}...")
        try:
            conn.executescript(self._FULL_SCHEMA_SQL_V1)
            final_version = self._get_db_version(conn)
            if final_version != self._CURRENT_SCHEMA_VERSION:
                raise SchemaError(
                    f"[{self._SCHEMA_NAME}] Schema version update check failed. Expected {self._CURRENT_SCHEMA_VERSION}, got: {final_version}")
            logger.info(f"[{self._SCHEMA_NAME}] Schema {self._CURRENT_SCHEMA_VERSION} applied for DB: {self.db_path_str}.")
        except sqlite3.Error as e:
            logger.error(f"[{self._SCHEMA_NAME} V1] Schema application failed: {e}")
            raise SchemaError(f"DB schema V1 setup failed for '{self._SCHEMA_NAME}': {e}") from e

    def _initialize_schema(self):
        conn = self.get_connection()
        current_db_version = self._get_db_version(conn)
        target_version = self._CURRENT_SCHEMA_VERSION
        logger.info(f"Checking DB schema '{self._SCHEMA_NAME}'. Current version: {current_db_version}. Code supports: {target_version}")

        if current_db_version == target_version:
            logger.debug(f"Database schema '{self._SCHEMA_NAME}' is up to date.")
            return
        if current_db_version > target_version:
            raise SchemaError(
                f"Database schema '{self._SCHEMA_NAME}' version ({current_db_version}) is newer than supported by code ({target_version}). Aborting.")
        # Add future migrations here:
        # if current_db_version == 1: self._migrate_schema_v1_to_v2(conn); current_db_version = 2
        self._apply_schema_v1(conn)

    # --- Internal Helpers ---
    def current_timestamp(self) -> str:
        """
        Authoritative server time, in the store's timestamp format.

        Strictly increasing for this store: a clock reading that does not pass the last issued stamp (same
        millisecond, or the clock stepped back) is bumped to 1 ms after it. Writers call this inside their
        write transaction, so stamps also follow commit order.
        """
        now = self._clock()
        now = now.replace(tzinfo=timezone.utc) if now.tzinfo is None else now.astimezone(timezone.utc)
        now = now.replace(microsecond=now.microsecond - now.microsecond % 1000)
        with self._timestamp_lock:
            if self._last_timestamp is not None and now <= self._last_timestamp:
                now = self._last_timestamp + timedelta(milliseconds=1)
            self._last_timestamp = now
        return format_timestamp(now)

    def sync_watermark(self) -> str:
        """
        Issues a timestamp that every later write stamps after, taken under the write lock.

        BEGIN IMMEDIATE waits for any open writer to commit first, so no write still in flight can hold
        an earlier stamp than the one returned.
        """
        try:
            with self.transaction(immediate=True):
                return self.current_timestamp()
        except sqlite3.Error as e:
            logger.error(f"Could not take the write lock for a sync watermark on {self.db_path_str}: {e}")
            raise SyncDBError(f"Failed to issue sync watermark: {e}") from e

    @staticmethod
    def _log_operation(conn: sqlite3.Connection, user_id: int, operation: str, record_id: str, version: int,
                       timestamp: str):
        conn.execute(
            "INSERT INTO operation_log (user_id, operation, record_id, version, timestamp) VALUES (?, ?, ?, ?, ?)",
            (user_id, operation, record_id, version, timestamp)
        )

    @staticmethod
    def _record_state(conn: sqlite3.Connection, record_id: str) -> Optional[sqlite3.Row]:
        return conn.execute("SELECT owner_id, version, deleted_at FROM records WHERE id = ?", (record_id,)).fetchone()

    @classmethod
    def _payload_values(cls, record_data: Dict[str, Any]) -> Dict[str, Any]:
        values = {}
        for col in cls._RECORD_PAYLOAD_COLUMNS:
            if col in record_data:
                value = record_data[col]
                if col == 'is_favorite':
                    value = 1 if value else 0
                values[col] = value
        return values

    # --- User Methods ---
    def upsert_user(self, user_id: int, email: Optional[str] = None) -> None:
        """Registers a user identity (idempotent). A known e-mail is never cleared by a later call without one."""
        email_value = normalize_email(email) or None
        try:
            with self.transaction(immediate=True) as conn:
                now = self.current_timestamp()
                conn.execute(
                    """
                    INSERT INTO users (id, email, created_at) VALUES (?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET email = COALESCE(excluded.email, users.email)
                    """,
                    (user_id, email_value, now)
                )
        except sqlite3.IntegrityError as e:
            raise ConflictError(f"E-mail '{email_value}' already belongs to another user.", entity="users",
                                entity_id=user_id) from e
        except sqlite3.Error as e:
            raise SyncDBError(f"Failed to register user {user_id}: {e}") from e

    def get_user_by_id(self, user_id: int) -> Optional[Dict[str, Any]]:
        row = self.execute_query("SELECT id, email, created_at FROM users WHERE id = ?", (user_id,)).fetchone()
        return dict(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        row = self.execute_query("SELECT id, email, created_at FROM users WHERE email = ?",
                                 (normalize_email(email),)).fetchone()
        return dict(row) if row else None

    # --- Record Methods ---
    def add_record(self, owner_id: int, record_data: Dict[str, Any], actor_id: Optional[int] = None) -> str:
        """
        Inserts a new record owned by `owner_id` with version 1 and logs a 'create'.
        Raises ConflictError(reason='already_exists') when the id is already taken, whatever its owner or state.
        """
        record_id = record_data.get('id') or generate_uuid()
        payload = self._payload_values(record_data)
        actor = actor_id if actor_id is not None else owner_id

        try:
            with self.transaction(immediate=True) as conn:
                now = self.current_timestamp()
                created_at = record_data.get('created_at') or now
                if conn.execute("SELECT 1 FROM records WHERE id = ?", (record_id,)).fetchone():
                    raise ConflictError(f"Record with ID '{record_id}' already exists.", entity="records",
                                        entity_id=record_id, reason="already_exists")
                conn.execute(
                    """
                    INSERT INTO records (id, owner_id, title, content, category, keywords, is_favorite, embedding,
                                         created_at, updated_at, version)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1)
                    """,
                    (record_id, owner_id, payload.get('title'), payload.get('content'), payload.get('category'),
                     payload.get('keywords'), payload.get('is_favorite', 0), payload.get('embedding'),
                     created_at, now)
                )
                self._log_operation(conn, actor, 'create', record_id, 1, now)
            logger.info(f"Added record {record_id} for owner {owner_id}.")
            return record_id
        except sqlite3.IntegrityError as e:
            if "unique constraint failed: records.id" in str(e).lower():
                raise ConflictError(f"Record with ID '{record_id}' already exists.", entity="records",
                                    entity_id=record_id, reason="already_exists") from e
            raise SyncDBError(f"Database integrity error adding record: {e}") from e
        except sqlite3.Error as e:
            logger.error(f"Database error adding record '{record_id}': {e}")
            raise SyncDBError(f"Failed to add record '{record_id}': {e}") from e

    def get_record_by_id(self, record_id: str, include_deleted: bool = False) -> Optional[Dict[str, Any]]:
        query = self._RECORD_SELECT + " WHERE r.id = ?"
        if not include_deleted:
            query += " AND r.deleted_at IS NULL"
        row = self.execute_query(query, (record_id,)).fetchone()
        return dict(row) if row else None

    def get_record_state(self, record_id: str) -> Optional[Dict[str, Any]]:
        """Returns only the sync-relevant columns (owner_id, version, deleted_at) of a record, deleted or not."""
        row = self._record_state(self.get_connection(), record_id)
        return dict(row) if row else None

    def list_records(self, owner_id: int, limit: int = 100, offset: int = 0) -> List[Dict[str, Any]]:
        query = self._RECORD_SELECT + """
            WHERE r.owner_id = ? AND r.deleted_at IS NULL
            ORDER BY r.updated_at DESC, r.id
            LIMIT ? OFFSET ?
        """
        return [dict(row) for row in self.execute_query(query, (owner_id, limit, offset)).fetchall()]

    def update_record(self, record_id: str, owner_id: int, update_data: Dict[str, Any], expected_version: int,
                      actor_id: Optional[int] = None) -> int:
        """
        Compare-and-increment update of the payload columns present in `update_data`.

        Succeeds only when the stored version equals `expected_version` and the record is not a tombstone.
        Returns the new version. Raises ConflictError with reason 'not_found' or 'version_mismatch'
        (carrying `server_version`) otherwise.
        """
        payload = self._payload_values(update_data)
        if not payload:
            raise InputError("No updatable fields provided for record update.")

        set_clauses = [f"{col} = ?" for col in payload]
        set_clauses.extend(["updated_at = ?", "version = version + 1"])
        query = (f"UPDATE records SET {', '.join(set_clauses)} "
                 f"WHERE id = ? AND owner_id = ? AND version = ? AND deleted_at IS NULL")
        actor = actor_id if actor_id is not None else owner_id

        try:
            with self.transaction(immediate=True) as conn:
                now = self.current_timestamp()
                params = list(payload.values()) + [now, record_id, owner_id, expected_version]
                cursor = conn.execute(query, tuple(params))
                if cursor.rowcount == 0:
                    state = self._record_state(conn, record_id)
                    if not state or state['owner_id'] != owner_id:
                        raise ConflictError(f"Record ID {record_id} not found for owner {owner_id}.",
                                            entity="records", entity_id=record_id, reason="not_found")
                    raise ConflictError(
                        f"Record ID {record_id} update failed: version mismatch (db has {state['version']}, "
                        f"client expected {expected_version}{', record is deleted' if state['deleted_at'] else ''}).",
                        entity="records", entity_id=record_id, reason="version_mismatch",
                        server_version=state['version'])
                new_version = expected_version + 1
                self._log_operation(conn, actor, 'update', record_id, new_version, now)
            logger.info(f"Updated record {record_id} from version {expected_version} to {new_version}.")
            return new_version
        except sqlite3.Error as e:
            logger.error(f"Database error updating record {record_id} (expected v{expected_version}): {e}")
            raise SyncDBError(f"Failed to update record '{record_id}': {e}") from e

    def soft_delete_record(self, record_id: str, owner_id: int, actor_id: Optional[int] = None,
                           expected_version: Optional[int] = None) -> Optional[int]:
        """
        Tombstones a record: deleted_at = updated_at = now, version + 1, and logs a 'delete'.

        No version check is made unless `expected_version` is given. Returns the new version, or None when the
        record was already a tombstone (idempotent, nothing written). Raises ConflictError with reason
        'not_found' when the record does not exist for this owner.
        """
        query = ("UPDATE records SET deleted_at = ?, updated_at = ?, version = version + 1 "
                 "WHERE id = ? AND owner_id = ? AND deleted_at IS NULL")
        params: List[Any] = [record_id, owner_id]
        if expected_version is not None:
            query += " AND version = ?"
            params.append(expected_version)
        actor = actor_id if actor_id is not None else owner_id

        try:
            with self.transaction(immediate=True) as conn:
                now = self.current_timestamp()
                cursor = conn.execute(query, (now, now, *params))
                state = self._record_state(conn, record_id)
                if cursor.rowcount == 0:
                    if not state or state['owner_id'] != owner_id:
                        raise ConflictError(f"Record ID {record_id} not found for owner {owner_id}.",
                                            entity="records", entity_id=record_id, reason="not_found")
                    if state['deleted_at']:
                        logger.info(f"Record ID {record_id} already soft-deleted. Nothing to do.")
                        return None
                    raise ConflictError(
                        f"Soft delete for record ID {record_id} failed: version mismatch (db has {state['version']}, "
                        f"client expected {expected_version}).",
                        entity="records", entity_id=record_id, reason="version_mismatch",
                        server_version=state['version'])
                new_version = state['version']
                self._log_operation(conn, actor, 'delete', record_id, new_version, now)
            logger.info(f"Soft-deleted record {record_id}, new version {new_version}.")
            return new_version
        except sqlite3.Error as e:
            logger.error(f"Database error soft-deleting record {record_id}: {e}")
            raise SyncDBError(f"Failed to delete record '{record_id}': {e}") from e

    # --- Incremental Queries ---
    def count_owned_records(self, owner_id: int, since: Optional[str] = None) -> int:
        if since:
            query = "SELECT COUNT(*) AS cnt FROM records WHERE owner_id = ? AND updated_at > ?"
            params: tuple = (owner_id, since)
        else:
            query = "SELECT COUNT(*) AS cnt FROM records WHERE owner_id = ? AND deleted_at IS NULL"
            params = (owner_id,)
        return self.execute_query(query, params).fetchone()['cnt']

    def fetch_owned_records(self, owner_id: int, since: Optional[str] = None, limit: int = 50,
                            offset: int = 0) -> List[Dict[str, Any]]:
        """
        Without `since`: the owner's live records. With `since`: every record updated after it, tombstones
        included. Oldest `updated_at` first, so pages advance along the cursor.
        """
        if since:
            where, params = "WHERE r.owner_id = ? AND r.updated_at > ?", [owner_id, since]
        else:
            where, params = "WHERE r.owner_id = ? AND r.deleted_at IS NULL", [owner_id]
        query = self._RECORD_SELECT + f" {where} ORDER BY r.updated_at ASC, r.id LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        return [dict(row) for row in self.execute_query(query, tuple(params)).fetchall()]

    def fetch_records_for_owners(self, owner_ids: Iterable[int], since: Optional[str] = None) -> List[Dict[str, Any]]:
        """Unpaginated variant of fetch_owned_records across several owners (shared libraries)."""
        owner_ids = list(owner_ids)
        if not owner_ids:
            return []
        placeholders = ', '.join('?' for _ in owner_ids)
        params: List[Any] = list(owner_ids)
        if since:
            where = f"WHERE r.owner_id IN ({placeholders}) AND r.updated_at > ?"
            params.append(since)
        else:
            where = f"WHERE r.owner_id IN ({placeholders}) AND r.deleted_at IS NULL"
        query = self._RECORD_SELECT + f" {where} ORDER BY r.updated_at ASC, r.id"
        return [dict(row) for row in self.execute_query(query, tuple(params)).fetchall()]

    def count_active_records(self, owner_id: int) -> int:
        return self.count_owned_records(owner_id)

    def get_sync_status(self, owner_id: int) -> Dict[str, Any]:
        row = self.execute_query(
            """
            SELECT COUNT(*) AS total_models,
                   COALESCE(SUM(CASE WHEN deleted_at IS NULL THEN 1 ELSE 0 END), 0) AS active_models,
                   MAX(updated_at) AS last_update
            FROM records WHERE owner_id = ?
            """,
            (owner_id,)
        ).fetchone()
        return dict(row)

    # --- Access Grant Methods ---
    _GRANT_SELECT = """
        SELECT g.id, g.owner_id, o.email AS owner_email, g.recipient_email, g.recipient_id, g.permission,
               g.share_token, g.created_at, g.accepted_at, g.revoked_at
        FROM access_grants g
        JOIN users o ON o.id = g.owner_id
    """

    def add_grant(self, owner_id: int, recipient_email: str, permission: str, share_token: str) -> str:
        grant_id = generate_uuid()
        try:
            with self.transaction(immediate=True) as conn:
                now = self.current_timestamp()
                conn.execute(
                    """
                    INSERT INTO access_grants (id, owner_id, recipient_email, permission, share_token, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (grant_id, owner_id, normalize_email(recipient_email), permission, share_token, now)
                )
            logger.info(f"Added access grant {grant_id}: owner {owner_id} -> {recipient_email} ({permission}).")
            return grant_id
        except sqlite3.IntegrityError as e:
            if "unique constraint failed" in str(e).lower():
                raise ConflictError(f"An active grant already exists for {recipient_email}.",
                                    entity="access_grants", entity_id=grant_id, reason="already_exists") from e
            raise SyncDBError(f"Database integrity error adding grant: {e}") from e
        except sqlite3.Error as e:
            raise SyncDBError(f"Failed to add grant: {e}") from e

    def get_grant_by_id(self, grant_id: str) -> Optional[Dict[str, Any]]:
        row = self.execute_query(self._GRANT_SELECT + " WHERE g.id = ?", (grant_id,)).fetchone()
        return dict(row) if row else None

    def get_active_grant_by_token(self, share_token: str) -> Optional[Dict[str, Any]]:
        row = self.execute_query(self._GRANT_SELECT + " WHERE g.share_token = ? AND g.revoked_at IS NULL",
                                 (share_token,)).fetchone()
        return dict(row) if row else None

    def find_active_grant(self, owner_id: int, recipient_id: Optional[int] = None,
                          recipient_email: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Finds the non-revoked grant (pending or accepted) between an owner and a recipient id or e-mail."""
        if recipient_id is None and not recipient_email:
            raise InputError("recipient_id or recipient_email is required.")
        conditions, params = [], [owner_id]
        if recipient_id is not None:
            conditions.append("g.recipient_id = ?")
            params.append(recipient_id)
        if recipient_email:
            conditions.append("g.recipient_email = ?")
            params.append(normalize_email(recipient_email))
        query = (self._GRANT_SELECT + f" WHERE g.owner_id = ? AND g.revoked_at IS NULL AND ({' OR '.join(conditions)})"
                 " ORDER BY g.accepted_at IS NULL, g.created_at LIMIT 1")
        row = self.execute_query(query, tuple(params)).fetchone()
        return dict(row) if row else None

    def accept_grant(self, grant_id: str, recipient_id: int) -> str:
        """Binds a pending grant to `recipient_id` and stamps accepted_at. Returns accepted_at."""
        try:
            with self.transaction(immediate=True) as conn:
                now = self.current_timestamp()
                cursor = conn.execute(
                    """
                    UPDATE access_grants SET recipient_id = ?, accepted_at = ?
                    WHERE id = ? AND revoked_at IS NULL AND accepted_at IS NULL
                    """,
                    (recipient_id, now, grant_id)
                )
                if cursor.rowcount == 0:
                    raise ConflictError(f"Grant {grant_id} is no longer pending.", entity="access_grants",
                                        entity_id=grant_id)
            logger.info(f"Grant {grant_id} accepted by user {recipient_id}.")
            return now
        except sqlite3.IntegrityError as e:
            raise ConflictError(f"User {recipient_id} already holds an active grant from this owner.",
                                entity="access_grants", entity_id=grant_id, reason="already_exists") from e
        except sqlite3.Error as e:
            raise SyncDBError(f"Failed to accept grant {grant_id}: {e}") from e

    def revoke_grant(self, grant_id: str) -> bool:
        """Marks a grant revoked. It immediately drops out of every active-grant query. Returns False if it was already revoked."""
        try:
            with self.transaction(immediate=True) as conn:
                now = self.current_timestamp()
                cursor = conn.execute(
                    "UPDATE access_grants SET revoked_at = ? WHERE id = ? AND revoked_at IS NULL", (now, grant_id))
                revoked = cursor.rowcount > 0
            if revoked:
                logger.info(f"Grant {grant_id} revoked.")
            return revoked
        except sqlite3.Error as e:
            raise SyncDBError(f"Failed to revoke grant {grant_id}: {e}") from e

    def list_grants_for_owner(self, owner_id: int) -> List[Dict[str, Any]]:
        query = self._GRANT_SELECT + " WHERE g.owner_id = ? AND g.revoked_at IS NULL ORDER BY g.created_at DESC"
        return [dict(row) for row in self.execute_query(query, (owner_id,)).fetchall()]

    def list_active_grants_for_recipient(self, recipient_id: int, permission: Optional[str] = None) -> List[Dict[str, Any]]:
        """Accepted, non-revoked grants naming `recipient_id`, with the owner's live record count."""
        query = """
            SELECT g.id, g.owner_id, o.email AS owner_email, g.recipient_id, g.permission, g.created_at,
                   g.accepted_at,
                   (SELECT COUNT(*) FROM records r WHERE r.owner_id = g.owner_id AND r.deleted_at IS NULL) AS models_count
            FROM access_grants g
            JOIN users o ON o.id = g.owner_id
            WHERE g.recipient_id = ? AND g.accepted_at IS NOT NULL AND g.revoked_at IS NULL
        """
        params: List[Any] = [recipient_id]
        if permission:
            query += " AND g.permission = ?"
            params.append(permission)
        query += " ORDER BY g.accepted_at DESC"
        return [dict(row) for row in self.execute_query(query, tuple(params)).fetchall()]

    # --- Operation Log Methods ---
    def get_operation_log_entries(self, user_id: int, since_change_id: int = 0,
                                  limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Retrieves the user's operation log entries newer than a given change_id."""
        query_parts = ["SELECT * FROM operation_log WHERE user_id = ? AND change_id > ?", "ORDER BY change_id ASC"]
        params: List[Any] = [user_id, since_change_id]
        if limit is not None:
            query_parts.append("LIMIT ?")
            params.append(limit)
        cursor = self.execute_query(" ".join(query_parts), tuple(params))
        return [dict(row) for row in cursor.fetchall()]

    def get_latest_operation_log_change_id(self, user_id: int) -> int:
        row = self.execute_query("SELECT MAX(change_id) AS max_id FROM operation_log WHERE user_id = ?",
                                 (user_id,)).fetchone()
        return row['max_id'] if row and row['max_id'] is not None else 0


# --- Transaction Context Manager Class (Helper for `with db.transaction():`) ---
class TransactionContextManager:
    def __init__(self, db_instance: SyncDatabase, immediate: bool = False):
        self.db = db_instance
        self.immediate = immediate
        self.conn: Optional[sqlite3.Connection] = None
        self.is_outermost_transaction = False

    def __enter__(self) -> sqlite3.Connection:
        self.conn = self.db.get_connection()
        if not self.conn.in_transaction:
            self.conn.execute("BEGIN IMMEDIATE" if self.immediate else "BEGIN")
            self.is_outermost_transaction = True
            self.db._local.in_managed_transaction = True
            logger.debug(f"Transaction started (outermost, immediate={self.immediate}) on thread {threading.get_ident()}.")
        else:
            logger.debug(f"Entering nested transaction block on thread {threading.get_ident()}.")
        return self.conn

    def __exit__(self, exc_type, exc_val, exc_tb):
        if not self.is_outermost_transaction:
            return False

        self.db._local.in_managed_transaction = False
        if exc_type:
            logger.error(f"Transaction (outermost) failed, rolling back on thread {threading.get_ident()}: "
                         f"{exc_type.__name__} - {exc_val}")
            try:
                self.conn.rollback()
            except sqlite3.Error as rb_err:
                logger.critical(f"Rollback FAILED on thread {threading.get_ident()}: {rb_err}")
        else:
            try:
                self.conn.commit()
                logger.debug(f"Transaction (outermost) committed successfully on thread {threading.get_ident()}.")
            except sqlite3.Error as commit_err:
                logger.error(f"Commit FAILED on thread {threading.get_ident()}, attempting rollback: {commit_err}")
                try:
                    self.conn.rollback()
                except sqlite3.Error as rb_err_after_commit_fail:
                    logger.critical(f"Rollback after failed commit also FAILED: {rb_err_after_commit_fail}")
                raise SyncDBError(f"Commit failed: {commit_err}") from commit_err
        return False

#
# End of Sync_DB.py
#######################################################################################################################
