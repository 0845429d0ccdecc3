"""SQLite storage adapters.

Single-server deployments keep records, run history and watch channels in
one SQLite file. Each operation opens and closes its own connection.

Records are stored as JSON with Decimals rendered as strings, so a record
read back compares field-for-field with a freshly normalized one.
"""

import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, List, Optional, Tuple, Type, Union

from connectors.errors import PersistenceError
from core.config import DEFAULT_DB_PATH
from core.observability.logging import get_logger
from normalization.records import CanonicalRecord
from storage.base import ChannelStore, RecordStore, RunLogStore, StoredRecord
from sync.models import RunStatus, SyncRun
from watch_channels.models import WatchChannel, WatchedResource

logger = get_logger(__name__)

PathLike = Union[str, Path]


@contextmanager
def _connection(db_path: PathLike) -> Iterator[sqlite3.Connection]:
    """Open a connection, commit on success, wrap driver errors."""
    try:
        conn = sqlite3.connect(str(db_path))
    except sqlite3.Error as e:
        raise PersistenceError(f"Cannot open database {db_path}: {e}") from e
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    except sqlite3.Error as e:
        conn.rollback()
        raise PersistenceError(f"Database error: {e}") from e
    finally:
        conn.close()


def init_db(db_path: PathLike = DEFAULT_DB_PATH) -> None:
    """Create the sync tables.

    Creates:
    - dte_records: canonical records, unique per (record_type, natural_key)
    - sync_runs: run audit log
    - watch_channels: active push subscriptions
    - watched_resources: calendars that should be watched

    Args:
        db_path: Path to SQLite database file
    """
    with _connection(db_path) as conn:
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS dte_records (
                id TEXT PRIMARY KEY,
                record_type TEXT NOT NULL,
                natural_key TEXT NOT NULL,
                data TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE(record_type, natural_key)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS sync_runs (
                id TEXT PRIMARY KEY,
                status TEXT NOT NULL,
                started_at TEXT NOT NULL,
                data TEXT NOT NULL
            )
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_sync_runs_started
            ON sync_runs(started_at)
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS watch_channels (
                channel_id TEXT PRIMARY KEY,
                owner_resource_id TEXT NOT NULL,
                expires_at TEXT NOT NULL,
                data TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS watched_resources (
                id TEXT PRIMARY KEY,
                external_id TEXT NOT NULL,
                name TEXT
            )
        """)

    logger.info("sync_tables_initialized", extra_fields={"db_path": str(db_path)})


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _encode_key(key: Tuple[Any, ...]) -> str:
    return json.dumps([str(part) for part in key])


# =============================================================================
# Records
# =============================================================================

class SqliteRecordStore(RecordStore):

    def __init__(self, db_path: PathLike = DEFAULT_DB_PATH):
        self.db_path = db_path

    def _to_stored(self, row: sqlite3.Row, record_type: Type[CanonicalRecord]) -> StoredRecord:
        record = record_type.model_validate(json.loads(row["data"]))
        return StoredRecord(
            id=row["id"],
            record_type=row["record_type"],
            fields=record.to_fields(),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def find(self, record_type: Type[CanonicalRecord], key: Tuple[Any, ...]) -> Optional[StoredRecord]:
        with _connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM dte_records WHERE record_type = ? AND natural_key = ?",
                (record_type.record_type, _encode_key(key)),
            ).fetchone()
        return self._to_stored(row, record_type) if row else None

    def create(self, record: CanonicalRecord) -> StoredRecord:
        record_id = str(uuid.uuid4())
        now = _utc_now().isoformat()
        with _connection(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO dte_records (id, record_type, natural_key, data, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    record_id,
                    record.record_type,
                    _encode_key(record.natural_key()),
                    record.model_dump_json(),
                    now,
                    now,
                ),
            )
        return StoredRecord(
            id=record_id,
            record_type=record.record_type,
            fields=record.to_fields(),
            created_at=datetime.fromisoformat(now),
            updated_at=datetime.fromisoformat(now),
        )

    def update(self, record_id: str, record: CanonicalRecord) -> StoredRecord:
        now = _utc_now().isoformat()
        with _connection(self.db_path) as conn:
            cursor = conn.execute(
                "UPDATE dte_records SET natural_key = ?, data = ?, updated_at = ? WHERE id = ?",
                (_encode_key(record.natural_key()), record.model_dump_json(), now, record_id),
            )
            if cursor.rowcount == 0:
                raise PersistenceError(f"Unknown record id: {record_id}")
            row = conn.execute("SELECT * FROM dte_records WHERE id = ?", (record_id,)).fetchone()
        return self._to_stored(row, type(record))

    def list_records(self, record_type: Type[CanonicalRecord]) -> List[StoredRecord]:
        with _connection(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM dte_records WHERE record_type = ? ORDER BY created_at",
                (record_type.record_type,),
            ).fetchall()
        return [self._to_stored(row, record_type) for row in rows]


# =============================================================================
# Run log
# =============================================================================

class SqliteRunLogStore(RunLogStore):

    def __init__(self, db_path: PathLike = DEFAULT_DB_PATH):
        self.db_path = db_path

    def create(self, run: SyncRun) -> None:
        with _connection(self.db_path) as conn:
            conn.execute(
                "INSERT INTO sync_runs (id, status, started_at, data) VALUES (?, ?, ?, ?)",
                (run.id, run.status.value, run.started_at.isoformat(), run.model_dump_json()),
            )

    def update(self, run: SyncRun) -> None:
        with _connection(self.db_path) as conn:
            cursor = conn.execute(
                "UPDATE sync_runs SET status = ?, data = ? WHERE id = ?",
                (run.status.value, run.model_dump_json(), run.id),
            )
            if cursor.rowcount == 0:
                raise PersistenceError(f"Unknown run id: {run.id}")

    def get(self, run_id: str) -> Optional[SyncRun]:
        with _connection(self.db_path) as conn:
            row = conn.execute("SELECT data FROM sync_runs WHERE id = ?", (run_id,)).fetchone()
        return SyncRun.model_validate_json(row["data"]) if row else None

    def list(self, limit: int, offset: int) -> Tuple[List[SyncRun], int]:
        with _connection(self.db_path) as conn:
            total = conn.execute("SELECT COUNT(*) FROM sync_runs").fetchone()[0]
            rows = conn.execute(
                "SELECT data FROM sync_runs ORDER BY started_at DESC LIMIT ? OFFSET ?",
                (limit, offset),
            ).fetchall()
        return [SyncRun.model_validate_json(row["data"]) for row in rows], total

    def list_by_status(self, status: RunStatus) -> List[SyncRun]:
        with _connection(self.db_path) as conn:
            rows = conn.execute(
                "SELECT data FROM sync_runs WHERE status = ?",
                (status.value,),
            ).fetchall()
        return [SyncRun.model_validate_json(row["data"]) for row in rows]


# =============================================================================
# Watch channels
# =============================================================================

class SqliteChannelStore(ChannelStore):

    def __init__(self, db_path: PathLike = DEFAULT_DB_PATH):
        self.db_path = db_path

    def list_channels(self) -> List[WatchChannel]:
        with _connection(self.db_path) as conn:
            rows = conn.execute("SELECT data FROM watch_channels ORDER BY expires_at").fetchall()
        return [WatchChannel.model_validate_json(row["data"]) for row in rows]

    def get_channel(self, channel_id: str) -> Optional[WatchChannel]:
        with _connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT data FROM watch_channels WHERE channel_id = ?",
                (channel_id,),
            ).fetchone()
        return WatchChannel.model_validate_json(row["data"]) if row else None

    def save_channel(self, channel: WatchChannel) -> None:
        with _connection(self.db_path) as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO watch_channels (channel_id, owner_resource_id, expires_at, data)
                VALUES (?, ?, ?, ?)
                """,
                (
                    channel.channel_id,
                    channel.owner_resource_id,
                    channel.expires_at.isoformat(),
                    channel.model_dump_json(),
                ),
            )

    def delete_channel(self, channel_id: str) -> None:
        with _connection(self.db_path) as conn:
            conn.execute("DELETE FROM watch_channels WHERE channel_id = ?", (channel_id,))

    def list_resources(self) -> List[WatchedResource]:
        with _connection(self.db_path) as conn:
            rows = conn.execute("SELECT id, external_id, name FROM watched_resources").fetchall()
        return [WatchedResource(id=row["id"], external_id=row["external_id"], name=row["name"]) for row in rows]

    def save_resource(self, resource: WatchedResource) -> None:
        with _connection(self.db_path) as conn:
            conn.execute(
                "INSERT OR REPLACE INTO watched_resources (id, external_id, name) VALUES (?, ?, ?)",
                (resource.id, resource.external_id, resource.name),
            )
