"""
SQLite LogStore - durable sync history shared by every process on a host.

Each operation opens its own connection, so the store is safe to share
between threads. Acquisitions run inside ``BEGIN IMMEDIATE`` transactions,
which take SQLite's write lock up front: the read-check-write sequence is
serialized across processes, and a partial unique index rejects a second
active entry for a key even if two writers ever raced past the check.

Datetimes are stored as UTC ISO-8601 strings with microseconds, so string
order is time order. Entry ids are the integer row ids in string form.
"""

import contextlib
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional, Union

from synclease.errors import LogEntryNotFoundError, LogStoreError
from synclease.schemas import EntityKey, LogEntry, PriorSyncInfo

from .base import ActiveEntryConflict, LogStore

logger = logging.getLogger(__name__)

TABLE = "sync_log_entries"

SCHEMA = f"""
CREATE TABLE IF NOT EXISTS {TABLE} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    entity TEXT NOT NULL,
    parameters_json TEXT,
    schema_version INTEGER,
    trigger_type TEXT NOT NULL,
    sync_status TEXT NOT NULL,
    created_at TEXT NOT NULL,
    leased_at TEXT,
    leased_by TEXT,
    lease_expires_at TEXT,
    queued_at TEXT,
    queue_message_id TEXT,
    finished_at TEXT,
    result_message TEXT,
    high_water_mark TEXT,
    record_count INTEGER,
    progress_value INTEGER,
    progress_max INTEGER
);

CREATE INDEX IF NOT EXISTS ix_{TABLE}_key_status
    ON {TABLE} (entity, parameters_json, schema_version, sync_status);

CREATE UNIQUE INDEX IF NOT EXISTS ux_{TABLE}_active_key
    ON {TABLE} (entity, IFNULL(parameters_json, ''), IFNULL(schema_version, -1))
    WHERE sync_status IN ('pending', 'in_progress');
"""

KEY_CLAUSE = "entity = ? AND parameters_json IS ? AND schema_version IS ?"
ACTIVE_CLAUSE = "sync_status IN ('pending', 'in_progress')"
NEWEST_FIRST = "ORDER BY created_at DESC, id DESC"

MUTABLE_COLUMNS = (
    "sync_status",
    "leased_at",
    "leased_by",
    "lease_expires_at",
    "queued_at",
    "queue_message_id",
    "finished_at",
    "result_message",
    "high_water_mark",
    "record_count",
    "progress_value",
    "progress_max",
)


def _to_db(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_db(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _parse_id(entry_id: str) -> int:
    try:
        return int(entry_id)
    except (TypeError, ValueError) as e:
        raise ValueError(f"SQLite log entry ids are integers, got {entry_id!r}") from e


def _row_to_entry(row: sqlite3.Row) -> LogEntry:
    data = dict(row)
    data["status"] = data.pop("sync_status")
    return LogEntry.from_dict(data)


def _mutable_values(entry: LogEntry) -> list:
    return [
        entry.status.value,
        _to_db(entry.leased_at),
        entry.leased_by,
        _to_db(entry.lease_expires_at),
        _to_db(entry.queued_at),
        entry.queue_message_id,
        _to_db(entry.finished_at),
        entry.result_message,
        entry.high_water_mark,
        entry.record_count,
        entry.progress_value,
        entry.progress_max,
    ]


class SqliteLogStore(LogStore):
    """
    SQLite implementation of LogStore.

    Args:
        path: Database file (created with its parent directory if missing)
        timeout: Seconds to wait for SQLite's write lock before failing
        machine_id / default_lease_duration / clock: See LogStore
    """

    def __init__(
        self,
        path: Union[str, Path],
        *args,
        timeout: float = 30.0,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.path = Path(path).expanduser()
        self.timeout = timeout

        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            try:
                conn.executescript(SCHEMA)
            except sqlite3.Error as e:
                raise LogStoreError(f"Cannot initialize SQLite log store {self.path}: {e}") from e
        logger.debug(f"SQLite log store ready at {self.path}")

    @contextlib.contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self.path, timeout=self.timeout, isolation_level=None)
        except sqlite3.Error as e:
            raise LogStoreError(f"Cannot open SQLite log store {self.path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @contextlib.contextmanager
    def _atomic(self) -> Iterator[sqlite3.Connection]:
        with self._connect() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    yield conn
                except BaseException:
                    if conn.in_transaction:
                        conn.execute("ROLLBACK")
                    raise
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                raise LogStoreError(f"SQLite log store error ({self.path}): {e}") from e

    @contextlib.contextmanager
    def _read(self) -> Iterator[sqlite3.Connection]:
        # Autocommit reads do not take the write lock held by acquirers
        with self._connect() as conn:
            try:
                yield conn
            except sqlite3.Error as e:
                raise LogStoreError(f"SQLite log store error ({self.path}): {e}") from e

    def _find_active(self, txn: sqlite3.Connection, key: EntityKey) -> Optional[LogEntry]:
        row = txn.execute(
            f"SELECT * FROM {TABLE} WHERE {KEY_CLAUSE} AND {ACTIVE_CLAUSE} {NEWEST_FIRST} LIMIT 1",
            tuple(key),
        ).fetchone()
        return _row_to_entry(row) if row else None

    def _get(self, txn: sqlite3.Connection, entry_id: str) -> Optional[LogEntry]:
        row = txn.execute(
            f"SELECT * FROM {TABLE} WHERE id = ?", (_parse_id(entry_id),)
        ).fetchone()
        return _row_to_entry(row) if row else None

    def _insert(self, txn: sqlite3.Connection, entry: LogEntry) -> LogEntry:
        columns = ("entity", "parameters_json", "schema_version", "trigger_type", "created_at")
        columns += MUTABLE_COLUMNS
        values = [
            entry.entity,
            entry.parameters_json,
            entry.schema_version,
            entry.trigger_type.value,
            _to_db(entry.created_at),
        ] + _mutable_values(entry)

        placeholders = ", ".join("?" * len(columns))
        try:
            cursor = txn.execute(
                f"INSERT INTO {TABLE} ({', '.join(columns)}) VALUES ({placeholders})", values
            )
        except sqlite3.IntegrityError as e:
            raise ActiveEntryConflict(str(e)) from e

        stored = entry.copy()
        stored.id = str(cursor.lastrowid)
        return stored

    def _save(self, txn: sqlite3.Connection, entry: LogEntry) -> None:
        assignments = ", ".join(f"{col} = ?" for col in MUTABLE_COLUMNS)
        cursor = txn.execute(
            f"UPDATE {TABLE} SET {assignments} WHERE id = ?",
            _mutable_values(entry) + [_parse_id(entry.id)],
        )
        if cursor.rowcount == 0:
            raise LogEntryNotFoundError(f"Log entry '{entry.id}' not found")

    def _newest_value(
        self, txn: sqlite3.Connection, key: EntityKey, column: str, condition: str = ""
    ) -> Optional[str]:
        sql = (
            f"SELECT {column} FROM {TABLE} WHERE {KEY_CLAUSE} AND NOT {ACTIVE_CLAUSE} "
            f"{condition} {NEWEST_FIRST} LIMIT 1"
        )
        row = txn.execute(sql, tuple(key)).fetchone()
        return row[0] if row else None

    def _prior_sync_info(self, txn: sqlite3.Connection, key: EntityKey) -> PriorSyncInfo:
        return PriorSyncInfo(
            high_water_mark=self._newest_value(
                txn, key, "high_water_mark", "AND high_water_mark IS NOT NULL"
            ),
            last_sync_queued_at=_from_db(self._newest_value(txn, key, "created_at")),
            last_sync_leased_at=_from_db(
                self._newest_value(
                    txn, key, "leased_at", "AND leased_at IS NOT NULL AND sync_status != 'skipped'"
                )
            ),
            last_sync_completed_at=_from_db(
                self._newest_value(txn, key, "finished_at", "AND finished_at IS NOT NULL")
            ),
        )

    def list_entries(self, entity: Optional[str] = None, limit: int = 50) -> list[LogEntry]:
        sql = f"SELECT * FROM {TABLE}"
        params: list = []
        if entity is not None:
            sql += " WHERE entity = ?"
            params.append(entity)
        sql += f" {NEWEST_FIRST} LIMIT ?"
        params.append(limit)

        with self._read() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_row_to_entry(row) for row in rows]
