# === NAVMAP v1 ===
# {
#   "module": "JvmMeta.database",
#   "purpose": "DuckDB persistence gateway for canonical JVM records",
#   "sections": [
#     {"id": "protocol", "name": "PersistenceGateway", "anchor": "GWY", "kind": "api"},
#     {"id": "migrations", "name": "Schema Migrations", "anchor": "MIG", "kind": "infra"},
#     {"id": "pool", "name": "Connection Pool", "anchor": "POL", "kind": "infra"},
#     {"id": "init", "name": "Initialization & Bootstrap", "anchor": "INI", "kind": "api"},
#     {"id": "queries", "name": "Upsert & Query Facades", "anchor": "QRY", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""DuckDB persistence gateway for the JVM catalogue.

One table, ``jvm``, holds one row per artifact URL.  Writers go through
:meth:`Database.upsert`, which runs in its own transaction so a record is either
stored completely or not at all.  ``created_at`` is written once; every upsert,
including a content-identical repeat, advances ``modified_at``.

Key design principles:
- Schema changes are ordered migrations recorded in ``schema_version``
- Worker threads share a fixed pool of DuckDB cursors; exhaustion blocks
- Write transactions are serialised by a write lock; reads stay concurrent
- Residual write conflicts are retried under a tenacity policy
- Updates only touch columns whose value changed, plus ``modified_at``
- Query facades encapsulate SQL; callers pass filter expressions
"""

from __future__ import annotations

import contextlib
import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import (
    Any,
    Callable,
    Dict,
    Generator,
    Iterable,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Tuple,
)

import duckdb
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from .errors import StorageError
from .filters import SET_FIELDS, FilterExpression
from .models import CANONICAL_FIELDS, EXPORT_FIELDS, CanonicalRecord
from .settings import DatabaseConfiguration

__all__ = [
    "UpsertOutcome",
    "PersistenceGateway",
    "WriteConflictPolicy",
    "ConnectionPool",
    "Database",
    "MEMORY_DATABASE",
]

logger = logging.getLogger(__name__)

MEMORY_DATABASE = ":memory:"
_WRITE_CONFLICT_ERRORS = (duckdb.ConstraintException, duckdb.TransactionException)


class UpsertOutcome(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"


class PersistenceGateway(Protocol):
    """Storage operations the crawl and export layers depend on."""

    def upsert(self, record: CanonicalRecord) -> UpsertOutcome:
        ...

    def query(
        self,
        predicate: Optional[FilterExpression] = None,
        *,
        restrict: Optional[Mapping[str, Iterable[str]]] = None,
    ) -> List[CanonicalRecord]:
        ...

    def distinct(self, column: str) -> List[str]:
        ...


@dataclass(frozen=True)
class WriteConflictPolicy:
    """Tenacity policy for upserts that lose an optimistic write race.

    Only DuckDB conflict errors (``Conflict on tuple deletion``, ``Conflict on
    update``, duplicate keys) are retried; every other driver error propagates
    on the first attempt.
    """

    max_attempts: int = 6
    backoff_factor: float = 0.01
    max_delay_sec: float = 0.5
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False)

    @classmethod
    def from_config(cls, config: DatabaseConfiguration) -> "WriteConflictPolicy":
        return cls(max_attempts=config.conflict_retries + 1)

    def retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(max(1, self.max_attempts)),
            wait=wait_random_exponential(multiplier=self.backoff_factor, max=self.max_delay_sec),
            retry=retry_if_exception_type(_WRITE_CONFLICT_ERRORS),
            before_sleep=before_sleep_log(logger, logging.DEBUG),
            sleep=self.sleep,
            reraise=True,
        )


# ============================================================================
# Schema Migrations
# ============================================================================

_MIGRATIONS: List[Tuple[str, str]] = [
    (
        "0001_init",
        """
        CREATE TABLE IF NOT EXISTS schema_version (
            version TEXT PRIMARY KEY,
            applied_at TIMESTAMP NOT NULL DEFAULT now()
        );

        CREATE TABLE IF NOT EXISTS jvm (
            architecture TEXT NOT NULL,
            checksum TEXT,
            checksum_url TEXT,
            features VARCHAR[],
            file_type TEXT NOT NULL,
            filename TEXT,
            image_type TEXT NOT NULL,
            java_version TEXT,
            jvm_impl TEXT,
            os TEXT NOT NULL,
            release_type TEXT NOT NULL,
            size BIGINT CHECK (size IS NULL OR size >= 0),
            url TEXT PRIMARY KEY,
            vendor TEXT NOT NULL,
            version TEXT NOT NULL,
            created_at TIMESTAMP NOT NULL,
            modified_at TIMESTAMP NOT NULL
        );
        """,
    ),
    (
        "0002_export_indexes",
        """
        CREATE INDEX IF NOT EXISTS jvm_architecture_idx ON jvm (architecture);
        CREATE INDEX IF NOT EXISTS jvm_os_idx ON jvm (os);
        CREATE INDEX IF NOT EXISTS jvm_vendor_idx ON jvm (vendor);
        CREATE INDEX IF NOT EXISTS jvm_version_idx ON jvm (version);
        """,
    ),
]

_COLUMN_LIST = ", ".join(f'"{name}"' for name in CANONICAL_FIELDS)
_MUTABLE_COLUMNS = tuple(name for name in EXPORT_FIELDS if name != "url")
_MUTABLE_COLUMN_LIST = ", ".join(f'"{name}"' for name in _MUTABLE_COLUMNS)


def _column_param(name: str) -> str:
    return "CAST(? AS VARCHAR[])" if name in SET_FIELDS else "?"


def _record_row(record: CanonicalRecord) -> Dict[str, Any]:
    return {name: record.field_value(name) for name in EXPORT_FIELDS}


def _stored_value(name: str, value: Any) -> Any:
    if name in SET_FIELDS:
        return sorted(value or [])
    return value


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ============================================================================
# Connection Pool
# ============================================================================


class ConnectionPool:
    """Fixed-size pool of DuckDB cursors sharing one database handle.

    Cursors are created lazily up to ``size``; callers beyond that wait for a
    cursor to be returned instead of failing.
    """

    def __init__(self, connection: duckdb.DuckDBPyConnection, size: int) -> None:
        if size < 1:
            raise ValueError("pool size must be at least 1")
        self._connection = connection
        self.size = size
        self._available: "queue.Queue[duckdb.DuckDBPyConnection]" = queue.Queue()
        self._all: List[duckdb.DuckDBPyConnection] = []
        self._lock = threading.Lock()

    @contextlib.contextmanager
    def lease(self) -> Generator[duckdb.DuckDBPyConnection, None, None]:
        cursor = self._acquire()
        try:
            yield cursor
        finally:
            self._available.put(cursor)

    def _acquire(self) -> duckdb.DuckDBPyConnection:
        try:
            return self._available.get_nowait()
        except queue.Empty:
            pass
        with self._lock:
            if len(self._all) < self.size:
                cursor = self._connection.cursor()
                self._all.append(cursor)
                return cursor
        return self._available.get()

    @property
    def created(self) -> int:
        with self._lock:
            return len(self._all)

    def close(self) -> None:
        with self._lock:
            for cursor in self._all:
                with contextlib.suppress(duckdb.Error):
                    cursor.close()
            self._all.clear()
        while not self._available.empty():
            self._available.get_nowait()


# ============================================================================
# DuckDB Connection & Bootstrap
# ============================================================================


class Database:
    """DuckDB-backed :class:`PersistenceGateway`.

    Usage::

        db = Database(config)
        db.bootstrap()
        try:
            db.upsert(record)
        finally:
            db.close()
    """

    def __init__(
        self,
        config: Optional[DatabaseConfiguration] = None,
        *,
        clock: Callable[[], datetime] = _utc_now,
        conflict_policy: Optional[WriteConflictPolicy] = None,
    ) -> None:
        self.config = config or DatabaseConfiguration()
        self._clock = clock
        self.conflict_policy = conflict_policy or WriteConflictPolicy.from_config(self.config)
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._pool: Optional[ConnectionPool] = None
        self._write_lock = threading.Lock()

    @property
    def path(self) -> str:
        return str(self.config.path)

    def bootstrap(self) -> None:
        """Open the database, apply migrations, and prepare the connection pool.

        Raises:
            StorageError: if the database cannot be opened or migrated.
        """

        db_path = self.path
        if db_path != MEMORY_DATABASE:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        logger.info(
            "Opening DuckDB at %s (read_only=%s)",
            db_path,
            self.config.readonly,
            extra={"stage": "storage"},
        )
        config_dict: Dict[str, Any] = {}
        if self.config.threads is not None:
            config_dict["threads"] = self.config.threads
        try:
            self._connection = duckdb.connect(
                db_path,
                read_only=self.config.readonly,
                config=config_dict,
            )
            if not self.config.readonly:
                self._apply_migrations()
        except duckdb.Error as exc:
            self.close()
            raise StorageError(f"Unable to open database at {db_path}: {exc}") from exc
        self._pool = ConnectionPool(self._connection, self.config.pool_size)

    def _apply_migrations(self) -> None:
        """Apply pending schema migrations in order."""

        assert self._connection is not None
        try:
            rows = self._connection.execute("SELECT version FROM schema_version").fetchall()
            applied = {row[0] for row in rows}
        except duckdb.CatalogException:
            applied = set()

        for migration_name, migration_sql in _MIGRATIONS:
            if migration_name in applied:
                continue
            logger.info("Applying migration: %s", migration_name, extra={"stage": "storage"})
            self._connection.execute(migration_sql)
            self._connection.execute(
                "INSERT INTO schema_version (version) VALUES (?)", [migration_name]
            )

    def close(self) -> None:
        """Close the pool and the database connection."""

        if self._pool is not None:
            self._pool.close()
            self._pool = None
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    def __enter__(self) -> "Database":
        self.bootstrap()
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    # ========================================================================
    # Transactions
    # ========================================================================

    @contextlib.contextmanager
    def _cursor(self) -> Generator[duckdb.DuckDBPyConnection, None, None]:
        if self._pool is None:
            raise StorageError("Database is not open; call bootstrap() first")
        with self._pool.lease() as cursor:
            yield cursor

    @contextlib.contextmanager
    def transaction(self) -> Generator[duckdb.DuckDBPyConnection, None, None]:
        """Run the block in one transaction on a pooled cursor, holding the write lock."""

        if self.config.readonly:
            raise StorageError("Cannot write in read-only mode")
        with self._write_lock, self._cursor() as cursor:
            cursor.execute("BEGIN TRANSACTION")
            try:
                yield cursor
                cursor.execute("COMMIT")
            except Exception:
                with contextlib.suppress(duckdb.Error):
                    cursor.execute("ROLLBACK")
                raise

    # ========================================================================
    # Upsert
    # ========================================================================

    def upsert(self, record: CanonicalRecord) -> UpsertOutcome:
        """Insert ``record`` or update the row stored under its URL.

        Writers are serialised by the write lock, so two workers storing the
        same URL take turns and the later one updates.  A conflict DuckDB still
        reports is retried under :attr:`conflict_policy`.

        Raises:
            StorageError: when DuckDB rejects the write or conflicts persist.
        """

        try:
            return self.conflict_policy.retrying()(self._upsert_once, record)
        except duckdb.Error as exc:
            raise StorageError(f"Upsert failed for {record.url}: {exc}") from exc

    def _upsert_once(self, record: CanonicalRecord) -> UpsertOutcome:
        row = _record_row(record)
        now = self._clock()
        with self.transaction() as cursor:
            existing = cursor.execute(
                f"SELECT {_MUTABLE_COLUMN_LIST} FROM jvm WHERE url = ?",
                [record.url],
            ).fetchone()

            if existing is None:
                placeholders = ", ".join(_column_param(name) for name in EXPORT_FIELDS)
                cursor.execute(
                    f"INSERT INTO jvm ({_COLUMN_LIST}) VALUES ({placeholders}, ?, ?)",
                    [row[name] for name in EXPORT_FIELDS] + [now, now],
                )
                return UpsertOutcome.INSERTED

            stored = dict(zip(_MUTABLE_COLUMNS, existing))
            changed = [
                name
                for name in _MUTABLE_COLUMNS
                if _stored_value(name, stored[name]) != _stored_value(name, row[name])
            ]
            assignments = [f'"{name}" = {_column_param(name)}' for name in changed]
            assignments.append("modified_at = greatest(modified_at, ?)")
            cursor.execute(
                f"UPDATE jvm SET {', '.join(assignments)} WHERE url = ?",
                [row[name] for name in changed] + [now, record.url],
            )
            return UpsertOutcome.UPDATED

    # ========================================================================
    # Query Facades
    # ========================================================================

    def _rows_to_records(self, rows: Sequence[Tuple[Any, ...]]) -> List[CanonicalRecord]:
        return [CanonicalRecord.from_mapping(dict(zip(CANONICAL_FIELDS, row))) for row in rows]

    def get(self, url: str) -> Optional[CanonicalRecord]:
        """Return the record stored under ``url``, if any."""

        try:
            with self._cursor() as cursor:
                rows = cursor.execute(
                    f"SELECT {_COLUMN_LIST} FROM jvm WHERE url = ?", [url]
                ).fetchall()
        except duckdb.Error as exc:
            raise StorageError(f"Lookup failed for {url}: {exc}") from exc
        records = self._rows_to_records(rows)
        return records[0] if records else None

    def count(self) -> int:
        with self._cursor() as cursor:
            result = cursor.execute("SELECT count(*) FROM jvm").fetchone()
        return int(result[0]) if result else 0

    def query(
        self,
        predicate: Optional[FilterExpression] = None,
        *,
        restrict: Optional[Mapping[str, Iterable[str]]] = None,
    ) -> List[CanonicalRecord]:
        """Return records matching ``predicate`` whose ``restrict`` columns hold listed values.

        Records are ordered by vendor, version, newest ``created_at`` first, and URL.
        """

        conditions: List[str] = []
        params: List[object] = []
        if predicate is not None:
            where, where_params = predicate.to_sql()
            if where:
                conditions.append(where)
                params.extend(where_params)
        for column, values in (restrict or {}).items():
            if column not in EXPORT_FIELDS or column in SET_FIELDS:
                raise StorageError(f"Cannot restrict on column '{column}'")
            wanted = sorted({str(value) for value in values})
            if not wanted:
                return []
            conditions.append(f'"{column}" IN ({", ".join("?" for _ in wanted)})')
            params.extend(wanted)

        sql = f"SELECT {_COLUMN_LIST} FROM jvm"
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        sql += " ORDER BY vendor, version, created_at DESC, url"

        try:
            with self._cursor() as cursor:
                rows = cursor.execute(sql, params).fetchall()
        except duckdb.Error as exc:
            raise StorageError(f"Query failed: {exc}") from exc

        records = self._rows_to_records(rows)
        if predicate is not None:
            records = [record for record in records if predicate.matches(record)]
        return records

    def distinct(self, column: str) -> List[str]:
        """Return the sorted distinct non-null values stored in ``column``."""

        if column not in EXPORT_FIELDS or column in SET_FIELDS:
            raise StorageError(f"Cannot list distinct values of '{column}'")
        try:
            with self._cursor() as cursor:
                rows = cursor.execute(
                    f'SELECT DISTINCT "{column}" FROM jvm WHERE "{column}" IS NOT NULL ORDER BY 1'
                ).fetchall()
        except duckdb.Error as exc:
            raise StorageError(f"Distinct query failed for {column}: {exc}") from exc
        return [str(row[0]) for row in rows]
