"""
Analytics Store module: time-series URL health records in DuckDB.

Writes follow a two-phase discipline: placeholders are bulk-inserted before
probing, then the probe results are applied with one set-based update through
a staging table. Both phases run inside a single transaction and never issue
per-row statements.
"""

import threading
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

import duckdb

from .enums import ErrorCategory
from .exceptions import StorageError
from .models import HealthRecord, utc_now

TABLE_NAME = "dataset_monitor"
STAGING_TABLE_NAME = "dataset_monitor_staging"

# Rows per multi-row VALUES statement
CHUNK_SIZE = 500

_TABLE_COLUMNS = (
    ("id", "VARCHAR NOT NULL"),
    ("raw_id", "VARCHAR NOT NULL"),
    ("url", "VARCHAR NOT NULL"),
    ("name", "VARCHAR"),
    ("center_name", "VARCHAR NOT NULL"),
    ("date_published", "VARCHAR"),
    ("check_time", "TIMESTAMP NOT NULL"),
    ("status_code", "INTEGER"),
    ("status_text", "VARCHAR"),
    ("error_category", "VARCHAR"),
    ("error_msg", "VARCHAR"),
    ("error_detail", "VARCHAR"),
    ("response_time_ms", "BIGINT"),
    ("is_likely_local_issue", "BOOLEAN NOT NULL"),
    ("headers", "VARCHAR"),
    ("created_at", "TIMESTAMP NOT NULL"),
    ("updated_at", "TIMESTAMP NOT NULL"),
)

# Columns rewritten by update(); updated_at is always set to the update time
RESULT_COLUMNS = (
    "check_time",
    "status_code",
    "status_text",
    "error_category",
    "error_msg",
    "error_detail",
    "response_time_ms",
    "is_likely_local_issue",
    "headers",
)

_INDEXES = {
    "idx_dataset_monitor_check_time": "check_time",
    "idx_dataset_monitor_status_code": "status_code",
    "idx_dataset_monitor_center_name": "center_name",
    "idx_dataset_monitor_local_issue": "is_likely_local_issue",
    "idx_dataset_monitor_error_category": "error_category",
    "idx_dataset_monitor_center_time": "center_name, check_time",
    "idx_dataset_monitor_time_status": "check_time, status_code",
}

COLUMN_NAMES = tuple(name for name, _ in _TABLE_COLUMNS)
_COLUMN_TYPES = dict(_TABLE_COLUMNS)


def _to_db_timestamp(value: Optional[datetime]) -> Optional[datetime]:
    """Store timestamps as naive UTC."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _from_db_timestamp(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _chunks(items: Sequence, size: int):
    for start in range(0, len(items), size):
        yield items[start:start + size]


class AnalyticsStore:
    """
    DuckDB-backed writer for HealthRecords.

    A single connection is shared; every operation holds a lock so at most
    one statement sequence runs against it at a time.
    """

    def __init__(self, path: str = ":memory:") -> None:
        """
        Open (or create) the analytics database.

        Args:
            path: DuckDB database file, or ':memory:'

        Raises:
            StorageError: If the database cannot be opened or initialized
        """
        self._path = path
        self._lock = threading.Lock()
        try:
            self._conn = duckdb.connect(path)
            self._create_schema()
        except duckdb.Error as e:
            raise StorageError(
                code="init_failed",
                message=f"Failed to open analytics store: {e}",
                details={"path": path},
            ) from e

    @property
    def path(self) -> str:
        return self._path

    def _create_schema(self) -> None:
        columns = ",\n    ".join(f"{name} {sql_type}" for name, sql_type in _TABLE_COLUMNS)
        self._conn.execute(f"CREATE TABLE IF NOT EXISTS {TABLE_NAME} (\n    {columns}\n)")
        for index_name, index_columns in _INDEXES.items():
            self._conn.execute(
                f"CREATE INDEX IF NOT EXISTS {index_name} ON {TABLE_NAME} ({index_columns})"
            )

    def _row(self, record: HealthRecord, now: datetime) -> tuple:
        return (
            record.id,
            record.raw_id,
            record.url,
            record.name,
            record.center_name,
            record.date_published,
            _to_db_timestamp(record.check_time),
            record.status_code,
            record.status_text,
            record.error_category.value if record.error_category else None,
            record.error_msg,
            record.error_detail,
            record.response_time_ms,
            bool(record.is_likely_local_issue),
            record.headers,
            _to_db_timestamp(record.created_at) or now,
            now,
        )

    def _bulk_load(self, table: str, rows: list[tuple]) -> None:
        """Load rows with multi-row VALUES statements of CHUNK_SIZE rows each."""
        placeholders = "(" + ", ".join("?" for _ in COLUMN_NAMES) + ")"
        column_list = ", ".join(COLUMN_NAMES)
        for chunk in _chunks(rows, CHUNK_SIZE):
            params: list[Any] = []
            for row in chunk:
                params.extend(row)
            values = ", ".join(placeholders for _ in chunk)
            self._conn.execute(f"INSERT INTO {table} ({column_list}) VALUES {values}", params)

    def _run_in_transaction(self, operation: str, count: int, work) -> None:
        with self._lock:
            try:
                self._conn.begin()
                work()
                self._conn.commit()
            except duckdb.Error as e:
                try:
                    self._conn.rollback()
                except duckdb.Error:
                    pass  # transaction already aborted
                raise StorageError(
                    code=f"{operation}_failed",
                    message=f"Analytics store {operation} of {count} records failed: {e}",
                    details={"operation": operation, "records": count},
                ) from e

    def insert(self, records: Sequence[HealthRecord]) -> None:
        """
        Insert all records in one transaction.

        No statement is issued for an empty batch.

        Raises:
            StorageError: If the insert fails (nothing is written)
        """
        if not records:
            return
        now = _to_db_timestamp(utc_now())
        rows = [self._row(record, now) for record in records]
        self._run_in_transaction("insert", len(rows), lambda: self._bulk_load(TABLE_NAME, rows))

    def update(self, records: Sequence[HealthRecord]) -> None:
        """
        Apply probe results to previously inserted records, matched by id.

        Runs as one transaction: load a staging table, issue a single
        UPDATE ... FROM over it, drop it. No statement is issued for an
        empty batch.

        Raises:
            StorageError: If the update fails (nothing is changed)
        """
        if not records:
            return
        now = _to_db_timestamp(utc_now())
        rows = [self._row(record, now) for record in records]

        def work() -> None:
            columns = ", ".join(f"{name} {_COLUMN_TYPES[name]}" for name in COLUMN_NAMES)
            self._conn.execute(f"CREATE OR REPLACE TEMP TABLE {STAGING_TABLE_NAME} ({columns})")
            self._bulk_load(STAGING_TABLE_NAME, rows)
            assignments = ", ".join(
                f"{name} = s.{name}" for name in RESULT_COLUMNS + ("updated_at",)
            )
            self._conn.execute(
                f"UPDATE {TABLE_NAME} SET {assignments} "
                f"FROM {STAGING_TABLE_NAME} AS s WHERE {TABLE_NAME}.id = s.id"
            )
            self._conn.execute(f"DROP TABLE IF EXISTS {STAGING_TABLE_NAME}")

        self._run_in_transaction("update", len(rows), work)

    def get_record(self, record_id: str) -> Optional[HealthRecord]:
        """Read one record back by its synthetic id."""
        with self._lock:
            try:
                row = self._conn.execute(
                    f"SELECT {', '.join(COLUMN_NAMES)} FROM {TABLE_NAME} WHERE id = ?",
                    [record_id],
                ).fetchone()
            except duckdb.Error as e:
                raise StorageError(
                    code="read_failed",
                    message=f"Failed to read record {record_id}: {e}",
                    details={"id": record_id},
                ) from e
        if row is None:
            return None

        values = dict(zip(COLUMN_NAMES, row))
        category = values["error_category"]
        return HealthRecord(
            id=values["id"],
            raw_id=values["raw_id"],
            url=values["url"],
            name=values["name"],
            center_name=values["center_name"],
            date_published=values["date_published"],
            check_time=_from_db_timestamp(values["check_time"]),
            status_code=values["status_code"],
            status_text=values["status_text"],
            error_category=ErrorCategory(category) if category else None,
            error_msg=values["error_msg"],
            error_detail=values["error_detail"],
            response_time_ms=values["response_time_ms"],
            is_likely_local_issue=bool(values["is_likely_local_issue"]),
            headers=values["headers"],
            created_at=_from_db_timestamp(values["created_at"]),
            updated_at=_from_db_timestamp(values["updated_at"]),
        )

    def count(self) -> int:
        with self._lock:
            try:
                return self._conn.execute(f"SELECT COUNT(*) FROM {TABLE_NAME}").fetchone()[0]
            except duckdb.Error as e:
                raise StorageError(
                    code="read_failed",
                    message=f"Failed to count records: {e}",
                ) from e

    def close(self) -> None:
        with self._lock:
            self._conn.close()
