"""
Time-series store backed by an async SQLite database file.

Each series tier (raw samples, 5-minute averages, hourly averages,
consumption/production snapshots) lives in its own database file. A
database holds a ``CONFIGURATION`` table describing its counters and one
data table per counter::

    CONFIGURATION (id, description, type, table_name)
    <table_name>  (timestamp INTEGER, value DOUBLE, unit VARCHAR(16))

Operations:
- create(force): create a new database file (provisioning only).
- create_schema(counters): create CONFIGURATION and the data tables.
- record(table, timestamp, value, unit): append one point.
- query(counter_id, since): read one counter's points back, oldest first.

Concurrency: every component opens its own connection. New databases are
switched to WAL journal mode so the daemon can keep writing while the
reporting tool or scheduled commands read, and every connection sets a
busy timeout so concurrent writers wait for each other instead of failing.
No in-process lock is taken; each ``record`` is one statement plus commit.

CHANGELOG:
- 2026-10-19: Initial creation
- 2026-10-20: Failure to remove a database on forced create raises StorageError

TODO:
- None
"""

from __future__ import annotations

import logging
import re
from decimal import Decimal
from pathlib import Path
from typing import TYPE_CHECKING

import aiosqlite

from meterd.src.errors import StorageError, StorageWriteWarning
from meterd.src.models import SeriesPoint

if TYPE_CHECKING:
    from meterd.src.counters import CounterSpec

logger = logging.getLogger(__name__)

_CREATE_CONFIGURATION_SQL = """\
CREATE TABLE CONFIGURATION (
    id          VARCHAR(16) PRIMARY KEY,
    description VARCHAR(255),
    type        INTEGER,
    table_name  VARCHAR(255)
);
"""

_INSERT_CONFIGURATION_SQL = """\
INSERT INTO CONFIGURATION (id, description, type, table_name) VALUES (?, ?, ?, ?);
"""

_CREATE_SERIES_SQL = """\
CREATE TABLE {table} (
    timestamp INTEGER,
    value     DOUBLE,
    unit      VARCHAR(16)
);
"""

_INSERT_POINT_SQL = "INSERT INTO {table} (timestamp, value, unit) VALUES (?, ?, ?);"

_LOOKUP_TABLE_SQL = "SELECT table_name FROM CONFIGURATION WHERE id = ?;"

_SELECT_POINTS_SQL = """\
SELECT timestamp, value, unit
FROM {table}
WHERE timestamp >= ?
ORDER BY timestamp ASC;
"""

_TABLE_NAME_RE = re.compile(r"^[A-Za-z0-9_]+$")

DEFAULT_BUSY_TIMEOUT_MS: int = 5000


def _checked_table(table: str) -> str:
    """Return *table* if it is safe to interpolate into SQL."""
    if not _TABLE_NAME_RE.match(table):
        raise ValueError(f"Invalid table name {table!r}")
    return table


class SeriesStore:
    """One series database file.

    Args:
        path: Filesystem path of the SQLite database file.
        read_only: Open the database read-only (reporting).
        busy_timeout_ms: How long a statement waits for a lock held by
            another connection.

    Usage::

        async with SeriesStore("/var/lib/meterd/raw.db") as store:
            await store.record("RAW_1_7_0", 1700000000, Decimal("0.42"), "kW")
    """

    def __init__(
        self,
        path: str | Path,
        *,
        read_only: bool = False,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
    ) -> None:
        self._path = Path(path)
        self._read_only = read_only
        self._busy_timeout_ms = busy_timeout_ms
        self._db: aiosqlite.Connection | None = None

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        """Return True if the database file exists."""
        return self._path.exists()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Open an existing database.

        Raises:
            StorageError: If the file does not exist or cannot be opened.
        """
        if not self.exists():
            raise StorageError(f"Database {self._path} does not exist")

        try:
            if self._read_only:
                uri = self._path.resolve().as_uri() + "?mode=ro"
                self._db = await aiosqlite.connect(uri, uri=True)
            else:
                self._db = await aiosqlite.connect(str(self._path))
            await self._configure_connection()
        except aiosqlite.Error as exc:
            await self.close()
            raise StorageError(f"Failed to open database {self._path} ({exc})") from exc

    async def create(self, *, force: bool = False) -> None:
        """Create a new, empty database file and open it.

        Args:
            force: Replace an existing file instead of refusing.

        Raises:
            StorageError: If the file exists and *force* is False, or the
                database cannot be created.
        """
        if self.exists():
            if not force:
                raise StorageError(
                    f"Trying to create a database that already exists ({self._path})"
                )
            try:
                self._path.unlink()
            except OSError as exc:
                raise StorageError(
                    f"Failed to remove existing database {self._path} ({exc})"
                ) from exc

        try:
            self._db = await aiosqlite.connect(str(self._path))
            await self._configure_connection()
            # WAL lets readers and the daemon's writer work concurrently.
            await self._db.execute("PRAGMA journal_mode=WAL;")
            await self._db.commit()
        except aiosqlite.Error as exc:
            await self.close()
            raise StorageError(f"Failed to create database {self._path} ({exc})") from exc

    async def close(self) -> None:
        """Close the underlying connection. Safe to call more than once."""
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> SeriesStore:
        """Enter async context manager: open the existing database."""
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Exit async context manager: close the database."""
        await self.close()

    async def _configure_connection(self) -> None:
        assert self._db is not None
        await self._db.execute(f"PRAGMA busy_timeout={int(self._busy_timeout_ms)};")
        if not self._read_only:
            # Trade durability for fewer disk syncs on SD-card installations.
            await self._db.execute("PRAGMA synchronous=OFF;")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def create_schema(self, counters: list[CounterSpec]) -> None:
        """Create the CONFIGURATION table and one data table per counter.

        Raises:
            StorageError: If a table cannot be created or a counter cannot
                be registered (e.g. duplicate id).
        """
        assert self._db is not None, "Store not opened. Call create() or open()."
        try:
            await self._db.execute(_CREATE_CONFIGURATION_SQL)
            for spec in counters:
                table = _checked_table(spec.table_name)
                await self._db.execute(
                    _INSERT_CONFIGURATION_SQL,
                    (spec.id, spec.description, int(spec.type), table),
                )
                await self._db.execute(_CREATE_SERIES_SQL.format(table=table))
            await self._db.commit()
        except aiosqlite.Error as exc:
            raise StorageError(
                f"Failed to create tables in {self._path} ({exc})"
            ) from exc

    async def record(self, table: str, timestamp: int, value: Decimal, unit: str) -> None:
        """Append one point to *table*.

        Raises:
            StorageWriteWarning: If the insert fails. Callers log it and
                carry on.
        """
        assert self._db is not None, "Store not opened. Call open() or use async with."
        sql = _INSERT_POINT_SQL.format(table=_checked_table(table))
        try:
            await self._db.execute(sql, (int(timestamp), float(value), unit))
            await self._db.commit()
        except aiosqlite.Error as exc:
            raise StorageWriteWarning(
                f"Failed to record {value} {unit} in {table} of {self._path} ({exc})"
            ) from exc

    async def query(
        self,
        counter_id: str,
        since: int,
        *,
        invert: bool = False,
        skip: int = 0,
    ) -> list[SeriesPoint]:
        """Return the points of *counter_id* recorded at or after *since*.

        Args:
            counter_id: Counter id as listed in CONFIGURATION.
            since: Unix timestamp of the oldest point to return.
            invert: Negate every value.
            skip: Only return a point if it is at least *skip* seconds
                after the previously returned one.

        Returns:
            Points ordered by timestamp, oldest first.

        Raises:
            StorageError: If the counter is not in this database.
        """
        assert self._db is not None, "Store not opened. Call open() or use async with."
        cursor = await self._db.execute(_LOOKUP_TABLE_SQL, (counter_id,))
        row = await cursor.fetchone()
        if row is None:
            raise StorageError(f"Counter {counter_id} not found in {self._path}")

        sql = _SELECT_POINTS_SQL.format(table=_checked_table(row[0]))
        cursor = await self._db.execute(sql, (int(since),))
        rows = await cursor.fetchall()

        points: list[SeriesPoint] = []
        last_ts: int | None = None
        for ts, value, unit in rows:
            if skip > 0 and last_ts is not None and ts - last_ts < skip:
                continue
            decimal_value = Decimal(str(value))
            points.append(
                SeriesPoint(
                    timestamp=ts,
                    value=-decimal_value if invert else decimal_value,
                    unit=unit,
                )
            )
            last_ts = ts
        return points
