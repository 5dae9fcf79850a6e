import logging
import sqlite3
import aiosqlite
from contextlib import asynccontextmanager
from typing import List, Optional, Tuple, Type

from errors import RecordNotFound, StorageUnavailable, VerificationFailed
from workout_schema import (
    WOD,
    WORKOUT_COLUMNS,
    Exercise,
    WorkoutLog,
    row_to_log,
)

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = "workouts.db"
CURRENT_SCHEMA_VERSION = 2


def quote_identifier(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


class Database:
    """Owns the single SQLite connection shared by every store component."""

    _TABLE_DEFINITIONS = {
        "workouts": (
            """CREATE TABLE workouts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    date TEXT NOT NULL,
                    type TEXT NOT NULL,
                    description TEXT,
                    result TEXT,
                    weight TEXT,
                    reps TEXT,
                    distance TEXT,
                    time TEXT,
                    measurement_kind TEXT,
                    notes TEXT
                );""",
            WORKOUT_COLUMNS,
        ),
        "schema_meta": (
            """CREATE TABLE schema_meta (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );""",
            ["key", "value"],
        ),
    }

    def __init__(self, db_path: str = DEFAULT_DB_PATH) -> None:
        self._db_path = db_path
        self._conn: aiosqlite.Connection | None = None

    @classmethod
    def create_statement(cls, table: str) -> str:
        return cls._TABLE_DEFINITIONS[table][0]

    @property
    def path(self) -> str:
        return self._db_path

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    async def open(self) -> aiosqlite.Connection:
        """Return the shared connection, creating it on first use."""
        if self._conn is not None:
            return self._conn
        logger.debug("Opening database %s", self._db_path)
        try:
            # Autocommit mode; multi-statement work goes through transaction().
            conn = await aiosqlite.connect(self._db_path, isolation_level=None)
        except (sqlite3.Error, OSError) as exc:
            raise StorageUnavailable(
                f"cannot open database {self._db_path}: {exc}"
            ) from exc
        conn.row_factory = sqlite3.Row
        self._conn = conn
        try:
            await self._ensure_schema()
        except sqlite3.Error as exc:
            await self.close()
            raise StorageUnavailable(
                f"cannot initialize database {self._db_path}: {exc}"
            ) from exc
        return conn

    async def close(self) -> None:
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        await conn.close()

    async def __aenter__(self) -> "Database":
        await self.open()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def _ensure_schema(self) -> None:
        created = []
        for table, (sql, _columns) in self._TABLE_DEFINITIONS.items():
            if not await self.table_exists(table):
                await self.execute(sql)
                created.append(table)
        if "workouts" in created:
            await self.set_schema_version(CURRENT_SCHEMA_VERSION)
        if created:
            logger.info("Created tables: %s", ", ".join(created))

    @asynccontextmanager
    async def transaction(self):
        """Run the enclosed statements in one SQLite transaction."""
        conn = await self.open()
        await conn.execute("BEGIN;")
        try:
            yield conn
        except BaseException:
            if conn.in_transaction:
                await conn.execute("ROLLBACK;")
            raise
        else:
            await conn.execute("COMMIT;")

    async def execute(self, query: str, params: Tuple = ()) -> int:
        conn = await self.open()
        cursor = await conn.execute(query, params)
        try:
            return cursor.lastrowid
        finally:
            await cursor.close()

    async def fetch_all(self, query: str, params: Tuple = ()) -> List[sqlite3.Row]:
        conn = await self.open()
        cursor = await conn.execute(query, params)
        try:
            return list(await cursor.fetchall())
        finally:
            await cursor.close()

    async def fetch_one(self, query: str, params: Tuple = ()) -> Optional[sqlite3.Row]:
        rows = await self.fetch_all(query, params)
        return rows[0] if rows else None

    async def table_exists(self, table: str) -> bool:
        row = await self.fetch_one(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?;", (table,)
        )
        return row is not None

    async def table_columns(self, table: str) -> List[str]:
        rows = await self.fetch_all(f"PRAGMA table_info({table});")
        return [row[1] for row in rows]

    async def get_schema_version(self) -> Optional[int]:
        row = await self.fetch_one(
            "SELECT value FROM schema_meta WHERE key = 'schema_version';"
        )
        if row is None:
            return None
        return int(row[0])

    async def set_schema_version(self, version: int) -> None:
        await self.execute(
            "INSERT INTO schema_meta (key, value) VALUES ('schema_version', ?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value;",
            (str(version),),
        )

    async def clear_schema_version(self) -> None:
        await self.execute("DELETE FROM schema_meta WHERE key = 'schema_version';")

    async def get_sequence(self, table: str) -> int:
        """Return the AUTOINCREMENT high-water mark of ``table``, 0 when unset."""
        if not await self.table_exists("sqlite_sequence"):
            return 0
        row = await self.fetch_one(
            "SELECT seq FROM sqlite_sequence WHERE name = ?;", (table,)
        )
        return int(row[0]) if row else 0

    async def restore_sequence(self, table: str, floor: int) -> int:
        """Raise the AUTOINCREMENT counter of ``table`` to at least ``floor``.

        Dropping a table discards its counter; call this after recreating and
        refilling it so ids of deleted rows are never handed out again.
        """
        row = await self.fetch_one(f"SELECT COALESCE(MAX(id), 0) FROM {quote_identifier(table)};")
        seq = max(floor, int(row[0]), await self.get_sequence(table))
        if seq and await self.table_exists("sqlite_sequence"):
            await self.execute("DELETE FROM sqlite_sequence WHERE name = ?;", (table,))
            await self.execute(
                "INSERT INTO sqlite_sequence (name, seq) VALUES (?, ?);", (table, seq)
            )
        return seq


class WorkoutRepository:
    """Typed CRUD over the ``workouts`` table.

    Every mutation checks the target row right before writing and reads it
    back right after, raising :class:`VerificationFailed` when the stored row
    does not reflect the write.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    @staticmethod
    def _coerce(model: Type, data):
        if isinstance(data, model):
            return data
        if isinstance(data, dict):
            return model(**data)
        raise TypeError(f"expected {model.__name__} or dict, got {type(data).__name__}")

    async def _writable(self, values: dict) -> dict:
        columns = await self.db.table_columns("workouts")
        dropped = [k for k, v in values.items() if k not in columns and v]
        if dropped:
            logger.warning(
                "workouts table predates columns %s; writing legacy columns only",
                ", ".join(dropped),
            )
        return {k: v for k, v in values.items() if k in columns}

    async def _fetch_row(
        self, record_id: int, kind: str | None = None
    ) -> Optional[sqlite3.Row]:
        if kind is None:
            return await self.db.fetch_one(
                "SELECT * FROM workouts WHERE id = ?;", (record_id,)
            )
        return await self.db.fetch_one(
            "SELECT * FROM workouts WHERE id = ? AND type = ?;", (record_id, kind)
        )

    @staticmethod
    def _matches(row: sqlite3.Row, values: dict) -> bool:
        return all(row[k] == v for k, v in values.items())

    async def list_all(self) -> List[WorkoutLog]:
        """Return every record, newest date first."""
        rows = await self.db.fetch_all(
            "SELECT * FROM workouts ORDER BY date DESC, id DESC;"
        )
        return [row_to_log(row) for row in rows]

    async def get(self, record_id: int) -> WorkoutLog:
        row = await self._fetch_row(record_id)
        if row is None:
            raise RecordNotFound(record_id, "workout")
        return row_to_log(row)

    async def _insert(self, kind: str, values: dict) -> WorkoutLog:
        values = await self._writable(values)
        cols = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        record_id = await self.db.execute(
            f"INSERT INTO workouts ({cols}) VALUES ({placeholders});",
            tuple(values.values()),
        )
        row = await self._fetch_row(record_id, kind)
        if row is None or not self._matches(row, values):
            raise VerificationFailed(f"{kind} {record_id} not stored as written")
        logger.debug("Added %s %d", kind, record_id)
        return row_to_log(row)

    async def add_exercise(self, data: Exercise | dict) -> Exercise:
        exercise = self._coerce(Exercise, data).normalized()
        return await self._insert("exercise", exercise.to_row())

    async def add_wod(self, data: WOD | dict) -> WOD:
        wod = self._coerce(WOD, data)
        return await self._insert("wod", wod.to_row())

    async def _update(self, record_id: Optional[int], kind: str, values: dict) -> WorkoutLog:
        if record_id is None:
            raise ValueError(f"{kind} id is required for update")
        if await self._fetch_row(record_id, kind) is None:
            raise RecordNotFound(record_id, kind)
        values = await self._writable(values)
        values.pop("type", None)
        assignments = ", ".join(f"{k} = ?" for k in values)
        await self.db.execute(
            f"UPDATE workouts SET {assignments} WHERE id = ? AND type = ?;",
            tuple(values.values()) + (record_id, kind),
        )
        row = await self._fetch_row(record_id, kind)
        if row is None:
            raise VerificationFailed(f"{kind} {record_id} missing after update")
        if not self._matches(row, values):
            raise VerificationFailed(f"{kind} {record_id} not updated as written")
        logger.debug("Updated %s %d", kind, record_id)
        return row_to_log(row)

    async def update_exercise(self, data: Exercise | dict) -> Exercise:
        """Update an exercise, clearing fields its measurement kind does not use."""
        exercise = self._coerce(Exercise, data).normalized()
        return await self._update(exercise.id, "exercise", exercise.to_row())

    async def update_wod(self, data: WOD | dict) -> WOD:
        wod = self._coerce(WOD, data)
        return await self._update(wod.id, "wod", wod.to_row())

    async def _delete(self, record_id: int, kind: str) -> None:
        if await self._fetch_row(record_id, kind) is None:
            raise RecordNotFound(record_id, kind)
        await self.db.execute(
            "DELETE FROM workouts WHERE id = ? AND type = ?;", (record_id, kind)
        )
        if await self._fetch_row(record_id) is not None:
            raise VerificationFailed(f"{kind} {record_id} still present after delete")
        logger.debug("Deleted %s %d", kind, record_id)

    async def delete_exercise(self, record_id: int) -> None:
        await self._delete(record_id, "exercise")

    async def delete_wod(self, record_id: int) -> None:
        await self._delete(record_id, "wod")
