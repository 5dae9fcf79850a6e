import datetime
import json
import logging
import os
import sqlite3
from typing import List, Optional

from db import Database, quote_identifier
from errors import BackupCorrupt, BackupWriteFailed, RestoreFailed
from workout_schema import WORKOUT_COLUMNS

logger = logging.getLogger(__name__)

DEFAULT_BACKUP_DIR = "backups"
REQUIRED_COLUMNS = ("id", "name", "date", "type")


def _column_sql(column: str) -> str:
    if column == "id":
        return "id INTEGER PRIMARY KEY AUTOINCREMENT"
    if column in ("name", "date", "type"):
        return f"{quote_identifier(column)} TEXT NOT NULL"
    return f"{quote_identifier(column)} TEXT"


class BackupService:
    """Snapshot the ``workouts`` table to JSON files and restore from them."""

    TABLE = "workouts"
    PREFIX = "workouts-"

    def __init__(self, db: Database, backup_dir: str = DEFAULT_BACKUP_DIR) -> None:
        self.db = db
        self.backup_dir = backup_dir

    def _artifact_path(self) -> str:
        now = datetime.datetime.now(datetime.timezone.utc)
        stamp = now.strftime("%Y-%m-%dT%H:%M:%S.%fZ").replace(":", "-").replace(".", "-")
        path = os.path.join(self.backup_dir, f"{self.PREFIX}{stamp}.json")
        suffix = 1
        while os.path.exists(path):
            path = os.path.join(
                self.backup_dir, f"{self.PREFIX}{stamp}_{suffix:03d}.json"
            )
            suffix += 1
        return path

    async def snapshot(self) -> str:
        """Write every row of the table to a new artifact and return its path."""
        rows = await self.db.fetch_all(f"SELECT * FROM {self.TABLE} ORDER BY id;")
        data = [dict(row) for row in rows]
        tmp_path = None
        try:
            os.makedirs(self.backup_dir, exist_ok=True)
            path = self._artifact_path()
            tmp_path = path + ".tmp"
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as exc:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.remove(tmp_path)
            logger.error("Backup of %d rows failed: %s", len(data), exc)
            raise BackupWriteFailed(f"cannot write backup: {exc}") from exc
        logger.info("Backed up %d rows to %s", len(data), path)
        return path

    @staticmethod
    def load(location: str) -> list[dict]:
        """Read and check an artifact without touching the database."""
        try:
            with open(location, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            raise BackupCorrupt(f"cannot read backup {location}: {exc}") from exc
        if not isinstance(data, list):
            raise BackupCorrupt(f"backup {location} is not a list of rows")
        columns = None
        for index, row in enumerate(data):
            if not isinstance(row, dict):
                raise BackupCorrupt(f"row {index} of {location} is not an object")
            if not isinstance(row.get("id"), int) or isinstance(row.get("id"), bool):
                raise BackupCorrupt(f"row {index} of {location} has no integer id")
            missing = [c for c in REQUIRED_COLUMNS if c not in row]
            if missing:
                raise BackupCorrupt(
                    f"row {index} of {location} lacks columns: {', '.join(missing)}"
                )
            if columns is None:
                columns = list(row)
            elif set(row) != set(columns):
                raise BackupCorrupt(f"row {index} of {location} has different columns")
            for column, value in row.items():
                if value is not None and not isinstance(value, (str, int, float)):
                    raise BackupCorrupt(
                        f"row {index} of {location} has a non-scalar {column!r}"
                    )
        return data

    async def restore(self, location: str) -> int:
        """Replace the table's contents with the rows stored at ``location``.

        Row ids are kept as stored and the id counter never moves backwards.
        The schema version marker is cleared so the next migration check
        derives the version from the restored columns.
        """
        rows = self.load(location)
        if rows:
            columns = list(rows[0])
        else:
            columns = await self.db.table_columns(self.TABLE) or list(WORKOUT_COLUMNS)
        create_sql = (
            f"CREATE TABLE {self.TABLE} ("
            + ", ".join(_column_sql(c) for c in columns)
            + ");"
        )
        col_list = ", ".join(quote_identifier(c) for c in columns)
        placeholders = ", ".join("?" for _ in columns)
        insert_sql = f"INSERT INTO {self.TABLE} ({col_list}) VALUES ({placeholders});"
        restored = 0
        try:
            async with self.db.transaction():
                seq = await self.db.get_sequence(self.TABLE)
                await self.db.execute(f"DROP TABLE IF EXISTS {self.TABLE};")
                await self.db.execute(create_sql)
                for row in rows:
                    await self.db.execute(insert_sql, tuple(row[c] for c in columns))
                    restored += 1
                await self.db.restore_sequence(self.TABLE, seq)
                await self.db.clear_schema_version()
        except sqlite3.Error as exc:
            logger.error(
                "Restore from %s failed after %d of %d rows: %s",
                location,
                restored,
                len(rows),
                exc,
            )
            raise RestoreFailed(f"restore from {location} failed: {exc}") from exc
        logger.info("Restored %d rows from %s", restored, location)
        return restored

    def list_snapshots(self) -> List[str]:
        """Return artifact paths, oldest first."""
        if not os.path.isdir(self.backup_dir):
            return []
        names = sorted(
            n
            for n in os.listdir(self.backup_dir)
            if n.startswith(self.PREFIX) and n.endswith(".json")
        )
        return [os.path.join(self.backup_dir, n) for n in names]

    def latest_snapshot(self) -> Optional[str]:
        snapshots = self.list_snapshots()
        return snapshots[-1] if snapshots else None
