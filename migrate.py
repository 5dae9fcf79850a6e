import asyncio
import logging
import sys

from backup import DEFAULT_BACKUP_DIR, BackupService
from db import CURRENT_SCHEMA_VERSION, DEFAULT_DB_PATH, Database, quote_identifier
from errors import MigrationValidationFailed, RestoreFailed, StoreError
from workout_schema import (
    MEASUREMENT_KINDS,
    WORKOUT_COLUMNS,
    infer_kind,
    infer_measurement_kind,
)

logger = logging.getLogger(__name__)

STRATEGIES = ("incremental", "rebuild")


def _filled(column: str) -> str:
    return f"TRIM(COALESCE({column}, ''), ' ' || char(9, 10, 13)) <> ''"


_KIND_LIST = ", ".join(f"'{k}'" for k in ("exercise", "wod"))
_MEASUREMENT_LIST = ", ".join(f"'{k}'" for k in MEASUREMENT_KINDS)

BACKFILL_KIND_SQL = (
    "UPDATE workouts SET type = CASE "
    f"WHEN {_filled('description')} THEN 'wod' ELSE 'exercise' END "
    f"WHERE type IS NULL OR type NOT IN ({_KIND_LIST});"
)

# Priority: weight+reps, distance+time, time, reps, then weight_reps.
BACKFILL_MEASUREMENT_SQL = (
    "UPDATE workouts SET measurement_kind = CASE "
    f"WHEN {_filled('weight')} AND {_filled('reps')} THEN 'weight_reps' "
    f"WHEN {_filled('distance')} AND {_filled('time')} THEN 'distance_time' "
    f"WHEN {_filled('time')} THEN 'time_only' "
    f"WHEN {_filled('reps')} THEN 'reps_only' "
    "ELSE 'weight_reps' END "
    "WHERE type = 'exercise' AND (measurement_kind IS NULL "
    f"OR measurement_kind NOT IN ({_MEASUREMENT_LIST}));"
)


class MigrationManager:
    """Bring the ``workouts`` table up to :data:`CURRENT_SCHEMA_VERSION`.

    A migration snapshots the table first, then alters and validates it in one
    transaction. Any failure after the snapshot restores it and re-raises the
    original error. ``state`` follows ``unchecked``, ``checking``,
    ``up_to_date`` or ``needs_migration``, ``backing_up``, ``altering``,
    ``validating`` and finally ``committed`` or ``rolled_back``; a failed
    snapshot leaves ``aborted``.
    """

    def __init__(
        self,
        db: Database,
        backups: BackupService,
        strategy: str = "incremental",
    ) -> None:
        if strategy not in STRATEGIES:
            raise ValueError(f"unknown migration strategy: {strategy}")
        self.db = db
        self.backups = backups
        self.strategy = strategy
        self.state = "unchecked"
        self._steps = {1: self._upgrade_v1_to_v2}

    async def detect_version(self) -> int:
        """Return the live schema version.

        Missing columns always win over the stored marker; without a marker
        a complete column set counts as current.
        """
        columns = await self.db.table_columns("workouts")
        if any(c not in columns for c in WORKOUT_COLUMNS):
            column_version = 1
        else:
            column_version = CURRENT_SCHEMA_VERSION
        marker = await self.db.get_schema_version()
        if marker is None:
            return column_version
        return min(marker, column_version)

    async def check(self) -> bool:
        """Return True when the schema is behind the current version."""
        self.state = "checking"
        version = await self.detect_version()
        if version >= CURRENT_SCHEMA_VERSION:
            if await self.db.get_schema_version() is None:
                await self.db.set_schema_version(CURRENT_SCHEMA_VERSION)
            self.state = "up_to_date"
            return False
        self.state = "needs_migration"
        return True

    async def _count_rows(self) -> int:
        row = await self.db.fetch_one("SELECT COUNT(*) FROM workouts;")
        return row[0]

    async def run(self) -> dict:
        """Migrate if needed and return a summary of what happened."""
        await self.db.open()
        from_version = await self.detect_version()
        result = {
            "state": self.state,
            "from_version": from_version,
            "to_version": CURRENT_SCHEMA_VERSION,
            "backup": None,
            "rows": 0,
        }
        if not await self.check():
            result["state"] = self.state
            return result

        rows_before = await self._count_rows()
        result["rows"] = rows_before
        logger.info(
            "Migrating workouts from schema v%d to v%d (%d rows, %s)",
            from_version,
            CURRENT_SCHEMA_VERSION,
            rows_before,
            self.strategy,
        )
        self.state = "backing_up"
        try:
            backup_path = await self.backups.snapshot()
        except StoreError:
            self.state = "aborted"
            logger.error("Migration aborted before altering schema: backup failed")
            raise
        result["backup"] = backup_path

        try:
            async with self.db.transaction():
                self.state = "altering"
                version = from_version
                while version < CURRENT_SCHEMA_VERSION:
                    await self._steps[version]()
                    version += 1
                self.state = "validating"
                await self.validate(expected_rows=rows_before)
                await self.db.set_schema_version(CURRENT_SCHEMA_VERSION)
        except Exception as exc:
            logger.error(
                "Migration failed while %s (%d rows, backup %s): %s",
                self.state,
                rows_before,
                backup_path,
                exc,
            )
            await self._rollback(backup_path, exc)
            raise

        self.state = "committed"
        result["state"] = self.state
        logger.info("Migrated %d rows to schema v%d", rows_before, CURRENT_SCHEMA_VERSION)
        return result

    async def _rollback(self, backup_path: str, error: Exception) -> None:
        try:
            restored = await self.backups.restore(backup_path)
        except StoreError as restore_exc:
            logger.critical(
                "Rollback from %s failed, workouts table may be inconsistent: %s",
                backup_path,
                restore_exc,
            )
            raise RestoreFailed(
                f"migration failed ({error}) and rollback from {backup_path} failed",
                original_error=error,
            ) from restore_exc
        self.state = "rolled_back"
        logger.warning("Rolled back migration, restored %d rows from %s", restored, backup_path)

    async def _upgrade_v1_to_v2(self) -> None:
        if self.strategy == "rebuild":
            await self._rebuild()
        else:
            await self._add_missing_columns()
            await self._backfill()

    async def _add_missing_columns(self) -> None:
        columns = await self.db.table_columns("workouts")
        for column in WORKOUT_COLUMNS:
            if column not in columns:
                await self.db.execute(f"ALTER TABLE workouts ADD COLUMN {column} TEXT;")
                logger.debug("Added column workouts.%s", column)

    async def _backfill(self) -> None:
        await self.db.execute(BACKFILL_KIND_SQL)
        await self.db.execute(BACKFILL_MEASUREMENT_SQL)

    async def _rebuild(self) -> None:
        extras = [
            c for c in await self.db.table_columns("workouts") if c not in WORKOUT_COLUMNS
        ]
        rows = [
            dict(r) for r in await self.db.fetch_all("SELECT * FROM workouts ORDER BY id;")
        ]
        seq = await self.db.get_sequence("workouts")
        await self.db.execute("DROP TABLE workouts;")
        await self.db.execute(Database.create_statement("workouts"))
        # Unknown columns survive as TEXT, the same as an incremental upgrade leaves them.
        for column in extras:
            await self.db.execute(
                f"ALTER TABLE workouts ADD COLUMN {quote_identifier(column)} TEXT;"
            )
        all_columns = list(WORKOUT_COLUMNS) + extras
        cols = ", ".join(quote_identifier(c) for c in all_columns)
        placeholders = ", ".join("?" for _ in all_columns)
        for row in rows:
            values = {c: row.get(c) for c in all_columns}
            values["type"] = infer_kind(row)
            if (
                values["type"] == "exercise"
                and values["measurement_kind"] not in MEASUREMENT_KINDS
            ):
                values["measurement_kind"] = infer_measurement_kind(
                    row.get("weight"), row.get("reps"), row.get("time"), row.get("distance")
                )
            await self.db.execute(
                f"INSERT INTO workouts ({cols}) VALUES ({placeholders});",
                tuple(values.values()),
            )
        await self.db.restore_sequence("workouts", seq)

    async def validate(self, expected_rows: int | None = None) -> None:
        """Raise :class:`MigrationValidationFailed` unless the table is at the current shape."""
        columns = await self.db.table_columns("workouts")
        missing = [c for c in WORKOUT_COLUMNS if c not in columns]
        if missing:
            raise MigrationValidationFailed(
                "required columns", "missing " + ", ".join(missing)
            )
        row = await self.db.fetch_one(
            f"SELECT COUNT(*) FROM workouts WHERE type IS NULL OR type NOT IN ({_KIND_LIST});"
        )
        if row[0]:
            raise MigrationValidationFailed("record kind", f"{row[0]} rows without a valid kind")
        row = await self.db.fetch_one(
            "SELECT COUNT(*) FROM workouts WHERE type = 'exercise' AND "
            f"(measurement_kind IS NULL OR measurement_kind NOT IN ({_MEASUREMENT_LIST}));"
        )
        if row[0]:
            raise MigrationValidationFailed(
                "measurement kind", f"{row[0]} exercise rows without a measurement kind"
            )
        if expected_rows is not None:
            count = await self._count_rows()
            if count != expected_rows:
                raise MigrationValidationFailed(
                    "row count", f"expected {expected_rows} rows, found {count}"
                )


async def run_startup_migration(
    db: Database, backups: BackupService, strategy: str = "incremental"
) -> dict:
    """Run once at process start, before any other store call."""
    return await MigrationManager(db, backups, strategy).run()


def migrate(
    db_path: str = DEFAULT_DB_PATH,
    backup_dir: str = DEFAULT_BACKUP_DIR,
    strategy: str = "incremental",
) -> dict:
    async def _run() -> dict:
        async with Database(db_path) as db:
            return await run_startup_migration(db, BackupService(db, backup_dir), strategy)

    return asyncio.run(_run())


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    path = sys.argv[1] if len(sys.argv) > 1 else DEFAULT_DB_PATH
    print(migrate(path))
