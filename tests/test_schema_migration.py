import os
import sqlite3
import sys

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from backup import BackupService
from db import CURRENT_SCHEMA_VERSION, Database, WorkoutRepository
from errors import (
    BackupCorrupt,
    BackupWriteFailed,
    MigrationValidationFailed,
    RestoreFailed,
)
from migrate import MigrationManager, run_startup_migration
from workout_schema import LEGACY_COLUMNS, WORKOUT_COLUMNS

# Schema shipped before measurement kinds existed; distance and time were
# already present.
PARTIAL_SQL = (
    "CREATE TABLE workouts (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT NOT NULL, "
    "date TEXT NOT NULL, type TEXT NOT NULL, description TEXT, result TEXT, "
    "weight TEXT, reps TEXT, notes TEXT, distance TEXT, time TEXT)"
)
LEGACY_SQL = (
    "CREATE TABLE workouts (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT NOT NULL, "
    "date TEXT NOT NULL, type TEXT NOT NULL, description TEXT, result TEXT, "
    "weight TEXT, reps TEXT, notes TEXT)"
)


def make_partial_db(path):
    conn = sqlite3.connect(str(path))
    conn.execute(PARTIAL_SQL)
    conn.executemany(
        "INSERT INTO workouts (name, date, type, weight, reps, time, distance, description) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
        [
            ("Squat", "2024-01-01", "exercise", "50", "10", "", "", ""),
            ("Plank", "2024-01-02", "exercise", "", "", "30", "", ""),
            ("Mystery", "2024-01-03", "exercise", "", "", "", "", ""),
            ("Row", "2024-01-04", "exercise", "", "", "420", "2000", ""),
            ("Push-up", "2024-01-05", "exercise", "", "25", "", "", ""),
            ("Carry", "2024-01-06", "exercise", "40", "", "60", "", ""),
            ("Fran", "2024-01-07", "wod", "", "", "", "", "21-15-9"),
        ],
    )
    conn.commit()
    conn.close()


def make_legacy_db(path):
    conn = sqlite3.connect(str(path))
    conn.execute(LEGACY_SQL)
    conn.executemany(
        "INSERT INTO workouts (name, date, type, description, result, weight, reps, notes) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
        [
            ("Bench", "2024-01-01", "exercise", None, None, "80", "5", "felt good"),
            ("Grace", "2024-01-02", "wod", "30 clean and jerks", "3:10", None, None, ""),
            ("Curl", "2024-01-03", "exercise", "", "", "", "", ""),
        ],
    )
    conn.execute("DELETE FROM workouts WHERE id = 2")
    conn.execute(
        "INSERT INTO workouts (name, date, type, description, result) "
        "VALUES ('Grace', '2024-01-02', 'wod', '30 clean and jerks', '3:10')"
    )
    conn.commit()
    conn.close()


def read_table(path):
    conn = sqlite3.connect(str(path))
    cur = conn.execute("SELECT * FROM workouts ORDER BY id")
    columns = [d[0] for d in cur.description]
    rows = cur.fetchall()
    conn.close()
    return columns, rows


def measurement_kinds(path):
    conn = sqlite3.connect(str(path))
    rows = conn.execute("SELECT name, measurement_kind FROM workouts").fetchall()
    conn.close()
    return dict(rows)


async def run_migration(db_path, backup_dir, strategy="incremental"):
    db = Database(str(db_path))
    try:
        manager = MigrationManager(db, BackupService(db, str(backup_dir)), strategy)
        result = await manager.run()
        return manager, result
    finally:
        await db.close()


@pytest.mark.asyncio
@pytest.mark.parametrize("strategy", ["incremental", "rebuild"])
async def test_backfill_measurement_kind(tmp_path, strategy):
    db_file = tmp_path / "workouts.db"
    make_partial_db(db_file)
    manager, result = await run_migration(db_file, tmp_path / "backups", strategy)

    assert manager.state == "committed"
    assert result["from_version"] == 1
    assert result["to_version"] == CURRENT_SCHEMA_VERSION
    assert result["rows"] == 7
    assert os.path.exists(result["backup"])
    kinds = measurement_kinds(db_file)
    assert kinds["Squat"] == "weight_reps"
    assert kinds["Plank"] == "time_only"
    assert kinds["Mystery"] == "weight_reps"
    assert kinds["Row"] == "distance_time"
    assert kinds["Push-up"] == "reps_only"
    assert kinds["Carry"] == "time_only"
    assert kinds["Fran"] is None


@pytest.mark.asyncio
@pytest.mark.parametrize("strategy", ["incremental", "rebuild"])
async def test_migrates_legacy_schema(tmp_path, strategy):
    db_file = tmp_path / "workouts.db"
    make_legacy_db(db_file)
    _, before = read_table(db_file)
    await run_migration(db_file, tmp_path / "backups", strategy)

    columns, rows = read_table(db_file)
    assert set(columns) == set(WORKOUT_COLUMNS)
    assert [r[0] for r in rows] == [r[0] for r in before]
    by_name = {row[columns.index("name")]: row for row in rows}
    assert by_name["Bench"][columns.index("measurement_kind")] == "weight_reps"
    assert by_name["Bench"][columns.index("notes")] == "felt good"
    assert by_name["Grace"][columns.index("result")] == "3:10"

    conn = sqlite3.connect(str(db_file))
    version = conn.execute(
        "SELECT value FROM schema_meta WHERE key = 'schema_version'"
    ).fetchone()[0]
    conn.close()
    assert int(version) == CURRENT_SCHEMA_VERSION


@pytest.mark.asyncio
@pytest.mark.parametrize("strategy", ["incremental", "rebuild"])
async def test_deleted_ids_are_not_reused(tmp_path, strategy):
    db_file = tmp_path / "workouts.db"
    make_legacy_db(db_file)
    conn = sqlite3.connect(str(db_file))
    conn.execute("DELETE FROM workouts WHERE id = 4")
    conn.commit()
    conn.close()

    await run_migration(db_file, tmp_path / "backups", strategy)
    db = Database(str(db_file))
    try:
        created = await WorkoutRepository(db).add_wod({"name": "Nancy", "date": "2024-02-01"})
    finally:
        await db.close()
    assert created.id == 5


@pytest.mark.asyncio
async def test_rebuild_keeps_unknown_columns(tmp_path):
    db_file = tmp_path / "workouts.db"
    make_partial_db(db_file)
    conn = sqlite3.connect(str(db_file))
    conn.execute("ALTER TABLE workouts ADD COLUMN source TEXT")
    conn.execute("UPDATE workouts SET source = 'import' WHERE name = 'Row'")
    conn.commit()
    conn.close()

    await run_migration(db_file, tmp_path / "backups", "rebuild")
    columns, rows = read_table(db_file)
    assert set(columns) == set(WORKOUT_COLUMNS) | {"source"}
    sources = {row[columns.index("name")]: row[columns.index("source")] for row in rows}
    assert sources["Row"] == "import"
    assert sources["Squat"] is None


@pytest.mark.asyncio
async def test_blank_kind_is_classified(tmp_path):
    db_file = tmp_path / "workouts.db"
    conn = sqlite3.connect(str(db_file))
    conn.execute(LEGACY_SQL)
    conn.execute(
        "INSERT INTO workouts (name, date, type, description) VALUES ('Diane', '2024-01-01', '', 'deadlifts')"
    )
    conn.execute(
        "INSERT INTO workouts (name, date, type, weight, reps) VALUES ('Press', '2024-01-02', '', '40', '5')"
    )
    conn.commit()
    conn.close()
    await run_migration(db_file, tmp_path / "backups")

    conn = sqlite3.connect(str(db_file))
    rows = dict(conn.execute("SELECT name, type FROM workouts").fetchall())
    conn.close()
    assert rows == {"Diane": "wod", "Press": "exercise"}


@pytest.mark.asyncio
async def test_migration_is_idempotent(tmp_path):
    db_file = tmp_path / "workouts.db"
    backup_dir = tmp_path / "backups"
    make_legacy_db(db_file)
    await run_migration(db_file, backup_dir)
    snapshots = os.listdir(backup_dir)
    _, rows = read_table(db_file)

    manager, result = await run_migration(db_file, backup_dir)
    assert manager.state == "up_to_date"
    assert result["backup"] is None
    assert os.listdir(backup_dir) == snapshots
    assert read_table(db_file)[1] == rows


@pytest.mark.asyncio
async def test_fresh_database_needs_no_migration(tmp_path):
    manager, result = await run_migration(tmp_path / "new.db", tmp_path / "backups")
    assert manager.state == "up_to_date"
    assert result["from_version"] == CURRENT_SCHEMA_VERSION
    assert not os.path.exists(tmp_path / "backups")


@pytest.mark.asyncio
async def test_missing_marker_is_written(tmp_path):
    db_file = tmp_path / "workouts.db"
    db = Database(str(db_file))
    await db.open()
    await db.clear_schema_version()
    await db.close()

    manager, _ = await run_migration(db_file, tmp_path / "backups")
    assert manager.state == "up_to_date"
    db = Database(str(db_file))
    try:
        assert await db.get_schema_version() == CURRENT_SCHEMA_VERSION
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_rollback_on_backfill_failure(tmp_path, monkeypatch):
    db_file = tmp_path / "workouts.db"
    make_legacy_db(db_file)
    before = read_table(db_file)

    async def broken_backfill(self):
        raise RuntimeError("backfill exploded")

    monkeypatch.setattr(MigrationManager, "_backfill", broken_backfill)
    db = Database(str(db_file))
    manager = MigrationManager(db, BackupService(db, str(tmp_path / "backups")))
    try:
        with pytest.raises(RuntimeError, match="backfill exploded"):
            await manager.run()
        assert manager.state == "rolled_back"
    finally:
        await db.close()

    assert read_table(db_file) == before
    assert before[0] == LEGACY_COLUMNS


@pytest.mark.asyncio
async def test_validation_failure_rolls_back(tmp_path, monkeypatch):
    db_file = tmp_path / "workouts.db"
    make_partial_db(db_file)
    before = read_table(db_file)

    async def skip_backfill(self):
        return None

    monkeypatch.setattr(MigrationManager, "_backfill", skip_backfill)
    db = Database(str(db_file))
    manager = MigrationManager(db, BackupService(db, str(tmp_path / "backups")))
    try:
        with pytest.raises(MigrationValidationFailed) as info:
            await manager.run()
        assert info.value.check == "measurement kind"
        assert manager.state == "rolled_back"
    finally:
        await db.close()
    assert read_table(db_file) == before


@pytest.mark.asyncio
async def test_backup_failure_aborts_before_altering(tmp_path):
    db_file = tmp_path / "workouts.db"
    make_legacy_db(db_file)
    before = read_table(db_file)
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("occupied")

    db = Database(str(db_file))
    manager = MigrationManager(db, BackupService(db, str(blocker / "backups")))
    try:
        with pytest.raises(BackupWriteFailed):
            await manager.run()
        assert manager.state == "aborted"
    finally:
        await db.close()
    assert read_table(db_file) == before


@pytest.mark.asyncio
async def test_failed_rollback_raises_restore_failed(tmp_path, monkeypatch):
    db_file = tmp_path / "workouts.db"
    make_legacy_db(db_file)

    async def broken_backfill(self):
        raise RuntimeError("backfill exploded")

    async def broken_restore(self, location):
        raise BackupCorrupt("unreadable")

    monkeypatch.setattr(MigrationManager, "_backfill", broken_backfill)
    monkeypatch.setattr(BackupService, "restore", broken_restore)
    db = Database(str(db_file))
    try:
        with pytest.raises(RestoreFailed) as info:
            await run_startup_migration(db, BackupService(db, str(tmp_path / "backups")))
        assert isinstance(info.value.original_error, RuntimeError)
    finally:
        await db.close()


def test_unknown_strategy():
    db = Database(":memory:")
    with pytest.raises(ValueError):
        MigrationManager(db, BackupService(db), "sideways")
