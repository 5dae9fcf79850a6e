import logging
from typing import List

from backup import BackupService
from config import load_settings
from db import Database, WorkoutRepository
from migrate import MigrationManager
from settings_schema import SettingsSchema
from workout_schema import WOD, Exercise, WorkoutLog

logger = logging.getLogger(__name__)


class WorkoutStore:
    """Process-wide entry point to the workout log.

    Build one at startup, call :meth:`start` once, share it with every
    collaborator and :meth:`close` it at shutdown.
    """

    def __init__(self, settings: SettingsSchema | None = None) -> None:
        self.settings = settings or SettingsSchema()
        self.db = Database(self.settings.db_path)
        self.backups = BackupService(self.db, self.settings.backup_dir)
        self.migrations = MigrationManager(
            self.db, self.backups, self.settings.migration_strategy
        )
        self.workouts = WorkoutRepository(self.db)
        self.last_migration: dict | None = None

    @classmethod
    def from_yaml(cls, yaml_path: str = "settings.yaml") -> "WorkoutStore":
        return cls(load_settings(yaml_path))

    async def run_startup_migration(self) -> dict:
        self.last_migration = await self.migrations.run()
        return self.last_migration

    async def start(self) -> "WorkoutStore":
        await self.db.open()
        if self.last_migration is None:
            result = await self.run_startup_migration()
            logger.info("Workout store ready (%s)", result["state"])
        return self

    async def close(self) -> None:
        await self.db.close()

    async def __aenter__(self) -> "WorkoutStore":
        try:
            return await self.start()
        except BaseException:
            await self.close()
            raise

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def list_all(self) -> List[WorkoutLog]:
        return await self.workouts.list_all()

    async def add_exercise(self, data: Exercise | dict) -> Exercise:
        return await self.workouts.add_exercise(data)

    async def add_wod(self, data: WOD | dict) -> WOD:
        return await self.workouts.add_wod(data)

    async def update_exercise(self, data: Exercise | dict) -> Exercise:
        return await self.workouts.update_exercise(data)

    async def update_wod(self, data: WOD | dict) -> WOD:
        return await self.workouts.update_wod(data)

    async def delete_exercise(self, record_id: int) -> None:
        await self.workouts.delete_exercise(record_id)

    async def delete_wod(self, record_id: int) -> None:
        await self.workouts.delete_wod(record_id)
