import argparse
import asyncio
import json
import logging
from typing import Optional

from algorithms import WeightConverter
from backup import BackupService
from config import APP_VERSION, load_settings
from db import Database
from errors import StoreError
from migrate import migrate
from seed_sample_data import seed
from settings_schema import SettingsSchema
from stats_service import StatisticsService
from store import WorkoutStore


async def _with_store(settings: SettingsSchema, action):
    async with WorkoutStore(settings) as store:
        return await action(store)


def backup_db(db_path: str, backup_dir: str = "backups") -> str:
    async def _run() -> str:
        async with Database(db_path) as db:
            return await BackupService(db, backup_dir).snapshot()

    return asyncio.run(_run())


def restore_db(src: Optional[str], db_path: str, backup_dir: str = "backups") -> int:
    """Restore ``src``, or the newest snapshot in ``backup_dir`` when omitted."""

    async def _run() -> int:
        async with Database(db_path) as db:
            backups = BackupService(db, backup_dir)
            location = src or backups.latest_snapshot()
            if location is None:
                raise FileNotFoundError(f"no snapshots in {backup_dir}")
            return await backups.restore(location)

    return asyncio.run(_run())


def list_logs(settings: SettingsSchema) -> list:
    return asyncio.run(_with_store(settings, lambda store: store.list_all()))


def export_logs(settings: SettingsSchema, out_path: str) -> int:
    """Write all logs as JSON and return how many were written."""
    logs = list_logs(settings)
    with open(out_path, "w", encoding="utf-8") as f:
        json.dump([log.model_dump() for log in logs], f, indent=2)
    return len(logs)


def demo_data(settings: SettingsSchema) -> bool:
    return asyncio.run(_with_store(settings, seed))


def main() -> None:
    parser = argparse.ArgumentParser(description="Workout log maintenance commands")
    parser.add_argument("--version", action="version", version=APP_VERSION)
    parser.add_argument("--config", default="settings.yaml")
    parser.add_argument("--db", default=None)
    parser.add_argument("--backups", default=None)
    sub = parser.add_subparsers(dest="cmd", required=True)

    mig = sub.add_parser("migrate")
    mig.add_argument("--strategy", choices=["incremental", "rebuild"], default=None)

    sub.add_parser("backup")

    rst = sub.add_parser("restore")
    rst.add_argument("--in", dest="src", default=None)

    sub.add_parser("list")

    exp = sub.add_parser("export")
    exp.add_argument("--out", default="workouts.json")

    sub.add_parser("records")

    sub.add_parser("demo")

    conv = sub.add_parser("convert")
    conv.add_argument("--weight", type=float, required=True)
    conv.add_argument("--unit", choices=["kg", "lb"], required=True)

    args = parser.parse_args()
    settings = load_settings(args.config)
    overrides = {}
    if args.db:
        overrides["db_path"] = args.db
    if args.backups:
        overrides["backup_dir"] = args.backups
    if overrides:
        settings = settings.model_copy(update=overrides)
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.cmd == "migrate":
            strategy = args.strategy or settings.migration_strategy
            result = migrate(settings.db_path, settings.backup_dir, strategy)
            print(f"Schema {result['state']} (v{result['from_version']} -> v{result['to_version']})")
        elif args.cmd == "backup":
            print(backup_db(settings.db_path, settings.backup_dir))
        elif args.cmd == "restore":
            count = restore_db(args.src, settings.db_path, settings.backup_dir)
            print(f"Restored {count} rows")
        elif args.cmd == "list":
            for log in list_logs(settings):
                print(f"{log.id}\t{log.date}\t{log.kind}\t{log.name}")
        elif args.cmd == "export":
            count = export_logs(settings, args.out)
            print(f"Exported {count} logs to {args.out}")
        elif args.cmd == "records":
            stats = StatisticsService(settings.use_metric)
            for record in stats.personal_records(list_logs(settings)):
                print(f"{record['name']}: {record['display']} ({record['date']})")
        elif args.cmd == "demo":
            if demo_data(settings):
                print("Demo data inserted")
            else:
                print("Database already contains workouts")
        elif args.cmd == "convert":
            if args.unit == "kg":
                print(f"{args.weight} kg = {WeightConverter.kg_to_lb(args.weight)} lb")
            else:
                print(f"{args.weight} lb = {WeightConverter.lb_to_kg(args.weight)} kg")
    except (StoreError, FileNotFoundError) as exc:
        parser.exit(1, f"error: {exc}\n")


if __name__ == "__main__":
    main()
