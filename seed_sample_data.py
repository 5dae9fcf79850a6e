import asyncio
import datetime

from store import WorkoutStore


async def seed(store: WorkoutStore) -> bool:
    """Insert sample logs into an empty store; return False if it already has data."""
    if await store.list_all():
        return False
    today = datetime.date.today().isoformat()
    await store.add_exercise(
        {
            "name": "Back Squat",
            "date": today,
            "measurement_kind": "weight_reps",
            "weight": "100",
            "reps": "5",
        }
    )
    await store.add_exercise(
        {
            "name": "Row",
            "date": today,
            "measurement_kind": "distance_time",
            "distance": "2000",
            "time": "445",
        }
    )
    await store.add_wod(
        {
            "name": "Fran",
            "date": today,
            "description": "21-15-9 thrusters/pull-ups",
            "result": "4:32",
        }
    )
    return True


async def _main() -> None:
    async with WorkoutStore() as store:
        if await seed(store):
            print("Seed data inserted")
        else:
            print("Database already contains workouts")


if __name__ == "__main__":
    asyncio.run(_main())
