from typing import Literal, Mapping, Optional, Union

from pydantic import BaseModel, Field

MeasurementKind = Literal["weight_reps", "time_only", "distance_time", "reps_only"]

MEASUREMENT_KINDS = ("weight_reps", "time_only", "distance_time", "reps_only")
KINDS = ("exercise", "wod")

# Which measurement columns carry data for each measurement kind.
MEASUREMENT_FIELDS = {
    "weight_reps": ("weight", "reps"),
    "time_only": ("time",),
    "distance_time": ("distance", "time"),
    "reps_only": ("reps",),
}
ALL_MEASUREMENT_FIELDS = ("weight", "reps", "distance", "time")

EXERCISE_FIELDS = ("measurement_kind",) + ALL_MEASUREMENT_FIELDS
WOD_FIELDS = ("description", "result")

LEGACY_COLUMNS = [
    "id",
    "name",
    "date",
    "type",
    "description",
    "result",
    "weight",
    "reps",
    "notes",
]
WORKOUT_COLUMNS = [
    "id",
    "name",
    "date",
    "type",
    "description",
    "result",
    "weight",
    "reps",
    "distance",
    "time",
    "measurement_kind",
    "notes",
]


class Exercise(BaseModel):
    id: Optional[int] = None
    kind: Literal["exercise"] = "exercise"
    name: str = Field(min_length=1)
    date: str = Field(min_length=1)
    measurement_kind: MeasurementKind
    weight: str = ""
    reps: str = ""
    distance: str = ""
    time: str = ""
    notes: str = ""

    def normalized(self) -> "Exercise":
        """Return a copy with measurement fields not used by ``measurement_kind`` cleared."""
        keep = MEASUREMENT_FIELDS[self.measurement_kind]
        cleared = {f: "" for f in ALL_MEASUREMENT_FIELDS if f not in keep}
        return self.model_copy(update=cleared)

    def to_row(self) -> dict:
        return {
            "name": self.name,
            "date": self.date,
            "type": "exercise",
            "description": "",
            "result": "",
            "weight": self.weight,
            "reps": self.reps,
            "distance": self.distance,
            "time": self.time,
            "measurement_kind": self.measurement_kind,
            "notes": self.notes,
        }


class WOD(BaseModel):
    id: Optional[int] = None
    kind: Literal["wod"] = "wod"
    name: str = Field(min_length=1)
    date: str = Field(min_length=1)
    description: str = ""
    result: str = ""
    notes: str = ""

    def to_row(self) -> dict:
        return {
            "name": self.name,
            "date": self.date,
            "type": "wod",
            "description": self.description,
            "result": self.result,
            "weight": "",
            "reps": "",
            "distance": "",
            "time": "",
            "measurement_kind": None,
            "notes": self.notes,
        }


WorkoutLog = Union[Exercise, WOD]


BLANK_CHARS = " \t\n\r"


def _filled(value: Optional[str]) -> bool:
    return bool(value is not None and str(value).strip(BLANK_CHARS))


def infer_measurement_kind(
    weight: Optional[str],
    reps: Optional[str],
    time: Optional[str],
    distance: Optional[str],
) -> str:
    """Derive the measurement kind of a legacy exercise from its populated fields."""
    if _filled(weight) and _filled(reps):
        return "weight_reps"
    if _filled(distance) and _filled(time):
        return "distance_time"
    if _filled(time):
        return "time_only"
    if _filled(reps):
        return "reps_only"
    return "weight_reps"


def infer_kind(row: Mapping) -> str:
    kind = row.get("type")
    if kind in KINDS:
        return kind
    return "wod" if _filled(row.get("description")) else "exercise"


def row_to_log(row: Mapping) -> WorkoutLog:
    """Build the typed record for a ``workouts`` row.

    Missing or NULL columns read as empty strings so rows written by older
    schemas still load.
    """
    data = {k: ("" if v is None else v) for k, v in dict(row).items()}
    common = {
        "id": int(data["id"]),
        "name": data.get("name", ""),
        "date": data.get("date", ""),
        "notes": data.get("notes", ""),
    }
    if infer_kind(data) == "wod":
        return WOD(
            description=data.get("description", ""),
            result=data.get("result", ""),
            **common,
        )
    kind = data.get("measurement_kind") or infer_measurement_kind(
        data.get("weight"), data.get("reps"), data.get("time"), data.get("distance")
    )
    return Exercise(
        measurement_kind=kind,
        weight=data.get("weight", ""),
        reps=data.get("reps", ""),
        distance=data.get("distance", ""),
        time=data.get("time", ""),
        **common,
    )
