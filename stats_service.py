from __future__ import annotations
from typing import Dict, Iterable, List, Optional

from algorithms import MathTools, TimeFormatter, WeightConverter
from workout_schema import WOD, Exercise, WorkoutLog


class StatisticsService:
    """Search, filter and summarize workout logs for display.

    Works on the records returned by ``WorkoutRepository.list_all`` and never
    touches the database.
    """

    def __init__(self, use_metric: bool = True) -> None:
        self.use_metric = use_metric

    @staticmethod
    def search(logs: Iterable[WorkoutLog], query: str) -> List[WorkoutLog]:
        """Return logs whose text fields contain ``query`` (case-insensitive)."""
        term = query.strip().lower()
        if not term:
            return list(logs)
        matches: list[WorkoutLog] = []
        for log in logs:
            if isinstance(log, WOD):
                fields = [log.name, log.notes, log.description, log.result]
            else:
                fields = [log.name, log.notes, log.weight, log.reps, log.time, log.distance]
            if any(term in (f or "").lower() for f in fields):
                matches.append(log)
        return matches

    @staticmethod
    def filter_logs(
        logs: Iterable[WorkoutLog],
        kind: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> List[WorkoutLog]:
        """Filter by kind and by an inclusive ``YYYY-MM-DD`` date range."""
        result: list[WorkoutLog] = []
        for log in logs:
            day = log.date[:10]
            if kind and log.kind != kind:
                continue
            if start_date and day < start_date:
                continue
            if end_date and day > end_date:
                continue
            result.append(log)
        return result

    @staticmethod
    def _exercises_by_name(logs: Iterable[WorkoutLog]) -> Dict[str, List[Exercise]]:
        groups: dict[str, list[Exercise]] = {}
        exercises = [log for log in logs if isinstance(log, Exercise)]
        for log in sorted(exercises, key=lambda e: (e.date, e.id or 0)):
            groups.setdefault(log.name, []).append(log)
        return groups

    def personal_records(self, logs: Iterable[WorkoutLog]) -> List[dict]:
        """Best attempt per exercise.

        The measurement kind of an exercise's first entry decides how it is
        ranked; entries logged with another kind are ignored.
        """
        records: list[dict] = []
        for name, entries in self._exercises_by_name(logs).items():
            kind = entries[0].measurement_kind
            entries = [e for e in entries if e.measurement_kind == kind]
            if kind == "weight_reps":
                best = None
                for e in entries:
                    weight = MathTools.to_float(e.weight)
                    reps = MathTools.to_int(e.reps)
                    if weight > 0 and reps > 0 and (best is None or weight > best[0]):
                        best = (weight, reps, e.date)
                if best:
                    records.append(
                        {
                            "name": name,
                            "measurement_kind": kind,
                            "weight": best[0],
                            "reps": best[1],
                            "estimated_1rm": MathTools.epley_1rm(best[0], best[1]),
                            "display": f"{WeightConverter.display(best[0], self.use_metric)} x {best[1]}",
                            "date": best[2],
                        }
                    )
            elif kind == "time_only":
                timed = [(MathTools.to_float(e.time), e.date) for e in entries]
                timed = [t for t in timed if t[0] > 0]
                if timed:
                    seconds, date = min(timed, key=lambda t: t[0])
                    records.append(
                        {
                            "name": name,
                            "measurement_kind": kind,
                            "seconds": seconds,
                            "display": TimeFormatter.format_seconds(seconds),
                            "date": date,
                        }
                    )
            elif kind == "distance_time":
                by_distance: dict[str, tuple[float, str]] = {}
                for e in entries:
                    seconds = MathTools.to_float(e.time)
                    if not e.distance or seconds <= 0:
                        continue
                    best = by_distance.get(e.distance)
                    if best is None or seconds < best[0]:
                        by_distance[e.distance] = (seconds, e.date)
                for distance, (seconds, date) in by_distance.items():
                    records.append(
                        {
                            "name": name,
                            "measurement_kind": kind,
                            "distance": distance,
                            "seconds": seconds,
                            "display": f"{distance}m in {TimeFormatter.format_seconds(seconds)}",
                            "date": date,
                        }
                    )
            elif kind == "reps_only":
                counted = [(MathTools.to_int(e.reps), e.date) for e in entries]
                counted = [c for c in counted if c[0] > 0]
                if counted:
                    reps, date = max(counted, key=lambda c: c[0])
                    records.append(
                        {
                            "name": name,
                            "measurement_kind": kind,
                            "reps": reps,
                            "display": f"{reps} reps",
                            "date": date,
                        }
                    )
        return records

    @staticmethod
    def exercise_progress(logs: Iterable[WorkoutLog]) -> List[dict]:
        """Chronological value series per exercise, longest first.

        Weight exercises chart weight, timed ones seconds and rep-only ones
        reps. Distance/time exercises get one series per distance.
        """
        series: list[dict] = []
        for name, entries in StatisticsService._exercises_by_name(logs).items():
            kind = entries[0].measurement_kind
            entries = [e for e in entries if e.measurement_kind == kind]
            if kind == "distance_time":
                by_distance: dict[str, dict] = {}
                for e in entries:
                    seconds = MathTools.to_float(e.time)
                    if not e.distance or seconds <= 0:
                        continue
                    item = by_distance.setdefault(
                        e.distance,
                        {"name": name, "type": "time", "distance": e.distance, "dates": [], "values": []},
                    )
                    item["dates"].append(e.date)
                    item["values"].append(seconds)
                series.extend(by_distance.values())
                continue
            if kind == "weight_reps":
                chart_type, field = "weight", "weight"
            elif kind == "time_only":
                chart_type, field = "time", "time"
            else:
                chart_type, field = "reps", "reps"
            points = [(e.date, MathTools.to_float(getattr(e, field))) for e in entries]
            points = [p for p in points if p[1] > 0]
            if points:
                series.append(
                    {
                        "name": name,
                        "type": chart_type,
                        "dates": [p[0] for p in points],
                        "values": [p[1] for p in points],
                    }
                )
        series.sort(key=lambda s: len(s["values"]), reverse=True)
        return series
