import os
import sys
import unittest

from pydantic import ValidationError

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from workout_schema import WOD, Exercise, infer_kind, infer_measurement_kind, row_to_log


class MeasurementKindTestCase(unittest.TestCase):
    def test_priority(self) -> None:
        self.assertEqual(infer_measurement_kind("50", "10", "", ""), "weight_reps")
        self.assertEqual(infer_measurement_kind("", "", "30", "400"), "distance_time")
        self.assertEqual(infer_measurement_kind("", "", "30", ""), "time_only")
        self.assertEqual(infer_measurement_kind("", "12", "", ""), "reps_only")
        self.assertEqual(infer_measurement_kind(None, None, None, None), "weight_reps")
        self.assertEqual(infer_measurement_kind("40", "", "60", ""), "time_only")
        self.assertEqual(infer_measurement_kind("  ", "5", "", ""), "reps_only")

    def test_normalized_clears_unused_fields(self) -> None:
        exercise = Exercise(
            name="Run",
            date="2024-01-01",
            measurement_kind="time_only",
            weight="100",
            reps="5",
            distance="400",
            time="90",
        )
        cleaned = exercise.normalized()
        self.assertEqual(
            (cleaned.weight, cleaned.reps, cleaned.distance, cleaned.time),
            ("", "", "", "90"),
        )
        self.assertEqual(exercise.weight, "100")

    def test_validation(self) -> None:
        with self.assertRaises(ValidationError):
            Exercise(name="Squat", date="2024-01-01", measurement_kind="laps")
        with self.assertRaises(ValidationError):
            WOD(name="", date="2024-01-01")
        with self.assertRaises(ValidationError):
            WOD(name="Fran", date="2024-01-01", kind="exercise")


class RowConversionTestCase(unittest.TestCase):
    def test_legacy_exercise_row(self) -> None:
        row = {
            "id": 3,
            "name": "Bench",
            "date": "2024-01-01",
            "type": "exercise",
            "description": None,
            "result": None,
            "weight": "80",
            "reps": "5",
            "notes": None,
        }
        log = row_to_log(row)
        self.assertIsInstance(log, Exercise)
        self.assertEqual(log.measurement_kind, "weight_reps")
        self.assertEqual(log.notes, "")
        self.assertEqual(log.time, "")

    def test_wod_row(self) -> None:
        log = row_to_log(
            {"id": 1, "name": "Fran", "date": "2024-01-01", "type": "wod",
             "description": "21-15-9", "result": "4:32", "measurement_kind": None}
        )
        self.assertIsInstance(log, WOD)
        self.assertEqual(log.result, "4:32")

    def test_blank_kind(self) -> None:
        self.assertEqual(infer_kind({"type": "", "description": "AMRAP"}), "wod")
        self.assertEqual(infer_kind({"type": None, "description": ""}), "exercise")


if __name__ == "__main__":
    unittest.main()
