from typing import Optional


class MathTools:
    """Numeric helpers for values stored as text."""

    EPL_COEFF: float = 0.0333

    @staticmethod
    def to_float(value: Optional[str]) -> float:
        """Parse a stored numeric string, returning 0.0 when it is empty or invalid."""
        if value is None:
            return 0.0
        try:
            return float(str(value).strip())
        except ValueError:
            return 0.0

    @staticmethod
    def to_int(value: Optional[str]) -> int:
        return int(MathTools.to_float(value))

    @classmethod
    def epley_1rm(cls, weight: float, reps: int) -> float:
        """Return the estimated one-rep max using the Epley formula."""
        if reps < 0:
            raise ValueError("reps must be non-negative")
        if reps == 1:
            return weight
        return round(weight * (1 + cls.EPL_COEFF * reps), 2)
