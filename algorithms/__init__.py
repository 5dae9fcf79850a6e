from .math_tools import MathTools
from .time_format import TimeFormatter
from .weight_converter import WeightConverter

__all__ = ["MathTools", "TimeFormatter", "WeightConverter"]
