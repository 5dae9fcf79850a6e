class WeightConverter:
    """Utility for converting between kg and lb."""

    KG_TO_LB = 2.20462

    @staticmethod
    def kg_to_lb(kg: float) -> float:
        return round(kg * WeightConverter.KG_TO_LB, 2)

    @staticmethod
    def lb_to_kg(lb: float) -> float:
        return round(lb / WeightConverter.KG_TO_LB, 2)

    @staticmethod
    def display(kg: float, use_metric: bool = True) -> str:
        """Format a stored kilogram value for the user's unit preference."""
        if use_metric:
            return f"{kg:g}kg"
        return f"{round(kg * WeightConverter.KG_TO_LB)}lb"
