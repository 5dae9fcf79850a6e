class TimeFormatter:
    """Convert between ``m:ss`` input and stored second counts."""

    @staticmethod
    def to_seconds(text: str) -> int:
        """Parse ``m:ss`` or ``h:mm:ss``; a bare number counts as minutes.

        Anything else, including more than three parts, gives 0.
        """
        if not text:
            return 0
        parts = [p.strip() for p in text.split(":")]
        if len(parts) > 3:
            return 0
        if len(parts) == 1:
            parts.append("0")
        total = 0
        try:
            for part in parts:
                total = total * 60 + int(part or 0)
        except ValueError:
            return 0
        return total

    @staticmethod
    def format_seconds(seconds: float) -> str:
        mins = int(seconds // 60)
        secs = int(seconds % 60)
        return f"{mins}:{secs:02d}"
