class UnitFormatter:
    """Format workout measurements for display."""

    MISSING = "--"

    @classmethod
    def format_duration(cls, total_seconds: float | None) -> str:
        """Return ``MM:SS`` or ``H:MM:SS`` for ``total_seconds``."""
        if total_seconds is None:
            return cls.MISSING
        total = int(round(total_seconds))
        hours, rest = divmod(total, 3600)
        minutes, seconds = divmod(rest, 60)
        if hours > 0:
            return f"{hours}:{minutes:02d}:{seconds:02d}"
        return f"{minutes:02d}:{seconds:02d}"

    @classmethod
    def format_pace(cls, seconds_per_mile: float | None) -> str:
        """Return a pace such as ``8:51 / mi``."""
        if seconds_per_mile is None:
            return cls.MISSING
        total = int(round(seconds_per_mile))
        minutes, seconds = divmod(total, 60)
        return f"{minutes}:{seconds:02d} / mi"

    @classmethod
    def format_num(cls, value: float | None, unit: str | None = None) -> str:
        """Return ``value`` with at most two decimals and no trailing zeros."""
        if value is None:
            return cls.MISSING
        text = f"{float(value):.2f}".rstrip("0").rstrip(".")
        if text == "-0":
            text = "0"
        return f"{text} {unit}" if unit else text

    @classmethod
    def format_heart_rate(cls, value: float | None) -> str:
        if value is None:
            return cls.MISSING
        return f"{int(round(value))} bpm"
