from .calendar_tools import CalendarTools
from .unit_formatter import UnitFormatter

__all__ = ["CalendarTools", "UnitFormatter"]
