"""CalendarPlus: local storage and multi-backend AI assistant core."""

__version__ = "0.1.0"
