from datetime import datetime
from enum import Enum
from typing import Optional

from beanie import Indexed
from pymongo import ASCENDING, IndexModel

from app.models.base import StoredModel


class DayType(str, Enum):
    PUBLIC_HOLIDAY = "public_holiday"
    MID_TERM_BREAK = "mid_term_break"
    SPECIAL_BREAK = "special_break"
    SCHOOL_DAY = "school_day"


NON_SCHOOL_TYPES = frozenset({DayType.PUBLIC_HOLIDAY, DayType.MID_TERM_BREAK, DayType.SPECIAL_BREAK})


class CalendarEntry(StoredModel):
    """Admin calendar entry for one date (the date is the document key)."""
    date: Indexed(str)  # YYYY-MM-DD
    type: DayType
    description: str = ""
    session: str
    term: str
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None

    class Settings:
        name = "school_calendar"
        indexes = [IndexModel([("session", ASCENDING), ("term", ASCENDING), ("date", ASCENDING)])]
