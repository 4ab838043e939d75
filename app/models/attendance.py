from datetime import datetime
from typing import Literal, Optional

from beanie import Indexed
from pydantic import BaseModel, Field
from pymongo import ASCENDING, IndexModel

from app.models.base import StoredModel

AttendanceMark = Literal["present", "absent"]
ATTENDANCE_MARKS = ("present", "absent")


class RosterPupil(BaseModel):
    """Pupil tuple supplied by the roster service."""
    id: str
    name: str = ""
    gender: Optional[str] = None

    @property
    def is_boy(self) -> bool:
        return (self.gender or "").strip().lower() in ("male", "m")


class DailyCounts(BaseModel):
    total_present: int = 0
    total_absent: int = 0
    total_pupils: int = 0
    boy_present: int = 0
    girl_present: int = 0
    boy_absent: int = 0
    girl_absent: int = 0


class DailyRecord(StoredModel):
    """Attendance snapshot for one class on one day (one per class/date)."""
    class_id: Indexed(str)
    date: Indexed(str)  # YYYY-MM-DD
    term: str
    session: str
    teacher_id: str = ""
    records: dict[str, str] = Field(default_factory=dict)  # pupil_id -> present | absent

    total_present: int = 0
    total_absent: int = 0
    total_pupils: int = 0
    boy_present: int = 0
    girl_present: int = 0
    boy_absent: int = 0
    girl_absent: int = 0

    marked_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @staticmethod
    def key(class_id: str, date: str) -> str:
        return f"{class_id}_{date}"

    class Settings:
        name = "daily_attendance"
        indexes = [
            IndexModel([("class_id", ASCENDING), ("term", ASCENDING), ("session", ASCENDING), ("date", ASCENDING)]),
        ]


class CumulativeRecord(StoredModel):
    """Per-pupil term totals, derived entirely from daily records."""
    pupil_id: Indexed(str)
    term: str
    session: str
    session_term: str = ""
    teacher_id: str = ""
    session_start_year: Optional[int] = None
    session_end_year: Optional[int] = None
    times_opened: int = 0
    times_present: int = 0
    times_absent: int = 0
    derived_from_daily_records: bool = True
    updated_at: Optional[datetime] = None

    @staticmethod
    def key(pupil_id: str, term: str) -> str:
        return f"{pupil_id}_{term}"

    class Settings:
        name = "attendance"


class PupilTally(BaseModel):
    times_present: int = 0
    times_absent: int = 0


class AttendanceGrid(BaseModel):
    dates: list[str] = Field(default_factory=list)
    daily_records: dict[str, DailyRecord] = Field(default_factory=dict)


class DayStats(BaseModel):
    present: int = 0
    absent: int = 0
    total: int = 0
    percentage: int = 0


class PupilWeekStats(BaseModel):
    name: str = ""
    present: int = 0
    absent: int = 0
    percentage: int = 0


class WeeklySummary(BaseModel):
    week_dates: list[str] = Field(default_factory=list)
    total_days_marked: int = 0
    daily_stats: dict[str, DayStats] = Field(default_factory=dict)
    pupil_weekly_stats: dict[str, PupilWeekStats] = Field(default_factory=dict)
