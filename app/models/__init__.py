"""Typed record models and Pydantic schemas."""
from app.models.base import StoredModel
from app.models.attendance import (
    AttendanceGrid,
    AttendanceMark,
    CumulativeRecord,
    DailyCounts,
    DailyRecord,
    DayStats,
    PupilTally,
    PupilWeekStats,
    RosterPupil,
    WeeklySummary,
)
from app.models.results import (
    LockStatus,
    PublishedResult,
    ResultDraft,
    ResultLock,
    ScoreEntry,
    SubmissionRecord,
    SubmissionStatus,
    UnlockEntry,
)
from app.models.school_class import ClassHierarchy, ClassRef, SchoolClass
from app.models.calendar import CalendarEntry, DayType
from app.models.user import Actor, UserRole

DOCUMENT_MODELS = [
    DailyRecord,
    CumulativeRecord,
    ResultDraft,
    SubmissionRecord,
    PublishedResult,
    ResultLock,
    SchoolClass,
    ClassHierarchy,
    CalendarEntry,
]

__all__ = [
    "DOCUMENT_MODELS",
    "StoredModel",
    "AttendanceGrid",
    "AttendanceMark",
    "CumulativeRecord",
    "DailyCounts",
    "DailyRecord",
    "DayStats",
    "PupilTally",
    "PupilWeekStats",
    "RosterPupil",
    "WeeklySummary",
    "LockStatus",
    "PublishedResult",
    "ResultDraft",
    "ResultLock",
    "ScoreEntry",
    "SubmissionRecord",
    "SubmissionStatus",
    "UnlockEntry",
    "ClassHierarchy",
    "ClassRef",
    "SchoolClass",
    "CalendarEntry",
    "DayType",
    "Actor",
    "UserRole",
]
