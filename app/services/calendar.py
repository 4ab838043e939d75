"""School calendar queries for calendar-aware callers.

``SchoolCalendar`` is created per request (or per caller session) and
caches non-school days per session/term; any write made through it clears
the cache.
"""
from __future__ import annotations

import logging
from datetime import date
from typing import Iterable, Optional

from app.errors import ErrorCode, OperationResult, RecordError, fail, failure_from_error, ok
from app.models.calendar import NON_SCHOOL_TYPES, CalendarEntry, DayType
from app.store.base import SERVER_TIMESTAMP, DocumentStore

logger = logging.getLogger(__name__)


class SchoolCalendar:
    def __init__(self, store: DocumentStore):
        self._store = store
        self._non_school_days: dict[tuple[str, str], frozenset[str]] = {}

    def invalidate(self, session: Optional[str] = None, term: Optional[str] = None) -> None:
        if session is None or term is None:
            self._non_school_days.clear()
        else:
            self._non_school_days.pop((session, term), None)

    async def entries(self, session: str, term: str) -> list[CalendarEntry]:
        try:
            docs = await self._store.find(CalendarEntry.Settings.name, {"session": session, "term": term}, sort="date")
        except RecordError as e:
            logger.error(f"Error loading calendar entries for {session} {term}: {e.message}")
            return []
        return [CalendarEntry.from_document(d) for d in docs]

    async def non_school_days(self, session: str, term: str) -> frozenset[str]:
        """Dates marked as holidays or breaks. A failed read gives an empty set, so every day counts."""
        key = (session, term)
        if key in self._non_school_days:
            return self._non_school_days[key]
        try:
            docs = await self._store.find(CalendarEntry.Settings.name, {"session": session, "term": term})
        except RecordError as e:
            logger.error(f"Error loading non-school days for {session} {term}: {e.message}")
            return frozenset()
        days = frozenset(
            entry.date for entry in map(CalendarEntry.from_document, docs) if entry.type in NON_SCHOOL_TYPES
        )
        self._non_school_days[key] = days
        logger.debug(f"{len(days)} non-school day(s) for {session} {term}")
        return days

    async def is_school_day(self, day: str, session: str, term: str) -> bool:
        return day not in await self.non_school_days(session, term)

    async def filter_school_days(self, days: Iterable[str], session: str, term: str) -> list[str]:
        excluded = await self.non_school_days(session, term)
        return [d for d in days if d not in excluded]

    async def add_entry(
        self,
        day: str,
        day_type: DayType,
        session: str,
        term: str,
        description: str = "",
        created_by: str = "",
    ) -> OperationResult:
        try:
            date.fromisoformat(day)
        except (TypeError, ValueError):
            return fail(ErrorCode.INVALID_ARGUMENT, f"Invalid date format (YYYY-MM-DD): {day}")
        if not session or not term:
            return fail(ErrorCode.INVALID_ARGUMENT, "Session and term are required")
        try:
            day_type = DayType(day_type)
        except ValueError:
            return fail(ErrorCode.INVALID_ARGUMENT, f"Unknown day type: {day_type}")
        try:
            await self._store.set(
                CalendarEntry.Settings.name,
                day,
                {
                    "date": day,
                    "type": day_type.value,
                    "description": description,
                    "session": session,
                    "term": term,
                    "created_at": SERVER_TIMESTAMP,
                    "created_by": created_by,
                },
            )
        except RecordError as e:
            logger.error(f"Error saving calendar entry {day}: {e.message}")
            return failure_from_error(e, "Failed to save calendar entry")
        finally:
            # An existing entry for this date may belong to another session/term.
            self.invalidate()
        logger.info(f"Calendar entry saved: {day} ({day_type.value})")
        return ok("Calendar entry saved", date=day)

    async def delete_entry(self, day: str) -> OperationResult:
        try:
            await self._store.delete(CalendarEntry.Settings.name, day)
        except RecordError as e:
            logger.error(f"Error deleting calendar entry {day}: {e.message}")
            return failure_from_error(e, "Failed to delete calendar entry")
        finally:
            self.invalidate()
        logger.info(f"Calendar entry deleted: {day}")
        return ok("Calendar entry deleted", date=day)
