from datetime import date

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from app.api.deps import Store, TeacherOrAdmin, raise_for_failure
from app.models.attendance import AttendanceGrid, AttendanceMark, RosterPupil, WeeklySummary
from app.services import attendance
from app.services.calendar import SchoolCalendar

router = APIRouter()


class ClassTermRequest(BaseModel):
    class_id: str
    term: str
    session: str
    roster: list[RosterPupil] = []


class MarkDayRequest(ClassTermRequest):
    date: str
    attendance: dict[str, AttendanceMark]


class UpdateStatusRequest(ClassTermRequest):
    date: str
    pupil_id: str
    status: AttendanceMark


class DeleteDayRequest(ClassTermRequest):
    date: str


class WeeklySummaryRequest(ClassTermRequest):
    week_of: date


@router.post("/mark")
async def mark_attendance(data: MarkDayRequest, user: TeacherOrAdmin, store: Store):
    """Mark a whole class for one school day (replaces any earlier marking of that day)."""
    calendar = SchoolCalendar(store)
    if not await calendar.is_school_day(data.date, data.session, data.term):
        raise HTTPException(status_code=400, detail=f"{data.date} is not a school day")
    result = await attendance.mark_day(
        store,
        data.class_id,
        data.date,
        data.term,
        data.session,
        user.uid,
        data.attendance,
        data.roster,
    )
    return raise_for_failure(result)


@router.patch("/status")
async def update_status(data: UpdateStatusRequest, user: TeacherOrAdmin, store: Store):
    result = await attendance.update_single_status(
        store,
        data.class_id,
        data.date,
        data.term,
        data.session,
        user.uid,
        data.pupil_id,
        data.status,
        data.roster,
    )
    return raise_for_failure(result)


@router.post("/delete-day")
async def delete_day(data: DeleteDayRequest, user: TeacherOrAdmin, store: Store):
    result = await attendance.delete_day(
        store, data.class_id, data.date, data.term, data.session, user.uid, data.roster
    )
    return raise_for_failure(result)


@router.post("/recompute")
async def recompute(data: ClassTermRequest, user: TeacherOrAdmin, store: Store):
    result = await attendance.recompute(store, data.class_id, data.term, data.session, user.uid, data.roster)
    return raise_for_failure(result)


@router.get("/grid", response_model=AttendanceGrid)
async def get_grid(class_id: str, term: str, session: str, start: str, end: str, user: TeacherOrAdmin, store: Store):
    return await attendance.fetch_grid(store, class_id, term, session, start, end)


@router.get("/marked-dates")
async def get_marked_dates(class_id: str, term: str, session: str, user: TeacherOrAdmin, store: Store):
    return await attendance.get_marked_dates(store, class_id, term, session)


@router.post("/weekly-summary", response_model=WeeklySummary)
async def get_weekly_summary(data: WeeklySummaryRequest, user: TeacherOrAdmin, store: Store):
    days = attendance.week_dates(attendance.monday_of_week(data.week_of))
    grid = await attendance.fetch_grid(store, data.class_id, data.term, data.session, days[0], days[-1])
    return attendance.weekly_summary(days, grid.daily_records, data.roster)
