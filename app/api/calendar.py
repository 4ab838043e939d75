from typing import List

from fastapi import APIRouter
from pydantic import BaseModel

from app.api.deps import AdminOnly, CurrentActor, Store, raise_for_failure
from app.models.calendar import CalendarEntry, DayType
from app.services.calendar import SchoolCalendar

router = APIRouter()


class CalendarEntryCreate(BaseModel):
    date: str
    type: DayType
    session: str
    term: str
    description: str = ""


@router.get("/entries", response_model=List[CalendarEntry])
async def list_entries(session: str, term: str, user: CurrentActor, store: Store):
    return await SchoolCalendar(store).entries(session, term)


@router.get("/non-school-days", response_model=List[str])
async def non_school_days(session: str, term: str, user: CurrentActor, store: Store):
    return sorted(await SchoolCalendar(store).non_school_days(session, term))


@router.get("/is-school-day")
async def is_school_day(date: str, session: str, term: str, user: CurrentActor, store: Store):
    return {"date": date, "school_day": await SchoolCalendar(store).is_school_day(date, session, term)}


@router.post("/entries")
async def add_entry(data: CalendarEntryCreate, user: AdminOnly, store: Store):
    result = await SchoolCalendar(store).add_entry(
        data.date, data.type, data.session, data.term, description=data.description, created_by=user.uid
    )
    return raise_for_failure(result)


@router.delete("/entries/{day}")
async def delete_entry(day: str, user: AdminOnly, store: Store):
    return raise_for_failure(await SchoolCalendar(store).delete_entry(day))
