from app.errors import ErrorCode
from app.models.calendar import DayType
from app.services.calendar import SchoolCalendar

SESSION = "2025/2026"
TERM = "First Term"


async def test_non_school_days(store):
    calendar = SchoolCalendar(store)
    await calendar.add_entry("2025-10-01", DayType.PUBLIC_HOLIDAY, SESSION, TERM, "Independence Day")
    await calendar.add_entry("2025-10-20", "mid_term_break", SESSION, TERM)
    await calendar.add_entry("2025-10-21", DayType.SCHOOL_DAY, SESSION, TERM, "Make-up day")
    await calendar.add_entry("2026-01-01", DayType.PUBLIC_HOLIDAY, SESSION, "Second Term")

    assert await calendar.non_school_days(SESSION, TERM) == frozenset({"2025-10-01", "2025-10-20"})
    assert not await calendar.is_school_day("2025-10-01", SESSION, TERM)
    assert await calendar.is_school_day("2025-10-21", SESSION, TERM)
    assert await calendar.filter_school_days(
        ["2025-09-30", "2025-10-01", "2025-10-02"], SESSION, TERM
    ) == ["2025-09-30", "2025-10-02"]

    entries = await calendar.entries(SESSION, TERM)
    assert [e.date for e in entries] == ["2025-10-01", "2025-10-20", "2025-10-21"]
    assert entries[0].description == "Independence Day"


async def test_writes_invalidate_cache(store):
    calendar = SchoolCalendar(store)
    assert await calendar.is_school_day("2025-10-01", SESSION, TERM)

    await calendar.add_entry("2025-10-01", DayType.PUBLIC_HOLIDAY, SESSION, TERM)
    assert not await calendar.is_school_day("2025-10-01", SESSION, TERM)

    await calendar.delete_entry("2025-10-01")
    assert await calendar.is_school_day("2025-10-01", SESSION, TERM)


async def test_cache_is_scoped_to_the_calendar_object(store):
    calendar = SchoolCalendar(store)
    assert await calendar.is_school_day("2025-10-01", SESSION, TERM)

    # A write through another calendar object is not seen until invalidated.
    await SchoolCalendar(store).add_entry("2025-10-01", DayType.SPECIAL_BREAK, SESSION, TERM)
    assert await calendar.is_school_day("2025-10-01", SESSION, TERM)

    calendar.invalidate(SESSION, TERM)
    assert not await calendar.is_school_day("2025-10-01", SESSION, TERM)


async def test_add_entry_validation(store):
    calendar = SchoolCalendar(store)
    assert (await calendar.add_entry("01/10/2025", DayType.PUBLIC_HOLIDAY, SESSION, TERM)).code == (
        ErrorCode.INVALID_ARGUMENT
    )
    assert (await calendar.add_entry("2025-10-01", "carnival", SESSION, TERM)).code == ErrorCode.INVALID_ARGUMENT
    assert (await calendar.add_entry("2025-10-01", DayType.PUBLIC_HOLIDAY, "", TERM)).code == (
        ErrorCode.INVALID_ARGUMENT
    )
    assert await calendar.entries(SESSION, TERM) == []
