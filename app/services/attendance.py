"""Daily attendance records and the cumulative totals derived from them.

Cumulative totals are only ever written by ``recompute``, which rebuilds them
from the full set of daily records for a class/term/session. Every write to a
daily record (mark, single-status correction, delete) is followed by a full
recompute, so the totals cannot drift from the daily records however many
edits happen.
"""
from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from app.config import settings
from app.errors import (
    InvalidArgument,
    NotFound,
    OperationResult,
    RecordError,
    fail,
    failure_from_error,
    ok,
)
from app.models.attendance import (
    ATTENDANCE_MARKS,
    AttendanceGrid,
    CumulativeRecord,
    DailyCounts,
    DailyRecord,
    DayStats,
    PupilTally,
    PupilWeekStats,
    RosterPupil,
    WeeklySummary,
)
from app.store.base import SERVER_TIMESTAMP, DocumentStore, Transaction

logger = logging.getLogger(__name__)

RosterInput = Sequence[Union[RosterPupil, Mapping[str, Any]]]


def _as_roster(roster: Optional[RosterInput]) -> list[RosterPupil]:
    return [p if isinstance(p, RosterPupil) else RosterPupil.model_validate(p) for p in roster or []]


def _require(**values: Any) -> None:
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise InvalidArgument(f"Missing required parameters: {', '.join(missing)}")


def _check_date(value: str) -> None:
    try:
        date.fromisoformat(value)
    except (TypeError, ValueError):
        raise InvalidArgument(f"Invalid date format (YYYY-MM-DD): {value}")


def _check_statuses(status_by_pupil: Mapping[str, str], roster: list[RosterPupil]) -> None:
    for pupil_id, status in status_by_pupil.items():
        if status not in ATTENDANCE_MARKS:
            raise InvalidArgument(f"Invalid attendance status '{status}' for pupil {pupil_id}")
    unknown = sorted(set(status_by_pupil) - {p.id for p in roster})
    if unknown:
        raise InvalidArgument(f"Pupils not on the class roster: {', '.join(unknown)}")


def session_years(session: str) -> tuple[Optional[int], Optional[int]]:
    """Split a "2025/2026" session name into its start and end years."""
    parts = (session or "").split("/")
    if len(parts) != 2:
        return None, None
    try:
        return int(parts[0]), int(parts[1])
    except ValueError:
        return None, None


def daily_counts(status_by_pupil: Mapping[str, str], roster: Iterable[RosterPupil]) -> DailyCounts:
    """Totals and gender split for one day. Pupils of unknown gender count as girls."""
    by_id = {p.id: p for p in roster}
    counts = DailyCounts(total_pupils=len(status_by_pupil))
    for pupil_id, status in status_by_pupil.items():
        pupil = by_id.get(pupil_id)
        is_boy = pupil.is_boy if pupil else False
        if status == "present":
            counts.total_present += 1
            if is_boy:
                counts.boy_present += 1
            else:
                counts.girl_present += 1
        else:
            counts.total_absent += 1
            if is_boy:
                counts.boy_absent += 1
            else:
                counts.girl_absent += 1
    return counts


def tally_attendance(records: Iterable[DailyRecord], roster: Iterable[RosterPupil]) -> dict[str, PupilTally]:
    """Count present/absent days per pupil.

    Every roster pupil starts at zero, so a pupil with no marks still gets a
    fresh total. Pupils found in a record but no longer on the roster are
    tallied too.
    """
    tallies = {p.id: PupilTally() for p in roster}
    for record in records:
        for pupil_id, status in record.records.items():
            tally = tallies.setdefault(pupil_id, PupilTally())
            if status == "present":
                tally.times_present += 1
            else:
                tally.times_absent += 1
    return tallies


async def mark_day(
    store: DocumentStore,
    class_id: str,
    date: str,
    term: str,
    session: str,
    teacher_id: str,
    status_by_pupil: Mapping[str, str],
    roster: RosterInput,
) -> OperationResult:
    """Replace the class's record for ``date`` and recompute cumulative totals."""
    pupils = _as_roster(roster)
    try:
        _require(class_id=class_id, date=date, term=term, session=session, teacher_id=teacher_id)
        _check_date(date)
        _check_statuses(status_by_pupil, pupils)
    except InvalidArgument as e:
        return fail(e.code, e.message)

    doc_id = DailyRecord.key(class_id, date)
    counts = daily_counts(status_by_pupil, pupils)
    record = {
        "class_id": class_id,
        "date": date,
        "term": term,
        "session": session,
        "teacher_id": teacher_id,
        "records": dict(status_by_pupil),
        **counts.model_dump(),
        "marked_at": SERVER_TIMESTAMP,
        "updated_at": SERVER_TIMESTAMP,
    }
    try:
        await store.set(DailyRecord.Settings.name, doc_id, record, merge=False)
    except RecordError as e:
        logger.error(f"Failed to save daily attendance {doc_id}: {e.message}")
        return failure_from_error(e, "Failed to save attendance")

    logger.info(f"Daily attendance marked: {doc_id} ({counts.total_present} present, {counts.total_absent} absent)")
    return await _recompute_after_write(
        store,
        class_id,
        term,
        session,
        teacher_id,
        pupils,
        f"Attendance marked for {counts.total_pupils} pupils",
        doc_id=doc_id,
        counts=counts.model_dump(),
    )


async def update_single_status(
    store: DocumentStore,
    class_id: str,
    date: str,
    term: str,
    session: str,
    teacher_id: str,
    pupil_id: str,
    new_status: str,
    roster: RosterInput,
) -> OperationResult:
    """Correct one pupil's mark on an existing day, then recompute."""
    pupils = _as_roster(roster)
    try:
        _require(class_id=class_id, date=date, term=term, session=session, teacher_id=teacher_id, pupil_id=pupil_id)
        _check_statuses({pupil_id: new_status}, pupils)
    except InvalidArgument as e:
        return fail(e.code, e.message)

    doc_id = DailyRecord.key(class_id, date)

    async def _correct(txn: Transaction) -> DailyCounts:
        doc = await txn.get(DailyRecord.Settings.name, doc_id)
        if doc is None:
            raise NotFound(f"No attendance record found for {doc_id}")
        records = {**DailyRecord.from_document(doc).records, pupil_id: new_status}
        counts = daily_counts(records, pupils)
        txn.update(
            DailyRecord.Settings.name,
            doc_id,
            {"records": records, **counts.model_dump(), "updated_at": SERVER_TIMESTAMP},
        )
        return counts

    try:
        counts = await store.run_transaction(_correct)
    except RecordError as e:
        logger.error(f"Failed to update {pupil_id} on {doc_id}: {e.message}")
        return failure_from_error(e, "Failed to update attendance")

    logger.info(f"Updated {pupil_id} to '{new_status}' on {date}")
    return await _recompute_after_write(
        store,
        class_id,
        term,
        session,
        teacher_id,
        pupils,
        f"Attendance updated for {pupil_id}",
        doc_id=doc_id,
        counts=counts.model_dump(),
    )


async def delete_day(
    store: DocumentStore,
    class_id: str,
    date: str,
    term: str,
    session: str,
    teacher_id: str,
    roster: RosterInput,
) -> OperationResult:
    """Remove a day from aggregation; the way a miscounted day is corrected."""
    pupils = _as_roster(roster)
    try:
        _require(class_id=class_id, date=date, term=term, session=session)
    except InvalidArgument as e:
        return fail(e.code, e.message)

    doc_id = DailyRecord.key(class_id, date)
    try:
        await store.delete(DailyRecord.Settings.name, doc_id)
    except RecordError as e:
        logger.error(f"Failed to delete daily attendance {doc_id}: {e.message}")
        return failure_from_error(e, "Failed to delete attendance")

    logger.info(f"Deleted daily attendance for {doc_id}")
    return await _recompute_after_write(
        store, class_id, term, session, teacher_id, pupils, f"Attendance for {date} deleted", doc_id=doc_id
    )


async def _recompute_after_write(
    store: DocumentStore,
    class_id: str,
    term: str,
    session: str,
    teacher_id: str,
    roster: list[RosterPupil],
    message: str,
    **data: Any,
) -> OperationResult:
    result = await recompute(store, class_id, term, session, teacher_id, roster)
    if not result.success:
        # The daily record is saved; a later recompute reconciles the totals.
        return fail(
            result.code,
            f"Attendance saved but cumulative totals were not updated: {result.message}",
            retry=True,
            saved=True,
            **data,
        )
    return ok(
        message,
        total_days=result.data["total_days"],
        pupils_updated=result.data["pupils_updated"],
        **data,
    )


async def recompute(
    store: DocumentStore,
    class_id: str,
    term: str,
    session: str,
    teacher_id: str,
    roster: RosterInput,
    batch_size: Optional[int] = None,
) -> OperationResult:
    """Rebuild every pupil's cumulative record from all matching daily records.

    ``times_opened`` is the number of daily records found. Writes are
    committed in batches of ``batch_size`` (default ``write_batch_limit``);
    a failure part-way leaves earlier batches committed, and running
    recompute again reconciles them.
    """
    pupils = _as_roster(roster)
    try:
        _require(class_id=class_id, term=term, session=session)
    except InvalidArgument as e:
        return fail(e.code, e.message)

    try:
        summary = await _recompute(store, class_id, term, session, teacher_id, pupils, batch_size)
    except RecordError as e:
        logger.error(f"Recompute failed for class={class_id} term={term} session={session}: {e.message}")
        return failure_from_error(e, "Failed to recompute cumulative attendance")
    return ok(
        f"Recomputed cumulative attendance for {summary['pupils_updated']} pupils over {summary['total_days']} day(s)",
        **summary,
    )


async def _recompute(
    store: DocumentStore,
    class_id: str,
    term: str,
    session: str,
    teacher_id: str,
    roster: list[RosterPupil],
    batch_size: Optional[int],
) -> dict[str, Any]:
    docs = await store.find(DailyRecord.Settings.name, {"class_id": class_id, "term": term, "session": session})
    records = [DailyRecord.from_document(d) for d in docs]
    tallies = tally_attendance(records, roster)
    total_days = len(records)

    start_year, end_year = session_years(session)
    size = batch_size or settings.write_batch_limit
    entries = list(tallies.items())
    committed = 0

    for start in range(0, len(entries), size):
        chunk = entries[start : start + size]
        batch = store.batch()
        for pupil_id, tally in chunk:
            batch.set(
                CumulativeRecord.Settings.name,
                CumulativeRecord.key(pupil_id, term),
                {
                    "pupil_id": pupil_id,
                    "term": term,
                    "session": session,
                    "session_term": f"{session}_{term}",
                    "teacher_id": teacher_id,
                    "session_start_year": start_year,
                    "session_end_year": end_year,
                    "times_opened": max(0, total_days),
                    "times_present": max(0, tally.times_present),
                    "times_absent": max(0, tally.times_absent),
                    "derived_from_daily_records": True,
                    "updated_at": SERVER_TIMESTAMP,
                },
                merge=True,
            )
        try:
            await batch.commit()
        except RecordError as e:
            logger.error(f"Recompute for {class_id} stopped after {committed}/{len(entries)} pupils: {e.message}")
            raise
        committed += len(chunk)

    logger.info(f"Recalculated cumulative for {len(entries)} pupils. School days: {total_days}")
    return {
        "total_days": total_days,
        "pupils_updated": len(entries),
        "pupil_counts": {pupil_id: tally.model_dump() for pupil_id, tally in entries},
    }


async def fetch_grid(
    store: DocumentStore,
    class_id: str,
    term: str,
    session: str,
    start: str,
    end: str,
) -> AttendanceGrid:
    """Daily records in ``[start, end]`` keyed by date, plus the sorted marked dates."""
    try:
        docs = await store.find(
            DailyRecord.Settings.name,
            {
                "class_id": class_id,
                "term": term,
                "session": session,
                "date": {"$gte": start, "$lte": end},
            },
            sort="date",
        )
    except RecordError as e:
        logger.error(f"Failed to fetch attendance grid for {class_id}: {e.message}")
        return AttendanceGrid()
    daily_records = {d["date"]: DailyRecord.from_document(d) for d in docs}
    return AttendanceGrid(dates=sorted(daily_records), daily_records=daily_records)


async def has_attendance_for_date(store: DocumentStore, class_id: str, date: str) -> bool:
    try:
        return await store.get(DailyRecord.Settings.name, DailyRecord.key(class_id, date)) is not None
    except RecordError as e:
        logger.error(f"Failed to check attendance for {class_id} on {date}: {e.message}")
        return False


async def get_marked_dates(store: DocumentStore, class_id: str, term: str, session: str) -> list[str]:
    try:
        docs = await store.find(
            DailyRecord.Settings.name,
            {"class_id": class_id, "term": term, "session": session},
            sort="date",
        )
    except RecordError as e:
        logger.error(f"Failed to list marked dates for {class_id}: {e.message}")
        return []
    return [d["date"] for d in docs]


def _percentage(part: int, whole: int) -> int:
    if whole <= 0:
        return 0
    return int(part * 100 / whole + 0.5)


def weekly_summary(
    week_dates: Sequence[str],
    daily_records: Mapping[str, DailyRecord],
    roster: RosterInput,
) -> WeeklySummary:
    """Per-day and per-pupil attendance percentages from already-fetched records."""
    pupils = _as_roster(roster)
    summary = WeeklySummary(week_dates=list(week_dates))

    for day in week_dates:
        record = daily_records.get(day)
        if record is None:
            continue
        summary.total_days_marked += 1
        summary.daily_stats[day] = DayStats(
            present=record.total_present,
            absent=record.total_absent,
            total=record.total_pupils,
            percentage=_percentage(record.total_present, record.total_pupils),
        )

    for pupil in pupils:
        present = absent = 0
        for day in week_dates:
            record = daily_records.get(day)
            if record is None:
                continue
            status = record.records.get(pupil.id)
            if status == "present":
                present += 1
            elif status == "absent":
                absent += 1
        summary.pupil_weekly_stats[pupil.id] = PupilWeekStats(
            name=pupil.name,
            present=present,
            absent=absent,
            percentage=_percentage(present, present + absent),
        )
    return summary


def monday_of_week(day: date) -> date:
    return day - timedelta(days=day.weekday())


def week_dates(monday: date) -> list[str]:
    """Monday to Friday as YYYY-MM-DD strings."""
    return [(monday + timedelta(days=i)).isoformat() for i in range(5)]
