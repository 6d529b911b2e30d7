"""Busy-time conflict checks.

Ranges are half-open: ``[s1, e1)`` and ``[s2, e2)`` conflict iff
``s1 < e2 and s2 < e1``, so back-to-back ranges never conflict. All-day
external events block whole local calendar days of the specialist.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Protocol

from sqlalchemy.orm import Session

from soradin.core.timezones import ensure_utc, to_local
from soradin.models.appointment import Appointment
from soradin.models.calendar import ExternalEvent
from soradin.services.availability_store import AvailabilityStore, SqlAvailabilityStore, TimeRange

# All-day rows are stored as midnight UTC of their calendar date, so a window
# query has to reach a day past each end to see every all-day block.
_ALL_DAY_PADDING = timedelta(days=1)


class ConflictIndex(Protocol):
    def has_conflict(self, specialist_id: str, starts_at: datetime, ends_at: datetime) -> bool: ...


def ranges_overlap(start1: datetime, end1: datetime, start2: datetime, end2: datetime) -> bool:
    return start1 < end2 and start2 < end1


def all_day_dates(starts_at: datetime, ends_at: datetime, tz_name: str | None) -> tuple[date, date]:
    """Return the ``[first, last)`` local dates an all-day event covers.

    Providers report all-day events either as floating dates (midnight UTC,
    the date component *is* the calendar date) or as local-midnight instants.
    """
    start = ensure_utc(starts_at)
    end = ensure_utc(ends_at)

    if start.time() == time(0) and end.time() == time(0):
        first, last = start.date(), end.date()
    else:
        first, _ = to_local(start, tz_name)
        last, last_time = to_local(end, tz_name)
        if last_time != time(0):
            last += timedelta(days=1)

    if last <= first:
        last = first + timedelta(days=1)
    return first, last


@dataclass
class _SpecialistBusyTime:
    timezone: str | None = None
    time_off: list[TimeRange] = field(default_factory=list)
    appointments: list[TimeRange] = field(default_factory=list)
    events: list[TimeRange] = field(default_factory=list)
    all_day_events: list[tuple[date, date]] = field(default_factory=list)


class BusyTimeIndex:
    """In-memory ConflictIndex over a consistent snapshot of busy time."""

    def __init__(self) -> None:
        self._by_specialist: dict[str, _SpecialistBusyTime] = defaultdict(_SpecialistBusyTime)

    def set_timezone(self, specialist_id: str, tz_name: str | None) -> None:
        self._by_specialist[specialist_id].timezone = tz_name

    def add_time_off(self, specialist_id: str, starts_at: datetime, ends_at: datetime) -> None:
        self._by_specialist[specialist_id].time_off.append(TimeRange(ensure_utc(starts_at), ensure_utc(ends_at)))

    def add_appointment(self, specialist_id: str, starts_at: datetime, ends_at: datetime) -> None:
        self._by_specialist[specialist_id].appointments.append(TimeRange(ensure_utc(starts_at), ensure_utc(ends_at)))

    def add_external_event(
        self,
        specialist_id: str,
        starts_at: datetime,
        ends_at: datetime,
        is_all_day: bool = False,
    ) -> None:
        bucket = self._by_specialist[specialist_id]
        if is_all_day:
            bucket.all_day_events.append(all_day_dates(starts_at, ends_at, bucket.timezone))
        else:
            bucket.events.append(TimeRange(ensure_utc(starts_at), ensure_utc(ends_at)))

    def has_conflict(self, specialist_id: str, starts_at: datetime, ends_at: datetime) -> bool:
        bucket = self._by_specialist.get(specialist_id)
        if bucket is None:
            return False

        start = ensure_utc(starts_at)
        end = ensure_utc(ends_at)

        for blocked in (bucket.time_off, bucket.appointments, bucket.events):
            if any(ranges_overlap(start, end, busy.starts_at, busy.ends_at) for busy in blocked):
                return True

        if bucket.all_day_events:
            local_day, _ = to_local(start, bucket.timezone)
            return any(first <= local_day < last for first, last in bucket.all_day_events)

        return False


def load_busy_time_index(
    db: Session,
    specialist_id: str,
    window_start: datetime,
    window_end: datetime,
    store: AvailabilityStore | None = None,
) -> BusyTimeIndex:
    """Read every blocking row for one specialist that can touch the window."""
    store = store or SqlAvailabilityStore(db)
    query_start = ensure_utc(window_start) - _ALL_DAY_PADDING
    query_end = ensure_utc(window_end) + _ALL_DAY_PADDING

    index = BusyTimeIndex()
    specialist = store.get_specialist(specialist_id)
    index.set_timezone(specialist_id, specialist.timezone if specialist else None)

    for time_off in store.list_time_off(specialist_id, query_start, query_end):
        index.add_time_off(specialist_id, time_off.starts_at, time_off.ends_at)

    appointments = db.query(Appointment.starts_at, Appointment.ends_at).filter(
        Appointment.specialist_id == specialist_id,
        Appointment.status != 'cancelled',
        Appointment.starts_at < query_end,
        Appointment.ends_at > query_start,
    ).all()
    for starts_at, ends_at in appointments:
        index.add_appointment(specialist_id, starts_at, ends_at)

    events = db.query(ExternalEvent.starts_at, ExternalEvent.ends_at, ExternalEvent.is_all_day).filter(
        ExternalEvent.specialist_id == specialist_id,
        ExternalEvent.status == 'confirmed',
        ExternalEvent.starts_at < query_end,
        ExternalEvent.ends_at > query_start,
    ).all()
    for starts_at, ends_at, is_all_day in events:
        index.add_external_event(specialist_id, starts_at, ends_at, is_all_day=bool(is_all_day))

    return index
