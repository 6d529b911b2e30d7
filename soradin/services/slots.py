"""Bookable slot generation.

Slots come from the specialist's weekly rule for each local calendar day,
stepped by the rule's interval and dropped whenever the ConflictIndex
reports a clash. Generation reads only; it is safe to call concurrently.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from soradin.core.timezones import ensure_utc, to_local, to_utc
from soradin.services.availability_store import AvailabilityStore
from soradin.services.conflicts import ConflictIndex

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Slot:
    starts_at: datetime
    ends_at: datetime


@dataclass(frozen=True)
class DaySlots:
    date: date
    slots: tuple[Slot, ...]


def weekday_index(day: date) -> int:
    """Weekday with 0 = Sunday, matching stored availability rules."""
    return (day.weekday() + 1) % 7


def iterate_days(start_date: date, end_date: date):
    current = start_date
    while current <= end_date:
        yield current
        current += timedelta(days=1)


class SlotGenerator:
    def __init__(self, store: AvailabilityStore, conflicts: ConflictIndex) -> None:
        self.store = store
        self.conflicts = conflicts

    def generate(
        self,
        specialist_id: str,
        start_date: date,
        end_date: date,
        not_before: datetime | None = None,
    ) -> list[DaySlots]:
        """Return one entry per day in ``[start_date, end_date]``.

        ``not_before`` drops slots that start earlier than the given instant;
        the read API passes the current time so past slots are never offered.
        """
        specialist = self.store.get_specialist(specialist_id)
        if specialist is None or not specialist.is_active:
            return [DaySlots(date=day, slots=()) for day in iterate_days(start_date, end_date)]

        cutoff = ensure_utc(not_before) if not_before else None
        days: list[DaySlots] = []

        for day in iterate_days(start_date, end_date):
            rule = self.store.get_rule(specialist_id, weekday_index(day))
            if rule is None:
                days.append(DaySlots(date=day, slots=()))
                continue

            if rule.slot_interval_minutes <= 0:
                logger.warning(
                    'Ignoring availability rule with interval %s for specialist %s',
                    rule.slot_interval_minutes,
                    specialist_id,
                )
                days.append(DaySlots(date=day, slots=()))
                continue

            step = timedelta(minutes=rule.slot_interval_minutes)
            current = datetime.combine(day, rule.start_time)
            window_end = datetime.combine(day, rule.end_time)
            kept: list[Slot] = []

            while current + step <= window_end:
                slot_start_local = current.time()
                slot_end_local = current + step
                slot_start = to_utc(day, slot_start_local, specialist.timezone)
                slot_end = to_utc(day, slot_end_local.time(), specialist.timezone)
                current = slot_end_local

                # Wall times inside a spring-forward gap do not exist that day.
                if to_local(slot_start, specialist.timezone) != (day, slot_start_local) or slot_end <= slot_start:
                    continue

                if (cutoff is None or slot_start >= cutoff) and not self.conflicts.has_conflict(
                    specialist_id, slot_start, slot_end
                ):
                    kept.append(Slot(starts_at=slot_start, ends_at=slot_end))

            kept.sort(key=lambda slot: slot.starts_at)
            days.append(DaySlots(date=day, slots=tuple(kept)))

        return days
