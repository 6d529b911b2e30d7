"""Read-only access to a specialist's weekly template and time off."""

from dataclasses import dataclass
from datetime import datetime, time
from typing import Protocol

from sqlalchemy.orm import Session

from soradin.core.timezones import ensure_utc
from soradin.models.availability import AvailabilityRule, TimeOff
from soradin.models.specialist import Specialist


@dataclass(frozen=True)
class SpecialistProfile:
    id: str
    timezone: str | None
    is_active: bool


@dataclass(frozen=True)
class WeeklyRule:
    weekday: int  # 0 = Sunday
    start_time: time
    end_time: time
    slot_interval_minutes: int


@dataclass(frozen=True)
class TimeRange:
    starts_at: datetime
    ends_at: datetime


class AvailabilityStore(Protocol):
    def get_specialist(self, specialist_id: str) -> SpecialistProfile | None: ...

    def get_rule(self, specialist_id: str, weekday: int) -> WeeklyRule | None: ...

    def list_time_off(self, specialist_id: str, window_start: datetime, window_end: datetime) -> list[TimeRange]: ...


class SqlAvailabilityStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_specialist(self, specialist_id: str) -> SpecialistProfile | None:
        specialist = self.db.get(Specialist, specialist_id)
        if specialist is None:
            return None
        return SpecialistProfile(
            id=specialist.id,
            timezone=specialist.timezone,
            is_active=bool(specialist.is_active),
        )

    def get_rule(self, specialist_id: str, weekday: int) -> WeeklyRule | None:
        rule = self.db.query(AvailabilityRule).filter(
            AvailabilityRule.specialist_id == specialist_id,
            AvailabilityRule.weekday == weekday,
        ).first()
        if rule is None:
            return None
        return WeeklyRule(
            weekday=rule.weekday,
            start_time=rule.start_time,
            end_time=rule.end_time,
            slot_interval_minutes=rule.slot_interval_minutes,
        )

    def list_time_off(self, specialist_id: str, window_start: datetime, window_end: datetime) -> list[TimeRange]:
        rows = self.db.query(TimeOff.starts_at, TimeOff.ends_at).filter(
            TimeOff.specialist_id == specialist_id,
            TimeOff.starts_at < window_end,
            TimeOff.ends_at > window_start,
        ).all()
        return [TimeRange(ensure_utc(starts_at), ensure_utc(ends_at)) for starts_at, ends_at in rows]
