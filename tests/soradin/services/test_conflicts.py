from datetime import date, datetime, timedelta

import pytest

from soradin.core.timezones import UTC
from soradin.models.appointment import Appointment
from soradin.models.availability import TimeOff
from soradin.models.calendar import ExternalEvent
from soradin.models.specialist import Specialist
from soradin.services.conflicts import BusyTimeIndex, all_day_dates, load_busy_time_index, ranges_overlap

SPECIALIST_ID = '6f1c2a9e-3d4b-4c5a-9b8e-7f6a5d4c3b2a'


def at(hour: int, minute: int = 0, day: int = 12) -> datetime:
    return datetime(2026, 1, day, hour, minute, tzinfo=UTC)


@pytest.mark.parametrize(
    ('first', 'second', 'expected'),
    [
        ((at(9), at(10)), (at(10), at(11)), False),
        ((at(10), at(11)), (at(9), at(10)), False),
        ((at(9), at(10)), (at(9, 59), at(11)), True),
        ((at(9), at(12)), (at(10), at(11)), True),
        ((at(9), at(10)), (at(9), at(10)), True),
    ],
)
def test_ranges_overlap_is_half_open(first, second, expected) -> None:
    assert ranges_overlap(*first, *second) is expected


def test_unknown_specialist_has_no_conflicts() -> None:
    index = BusyTimeIndex()
    index.add_appointment(SPECIALIST_ID, at(9), at(10))

    assert index.has_conflict('someone-else', at(9), at(10)) is False


def test_each_source_blocks_a_slot() -> None:
    index = BusyTimeIndex()
    index.add_time_off(SPECIALIST_ID, at(9), at(10))
    index.add_appointment(SPECIALIST_ID, at(11), at(12))
    index.add_external_event(SPECIALIST_ID, at(13), at(14))

    assert index.has_conflict(SPECIALIST_ID, at(9, 30), at(10)) is True
    assert index.has_conflict(SPECIALIST_ID, at(11), at(11, 30)) is True
    assert index.has_conflict(SPECIALIST_ID, at(13, 30), at(14)) is True
    assert index.has_conflict(SPECIALIST_ID, at(10), at(11)) is False
    assert index.has_conflict(SPECIALIST_ID, at(14), at(14, 30)) is False


def test_floating_all_day_event_blocks_the_whole_local_day() -> None:
    index = BusyTimeIndex()
    index.set_timezone(SPECIALIST_ID, 'America/Edmonton')
    # Stored as midnight UTC of 2026-01-12, which is the evening of the 11th in Edmonton.
    index.add_external_event(SPECIALIST_ID, at(0), at(0, day=13), is_all_day=True)

    late_evening_local = datetime(2026, 1, 13, 5, 0, tzinfo=UTC)  # 22:00 on the 12th in Edmonton
    assert index.has_conflict(SPECIALIST_ID, late_evening_local, late_evening_local + timedelta(minutes=30)) is True
    assert index.has_conflict(SPECIALIST_ID, at(16), at(16, 30)) is True

    previous_evening_local = datetime(2026, 1, 12, 5, 0, tzinfo=UTC)  # 22:00 on the 11th in Edmonton
    assert index.has_conflict(SPECIALIST_ID, previous_evening_local, previous_evening_local + timedelta(minutes=30)) is False


def test_all_day_event_reported_as_local_midnight_instants() -> None:
    # Midnight in Auckland (UTC+13 in January) lands on the prior UTC date.
    first, last = all_day_dates(
        datetime(2026, 1, 11, 11, 0, tzinfo=UTC),
        datetime(2026, 1, 12, 11, 0, tzinfo=UTC),
        'Pacific/Auckland',
    )

    assert (first, last) == (date(2026, 1, 12), date(2026, 1, 13))


def test_multi_day_all_day_event_covers_each_date() -> None:
    index = BusyTimeIndex()
    index.set_timezone(SPECIALIST_ID, 'America/Vancouver')
    index.add_external_event(SPECIALIST_ID, at(0, day=12), at(0, day=14), is_all_day=True)

    noon_13th_local = datetime(2026, 1, 13, 20, 0, tzinfo=UTC)
    noon_14th_local = datetime(2026, 1, 14, 20, 0, tzinfo=UTC)
    assert index.has_conflict(SPECIALIST_ID, noon_13th_local, noon_13th_local + timedelta(hours=1)) is True
    assert index.has_conflict(SPECIALIST_ID, noon_14th_local, noon_14th_local + timedelta(hours=1)) is False


def test_load_busy_time_index_skips_cancelled_rows(db_session) -> None:
    db_session.add(Specialist(id=SPECIALIST_ID, timezone='America/Edmonton', is_active=True))
    db_session.add_all([
        TimeOff(specialist_id=SPECIALIST_ID, starts_at=at(16), ends_at=at(17)),
        Appointment(specialist_id=SPECIALIST_ID, starts_at=at(18), ends_at=at(19), status='confirmed'),
        Appointment(specialist_id=SPECIALIST_ID, starts_at=at(20), ends_at=at(21), status='cancelled'),
        ExternalEvent(
            specialist_id=SPECIALIST_ID,
            provider='google',
            provider_event_id='busy',
            starts_at=at(22),
            ends_at=at(23),
            status='confirmed',
        ),
        ExternalEvent(
            specialist_id=SPECIALIST_ID,
            provider='google',
            provider_event_id='gone',
            starts_at=at(14),
            ends_at=at(15),
            status='cancelled',
        ),
    ])
    db_session.commit()

    index = load_busy_time_index(db_session, SPECIALIST_ID, at(0), at(0, day=13))

    assert index.has_conflict(SPECIALIST_ID, at(16), at(16, 30)) is True
    assert index.has_conflict(SPECIALIST_ID, at(18), at(18, 30)) is True
    assert index.has_conflict(SPECIALIST_ID, at(20), at(20, 30)) is False
    assert index.has_conflict(SPECIALIST_ID, at(22), at(22, 30)) is True
    assert index.has_conflict(SPECIALIST_ID, at(14), at(14, 30)) is False
