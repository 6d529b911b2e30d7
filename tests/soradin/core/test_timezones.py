from datetime import date, datetime, time

import pytest

from soradin.core import config
from soradin.core.timezones import (
    UTC,
    ensure_utc,
    infer_timezone_from_province,
    resolve_zone,
    to_local,
    to_utc,
)


def test_to_utc_uses_standard_offset_in_winter() -> None:
    assert to_utc(date(2026, 1, 12), time(9, 0), 'America/Edmonton') == datetime(2026, 1, 12, 16, 0, tzinfo=UTC)


def test_to_utc_uses_daylight_offset_after_spring_forward() -> None:
    # Clocks moved forward on 2026-03-08 in North America.
    before = to_utc(date(2026, 3, 7), time(9, 0), 'America/Edmonton')
    after = to_utc(date(2026, 3, 8), time(9, 0), 'America/Edmonton')

    assert before == datetime(2026, 3, 7, 16, 0, tzinfo=UTC)
    assert after == datetime(2026, 3, 8, 15, 0, tzinfo=UTC)


def test_to_local_round_trips_a_wall_clock_time() -> None:
    instant = to_utc(date(2026, 7, 1), time(14, 30), 'America/Toronto')

    assert to_local(instant, 'America/Toronto') == (date(2026, 7, 1), time(14, 30))


def test_to_local_crosses_utc_date_boundary() -> None:
    instant = datetime(2026, 1, 13, 3, 0, tzinfo=UTC)

    assert to_local(instant, 'America/Vancouver') == (date(2026, 1, 12), time(19, 0))


def test_unknown_timezone_falls_back_to_default(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level('WARNING', logger='soradin.core.timezones'):
        zone = resolve_zone('Mars/Olympus_Mons')

    assert zone.key == config.DEFAULT_TIMEZONE
    assert 'Unknown timezone' in caplog.text


def test_missing_timezone_uses_default_without_warning(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level('WARNING', logger='soradin.core.timezones'):
        zone = resolve_zone(None)

    assert zone.key == config.DEFAULT_TIMEZONE
    assert caplog.text == ''


def test_ensure_utc_treats_naive_values_as_utc() -> None:
    assert ensure_utc(datetime(2026, 1, 1, 12, 0)) == datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


@pytest.mark.parametrize(
    ('province', 'expected'),
    [
        ('AB', 'America/Edmonton'),
        (' british columbia ', 'America/Vancouver'),
        ('Ontario', 'America/Toronto'),
        ('Yukon', None),
        (None, None),
    ],
)
def test_infer_timezone_from_province(province: str | None, expected: str | None) -> None:
    assert infer_timezone_from_province(province) == expected
