"""Wall-clock <-> UTC conversion for specialist-local schedules.

Offsets always come from the IANA database for the specific date being
converted, so a rule like 09:00-17:00 lands on the right UTC instants on
either side of a DST transition.
"""

import logging
from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from soradin.core import config

logger = logging.getLogger(__name__)

UTC = timezone.utc

PROVINCE_TO_TIMEZONE = {
    'BC': 'America/Vancouver',
    'BRITISH COLUMBIA': 'America/Vancouver',
    'AB': 'America/Edmonton',
    'ALBERTA': 'America/Edmonton',
    'SK': 'America/Regina',
    'SASKATCHEWAN': 'America/Regina',
    'MB': 'America/Winnipeg',
    'MANITOBA': 'America/Winnipeg',
    'ON': 'America/Toronto',
    'ONTARIO': 'America/Toronto',
    'QC': 'America/Montreal',
    'QUEBEC': 'America/Montreal',
    'NB': 'America/Halifax',
    'NEW BRUNSWICK': 'America/Halifax',
    'NS': 'America/Halifax',
    'NOVA SCOTIA': 'America/Halifax',
    'PE': 'America/Halifax',
    'PRINCE EDWARD ISLAND': 'America/Halifax',
    'NL': 'America/St_Johns',
    'NEWFOUNDLAND': 'America/St_Johns',
}


def resolve_zone(tz_name: str | None) -> ZoneInfo:
    """Return the zone for ``tz_name``, falling back to the configured default."""
    if tz_name:
        try:
            return ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning('Unknown timezone %r, falling back to %s', tz_name, config.DEFAULT_TIMEZONE)
    return ZoneInfo(config.DEFAULT_TIMEZONE)


def to_utc(local_date: date, local_time: time, tz_name: str | None) -> datetime:
    """Interpret a wall-clock time on ``local_date`` in ``tz_name`` and return the UTC instant.

    Times inside a spring-forward gap resolve with the pre-transition offset,
    which moves them forward by the size of the gap.
    """
    zone = resolve_zone(tz_name)
    local = datetime.combine(local_date, local_time.replace(tzinfo=None)).replace(tzinfo=zone)
    return local.astimezone(UTC)


def to_local(instant: datetime, tz_name: str | None) -> tuple[date, time]:
    local = ensure_utc(instant).astimezone(resolve_zone(tz_name))
    return local.date(), local.time().replace(tzinfo=None)


def ensure_utc(value: datetime) -> datetime:
    # SQLite hands DateTime(timezone=True) columns back naive; they are stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def utc_now() -> datetime:
    return datetime.now(UTC)


def infer_timezone_from_province(province: str | None) -> str | None:
    """Province lookup used only by the one-time backfill."""
    if not province:
        return None
    return PROVINCE_TO_TIMEZONE.get(province.strip().upper())
