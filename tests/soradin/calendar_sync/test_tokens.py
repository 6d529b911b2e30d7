from datetime import datetime, timedelta

import pytest
from sqlalchemy import update

from soradin.calendar_sync.errors import ReauthorizationRequired
from soradin.calendar_sync.tokens import TokenGrant, ensure_access_token, needs_refresh
from soradin.core.timezones import UTC
from soradin.models.calendar import CalendarConnection
from soradin.models.specialist import Specialist

NOW = datetime(2026, 2, 2, 12, 0, tzinfo=UTC)


@pytest.fixture
def connection(db_session) -> CalendarConnection:
    db_session.add(Specialist(id='spec-1', timezone='America/Regina', is_active=True))
    connection = CalendarConnection(
        id='conn-1',
        specialist_id='spec-1',
        provider='google',
        access_token='old',
        refresh_token='refresh',
        token_expires_at=NOW - timedelta(minutes=1),
    )
    db_session.add(connection)
    db_session.commit()
    return connection


def test_needs_refresh_applies_skew(connection) -> None:
    connection.token_expires_at = NOW + timedelta(seconds=30)
    assert needs_refresh(connection, NOW) is True

    connection.token_expires_at = NOW + timedelta(minutes=10)
    assert needs_refresh(connection, NOW) is False

    connection.access_token = None
    assert needs_refresh(connection, NOW) is True


def test_valid_token_is_returned_without_refreshing(db_session, connection) -> None:
    connection.token_expires_at = NOW + timedelta(hours=1)
    db_session.commit()

    def refresher(refresh_token: str) -> TokenGrant:
        raise AssertionError('refresh should not run')

    assert ensure_access_token(db_session, connection, refresher, now=NOW) == 'old'


def test_expired_token_is_refreshed_and_persisted(db_session, connection) -> None:
    calls: list[str] = []

    def refresher(refresh_token: str) -> TokenGrant:
        calls.append(refresh_token)
        return TokenGrant(access_token='new', expires_in=1800)

    assert ensure_access_token(db_session, connection, refresher, now=NOW) == 'new'
    assert ensure_access_token(db_session, connection, refresher, now=NOW) == 'new'

    db_session.expire_all()
    stored = db_session.get(CalendarConnection, 'conn-1')
    assert calls == ['refresh']
    assert stored.refresh_token == 'refresh'
    assert stored.token_expires_at.replace(tzinfo=UTC) == NOW + timedelta(minutes=30)


def test_concurrent_refresh_keeps_the_token_already_written(db_session, connection) -> None:
    def refresher(refresh_token: str) -> TokenGrant:
        # Another worker rotates the token while this refresh is in flight.
        db_session.execute(
            update(CalendarConnection)
            .where(CalendarConnection.id == 'conn-1')
            .values(access_token='from-other-worker', token_expires_at=NOW + timedelta(hours=1))
            .execution_options(synchronize_session=False)
        )
        return TokenGrant(access_token='late', expires_in=3600)

    assert ensure_access_token(db_session, connection, refresher, now=NOW) == 'from-other-worker'


def test_missing_refresh_token_requires_reauthorization(db_session, connection) -> None:
    connection.refresh_token = None
    db_session.commit()

    with pytest.raises(ReauthorizationRequired):
        ensure_access_token(db_session, connection, lambda token: TokenGrant('never'), now=NOW)
