"""OAuth access-token refresh for calendar connections.

Refresh is a critical section per connection: an in-process lock keeps
threads from refreshing twice, and the stored expiry doubles as a
compare-and-set guard so a second worker process never overwrites a token
another worker already rotated.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from threading import Lock
from typing import Callable

from sqlalchemy import update
from sqlalchemy.orm import Session

from soradin.calendar_sync.errors import ReauthorizationRequired
from soradin.core import config
from soradin.core.timezones import ensure_utc, utc_now
from soradin.models.calendar import CalendarConnection

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_LIFETIME_SECONDS = 3600

_refresh_locks: dict[str, Lock] = {}
_refresh_locks_guard = Lock()


@dataclass(frozen=True)
class TokenGrant:
    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None


def _lock_for(connection_id: str) -> Lock:
    with _refresh_locks_guard:
        lock = _refresh_locks.get(connection_id)
        if lock is None:
            lock = Lock()
            _refresh_locks[connection_id] = lock
        return lock


def needs_refresh(connection: CalendarConnection, now: datetime) -> bool:
    if not connection.access_token:
        return True
    if connection.token_expires_at is None:
        return False
    skew = timedelta(seconds=config.TOKEN_REFRESH_SKEW_SECONDS)
    return ensure_utc(connection.token_expires_at) <= now + skew


def ensure_access_token(
    db: Session,
    connection: CalendarConnection,
    refresher: Callable[[str], TokenGrant],
    now: datetime | None = None,
    rejected_token: str | None = None,
) -> str:
    """Return a usable access token, refreshing and persisting it first if needed.

    ``rejected_token`` forces a refresh unless another worker has already
    replaced that token.
    """
    now = now or utc_now()
    if rejected_token is None and not needs_refresh(connection, now):
        return connection.access_token

    with _lock_for(connection.id):
        db.refresh(connection)
        if rejected_token is None and not needs_refresh(connection, now):
            return connection.access_token
        if rejected_token is not None and connection.access_token and connection.access_token != rejected_token:
            return connection.access_token

        if not connection.refresh_token:
            raise ReauthorizationRequired(
                f'{connection.provider} connection {connection.id} has no refresh token',
                connection.provider,
            )

        observed_expiry = connection.token_expires_at
        grant = refresher(connection.refresh_token)
        lifetime = grant.expires_in or DEFAULT_TOKEN_LIFETIME_SECONDS
        values = {
            'access_token': grant.access_token,
            'refresh_token': grant.refresh_token or connection.refresh_token,
            'token_expires_at': now + timedelta(seconds=lifetime),
        }

        statement = update(CalendarConnection).where(CalendarConnection.id == connection.id)
        if observed_expiry is None:
            statement = statement.where(CalendarConnection.token_expires_at.is_(None))
        else:
            statement = statement.where(CalendarConnection.token_expires_at == observed_expiry)

        result = db.execute(statement.values(**values).execution_options(synchronize_session=False))
        db.commit()
        db.refresh(connection)

        if result.rowcount == 0:
            logger.info(
                'Token for %s connection %s was refreshed concurrently; using the stored one',
                connection.provider,
                connection.id,
            )
        else:
            logger.info('Refreshed %s access token for connection %s', connection.provider, connection.id)

        return connection.access_token
