"""Push-notification channel lifecycle for calendar connections."""

import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from soradin.calendar_sync.base import CalendarAdapter
from soradin.calendar_sync.errors import CalendarSyncError, RateLimited
from soradin.calendar_sync.http import cooldown_until
from soradin.core import config
from soradin.core.timezones import ensure_utc
from soradin.models.calendar import CalendarConnection

logger = logging.getLogger(__name__)


def webhook_callback_url(provider: str) -> str | None:
    if not config.PUBLIC_BASE_URL:
        return None
    return f'{config.PUBLIC_BASE_URL}/integrations/{provider}/webhook'


def webhook_needs_renewal(connection: CalendarConnection, now: datetime) -> bool:
    channel = connection.webhook_channel_id if connection.provider == 'google' else connection.webhook_subscription_id
    if not channel or connection.webhook_expires_at is None:
        return True
    threshold = timedelta(hours=config.WEBHOOK_RENEWAL_THRESHOLD_HOURS)
    return ensure_utc(connection.webhook_expires_at) <= now + threshold


def in_cooldown(retry_after: datetime | None, now: datetime) -> bool:
    return retry_after is not None and ensure_utc(retry_after) > now


def ensure_webhook(db: Session, connection: CalendarConnection, adapter: CalendarAdapter, now: datetime) -> bool:
    """Register or renew the connection's push channel.

    Returns True when a new channel was stored. Provider refusals are logged and
    leave polling as the fallback; a 429 additionally starts a cooldown.
    """
    callback_url = webhook_callback_url(connection.provider)
    if callback_url is None:
        return False
    if in_cooldown(connection.webhook_retry_after, now):
        logger.debug('Webhook renewal for connection %s is cooling down', connection.id)
        return False
    if not webhook_needs_renewal(connection, now):
        return False

    try:
        adapter.cancel_subscription(db, connection)
    except CalendarSyncError as exc:
        logger.warning('Could not stop old %s channel for connection %s: %s', connection.provider, connection.id, exc)

    try:
        subscription = adapter.create_subscription(db, connection, callback_url, now)
    except RateLimited as exc:
        connection.webhook_retry_after = cooldown_until(now, exc.retry_after)
        logger.warning(
            '%s rate limited webhook registration for connection %s until %s',
            connection.provider,
            connection.id,
            connection.webhook_retry_after.isoformat(),
        )
        return False
    except CalendarSyncError as exc:
        logger.warning('Webhook registration failed for %s connection %s: %s', connection.provider, connection.id, exc)
        return False

    if connection.provider == 'google':
        connection.webhook_channel_id = subscription.channel_id
        connection.webhook_resource_id = subscription.resource_id
    else:
        connection.webhook_subscription_id = subscription.channel_id
    connection.webhook_expires_at = subscription.expires_at
    connection.webhook_retry_after = None

    logger.info(
        'Registered %s webhook %s for connection %s until %s',
        connection.provider,
        subscription.channel_id,
        connection.id,
        subscription.expires_at.isoformat(),
    )
    return True
