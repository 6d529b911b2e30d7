"""Webhook push handling.

Pushes carry no event data; each one only triggers a bounded re-fetch for the
connection it names. These functions run after the HTTP response has been
sent, so every failure is logged here and nothing is raised to the caller.
"""

import logging
from datetime import datetime, timedelta
from secrets import compare_digest
from typing import Callable, Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from soradin import database
from soradin.calendar_sync.adapters import get_adapter
from soradin.calendar_sync.errors import CalendarSyncError, RateLimited
from soradin.calendar_sync.http import cooldown_until
from soradin.calendar_sync.microsoft import event_id_from_resource
from soradin.calendar_sync.reconciler import record_deletion
from soradin.calendar_sync.sync import AdapterFactory, sync_connection
from soradin.calendar_sync.webhooks import in_cooldown
from soradin.core import config
from soradin.core.timezones import utc_now
from soradin.models.calendar import CalendarConnection

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


def refetch_window(now: datetime) -> tuple[datetime, datetime]:
    return (
        now - timedelta(minutes=config.WEBHOOK_LOOKBACK_MINUTES),
        now + timedelta(days=config.SYNC_WINDOW_DAYS),
    )


def _secret_matches(expected: str, received: str | None) -> bool:
    if not expected:
        return True
    return received is not None and compare_digest(expected, received)


def refetch_connection(
    db: Session,
    connection: CalendarConnection,
    now: datetime,
    adapter_factory: AdapterFactory = get_adapter,
) -> bool:
    """Re-fetch and reconcile the recent window for one connection; True on success."""
    connection_id = connection.id
    provider = connection.provider

    if not connection.sync_enabled:
        logger.info('Ignoring push for disabled %s connection %s', provider, connection_id)
        return False
    if in_cooldown(connection.sync_retry_after, now):
        logger.info('Ignoring push for %s connection %s during rate-limit cooldown', provider, connection_id)
        return False

    time_min, time_max = refetch_window(now)
    try:
        adapter = adapter_factory(provider)
        sync_connection(db, connection, adapter, time_min, time_max, now=now)
        db.commit()
        return True
    except RateLimited as exc:
        db.rollback()
        connection = db.get(CalendarConnection, connection_id)
        if connection is not None:
            connection.sync_retry_after = cooldown_until(now, exc.retry_after)
            db.commit()
        logger.warning('%s rate limited push re-fetch for connection %s', provider, connection_id)
    except CalendarSyncError as exc:
        db.rollback()
        logger.warning('Push re-fetch failed for %s connection %s: %s', provider, connection_id, exc)
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Database error during push re-fetch for connection %s', connection_id)
    return False


def handle_google_push(
    channel_id: str | None,
    resource_state: str | None,
    channel_token: str | None = None,
    session_factory: SessionFactory | None = None,
    now: datetime | None = None,
    adapter_factory: AdapterFactory = get_adapter,
) -> None:
    if not channel_id:
        logger.warning('Google push without a channel id')
        return
    if resource_state == 'sync':
        logger.info('Google channel %s handshake acknowledged', channel_id)
        return

    now = now or utc_now()
    db = (session_factory or database.SessionLocal)()
    try:
        connection = (
            db.query(CalendarConnection)
            .filter(CalendarConnection.provider == 'google', CalendarConnection.webhook_channel_id == channel_id)
            .first()
        )
        if connection is None:
            logger.warning('Google push for unknown channel %s', channel_id)
            return
        if not _secret_matches(config.GOOGLE_WEBHOOK_SECRET, channel_token):
            logger.warning('Google push for channel %s had a bad channel token', channel_id)
            return
        refetch_connection(db, connection, now, adapter_factory)
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Database error handling Google push for channel %s', channel_id)
    finally:
        db.close()


def _group_notifications(notifications: Iterable) -> dict[str, list[dict]]:
    grouped: dict[str, list[dict]] = {}
    for notification in notifications:
        if not isinstance(notification, dict):
            logger.warning('Skipping malformed Microsoft notification')
            continue
        subscription_id = notification.get('subscriptionId')
        if not subscription_id:
            logger.warning('Skipping Microsoft notification without a subscription id')
            continue
        grouped.setdefault(subscription_id, []).append(notification)
    return grouped


def handle_microsoft_notifications(
    notifications: Iterable,
    session_factory: SessionFactory | None = None,
    now: datetime | None = None,
    adapter_factory: AdapterFactory = get_adapter,
) -> None:
    grouped = _group_notifications(notifications)
    if not grouped:
        return

    now = now or utc_now()
    db = (session_factory or database.SessionLocal)()
    try:
        for subscription_id, items in grouped.items():
            connection = (
                db.query(CalendarConnection)
                .filter(
                    CalendarConnection.provider == 'microsoft',
                    CalendarConnection.webhook_subscription_id == subscription_id,
                )
                .first()
            )
            if connection is None:
                logger.warning('Microsoft notification for unknown subscription %s', subscription_id)
                continue

            accepted = [
                item for item in items
                if _secret_matches(config.MICROSOFT_WEBHOOK_CLIENT_STATE, item.get('clientState'))
            ]
            if len(accepted) < len(items):
                logger.warning(
                    'Dropped %s Microsoft notifications with a bad clientState for subscription %s',
                    len(items) - len(accepted),
                    subscription_id,
                )
            if not accepted:
                continue

            for item in accepted:
                if item.get('changeType') != 'deleted':
                    continue
                event_id = event_id_from_resource(item.get('resource')) or (item.get('resourceData') or {}).get('id')
                if event_id:
                    record_deletion(db, connection.specialist_id, 'microsoft', event_id, now=now)
            db.commit()

            refetch_connection(db, connection, now, adapter_factory)
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Database error handling Microsoft notifications')
    finally:
        db.close()
