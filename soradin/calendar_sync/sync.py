"""Polling sync pass over every enabled calendar connection.

Polling is the correctness backstop: it runs whether or not a connection's
webhook is healthy, and a failure on one connection never stops the batch.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from soradin.calendar_sync.adapters import get_adapter
from soradin.calendar_sync.base import CalendarAdapter
from soradin.calendar_sync.errors import CalendarSyncError, ProviderNotConfigured, RateLimited
from soradin.calendar_sync.http import cooldown_until
from soradin.calendar_sync.reconciler import (
    EventReconciler,
    ReconcileResult,
    prune_deletion_blocklist,
    prune_stale_events,
)
from soradin.calendar_sync.webhooks import ensure_webhook, in_cooldown
from soradin.core import config
from soradin.core.timezones import utc_now
from soradin.models.calendar import CalendarConnection

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[str], CalendarAdapter]


@dataclass
class SyncSummary:
    total: int = 0
    synced: int = 0
    skipped: int = 0
    failed: int = 0
    webhooks_renewed: int = 0
    pruned: int = 0
    errors: list[dict] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            'total': self.total,
            'synced': self.synced,
            'skipped': self.skipped,
            'failed': self.failed,
            'webhooksRenewed': self.webhooks_renewed,
            'pruned': self.pruned,
            'errors': list(self.errors),
        }


def sync_window(now: datetime) -> tuple[datetime, datetime]:
    return now, now + timedelta(days=config.SYNC_WINDOW_DAYS)


def sync_connection(
    db: Session,
    connection: CalendarConnection,
    adapter: CalendarAdapter,
    time_min: datetime,
    time_max: datetime,
    now: datetime | None = None,
) -> ReconcileResult:
    events = adapter.fetch_events(db, connection, time_min, time_max)
    return EventReconciler(db, now=now).reconcile(connection, events)


def record_sync_failure(db: Session, connection_id: str, exc: Exception, now: datetime) -> None:
    """Persist the failure on a fresh read of the connection after rollback."""
    connection = db.get(CalendarConnection, connection_id)
    if connection is None:
        return
    connection.last_sync_status = exc.status if isinstance(exc, CalendarSyncError) else 'error'
    connection.last_sync_error = str(exc)[:500]
    if isinstance(exc, RateLimited):
        connection.sync_retry_after = cooldown_until(now, exc.retry_after)
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Could not record sync failure for connection %s', connection_id)


def run_sync_pass(
    db: Session,
    now: datetime | None = None,
    adapter_factory: AdapterFactory = get_adapter,
) -> SyncSummary:
    now = now or utc_now()
    time_min, time_max = sync_window(now)
    summary = SyncSummary()
    unconfigured: set[str] = set()

    connections = (
        db.query(CalendarConnection)
        .filter(CalendarConnection.sync_enabled.is_(True))
        .order_by(CalendarConnection.id.asc())
        .all()
    )
    summary.total = len(connections)

    for connection in connections:
        connection_id = connection.id
        provider = connection.provider

        if in_cooldown(connection.sync_retry_after, now):
            logger.info('Skipping %s connection %s during rate-limit cooldown', provider, connection_id)
            summary.skipped += 1
            continue

        try:
            adapter = adapter_factory(provider)
        except ProviderNotConfigured as exc:
            if provider not in unconfigured:
                logger.warning('Skipping %s connections: %s', provider, exc)
                unconfigured.add(provider)
            summary.skipped += 1
            continue

        try:
            if ensure_webhook(db, connection, adapter, now):
                summary.webhooks_renewed += 1
            db.commit()

            sync_connection(db, connection, adapter, time_min, time_max, now=now)
            summary.pruned += prune_stale_events(db, connection.specialist_id, provider, time_min)
            connection.last_synced_at = now
            connection.last_sync_status = 'ok'
            connection.last_sync_error = None
            connection.sync_retry_after = None
            db.commit()
            summary.synced += 1
        except Exception as exc:
            db.rollback()
            if isinstance(exc, CalendarSyncError):
                logger.warning('Sync failed for %s connection %s: %s', provider, connection_id, exc)
            else:
                logger.exception('Unexpected sync failure for %s connection %s', provider, connection_id)
            record_sync_failure(db, connection_id, exc, now)
            summary.failed += 1
            summary.errors.append({
                'connectionId': connection_id,
                'provider': provider,
                'status': exc.status if isinstance(exc, CalendarSyncError) else 'error',
                'message': str(exc)[:500],
            })

    try:
        expired = prune_deletion_blocklist(db, now - timedelta(days=config.DELETION_BLOCKLIST_RETENTION_DAYS))
        db.commit()
        if expired:
            logger.info('Pruned %s expired deletion blocklist entries', expired)
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Could not prune the deletion blocklist')

    logger.info(
        'Calendar sync pass: %s total, %s synced, %s skipped, %s failed, %s webhooks renewed, %s pruned',
        summary.total,
        summary.synced,
        summary.skipped,
        summary.failed,
        summary.webhooks_renewed,
        summary.pruned,
    )
    return summary
