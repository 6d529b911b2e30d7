"""Merge freshly fetched provider events into the external event mirror.

Rows are keyed by (specialist_id, provider, provider_event_id) and written
with an atomic upsert, so overlapping webhook and polling runs for the same
connection converge on the same mirror without locking.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from soradin.calendar_sync.types import NormalizedEvent
from soradin.core import config
from soradin.core.timezones import ensure_utc, utc_now
from soradin.models.appointment import Appointment
from soradin.models.calendar import CalendarConnection, DeletedExternalEvent, ExternalEvent

logger = logging.getLogger(__name__)

_NATURAL_KEY = ('specialist_id', 'provider', 'provider_event_id')


@dataclass
class ReconcileResult:
    upserted: int = 0
    skipped_blocklisted: int = 0
    removed_stale: int = 0
    skipped_untimed: int = 0
    appointments_moved: int = 0
    appointments_cancelled: int = 0


def _dialect_insert(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == 'postgresql':
        return postgresql.insert
    if dialect == 'sqlite':
        return sqlite.insert
    raise RuntimeError(f'Upsert-by-key is not supported on {dialect}')


def external_edits_allowed(connection: CalendarConnection) -> bool:
    if connection.allow_external_edits is None:
        return config.ALLOW_EXTERNAL_EDITS
    return bool(connection.allow_external_edits)


def _key_clause(model, specialist_id: str, provider: str, provider_event_id: str):
    return (
        model.specialist_id == specialist_id,
        model.provider == provider,
        model.provider_event_id == provider_event_id,
    )


def consume_blocklist_entry(db: Session, specialist_id: str, provider: str, provider_event_id: str) -> bool:
    """Delete the blocklist entry if present; True means the event must be skipped once."""
    result = db.execute(
        delete(DeletedExternalEvent).where(*_key_clause(DeletedExternalEvent, specialist_id, provider, provider_event_id))
    )
    return result.rowcount > 0


def record_deletion(
    db: Session,
    specialist_id: str,
    provider: str,
    provider_event_id: str,
    now: datetime | None = None,
) -> None:
    """Forget a deliberately deleted event and guard the next pass against a cached copy."""
    now = now or utc_now()
    insert = _dialect_insert(db)
    statement = insert(DeletedExternalEvent).values(
        specialist_id=specialist_id,
        provider=provider,
        provider_event_id=provider_event_id,
        recorded_at=now,
    )
    db.execute(
        statement.on_conflict_do_update(
            index_elements=list(_NATURAL_KEY),
            set_={'recorded_at': statement.excluded.recorded_at},
        )
    )
    db.execute(delete(ExternalEvent).where(*_key_clause(ExternalEvent, specialist_id, provider, provider_event_id)))


def upsert_external_event(db: Session, values: dict) -> None:
    insert = _dialect_insert(db)
    statement = insert(ExternalEvent).values(**values)
    table = ExternalEvent.__table__
    set_ = {
        column: getattr(statement.excluded, column)
        for column in values
        if column not in _NATURAL_KEY
    }
    # An existing link to a Soradin appointment is never cleared by a marker-less copy.
    if 'appointment_id' in set_:
        set_['appointment_id'] = func.coalesce(statement.excluded.appointment_id, table.c.appointment_id)
    if 'is_soradin_created' in set_:
        set_['is_soradin_created'] = or_(statement.excluded.is_soradin_created, table.c.is_soradin_created)
    db.execute(statement.on_conflict_do_update(index_elements=list(_NATURAL_KEY), set_=set_))


class EventReconciler:
    """Applies one connection's fetched events to the mirror.

    Writes are left uncommitted; the caller owns the transaction.
    """

    def __init__(self, db: Session, now: datetime | None = None) -> None:
        self.db = db
        self.now = now

    def reconcile(self, connection: CalendarConnection, events: Iterable[NormalizedEvent]) -> ReconcileResult:
        result = ReconcileResult()
        allow_edits = external_edits_allowed(connection)

        for event in events:
            self._reconcile_event(connection, event, allow_edits, result)

        self.db.flush()
        logger.info(
            'Reconciled %s connection %s: %s upserted, %s blocklisted, %s stale, %s moved, %s cancelled',
            connection.provider,
            connection.id,
            result.upserted,
            result.skipped_blocklisted,
            result.removed_stale,
            result.appointments_moved,
            result.appointments_cancelled,
        )
        return result

    def _reconcile_event(
        self,
        connection: CalendarConnection,
        event: NormalizedEvent,
        allow_edits: bool,
        result: ReconcileResult,
    ) -> None:
        specialist_id = connection.specialist_id
        provider = connection.provider
        key = _key_clause(ExternalEvent, specialist_id, provider, event.provider_event_id)

        if consume_blocklist_entry(self.db, specialist_id, provider, event.provider_event_id):
            result.skipped_blocklisted += 1
            return

        prior = self.db.execute(
            select(
                ExternalEvent.starts_at,
                ExternalEvent.ends_at,
                ExternalEvent.status,
                ExternalEvent.appointment_id,
            ).where(*key)
        ).first()
        # Deleted Google events come back without the marker; the stored row keeps the link.
        linked_id = event.appointment_id or (prior.appointment_id if prior is not None else None)

        if linked_id and self.db.get(Appointment, linked_id) is None:
            self.db.execute(delete(ExternalEvent).where(*key))
            result.removed_stale += 1
            return

        if not event.has_times:
            if prior is None:
                result.skipped_untimed += 1
                return
            self.db.execute(update(ExternalEvent).where(*key).values(status=event.status))
            starts_at, ends_at = ensure_utc(prior.starts_at), ensure_utc(prior.ends_at)
        else:
            starts_at, ends_at = ensure_utc(event.starts_at), ensure_utc(event.ends_at)
            upsert_external_event(
                self.db,
                {
                    'specialist_id': specialist_id,
                    'provider': provider,
                    'provider_event_id': event.provider_event_id,
                    'starts_at': starts_at,
                    'ends_at': ends_at,
                    'is_all_day': event.is_all_day,
                    'status': event.status,
                    'is_soradin_created': linked_id is not None,
                    'appointment_id': linked_id,
                },
            )
        result.upserted += 1

        if allow_edits and linked_id and prior is not None:
            self._apply_external_edit(connection, linked_id, event, prior, starts_at, ends_at, result)

    def _apply_external_edit(self, connection, appointment_id, event, prior, starts_at, ends_at, result) -> None:
        appointment = self.db.get(Appointment, appointment_id)
        if appointment is None or appointment.status == 'cancelled':
            return

        if event.status == 'cancelled':
            if prior.status != 'cancelled':
                cancelled_at = (self.now or utc_now()).isoformat()
                note = f'Cancelled externally via {connection.provider} calendar on {cancelled_at}.'
                appointment.status = 'cancelled'
                appointment.notes = f'{appointment.notes} {note}'.strip() if appointment.notes else note
                result.appointments_cancelled += 1
                logger.info('Cancelled appointment %s from %s calendar', appointment.id, connection.provider)
            return

        if starts_at != ensure_utc(prior.starts_at) or ends_at != ensure_utc(prior.ends_at):
            appointment.starts_at = starts_at
            appointment.ends_at = ends_at
            result.appointments_moved += 1
            logger.info('Moved appointment %s to match %s calendar', appointment.id, connection.provider)


def prune_stale_events(db: Session, specialist_id: str, provider: str, before: datetime) -> int:
    """Drop unlinked mirror rows that ended before the sync window opened."""
    result = db.execute(
        delete(ExternalEvent).where(
            ExternalEvent.specialist_id == specialist_id,
            ExternalEvent.provider == provider,
            ExternalEvent.ends_at < before,
            ExternalEvent.appointment_id.is_(None),
        )
    )
    return result.rowcount or 0


def prune_deletion_blocklist(db: Session, before: datetime) -> int:
    """Drop blocklist entries recorded before ``before`` that no fetch ever consumed."""
    result = db.execute(delete(DeletedExternalEvent).where(DeletedExternalEvent.recorded_at < before))
    return result.rowcount or 0
