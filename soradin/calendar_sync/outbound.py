"""Writes from Soradin to the specialist's external calendars."""

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from soradin.calendar_sync.adapters import get_adapter
from soradin.calendar_sync.errors import CalendarSyncError
from soradin.calendar_sync.reconciler import record_deletion, upsert_external_event
from soradin.calendar_sync.sync import AdapterFactory
from soradin.core.timezones import ensure_utc, utc_now
from soradin.models.appointment import Appointment
from soradin.models.calendar import CalendarConnection, ExternalEvent

logger = logging.getLogger(__name__)


def push_appointment_to_calendars(
    db: Session,
    appointment_id: str,
    adapter_factory: AdapterFactory = get_adapter,
) -> dict[str, str]:
    """Create the appointment in each sync-enabled calendar of its specialist.

    Returns provider event ids keyed by connection id. Connections that already
    mirror the appointment are left alone, and a failing connection does not
    stop the others.
    """
    appointment = db.get(Appointment, appointment_id)
    if appointment is None:
        raise LookupError(f'Appointment {appointment_id} not found')
    if appointment.status != 'confirmed':
        logger.info('Not pushing appointment %s with status %s', appointment_id, appointment.status)
        return {}

    connections = (
        db.query(CalendarConnection)
        .filter(
            CalendarConnection.specialist_id == appointment.specialist_id,
            CalendarConnection.sync_enabled.is_(True),
        )
        .order_by(CalendarConnection.id.asc())
        .all()
    )

    created: dict[str, str] = {}
    for connection in connections:
        already_mirrored = db.execute(
            select(ExternalEvent.id).where(
                ExternalEvent.specialist_id == connection.specialist_id,
                ExternalEvent.provider == connection.provider,
                ExternalEvent.appointment_id == appointment.id,
            )
        ).first()
        if already_mirrored is not None:
            continue

        try:
            adapter = adapter_factory(connection.provider)
            provider_event_id = adapter.create_event(db, connection, appointment)
        except CalendarSyncError as exc:
            logger.warning(
                'Could not push appointment %s to %s connection %s: %s',
                appointment.id,
                connection.provider,
                connection.id,
                exc,
            )
            continue

        upsert_external_event(
            db,
            {
                'specialist_id': connection.specialist_id,
                'provider': connection.provider,
                'provider_event_id': provider_event_id,
                'starts_at': ensure_utc(appointment.starts_at),
                'ends_at': ensure_utc(appointment.ends_at),
                'is_all_day': False,
                'status': 'confirmed',
                'is_soradin_created': True,
                'appointment_id': appointment.id,
            },
        )
        db.commit()
        created[connection.id] = provider_event_id
        logger.info('Pushed appointment %s to %s as %s', appointment.id, connection.provider, provider_event_id)

    return created


def delete_external_event(
    db: Session,
    specialist_id: str,
    external_event_id: int,
    adapter_factory: AdapterFactory = get_adapter,
    now: datetime | None = None,
) -> None:
    """Delete a mirrored event at its provider and keep the next pass from re-importing it."""
    event = (
        db.query(ExternalEvent)
        .filter(ExternalEvent.id == external_event_id, ExternalEvent.specialist_id == specialist_id)
        .first()
    )
    if event is None:
        raise LookupError(f'External event {external_event_id} not found')

    provider = event.provider
    provider_event_id = event.provider_event_id
    connection = (
        db.query(CalendarConnection)
        .filter(CalendarConnection.specialist_id == specialist_id, CalendarConnection.provider == provider)
        .first()
    )
    if connection is None:
        raise LookupError(f'No {provider} calendar connection for specialist {specialist_id}')

    adapter = adapter_factory(provider)
    adapter.delete_event(db, connection, provider_event_id)

    record_deletion(db, specialist_id, provider, provider_event_id, now=now or utc_now())
    db.commit()
    logger.info('Deleted %s event %s for specialist %s', provider, provider_event_id, specialist_id)


def delete_external_events_for_appointment(
    db: Session,
    appointment_id: str,
    adapter_factory: AdapterFactory = get_adapter,
    now: datetime | None = None,
) -> dict[str, int]:
    """Remove a cancelled appointment's events from the specialist's calendars.

    Rows whose provider delete fails are kept and marked cancelled, so the
    slot frees up here even while the provider copy lingers.
    """
    now = now or utc_now()
    mirrored = (
        db.query(ExternalEvent)
        .filter(ExternalEvent.appointment_id == appointment_id, ExternalEvent.is_soradin_created.is_(True))
        .order_by(ExternalEvent.id.asc())
        .all()
    )
    counts = {'deleted': 0, 'cancelled': 0}

    for event in mirrored:
        specialist_id = event.specialist_id
        provider = event.provider
        provider_event_id = event.provider_event_id
        connection = (
            db.query(CalendarConnection)
            .filter(CalendarConnection.specialist_id == specialist_id, CalendarConnection.provider == provider)
            .first()
        )

        try:
            if connection is None:
                raise LookupError(f'No {provider} calendar connection for specialist {specialist_id}')
            adapter = adapter_factory(provider)
            adapter.delete_event(db, connection, provider_event_id)
        except (CalendarSyncError, LookupError) as exc:
            logger.warning(
                'Could not delete %s event %s for appointment %s, marking it cancelled: %s',
                provider,
                provider_event_id,
                appointment_id,
                exc,
            )
            event.status = 'cancelled'
            db.commit()
            counts['cancelled'] += 1
            continue

        record_deletion(db, specialist_id, provider, provider_event_id, now=now)
        db.commit()
        counts['deleted'] += 1
        logger.info('Deleted %s event %s for cancelled appointment %s', provider, provider_event_id, appointment_id)

    return counts
