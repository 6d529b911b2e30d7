"""Google Calendar API v3 adapter."""

import logging
from datetime import datetime, timedelta
from urllib.parse import quote
from uuid import uuid4

from sqlalchemy.orm import Session

from soradin.calendar_sync.base import (
    SORADIN_EVENT_DESCRIPTION,
    SORADIN_EVENT_SUMMARY,
    CalendarAdapter,
    floating_date,
    format_utc,
    parse_provider_datetime,
)
from soradin.calendar_sync.errors import ProviderError
from soradin.calendar_sync.types import NormalizedEvent, WebhookSubscription
from soradin.core import config
from soradin.core.timezones import UTC
from soradin.models.appointment import Appointment
from soradin.models.calendar import CalendarConnection

logger = logging.getLogger(__name__)

GOOGLE_API_BASE = 'https://www.googleapis.com/calendar/v3'
GOOGLE_TOKEN_URL = 'https://oauth2.googleapis.com/token'
APPOINTMENT_MARKER = 'soradinAppointmentId'
CHANNEL_LIFETIME = timedelta(days=6)  # Google caps channels at 7 days
PAGE_SIZE = 250


def normalize_google_event(item: dict) -> NormalizedEvent | None:
    event_id = item.get('id')
    if not event_id:
        return None

    appointment_id = ((item.get('extendedProperties') or {}).get('private') or {}).get(APPOINTMENT_MARKER)
    status = 'cancelled' if item.get('status') == 'cancelled' else 'confirmed'
    # Free-time events do not block; Soradin's own keep their status so a
    # "show as free" toggle never reads as a cancellation.
    if item.get('transparency') == 'transparent' and appointment_id is None:
        status = 'cancelled'

    start = item.get('start') or {}
    end = item.get('end') or {}

    if start.get('date'):
        starts_at = floating_date(start['date'])
        ends_at = floating_date(end['date']) if end.get('date') else starts_at + timedelta(days=1)
        is_all_day = True
    elif start.get('dateTime'):
        starts_at = parse_provider_datetime(start['dateTime'], start.get('timeZone'))
        ends_at = parse_provider_datetime(end['dateTime'], end.get('timeZone')) if end.get('dateTime') else starts_at
        is_all_day = False
    elif status == 'cancelled':
        # Deleted events come back as a bare id and status.
        starts_at = ends_at = None
        is_all_day = False
    else:
        logger.warning('Skipping Google event %s with no start', event_id)
        return None

    return NormalizedEvent(
        provider_event_id=event_id,
        starts_at=starts_at,
        ends_at=ends_at,
        is_all_day=is_all_day,
        status=status,
        appointment_id=appointment_id,
    )


class GoogleCalendarAdapter(CalendarAdapter):
    provider = 'google'
    token_url = GOOGLE_TOKEN_URL

    def client_credentials(self) -> tuple[str, str]:
        return self._require(config.GOOGLE_CLIENT_ID, config.GOOGLE_CLIENT_SECRET)

    def _events_url(self, connection: CalendarConnection) -> str:
        calendar_id = quote(connection.external_calendar_id or 'primary', safe='')
        return f'{GOOGLE_API_BASE}/calendars/{calendar_id}/events'

    def fetch_events(
        self,
        db: Session,
        connection: CalendarConnection,
        time_min: datetime,
        time_max: datetime,
    ) -> list[NormalizedEvent]:
        params = {
            'timeMin': format_utc(time_min),
            'timeMax': format_utc(time_max),
            'singleEvents': 'true',
            'showDeleted': 'true',
            'maxResults': str(PAGE_SIZE),
        }
        events: list[NormalizedEvent] = []

        while True:
            response = self.request(db, connection, 'GET', self._events_url(connection), 'event list', params=params)
            payload = response.json()
            for item in payload.get('items') or []:
                event = normalize_google_event(item)
                if event is not None:
                    events.append(event)

            page_token = payload.get('nextPageToken')
            if not page_token:
                return events
            params = {**params, 'pageToken': page_token}

    def create_subscription(
        self,
        db: Session,
        connection: CalendarConnection,
        callback_url: str,
        now: datetime,
    ) -> WebhookSubscription:
        expires_at = now + CHANNEL_LIFETIME
        body = {
            'id': f'soradin-{uuid4().hex}',
            'type': 'web_hook',
            'address': callback_url,
            'expiration': str(int(expires_at.timestamp() * 1000)),
        }
        if config.GOOGLE_WEBHOOK_SECRET:
            body['token'] = config.GOOGLE_WEBHOOK_SECRET

        response = self.request(db, connection, 'POST', f'{self._events_url(connection)}/watch', 'channel watch', json=body)
        payload = response.json()

        expiration = payload.get('expiration')
        if expiration:
            expires_at = datetime.fromtimestamp(int(expiration) / 1000, tz=UTC)
        return WebhookSubscription(
            channel_id=payload.get('id') or body['id'],
            resource_id=payload.get('resourceId'),
            expires_at=expires_at,
        )

    def cancel_subscription(self, db: Session, connection: CalendarConnection) -> None:
        if not connection.webhook_channel_id or not connection.webhook_resource_id:
            return
        body = {'id': connection.webhook_channel_id, 'resourceId': connection.webhook_resource_id}
        self.request(db, connection, 'POST', f'{GOOGLE_API_BASE}/channels/stop', 'channel stop', json=body)

    def create_event(self, db: Session, connection: CalendarConnection, appointment: Appointment) -> str:
        body = {
            'summary': SORADIN_EVENT_SUMMARY,
            'description': SORADIN_EVENT_DESCRIPTION,
            'start': {'dateTime': format_utc(appointment.starts_at), 'timeZone': 'UTC'},
            'end': {'dateTime': format_utc(appointment.ends_at), 'timeZone': 'UTC'},
            'extendedProperties': {'private': {APPOINTMENT_MARKER: appointment.id}},
        }
        response = self.request(db, connection, 'POST', self._events_url(connection), 'event create', json=body)
        return response.json()['id']

    def delete_event(self, db: Session, connection: CalendarConnection, provider_event_id: str) -> None:
        url = f'{self._events_url(connection)}/{quote(provider_event_id, safe="")}'
        try:
            self.request(db, connection, 'DELETE', url, 'event delete')
        except ProviderError as exc:
            if exc.status_code not in (404, 410):
                raise
            logger.info('Google event %s was already gone', provider_event_id)
