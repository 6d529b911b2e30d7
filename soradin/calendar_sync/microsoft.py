"""Microsoft Graph calendar adapter."""

import logging
from datetime import datetime, timedelta
from urllib.parse import quote

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
from soradin.models.appointment import Appointment
from soradin.models.calendar import CalendarConnection

logger = logging.getLogger(__name__)

GRAPH_API_BASE = 'https://graph.microsoft.com/v1.0'
MICROSOFT_TOKEN_URL = 'https://login.microsoftonline.com/common/oauth2/v2.0/token'
MICROSOFT_SCOPE = 'offline_access https://graph.microsoft.com/Calendars.ReadWrite'
APPOINTMENT_MARKER_PROPERTY = 'String {66f5a359-4659-4830-9070-00047ec6ac6e} Name SoradinAppointmentId'
# Graph rejects Outlook event subscriptions longer than 4230 minutes.
SUBSCRIPTION_LIFETIME = timedelta(minutes=4200)
PAGE_SIZE = 100


def normalize_microsoft_event(item: dict) -> NormalizedEvent | None:
    event_id = item.get('id')
    if not event_id:
        return None

    appointment_id = None
    for prop in item.get('singleValueExtendedProperties') or []:
        if prop.get('id', '').lower() == APPOINTMENT_MARKER_PROPERTY.lower():
            appointment_id = prop.get('value') or None
            break

    status = 'cancelled' if item.get('isCancelled') else 'confirmed'
    if item.get('showAs') == 'free' and appointment_id is None:
        status = 'cancelled'

    start = item.get('start') or {}
    end = item.get('end') or {}
    if not start.get('dateTime') or not end.get('dateTime'):
        logger.warning('Skipping Microsoft event %s with no start or end', event_id)
        return None

    is_all_day = bool(item.get('isAllDay'))
    if is_all_day:
        starts_at = floating_date(start['dateTime'])
        ends_at = floating_date(end['dateTime'])
    else:
        starts_at = parse_provider_datetime(start['dateTime'], start.get('timeZone'))
        ends_at = parse_provider_datetime(end['dateTime'], end.get('timeZone'))

    return NormalizedEvent(
        provider_event_id=event_id,
        starts_at=starts_at,
        ends_at=ends_at,
        is_all_day=is_all_day,
        status=status,
        appointment_id=appointment_id,
    )


def event_id_from_resource(resource: str | None) -> str | None:
    """Pull the event id out of a notification resource like ``Users/{id}/Events/{id}``."""
    if not resource:
        return None
    head, _, tail = resource.rstrip('/').rpartition('/')
    if not head or head.rsplit('/', 1)[-1].lower() != 'events':
        return None
    return tail or None


class MicrosoftCalendarAdapter(CalendarAdapter):
    provider = 'microsoft'
    token_url = MICROSOFT_TOKEN_URL
    token_scope = MICROSOFT_SCOPE

    def client_credentials(self) -> tuple[str, str]:
        return self._require(config.MICROSOFT_CLIENT_ID, config.MICROSOFT_CLIENT_SECRET)

    def _calendar_path(self, connection: CalendarConnection) -> str:
        calendar_id = connection.external_calendar_id
        if not calendar_id or calendar_id == 'primary':
            return 'me'
        return f'me/calendars/{quote(calendar_id, safe="")}'

    def fetch_events(
        self,
        db: Session,
        connection: CalendarConnection,
        time_min: datetime,
        time_max: datetime,
    ) -> list[NormalizedEvent]:
        url = f'{GRAPH_API_BASE}/{self._calendar_path(connection)}/calendarView'
        params = {
            'startDateTime': format_utc(time_min),
            'endDateTime': format_utc(time_max),
            '$top': str(PAGE_SIZE),
            '$expand': f"singleValueExtendedProperties($filter=id eq '{APPOINTMENT_MARKER_PROPERTY}')",
        }
        headers = {'Prefer': 'outlook.timezone="UTC"'}
        events: list[NormalizedEvent] = []

        while url:
            response = self.request(db, connection, 'GET', url, 'calendar view', params=params, headers=headers)
            payload = response.json()
            for item in payload.get('value') or []:
                event = normalize_microsoft_event(item)
                if event is not None:
                    events.append(event)
            # nextLink already carries the query string.
            url = payload.get('@odata.nextLink')
            params = None

        return events

    def create_subscription(
        self,
        db: Session,
        connection: CalendarConnection,
        callback_url: str,
        now: datetime,
    ) -> WebhookSubscription:
        body = {
            'changeType': 'created,updated,deleted',
            'notificationUrl': callback_url,
            'resource': f'{self._calendar_path(connection)}/events',
            'expirationDateTime': format_utc(now + SUBSCRIPTION_LIFETIME),
        }
        if config.MICROSOFT_WEBHOOK_CLIENT_STATE:
            body['clientState'] = config.MICROSOFT_WEBHOOK_CLIENT_STATE

        response = self.request(db, connection, 'POST', f'{GRAPH_API_BASE}/subscriptions', 'subscription create', json=body)
        payload = response.json()
        expiration = payload.get('expirationDateTime')
        return WebhookSubscription(
            channel_id=payload['id'],
            expires_at=parse_provider_datetime(expiration) if expiration else now + SUBSCRIPTION_LIFETIME,
        )

    def cancel_subscription(self, db: Session, connection: CalendarConnection) -> None:
        if not connection.webhook_subscription_id:
            return
        url = f'{GRAPH_API_BASE}/subscriptions/{quote(connection.webhook_subscription_id, safe="")}'
        try:
            self.request(db, connection, 'DELETE', url, 'subscription delete')
        except ProviderError as exc:
            if exc.status_code != 404:
                raise

    def create_event(self, db: Session, connection: CalendarConnection, appointment: Appointment) -> str:
        body = {
            'subject': SORADIN_EVENT_SUMMARY,
            'body': {'contentType': 'text', 'content': SORADIN_EVENT_DESCRIPTION},
            'start': {'dateTime': format_utc(appointment.starts_at), 'timeZone': 'UTC'},
            'end': {'dateTime': format_utc(appointment.ends_at), 'timeZone': 'UTC'},
            'isReminderOn': True,
            'reminderMinutesBeforeStart': 15,
            'singleValueExtendedProperties': [
                {'id': APPOINTMENT_MARKER_PROPERTY, 'value': appointment.id},
            ],
        }
        url = f'{GRAPH_API_BASE}/{self._calendar_path(connection)}/events'
        response = self.request(db, connection, 'POST', url, 'event create', json=body)
        return response.json()['id']

    def delete_event(self, db: Session, connection: CalendarConnection, provider_event_id: str) -> None:
        url = f'{GRAPH_API_BASE}/me/events/{quote(provider_event_id, safe="")}'
        try:
            self.request(db, connection, 'DELETE', url, 'event delete')
        except ProviderError as exc:
            if exc.status_code != 404:
                raise
            logger.info('Microsoft event %s was already gone', provider_event_id)
