"""Shared plumbing for provider calendar adapters."""

import logging
import re
from datetime import date, datetime, time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx
from sqlalchemy.orm import Session

from soradin.calendar_sync.errors import AccessTokenRejected, ProviderError, ProviderNotConfigured, ReauthorizationRequired
from soradin.calendar_sync.http import bearer_headers, error_summary, get_client, raise_for_provider_status, send
from soradin.calendar_sync.tokens import TokenGrant, ensure_access_token
from soradin.calendar_sync.types import NormalizedEvent, WebhookSubscription
from soradin.core.timezones import UTC, ensure_utc
from soradin.models.appointment import Appointment
from soradin.models.calendar import CalendarConnection

logger = logging.getLogger(__name__)

SORADIN_EVENT_SUMMARY = 'Soradin appointment'
SORADIN_EVENT_DESCRIPTION = 'Funeral planning appointment scheduled through Soradin.'


def format_utc(value: datetime) -> str:
    return ensure_utc(value).strftime('%Y-%m-%dT%H:%M:%SZ')


def floating_date(value: str) -> datetime:
    """All-day dates are kept as midnight UTC of the calendar date."""
    return datetime.combine(date.fromisoformat(value[:10]), time(0), tzinfo=UTC)


_EXTRA_FRACTION_DIGITS = re.compile(r'(\.\d{6})\d+')


def parse_provider_datetime(value: str, tz_name: str | None = None) -> datetime:
    """Parse provider timestamps, including Graph's seven-digit fractions."""
    text = _EXTRA_FRACTION_DIGITS.sub(r'\1', value.strip())
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        zone = UTC
        if tz_name and tz_name.upper() not in {'UTC', 'Z'}:
            try:
                zone = ZoneInfo(tz_name)
            except (ZoneInfoNotFoundError, ValueError):
                logger.warning('Unknown provider timezone %r; treating as UTC', tz_name)
        parsed = parsed.replace(tzinfo=zone)
    return ensure_utc(parsed)


class CalendarAdapter:
    """One provider's view of a specialist calendar.

    Everything returned from an adapter is already normalized; callers never
    see provider payloads.
    """

    provider = ''
    token_url = ''
    token_scope: str | None = None

    def __init__(self, client: httpx.Client | None = None) -> None:
        self.client = client or get_client(self.provider)

    def client_credentials(self) -> tuple[str, str]:
        raise NotImplementedError

    def refresh_grant(self, refresh_token: str) -> TokenGrant:
        client_id, client_secret = self.client_credentials()
        data = {
            'client_id': client_id,
            'client_secret': client_secret,
            'refresh_token': refresh_token,
            'grant_type': 'refresh_token',
        }
        if self.token_scope:
            data['scope'] = self.token_scope

        try:
            response = self.client.post(self.token_url, data=data)
        except httpx.HTTPError as exc:
            raise ProviderError(f'{self.provider} token refresh failed: {exc.__class__.__name__}', self.provider) from exc

        if response.status_code in (400, 401):
            raise ReauthorizationRequired(
                f'{self.provider} refused the refresh token: {error_summary(response)}',
                self.provider,
            )
        raise_for_provider_status(response, self.provider, 'token refresh')

        payload = response.json()
        access_token = payload.get('access_token')
        if not access_token:
            raise ReauthorizationRequired(f'{self.provider} token response had no access token', self.provider)
        expires_in = payload.get('expires_in')
        return TokenGrant(
            access_token=access_token,
            refresh_token=payload.get('refresh_token'),
            expires_in=int(expires_in) if expires_in else None,
        )

    def request(
        self,
        db: Session,
        connection: CalendarConnection,
        method: str,
        url: str,
        action: str,
        **kwargs,
    ) -> httpx.Response:
        self.client_credentials()
        token = ensure_access_token(db, connection, self.refresh_grant)
        headers = {**kwargs.pop('headers', {})}
        try:
            return send(self.client, method, url, self.provider, action, headers={**headers, **self._auth(token)}, **kwargs)
        except AccessTokenRejected:
            token = ensure_access_token(db, connection, self.refresh_grant, rejected_token=token)
            return send(self.client, method, url, self.provider, action, headers={**headers, **self._auth(token)}, **kwargs)

    def _auth(self, token: str) -> dict[str, str]:
        return bearer_headers(token)

    def _require(self, *values: str) -> tuple[str, ...]:
        if not all(values):
            raise ProviderNotConfigured(f'{self.provider} OAuth client is not configured', self.provider)
        return values

    def fetch_events(
        self,
        db: Session,
        connection: CalendarConnection,
        time_min: datetime,
        time_max: datetime,
    ) -> list[NormalizedEvent]:
        raise NotImplementedError

    def create_subscription(
        self,
        db: Session,
        connection: CalendarConnection,
        callback_url: str,
        now: datetime,
    ) -> WebhookSubscription:
        raise NotImplementedError

    def cancel_subscription(self, db: Session, connection: CalendarConnection) -> None:
        raise NotImplementedError

    def create_event(self, db: Session, connection: CalendarConnection, appointment: Appointment) -> str:
        raise NotImplementedError

    def delete_event(self, db: Session, connection: CalendarConnection, provider_event_id: str) -> None:
        raise NotImplementedError
