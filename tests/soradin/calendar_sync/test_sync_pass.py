from datetime import datetime, timedelta

import pytest

from soradin.calendar_sync.base import CalendarAdapter
from soradin.calendar_sync.errors import ProviderNotConfigured, RateLimited, ReauthorizationRequired
from soradin.calendar_sync.sync import run_sync_pass
from soradin.calendar_sync.types import NormalizedEvent, WebhookSubscription
from soradin.calendar_sync.webhooks import ensure_webhook, webhook_needs_renewal
from soradin.core import config
from soradin.core.timezones import UTC, ensure_utc
from soradin.models.calendar import CalendarConnection, DeletedExternalEvent, ExternalEvent
from soradin.models.specialist import Specialist

NOW = datetime(2026, 2, 2, 12, 0, tzinfo=UTC)
SPECIALISTS = ('5d1e2f3a-0000-4000-8000-000000000001', '5d1e2f3a-0000-4000-8000-000000000002')


class FakeAdapter(CalendarAdapter):
    provider = 'google'

    def __init__(self, events=None, fetch_error=None, subscribe_error=None) -> None:
        self.events = events or []
        self.fetch_error = fetch_error
        self.subscribe_error = subscribe_error
        self.fetch_windows: list[tuple[datetime, datetime]] = []
        self.subscriptions: list[str] = []
        self.cancelled: list[str] = []

    def fetch_events(self, db, connection, time_min, time_max):
        self.fetch_windows.append((time_min, time_max))
        if self.fetch_error is not None:
            raise self.fetch_error
        return list(self.events)

    def create_subscription(self, db, connection, callback_url, now):
        if self.subscribe_error is not None:
            raise self.subscribe_error
        self.subscriptions.append(callback_url)
        return WebhookSubscription(channel_id=f'channel-{len(self.subscriptions)}', resource_id='res', expires_at=now + timedelta(days=6))

    def cancel_subscription(self, db, connection):
        self.cancelled.append(connection.webhook_channel_id)


@pytest.fixture
def connections(db_session) -> list[CalendarConnection]:
    rows = []
    for index, specialist_id in enumerate(SPECIALISTS):
        db_session.add(Specialist(id=specialist_id, timezone='America/Edmonton', is_active=True))
        rows.append(CalendarConnection(
            id=f'conn-{index}',
            specialist_id=specialist_id,
            provider='google',
            access_token='token',
            refresh_token='refresh',
            webhook_channel_id=f'existing-{index}',
            webhook_expires_at=NOW + timedelta(days=5),
        ))
    db_session.add_all(rows)
    db_session.commit()
    return rows


@pytest.fixture(autouse=True)
def no_public_url(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, 'PUBLIC_BASE_URL', '')


def event(event_id: str, day: int = 3) -> NormalizedEvent:
    return NormalizedEvent(event_id, datetime(2026, 2, day, 16, 0, tzinfo=UTC), datetime(2026, 2, day, 17, 0, tzinfo=UTC))


def test_failing_connection_does_not_stop_the_batch(db_session, connections) -> None:
    adapters = {
        'conn-0': FakeAdapter(fetch_error=ReauthorizationRequired('refresh token revoked', 'google')),
        'conn-1': FakeAdapter(events=[event('evt-1')]),
    }
    order = iter(['conn-0', 'conn-1'])

    summary = run_sync_pass(db_session, now=NOW, adapter_factory=lambda provider: adapters[next(order)])

    assert (summary.total, summary.synced, summary.failed, summary.skipped) == (2, 1, 1, 0)
    assert summary.errors[0]['connectionId'] == 'conn-0'
    assert summary.errors[0]['status'] == 'reauthorization_required'
    assert db_session.query(ExternalEvent).filter(ExternalEvent.specialist_id == SPECIALISTS[1]).count() == 1

    db_session.expire_all()
    failed = db_session.get(CalendarConnection, 'conn-0')
    synced = db_session.get(CalendarConnection, 'conn-1')
    assert failed.last_sync_status == 'reauthorization_required'
    assert 'revoked' in failed.last_sync_error
    assert synced.last_sync_status == 'ok'
    assert ensure_utc(synced.last_synced_at) == NOW


def test_fetch_window_covers_thirty_days(db_session, connections) -> None:
    adapter = FakeAdapter()

    run_sync_pass(db_session, now=NOW, adapter_factory=lambda provider: adapter)

    assert adapter.fetch_windows[0] == (NOW, NOW + timedelta(days=30))


def test_unconfigured_provider_is_skipped_and_logged_once(db_session, connections, caplog) -> None:
    def factory(provider: str):
        raise ProviderNotConfigured('google OAuth client is not configured', provider)

    with caplog.at_level('WARNING', logger='soradin.calendar_sync.sync'):
        summary = run_sync_pass(db_session, now=NOW, adapter_factory=factory)

    assert (summary.skipped, summary.failed) == (2, 0)
    assert caplog.text.count('Skipping google connections') == 1


def test_rate_limited_fetch_sets_cooldown(db_session, connections) -> None:
    limited = FakeAdapter(fetch_error=RateLimited('google rate limited event list', 'google', retry_after=None))

    first = run_sync_pass(db_session, now=NOW, adapter_factory=lambda provider: limited)
    second = run_sync_pass(db_session, now=NOW + timedelta(minutes=10), adapter_factory=lambda provider: limited)

    assert first.failed == 2
    assert second.skipped == 2
    assert len(limited.fetch_windows) == 2
    db_session.expire_all()
    connection = db_session.get(CalendarConnection, 'conn-0')
    assert ensure_utc(connection.sync_retry_after) == NOW + timedelta(minutes=config.RATE_LIMIT_COOLDOWN_MINUTES)


def test_sync_prunes_old_unlinked_rows(db_session, connections) -> None:
    db_session.add(ExternalEvent(
        specialist_id=SPECIALISTS[0],
        provider='google',
        provider_event_id='last-week',
        starts_at=NOW - timedelta(days=7),
        ends_at=NOW - timedelta(days=7) + timedelta(hours=1),
    ))
    db_session.commit()

    summary = run_sync_pass(db_session, now=NOW, adapter_factory=lambda provider: FakeAdapter())

    assert summary.pruned == 1
    assert db_session.query(ExternalEvent).count() == 0


def test_sync_expires_unconsumed_blocklist_entries(db_session, connections, monkeypatch) -> None:
    monkeypatch.setattr(config, 'DELETION_BLOCKLIST_RETENTION_DAYS', 7)
    db_session.add_all([
        DeletedExternalEvent(specialist_id=SPECIALISTS[0], provider='microsoft', provider_event_id='gone-long-ago',
                             recorded_at=NOW - timedelta(days=8)),
        DeletedExternalEvent(specialist_id=SPECIALISTS[0], provider='microsoft', provider_event_id='gone-today',
                             recorded_at=NOW - timedelta(hours=1)),
    ])
    db_session.commit()

    run_sync_pass(db_session, now=NOW, adapter_factory=lambda provider: FakeAdapter())

    remaining = db_session.query(DeletedExternalEvent.provider_event_id).all()
    assert [row.provider_event_id for row in remaining] == ['gone-today']


def test_disabled_connection_is_not_synced(db_session, connections) -> None:
    connections[0].sync_enabled = False
    db_session.commit()

    summary = run_sync_pass(db_session, now=NOW, adapter_factory=lambda provider: FakeAdapter())

    assert summary.total == 1


def test_webhook_needs_renewal_inside_threshold(db_session, connections) -> None:
    connection = connections[0]

    assert webhook_needs_renewal(connection, NOW) is False
    assert webhook_needs_renewal(connection, NOW + timedelta(days=4, hours=1)) is True
    connection.webhook_channel_id = None
    assert webhook_needs_renewal(connection, NOW) is True


def test_expiring_webhook_is_replaced(db_session, connections, monkeypatch) -> None:
    monkeypatch.setattr(config, 'PUBLIC_BASE_URL', 'https://soradin.example')
    connections[0].webhook_expires_at = NOW + timedelta(hours=2)
    db_session.commit()
    adapter = FakeAdapter()

    summary = run_sync_pass(db_session, now=NOW, adapter_factory=lambda provider: adapter)

    assert summary.webhooks_renewed == 1
    assert adapter.cancelled == ['existing-0']
    assert adapter.subscriptions == ['https://soradin.example/integrations/google/webhook']
    db_session.expire_all()
    renewed = db_session.get(CalendarConnection, 'conn-0')
    assert renewed.webhook_channel_id == 'channel-1'
    assert ensure_utc(renewed.webhook_expires_at) == NOW + timedelta(days=6)


def test_rate_limited_webhook_backs_off_but_still_polls(db_session, connections, monkeypatch) -> None:
    monkeypatch.setattr(config, 'PUBLIC_BASE_URL', 'https://soradin.example')
    connection = connections[0]
    connection.webhook_channel_id = None
    db_session.commit()
    adapter = FakeAdapter(events=[event('evt-1')], subscribe_error=RateLimited('slow down', 'google', retry_after=600))

    assert ensure_webhook(db_session, connection, adapter, NOW) is False
    assert ensure_utc(connection.webhook_retry_after) == NOW + timedelta(seconds=600)

    adapter.subscribe_error = None
    assert ensure_webhook(db_session, connection, adapter, NOW + timedelta(minutes=5)) is False
    assert adapter.subscriptions == []
    assert ensure_webhook(db_session, connection, adapter, NOW + timedelta(minutes=11)) is True
    assert connection.webhook_retry_after is None
