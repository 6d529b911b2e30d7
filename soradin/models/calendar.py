"""Calendar integration model definitions."""

from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from soradin.database import Base

PROVIDERS = ('google', 'microsoft')


class CalendarConnection(Base):
    """A specialist's authorized link to one external calendar."""
    __tablename__ = "calendar_connections"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    specialist_id = Column(String(36), ForeignKey("specialists.id"), nullable=False, index=True)
    provider = Column(String, nullable=False)
    external_calendar_id = Column(String, nullable=False, default='primary')
    access_token = Column(String, nullable=True)
    refresh_token = Column(String, nullable=True)
    token_expires_at = Column(DateTime(timezone=True), nullable=True)
    sync_enabled = Column(Boolean, nullable=False, default=True)
    # NULL defers to the ALLOW_EXTERNAL_EDITS setting.
    allow_external_edits = Column(Boolean, nullable=True)

    webhook_channel_id = Column(String, nullable=True, index=True)
    webhook_resource_id = Column(String, nullable=True)
    webhook_subscription_id = Column(String, nullable=True, index=True)
    webhook_expires_at = Column(DateTime(timezone=True), nullable=True)
    webhook_retry_after = Column(DateTime(timezone=True), nullable=True)
    sync_retry_after = Column(DateTime(timezone=True), nullable=True)

    last_synced_at = Column(DateTime(timezone=True), nullable=True)
    last_sync_status = Column(String, nullable=True)
    last_sync_error = Column(String, nullable=True)


class ExternalEvent(Base):
    """Mirror of a provider calendar event, used for busy-time blocking."""
    __tablename__ = "external_events"
    __table_args__ = (
        UniqueConstraint('specialist_id', 'provider', 'provider_event_id', name='uq_external_events_natural_key'),
    )

    id = Column(Integer, primary_key=True)
    specialist_id = Column(String(36), ForeignKey("specialists.id"), nullable=False, index=True)
    provider = Column(String, nullable=False)
    provider_event_id = Column(String, nullable=False)
    starts_at = Column(DateTime(timezone=True), nullable=False)
    ends_at = Column(DateTime(timezone=True), nullable=False)
    is_all_day = Column(Boolean, nullable=False, default=False)
    status = Column(String, nullable=False, default='confirmed')
    is_soradin_created = Column(Boolean, nullable=False, default=False)
    appointment_id = Column(String(36), nullable=True, index=True)


class DeletedExternalEvent(Base):
    """Single-use guard against re-importing an event the specialist deleted."""
    __tablename__ = "deleted_external_events"
    __table_args__ = (
        UniqueConstraint('specialist_id', 'provider', 'provider_event_id', name='uq_deleted_external_events_key'),
    )

    id = Column(Integer, primary_key=True)
    specialist_id = Column(String(36), nullable=False)
    provider = Column(String, nullable=False)
    provider_event_id = Column(String, nullable=False)
    recorded_at = Column(DateTime(timezone=True), nullable=False)
