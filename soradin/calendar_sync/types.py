"""Provider-neutral event shape shared past the adapter boundary."""

from dataclasses import dataclass
from datetime import datetime
from typing import Literal

EventStatus = Literal['confirmed', 'cancelled']


@dataclass(frozen=True)
class NormalizedEvent:
    provider_event_id: str
    starts_at: datetime | None
    ends_at: datetime | None
    is_all_day: bool = False
    status: EventStatus = 'confirmed'
    # Set when the provider event carries the Soradin appointment marker.
    appointment_id: str | None = None

    @property
    def has_times(self) -> bool:
        return self.starts_at is not None and self.ends_at is not None


@dataclass(frozen=True)
class WebhookSubscription:
    channel_id: str
    expires_at: datetime
    resource_id: str | None = None
