"""Provider adapter lookup."""

import httpx

from soradin.calendar_sync.base import CalendarAdapter
from soradin.calendar_sync.errors import ProviderNotConfigured
from soradin.calendar_sync.google import GoogleCalendarAdapter
from soradin.calendar_sync.microsoft import MicrosoftCalendarAdapter
from soradin.core import config

ADAPTERS: dict[str, type[CalendarAdapter]] = {
    'google': GoogleCalendarAdapter,
    'microsoft': MicrosoftCalendarAdapter,
}


def get_adapter(provider: str, client: httpx.Client | None = None) -> CalendarAdapter:
    adapter_class = ADAPTERS.get(provider)
    if adapter_class is None:
        raise ProviderNotConfigured(f'Unsupported calendar provider {provider!r}', provider)
    if not config.is_provider_configured(provider):
        raise ProviderNotConfigured(f'{provider} OAuth client is not configured', provider)
    return adapter_class(client=client)
