"""Process-wide HTTP clients for provider APIs.

Clients hold no credentials; every call passes its own bearer token.
"""

import email.utils
import logging
from datetime import datetime, timedelta
from threading import Lock

import httpx

from soradin.calendar_sync.errors import AccessTokenRejected, ProviderError, RateLimited
from soradin.core import config
from soradin.core.timezones import UTC, ensure_utc

logger = logging.getLogger(__name__)

_clients: dict[str, httpx.Client] = {}
_clients_lock = Lock()


def get_client(provider: str) -> httpx.Client:
    with _clients_lock:
        client = _clients.get(provider)
        if client is None:
            client = httpx.Client(timeout=httpx.Timeout(config.PROVIDER_TIMEOUT_SECONDS))
            _clients[provider] = client
        return client


def bearer_headers(access_token: str) -> dict[str, str]:
    return {'Authorization': f'Bearer {access_token}', 'Accept': 'application/json'}


def parse_retry_after(response: httpx.Response) -> int | None:
    value = response.headers.get('retry-after')
    if not value:
        return None
    if value.strip().isdigit():
        return int(value.strip())
    try:
        retry_at = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    return max(0, int((ensure_utc(retry_at) - datetime.now(UTC)).total_seconds()))


def cooldown_until(now: datetime, retry_after: int | None) -> datetime:
    if retry_after:
        return now + timedelta(seconds=retry_after)
    return now + timedelta(minutes=config.RATE_LIMIT_COOLDOWN_MINUTES)


def error_summary(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    error = payload.get('error') if isinstance(payload, dict) else None
    if isinstance(error, dict):
        return str(error.get('message') or error.get('code') or error)[:200]
    return str(error or payload)[:200]


def raise_for_provider_status(response: httpx.Response, provider: str, action: str) -> None:
    if response.is_success:
        return
    if response.status_code == 429:
        raise RateLimited(f'{provider} rate limited {action}', provider, retry_after=parse_retry_after(response))
    if response.status_code == 401:
        raise AccessTokenRejected(f'{provider} rejected the access token during {action}', provider)
    raise ProviderError(
        f'{provider} {action} failed ({response.status_code}): {error_summary(response)}',
        provider,
        status_code=response.status_code,
    )


def send(client: httpx.Client, method: str, url: str, provider: str, action: str, **kwargs) -> httpx.Response:
    try:
        response = client.request(method, url, **kwargs)
    except httpx.TimeoutException as exc:
        raise ProviderError(f'{provider} {action} timed out', provider) from exc
    except httpx.HTTPError as exc:
        raise ProviderError(f'{provider} {action} failed: {exc.__class__.__name__}', provider) from exc
    raise_for_provider_status(response, provider, action)
    return response
