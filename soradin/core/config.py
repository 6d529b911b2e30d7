import os



def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)

APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "America/Vancouver")

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET", "")
GOOGLE_WEBHOOK_SECRET = os.getenv("GOOGLE_WEBHOOK_SECRET", "")

MICROSOFT_CLIENT_ID = os.getenv("MICROSOFT_CLIENT_ID", "")
MICROSOFT_CLIENT_SECRET = os.getenv("MICROSOFT_CLIENT_SECRET", "")
MICROSOFT_WEBHOOK_CLIENT_STATE = os.getenv("MICROSOFT_WEBHOOK_CLIENT_STATE", "")

CRON_SECRET = os.getenv("CRON_SECRET", "")
ALLOW_EXTERNAL_EDITS = _get_bool(os.getenv("ALLOW_EXTERNAL_EDITS"), default=False)

# Webhook callbacks are only registered when the service knows its public URL.
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "").rstrip("/")

ENABLE_SYNC_SCHEDULER = _get_bool(os.getenv("ENABLE_SYNC_SCHEDULER"), default=False)
SYNC_INTERVAL_MINUTES = _get_int(os.getenv("SYNC_INTERVAL_MINUTES"), 2)
SYNC_WINDOW_DAYS = _get_int(os.getenv("SYNC_WINDOW_DAYS"), 30)
WEBHOOK_LOOKBACK_MINUTES = _get_int(os.getenv("WEBHOOK_LOOKBACK_MINUTES"), 60)
WEBHOOK_RENEWAL_THRESHOLD_HOURS = _get_int(os.getenv("WEBHOOK_RENEWAL_THRESHOLD_HOURS"), 24)
RATE_LIMIT_COOLDOWN_MINUTES = _get_int(os.getenv("RATE_LIMIT_COOLDOWN_MINUTES"), 60)
# Unconsumed deletion blocklist entries are dropped after this many days.
DELETION_BLOCKLIST_RETENTION_DAYS = _get_int(os.getenv("DELETION_BLOCKLIST_RETENTION_DAYS"), 7)
PROVIDER_TIMEOUT_SECONDS = float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "20"))
TOKEN_REFRESH_SKEW_SECONDS = _get_int(os.getenv("TOKEN_REFRESH_SKEW_SECONDS"), 60)

MAX_AVAILABILITY_RANGE_DAYS = _get_int(os.getenv("MAX_AVAILABILITY_RANGE_DAYS"), 62)


def is_provider_configured(provider: str) -> bool:
    if provider == "google":
        return bool(GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET)
    if provider == "microsoft":
        return bool(MICROSOFT_CLIENT_ID and MICROSOFT_CLIENT_SECRET)
    return False


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and not CRON_SECRET:
        raise RuntimeError("CRON_SECRET must be set in production.")
