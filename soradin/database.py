import os
from dotenv import load_dotenv
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker


load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./soradin.db")

engine = create_engine(DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_calendar_schema_checked = False


def ensure_calendar_schema(bind=None) -> None:
    """Bring older calendar tables up to the shape the sync engine expects."""
    global _calendar_schema_checked

    if _calendar_schema_checked:
        return

    with _schema_lock:
        if _calendar_schema_checked:
            return

        bind = bind or engine
        inspector = inspect(bind)
        table_names = inspector.get_table_names()

        with bind.begin() as connection:
            if 'calendar_connections' in table_names:
                existing_columns = {column['name'] for column in inspector.get_columns('calendar_connections')}
                migration_steps = [
                    ('webhook_resource_id', 'ALTER TABLE calendar_connections ADD COLUMN webhook_resource_id VARCHAR'),
                    ('allow_external_edits', 'ALTER TABLE calendar_connections ADD COLUMN allow_external_edits BOOLEAN'),
                    ('webhook_retry_after', 'ALTER TABLE calendar_connections ADD COLUMN webhook_retry_after TIMESTAMP'),
                    ('sync_retry_after', 'ALTER TABLE calendar_connections ADD COLUMN sync_retry_after TIMESTAMP'),
                    ('last_synced_at', 'ALTER TABLE calendar_connections ADD COLUMN last_synced_at TIMESTAMP'),
                    ('last_sync_status', 'ALTER TABLE calendar_connections ADD COLUMN last_sync_status VARCHAR'),
                    ('last_sync_error', 'ALTER TABLE calendar_connections ADD COLUMN last_sync_error VARCHAR'),
                ]
                for column_name, statement in migration_steps:
                    if column_name not in existing_columns:
                        connection.execute(text(statement))

            if 'external_events' in table_names:
                connection.execute(
                    text(
                        'CREATE UNIQUE INDEX IF NOT EXISTS uq_external_events_natural_key '
                        'ON external_events(specialist_id, provider, provider_event_id)'
                    )
                )
                connection.execute(
                    text(
                        'CREATE INDEX IF NOT EXISTS idx_external_events_time_range '
                        'ON external_events(specialist_id, starts_at, ends_at)'
                    )
                )

            if 'appointments' in table_names:
                connection.execute(
                    text(
                        'CREATE INDEX IF NOT EXISTS idx_appointments_specialist_time_range '
                        'ON appointments(specialist_id, starts_at, ends_at)'
                    )
                )

        _calendar_schema_checked = True
