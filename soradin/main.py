import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from soradin.calendar_sync.scheduler import shutdown_scheduler, start_scheduler
from soradin.core import config
from soradin.database import Base, engine, ensure_calendar_schema
from soradin.models import appointment, availability, calendar, specialist  # noqa: F401
from soradin.routes import availability_routes, integration_routes

config.validate_runtime_config()

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in os.getenv('CORS_ORIGINS', 'http://localhost:3000').split(',') if origin.strip()],
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    logging.getLogger('soradin').setLevel(config.LOG_LEVEL.upper())
    try:
        Base.metadata.create_all(bind=engine)
        ensure_calendar_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and Postgres credentials.')


@app.on_event('startup')
def start_calendar_sync() -> None:
    if config.ENABLE_SYNC_SCHEDULER:
        start_scheduler()


@app.on_event('shutdown')
def stop_calendar_sync() -> None:
    shutdown_scheduler()


@app.get('/')
def root():
    return {'status': 'Soradin Availability API Running'}


app.include_router(availability_routes.router, prefix='/availability')
app.include_router(integration_routes.router, prefix='/integrations')
