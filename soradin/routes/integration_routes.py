import json
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status
from fastapi.responses import PlainTextResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from soradin.auth.dependencies import require_cron_secret
from soradin.calendar_sync.ingest import handle_google_push, handle_microsoft_notifications
from soradin.calendar_sync.sync import run_sync_pass
from soradin.routes.availability_routes import ensure_database_ready, get_db

router = APIRouter(tags=['integrations'])

logger = logging.getLogger(__name__)

# Graph sends the validation token as the whole body on some tenants.
MAX_VALIDATION_TOKEN_LENGTH = 500


@router.get('/google/webhook')
def google_webhook_challenge(challenge: str | None = Query(default=None)):
    if not challenge:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Missing challenge parameter.',
        )
    return PlainTextResponse(challenge)


@router.post('/google/webhook')
def google_webhook(request: Request, background_tasks: BackgroundTasks):
    channel_id = request.headers.get('x-goog-channel-id')
    resource_state = request.headers.get('x-goog-resource-state')
    channel_token = request.headers.get('x-goog-channel-token')
    logger.debug(
        'Google push: channel=%s resource=%s state=%s',
        channel_id,
        request.headers.get('x-goog-resource-id'),
        resource_state,
    )

    background_tasks.add_task(handle_google_push, channel_id, resource_state, channel_token)
    return {'received': True}


@router.get('/microsoft/webhook')
def microsoft_webhook_validation(validation_token: str | None = Query(default=None, alias='validationToken')):
    if validation_token:
        return PlainTextResponse(validation_token)
    return {'status': 'Microsoft webhook endpoint ready'}


def extract_body_validation_token(body: str) -> str | None:
    candidate = body.strip()
    if not candidate or candidate.startswith('{') or len(candidate) >= MAX_VALIDATION_TOKEN_LENGTH:
        return None
    return candidate


@router.post('/microsoft/webhook')
async def microsoft_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    validation_token: str | None = Query(default=None, alias='validationToken'),
):
    if validation_token:
        return PlainTextResponse(validation_token)

    raw_body = (await request.body()).decode('utf-8', errors='replace')
    body_token = extract_body_validation_token(raw_body)
    if body_token:
        return PlainTextResponse(body_token)

    try:
        payload = json.loads(raw_body) if raw_body.strip() else {}
    except json.JSONDecodeError:
        logger.warning('Ignoring Microsoft notification with a malformed body')
        return {'received': True}

    notifications = payload.get('value') if isinstance(payload, dict) else None
    if not isinstance(notifications, list) or not notifications:
        logger.warning('Ignoring Microsoft notification without a value list')
        return {'received': True}

    background_tasks.add_task(handle_microsoft_notifications, notifications)
    return {'received': True}


@router.get('/sync', dependencies=[Depends(require_cron_secret)])
def trigger_sync(db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        summary = run_sync_pass(db)
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Database unavailable. Verify DATABASE_URL and Postgres credentials.',
        ) from exc

    return {'message': 'Calendar sync complete', **summary.as_dict()}
