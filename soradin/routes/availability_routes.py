from datetime import date, datetime, time, timedelta
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from soradin.core import config
from soradin.core.timezones import to_utc, utc_now
from soradin.database import SessionLocal, ensure_calendar_schema
from soradin.services.availability_store import SqlAvailabilityStore
from soradin.services.conflicts import load_busy_time_index
from soradin.services.slots import DaySlots, SlotGenerator

router = APIRouter(tags=['availability'])


class SlotResponse(BaseModel):
    starts_at: datetime = Field(alias='startsAt')
    ends_at: datetime = Field(alias='endsAt')

    class Config:
        from_attributes = True
        populate_by_name = True


class DayAvailabilityResponse(BaseModel):
    date: date
    slots: list[SlotResponse]

    class Config:
        from_attributes = True


def ensure_database_ready() -> None:
    try:
        ensure_calendar_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Database unavailable. Verify DATABASE_URL and Postgres credentials.',
        ) from exc


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def parse_specialist_id(value: str) -> str:
    try:
        return str(UUID(value.strip()))
    except (AttributeError, ValueError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='specialistId must be a UUID.',
        ) from exc


def parse_date_range(start_value: str, end_value: str) -> tuple[date, date]:
    try:
        start_date = date.fromisoformat(start_value.strip())
        end_date = date.fromisoformat(end_value.strip())
    except (AttributeError, ValueError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='startDate and endDate must be YYYY-MM-DD dates.',
        ) from exc

    if end_date < start_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='endDate must not be before startDate.',
        )

    if (end_date - start_date).days + 1 > config.MAX_AVAILABILITY_RANGE_DAYS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'Date range must be {config.MAX_AVAILABILITY_RANGE_DAYS} days or fewer.',
        )

    return start_date, end_date


def to_response(days: list[DaySlots]) -> list[DayAvailabilityResponse]:
    return [
        DayAvailabilityResponse(
            date=day.date,
            slots=[SlotResponse(starts_at=slot.starts_at, ends_at=slot.ends_at) for slot in day.slots],
        )
        for day in days
    ]


@router.get(
    '',
    response_model=list[DayAvailabilityResponse],
    response_model_by_alias=True,
)
def get_availability(
    specialist_id: str = Query(..., alias='specialistId'),
    start_date: str = Query(..., alias='startDate'),
    end_date: str = Query(..., alias='endDate'),
    db: Session = Depends(get_db),
):
    normalized_specialist_id = parse_specialist_id(specialist_id)
    first_day, last_day = parse_date_range(start_date, end_date)

    ensure_database_ready()

    try:
        store = SqlAvailabilityStore(db)
        specialist = store.get_specialist(normalized_specialist_id)
        if specialist is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Specialist not found.',
            )
        if not specialist.is_active:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='Specialist is not accepting appointments.',
            )

        window_start = to_utc(first_day, time(0, 0), specialist.timezone)
        window_end = to_utc(last_day + timedelta(days=1), time(0, 0), specialist.timezone)
        conflicts = load_busy_time_index(db, specialist.id, window_start, window_end, store=store)

        days = SlotGenerator(store, conflicts).generate(
            specialist.id,
            first_day,
            last_day,
            not_before=utc_now(),
        )
        return to_response(days)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Database unavailable. Verify DATABASE_URL and Postgres credentials.',
        ) from exc
