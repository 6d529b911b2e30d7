"""Availability model definitions."""

from uuid import uuid4

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Time, UniqueConstraint
from soradin.database import Base


class AvailabilityRule(Base):
    """Recurring weekly working hours for one weekday (0 = Sunday)."""
    __tablename__ = "availability_rules"
    __table_args__ = (
        UniqueConstraint('specialist_id', 'weekday', name='uq_availability_rules_specialist_weekday'),
        CheckConstraint('weekday >= 0 AND weekday <= 6', name='ck_availability_rules_weekday'),
        CheckConstraint('start_time < end_time', name='ck_availability_rules_window'),
    )

    id = Column(Integer, primary_key=True)
    specialist_id = Column(String(36), ForeignKey("specialists.id"), nullable=False, index=True)
    weekday = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    slot_interval_minutes = Column(Integer, nullable=False, default=30)


class TimeOff(Base):
    """Explicit unavailability, stored as UTC instants."""
    __tablename__ = "time_off"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    specialist_id = Column(String(36), ForeignKey("specialists.id"), nullable=False, index=True)
    starts_at = Column(DateTime(timezone=True), nullable=False)
    ends_at = Column(DateTime(timezone=True), nullable=False)
