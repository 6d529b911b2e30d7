"""Appointment model definitions."""

from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, String
from soradin.database import Base

APPOINTMENT_STATUSES = ('pending', 'confirmed', 'cancelled')


class Appointment(Base):
    """A family's booking with a specialist."""
    __tablename__ = "appointments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    specialist_id = Column(String(36), ForeignKey("specialists.id"), nullable=False, index=True)
    starts_at = Column(DateTime(timezone=True), nullable=False)
    ends_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(String, nullable=False, default='pending')
    notes = Column(String, nullable=True)
