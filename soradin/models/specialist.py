"""Specialist model definitions."""

from uuid import uuid4

from sqlalchemy import Boolean, Column, String
from soradin.database import Base


class Specialist(Base):
    """A planning specialist whose calendar families book into."""
    __tablename__ = "specialists"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    timezone = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    province = Column(String, nullable=True)  # backfill input only
