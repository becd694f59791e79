"""
SQLAlchemy ORM models for persistence.
"""
from datetime import datetime
from sqlalchemy import Boolean, Column, DateTime, String

from db import Base


class VisitedPlaceORM(Base):
    __tablename__ = "visited_places"

    place_id = Column(String, primary_key=True, index=True)
    visited = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)
