"""Patient model definitions."""

from datetime import datetime

from sqlalchemy import Column, Date, DateTime, Integer, String

from backend.database import Base


class Patient(Base):
    """Represents a patient account."""
    __tablename__ = 'patients'

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String)
    gender = Column(String)
    date_of_birth = Column(Date)
    address = Column(String)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)
