"""Specialization model definitions."""

from sqlalchemy import Column, Integer, String, Text
from sqlalchemy.orm import relationship

from backend.database import Base


class Specialization(Base):
    """Represents a medical specialization doctors are filtered by."""
    __tablename__ = 'specializations'

    id = Column(Integer, primary_key=True)
    name = Column(String, unique=True, nullable=False)
    description = Column(Text)
    image = Column(String)

    doctors = relationship('Doctor', back_populates='specialization')
