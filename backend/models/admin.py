"""Admin model definitions."""

from sqlalchemy import Column, Integer, String

from backend.database import Base


class Admin(Base):
    """Represents a hospital administrator."""
    __tablename__ = 'admins'

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String)
