"""Doctor model definitions."""

from datetime import datetime, timedelta

from sqlalchemy import JSON, Column, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from backend.database import Base

SLOT_LENGTH_MINUTES = 60


class Doctor(Base):
    """Represents a doctor who can be booked."""
    __tablename__ = 'doctors'

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String)
    specialization_id = Column(Integer, ForeignKey('specializations.id'))
    experience = Column(Integer, default=0)
    fees = Column(Float)
    department = Column(String)
    availability = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    specialization = relationship('Specialization', back_populates='doctors')


def split_into_slot_labels(start_time: str, end_time: str, slot_minutes: int = SLOT_LENGTH_MINUTES) -> list[str]:
    start = datetime.strptime(start_time.strip(), '%H:%M')
    end = datetime.strptime(end_time.strip(), '%H:%M')

    labels = []
    current = start
    while current + timedelta(minutes=slot_minutes) <= end:
        slot_end = current + timedelta(minutes=slot_minutes)
        labels.append(f'{current:%H:%M}-{slot_end:%H:%M}')
        current = slot_end

    if not labels and start < end:
        labels.append(f'{start:%H:%M}-{end:%H:%M}')

    return labels


def normalize_availability(entries: list[dict] | None) -> list[dict]:
    """Return availability in the ``[{"day": ..., "slots": [...]}]`` shape.

    Entries in the older ``{day, startTime, endTime}`` shape are split into
    hourly slot labels and merged with any slots already listed for that day.
    Day order follows first appearance.
    """
    merged: dict[str, list[str]] = {}

    for entry in entries or []:
        day = str(entry.get('day', '')).strip()
        if not day:
            continue

        slots = merged.setdefault(day, [])
        if 'slots' in entry:
            labels = [str(label).strip() for label in entry.get('slots') or []]
        else:
            start_time = entry.get('startTime') or entry.get('start_time')
            end_time = entry.get('endTime') or entry.get('end_time')
            labels = split_into_slot_labels(start_time, end_time) if start_time and end_time else []

        for label in labels:
            if label and label not in slots:
                slots.append(label)

    return [{'day': day, 'slots': slots} for day, slots in merged.items()]
