"""Per-slot occupancy and the fixed-capacity booking rule."""

import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, time
from threading import Lock

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.core import config
from backend.core.errors import CapacityExceeded, DuplicateBooking, NotFound, ValidationFailure
from backend.models.appointment import Appointment, AppointmentStatus, PaymentStatus
from backend.models.doctor import Doctor

logger = logging.getLogger(__name__)

SLOT_LABEL_PATTERN = re.compile(r'^\s*(\d{1,2}):(\d{2})\s*-\s*(\d{1,2}):(\d{2})\s*$')
INSTANT_PAYMENT_METHODS = {'razorpay'}

CAPACITY_EXCEEDED = 'capacity_exceeded'
DUPLICATE_BOOKING = 'duplicate_booking'

_SLOT_LOCK_STRIPES = 64
_slot_locks = [Lock() for _ in range(_SLOT_LOCK_STRIPES)]


@dataclass
class BookingDecision:
    allowed: bool
    occupancy: int
    reason: str | None = None


def parse_slot_start(slot_label: str) -> time:
    match = SLOT_LABEL_PATTERN.match(slot_label or '')
    if not match:
        raise ValidationFailure('Time slot must look like HH:MM-HH:MM.')

    start_hour, start_minute, end_hour, end_minute = (int(part) for part in match.groups())
    try:
        start = time(start_hour, start_minute)
        end = time(end_hour, end_minute)
    except ValueError as exc:
        raise ValidationFailure('Time slot must look like HH:MM-HH:MM.') from exc

    if end <= start:
        raise ValidationFailure('Time slot must end after it starts.')
    return start


def normalize_slot_label(slot_label: str) -> str:
    match = SLOT_LABEL_PATTERN.match(slot_label or '')
    if not match:
        raise ValidationFailure('Time slot must look like HH:MM-HH:MM.')
    start_hour, start_minute, end_hour, end_minute = (int(part) for part in match.groups())
    return f'{start_hour:02d}:{start_minute:02d}-{end_hour:02d}:{end_minute:02d}'


def slot_start_datetime(slot_date: date, slot_label: str) -> datetime:
    return datetime.combine(slot_date, parse_slot_start(slot_label))


def active_slot_appointments(db: Session, doctor_id: int, slot_date: date, slot_label: str):
    return db.query(Appointment).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.date == slot_date,
        Appointment.time == slot_label,
        Appointment.status != AppointmentStatus.CANCELLED,
    )


def can_book(
    db: Session,
    doctor_id: int,
    slot_date: date,
    slot_label: str,
    patient_id: int,
    capacity: int | None = None,
) -> BookingDecision:
    capacity = capacity or config.SLOT_CAPACITY
    active = active_slot_appointments(db, doctor_id, slot_date, slot_label)

    occupancy = active.count()
    if occupancy >= capacity:
        return BookingDecision(allowed=False, occupancy=occupancy, reason=CAPACITY_EXCEEDED)

    already_booked = active.filter(Appointment.patient_id == patient_id).first()
    if already_booked:
        return BookingDecision(allowed=False, occupancy=occupancy, reason=DUPLICATE_BOOKING)

    return BookingDecision(allowed=True, occupancy=occupancy)


def slot_status(db: Session, doctor_id: int, slot_date: date) -> dict[str, int]:
    rows = db.query(Appointment.time, func.count(Appointment.id)).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.date == slot_date,
        Appointment.status != AppointmentStatus.CANCELLED,
    ).group_by(Appointment.time).all()

    return {slot_label: count for slot_label, count in rows}


@contextmanager
def slot_lock(doctor_id: int, slot_date: date, slot_label: str):
    """Serialize check-and-insert for one slot inside this process."""
    lock = _slot_locks[hash((doctor_id, slot_date, slot_label)) % _SLOT_LOCK_STRIPES]
    with lock:
        yield


def book_appointment(
    db: Session,
    *,
    patient_id: int,
    doctor_id: int,
    slot_date: date,
    slot_label: str,
    symptoms: str,
    payment_method: str | None = None,
    now: datetime | None = None,
    capacity: int | None = None,
) -> Appointment:
    capacity = capacity or config.SLOT_CAPACITY
    now = now or datetime.now()
    slot_label = normalize_slot_label(slot_label)

    if not (symptoms or '').strip():
        raise ValidationFailure('Symptoms are required.')

    if slot_start_datetime(slot_date, slot_label) <= now:
        raise ValidationFailure('Appointments must be scheduled in the future.')

    with slot_lock(doctor_id, slot_date, slot_label):
        # Row lock on the doctor serializes bookings across processes where the
        # backend supports FOR UPDATE; SQLite ignores it and relies on its write lock.
        doctor = db.query(Doctor).filter(Doctor.id == doctor_id).with_for_update().first()
        if doctor is None:
            db.rollback()
            raise NotFound('Doctor not found.')

        decision = can_book(db, doctor_id, slot_date, slot_label, patient_id, capacity=capacity)
        if decision.reason == CAPACITY_EXCEEDED:
            db.rollback()
            raise CapacityExceeded(capacity=capacity, occupancy=decision.occupancy)
        if decision.reason == DUPLICATE_BOOKING:
            db.rollback()
            raise DuplicateBooking()

        method = (payment_method or '').strip()
        appointment = Appointment(
            patient_id=patient_id,
            doctor_id=doctor_id,
            date=slot_date,
            time=slot_label,
            symptoms=symptoms.strip(),
            amount=doctor.fees if doctor.fees is not None else config.DEFAULT_APPOINTMENT_FEE,
            payment_method=method or None,
            payment_status=PaymentStatus.PAID if method.lower() in INSTANT_PAYMENT_METHODS else PaymentStatus.PENDING,
            status=AppointmentStatus.CONFIRMED,
            reminder_sent=False,
            prescription='',
        )
        db.add(appointment)
        try:
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise DuplicateBooking() from exc

    db.refresh(appointment)
    logger.info(
        'Booked appointment %s for patient %s with doctor %s on %s %s (%d/%d).',
        appointment.id,
        patient_id,
        doctor_id,
        slot_date,
        slot_label,
        decision.occupancy + 1,
        capacity,
    )
    return appointment
