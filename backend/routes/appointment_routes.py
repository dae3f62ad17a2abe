from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from backend.auth.accounts import Account, AccountRole
from backend.auth.dependencies import get_current_account, require_role
from backend.core import config
from backend.core.errors import AppointmentServiceError, DownstreamUnavailable, NotFound
from backend.database import get_db
from backend.lifecycle import get_cache
from backend.models.appointment import Appointment
from backend.models.doctor import Doctor, normalize_availability
from backend.models.specialization import Specialization
from backend.services import cancellation, slot_allocator
from backend.services.cache import ReadThroughCache, doctor_key

router = APIRouter(tags=['appointments'])

ALL_SPECIALIZATIONS = 'All'


class SpecializationSummary(BaseModel):
    id: int
    name: str

    class Config:
        from_attributes = True


class AvailabilityDay(BaseModel):
    day: str
    slots: list[str]


class DoctorResponse(BaseModel):
    id: int
    name: str
    email: str
    specialization: SpecializationSummary | None = None
    experience: int | None = None
    fees: float | None = None
    department: str | None = None
    availability: list[AvailabilityDay] = []

    class Config:
        from_attributes = True


class UpdateAvailabilityRequest(BaseModel):
    availability: list[dict[str, Any]]

    @field_validator('availability')
    @classmethod
    def validate_availability(cls, value: list[dict[str, Any]]) -> list[dict[str, Any]]:
        try:
            normalized = normalize_availability(value)
        except (TypeError, ValueError) as exc:
            raise ValueError('Availability times must look like HH:MM.') from exc

        for entry in normalized:
            for label in entry['slots']:
                if not slot_allocator.SLOT_LABEL_PATTERN.match(label):
                    raise ValueError(f'Invalid time slot: {label}')
        return normalized


class BookAppointmentRequest(BaseModel):
    doctor_id: int
    date: date
    time: str
    symptoms: str
    payment_method: str | None = None

    @field_validator('time')
    @classmethod
    def validate_time(cls, value: str) -> str:
        normalized = value.strip()
        if not slot_allocator.SLOT_LABEL_PATTERN.match(normalized):
            raise ValueError('Time slot must look like HH:MM-HH:MM.')
        return normalized

    @field_validator('symptoms')
    @classmethod
    def validate_symptoms(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Symptoms are required.')
        return normalized


class AppointmentResponse(BaseModel):
    id: int
    patient_id: int
    doctor_id: int
    date: date
    time: str
    status: str
    symptoms: str
    amount: float | None = None
    payment_method: str | None = None
    payment_status: str
    refund_amount: float | None = None
    reminder_sent: bool = False
    prescription: str | None = None

    class Config:
        from_attributes = True


class BookAppointmentResponse(BaseModel):
    message: str
    appointment: AppointmentResponse


class CancellationResponse(BaseModel):
    success: bool = True
    status: str
    refund_percentage: int
    refund_amount: float
    message: str


class BulkCancellationResponse(BaseModel):
    success: bool = True
    message: str
    cancelled_count: int


def load_doctor_profile(db: Session, doctor_id: int) -> dict:
    doctor = db.query(Doctor).options(joinedload(Doctor.specialization)).filter(Doctor.id == doctor_id).first()
    if doctor is None:
        raise NotFound('Doctor not found.')
    return DoctorResponse.model_validate(doctor).model_dump(mode='json')


@router.get('/doctors', response_model=list[DoctorResponse])
def list_doctors(
    specialization: str | None = Query(default=None),
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db),
):
    try:
        query = db.query(Doctor).options(joinedload(Doctor.specialization))

        if specialization and specialization != ALL_SPECIALIZATIONS:
            specialization_record = db.query(Specialization).filter(Specialization.name == specialization).first()
            if specialization_record is None:
                return []
            query = query.filter(Doctor.specialization_id == specialization_record.id)

        return query.order_by(Doctor.name.asc()).all()
    except SQLAlchemyError as exc:
        raise DownstreamUnavailable() from exc


@router.get('/doctors/{doctor_id}', response_model=DoctorResponse)
def get_doctor(
    doctor_id: int,
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache),
):
    try:
        return cache.fetch(
            doctor_key(doctor_id),
            config.DOCTOR_CACHE_TTL_SECONDS,
            lambda: load_doctor_profile(db, doctor_id),
        )
    except SQLAlchemyError as exc:
        raise DownstreamUnavailable() from exc


@router.put('/doctors/me/availability', response_model=DoctorResponse)
def update_my_availability(
    data: UpdateAvailabilityRequest,
    account: Account = Depends(require_role(AccountRole.DOCTOR)),
    db: Session = Depends(get_db),
):
    try:
        doctor = db.query(Doctor).filter(Doctor.id == account.id).first()
        if doctor is None:
            raise NotFound('Doctor not found.')

        doctor.availability = data.availability
        db.commit()
        db.refresh(doctor)
        return doctor
    except SQLAlchemyError as exc:
        db.rollback()
        raise DownstreamUnavailable() from exc


@router.get('/slots', response_model=dict[str, int])
def get_slot_status(
    doctor_id: int = Query(...),
    slot_date: date = Query(..., alias='date'),
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db),
):
    try:
        return slot_allocator.slot_status(db, doctor_id, slot_date)
    except SQLAlchemyError as exc:
        raise DownstreamUnavailable() from exc


@router.post('/book', response_model=BookAppointmentResponse, status_code=status.HTTP_201_CREATED)
def book_appointment(
    data: BookAppointmentRequest,
    account: Account = Depends(require_role(AccountRole.PATIENT)),
    db: Session = Depends(get_db),
):
    try:
        appointment = slot_allocator.book_appointment(
            db,
            patient_id=account.id,
            doctor_id=data.doctor_id,
            slot_date=data.date,
            slot_label=data.time,
            symptoms=data.symptoms,
            payment_method=data.payment_method,
        )
    except SQLAlchemyError as exc:
        db.rollback()
        raise DownstreamUnavailable() from exc

    return BookAppointmentResponse(
        message='Appointment booked successfully',
        appointment=AppointmentResponse.model_validate(appointment),
    )


@router.get('/mine', response_model=list[AppointmentResponse])
def list_my_appointments(
    account: Account = Depends(require_role(AccountRole.PATIENT, AccountRole.DOCTOR)),
    db: Session = Depends(get_db),
):
    try:
        query = db.query(Appointment)
        if account.role == AccountRole.PATIENT:
            query = query.filter(Appointment.patient_id == account.id)
        else:
            query = query.filter(Appointment.doctor_id == account.id)
        return query.order_by(Appointment.date.desc(), Appointment.time.desc()).all()
    except SQLAlchemyError as exc:
        raise DownstreamUnavailable() from exc


@router.post('/cancel/{appointment_id}', response_model=CancellationResponse)
def cancel_appointment(
    appointment_id: int,
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db),
):
    try:
        result = cancellation.cancel_appointment(db, appointment_id, account.role, account.id)
    except AppointmentServiceError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        raise DownstreamUnavailable() from exc

    return CancellationResponse(
        status=result.status,
        refund_percentage=result.refund_percentage,
        refund_amount=result.refund_amount,
        message=result.message,
    )


@router.post('/cancel-all', response_model=BulkCancellationResponse)
def cancel_all_appointments(
    account: Account = Depends(require_role(AccountRole.DOCTOR)),
    db: Session = Depends(get_db),
):
    try:
        result = cancellation.cancel_all_appointments(db, account.id)
    except AppointmentServiceError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        raise DownstreamUnavailable() from exc

    return BulkCancellationResponse(message=result.message, cancelled_count=result.cancelled_count)
