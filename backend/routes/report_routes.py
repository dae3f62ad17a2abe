from datetime import date, datetime
from typing import Literal

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.accounts import Account, AccountRole
from backend.auth.dependencies import get_current_account, require_role
from backend.core import config
from backend.core.errors import AppointmentServiceError, DownstreamUnavailable, Forbidden, NotFound
from backend.database import get_db
from backend.lifecycle import get_cache
from backend.models.report import Report
from backend.services import reports
from backend.services.cache import (
    ReadThroughCache,
    appointment_report_key,
    doctor_reports_key,
    patient_reports_key,
)

router = APIRouter(tags=['reports'])


class PrescriptionItem(BaseModel):
    medicine: str
    frequency: Literal['Once', 'Twice', 'Thrice']
    duration: str | None = None

    @field_validator('medicine')
    @classmethod
    def validate_medicine(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Medicine is required.')
        return normalized


class CreateReportRequest(BaseModel):
    appointment_id: int
    diagnosis: str
    prescriptions: list[PrescriptionItem] = []

    @field_validator('diagnosis')
    @classmethod
    def validate_diagnosis(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Diagnosis is required.')
        return normalized


class ReportResponse(BaseModel):
    id: int
    appointment_id: int
    doctor_id: int
    patient_id: int
    doctor_name: str | None = None
    patient_name: str | None = None
    appointment_date: date | None = None
    appointment_time: str | None = None
    diagnosis: str
    prescriptions: list[PrescriptionItem]
    generated_at: datetime


def serialize_report(report: Report) -> dict:
    return ReportResponse(
        id=report.id,
        appointment_id=report.appointment_id,
        doctor_id=report.doctor_id,
        patient_id=report.patient_id,
        doctor_name=report.doctor.name if report.doctor else None,
        patient_name=report.patient.name if report.patient else None,
        appointment_date=report.appointment.date if report.appointment else None,
        appointment_time=report.appointment.time if report.appointment else None,
        diagnosis=report.diagnosis,
        prescriptions=[
            PrescriptionItem(medicine=item.medicine, frequency=item.frequency, duration=item.duration)
            for item in report.prescriptions
        ],
        generated_at=report.generated_at,
    ).model_dump(mode='json')


def load_appointment_report(db: Session, appointment_id: int) -> dict:
    report = reports.get_report_for_appointment(db, appointment_id)
    if report is None:
        raise NotFound('Report not found.')
    return serialize_report(report)


def ensure_can_view(account: Account, patient_id: int, doctor_id: int | None = None) -> None:
    if account.role == AccountRole.ADMIN:
        return
    if account.role == AccountRole.PATIENT and account.id == patient_id:
        return
    if account.role == AccountRole.DOCTOR and (doctor_id is None or account.id == doctor_id):
        return
    raise Forbidden('Not authorized to view these reports.')


@router.post('', response_model=ReportResponse, status_code=status.HTTP_201_CREATED)
def create_report(
    data: CreateReportRequest,
    account: Account = Depends(require_role(AccountRole.DOCTOR)),
    db: Session = Depends(get_db),
):
    try:
        report = reports.create_report(
            db,
            doctor_id=account.id,
            appointment_id=data.appointment_id,
            diagnosis=data.diagnosis,
            prescriptions=[
                reports.PrescriptionLine(medicine=item.medicine, frequency=item.frequency, duration=item.duration)
                for item in data.prescriptions
            ],
        )
        return serialize_report(report)
    except AppointmentServiceError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        raise DownstreamUnavailable() from exc


@router.get('/appointment/{appointment_id}', response_model=ReportResponse)
def get_appointment_report(
    appointment_id: int,
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache),
):
    try:
        report = cache.fetch(
            appointment_report_key(appointment_id),
            config.REPORTS_CACHE_TTL_SECONDS,
            lambda: load_appointment_report(db, appointment_id),
        )
    except SQLAlchemyError as exc:
        raise DownstreamUnavailable() from exc

    ensure_can_view(account, report['patient_id'], report['doctor_id'])
    return report


@router.get('/patient/{patient_id}', response_model=list[ReportResponse])
def list_patient_reports(
    patient_id: int,
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache),
):
    ensure_can_view(account, patient_id)

    try:
        return cache.fetch(
            patient_reports_key(patient_id),
            config.REPORTS_CACHE_TTL_SECONDS,
            lambda: [serialize_report(report) for report in reports.list_patient_reports(db, patient_id)],
        )
    except SQLAlchemyError as exc:
        raise DownstreamUnavailable() from exc


@router.get('/doctor/me', response_model=list[ReportResponse])
def list_my_doctor_reports(
    account: Account = Depends(require_role(AccountRole.DOCTOR)),
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache),
):
    try:
        return cache.fetch(
            doctor_reports_key(account.id),
            config.REPORTS_CACHE_TTL_SECONDS,
            lambda: [serialize_report(report) for report in reports.list_doctor_reports(db, account.id)],
        )
    except SQLAlchemyError as exc:
        raise DownstreamUnavailable() from exc
