"""Builds the account-specific context handed to the answering service.

Reads go straight to the database because freshness matters more than
latency here. Any failure degrades to a fixed block instead of failing the
chat request.
"""

import logging
from datetime import datetime

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session, joinedload, selectinload

from backend.models.appointment import Appointment, AppointmentStatus
from backend.models.doctor import Doctor
from backend.models.report import Report

logger = logging.getLogger(__name__)

UPCOMING_LIMIT = 3
PAST_LIMIT = 5
REPORT_LIMIT = 3

CONTEXT_HEADER = '=== USER SPECIFIC CONTEXT ==='
CONTEXT_FOOTER = '==========================='

NO_UPCOMING = 'No upcoming appointments found.'
NO_PAST = 'No past appointments found.'
NO_REPORTS = 'No medical reports found.'

DEGRADED_CONTEXT = '\n'.join([
    CONTEXT_HEADER,
    'Account details are temporarily unavailable.',
    NO_UPCOMING,
    NO_PAST,
    NO_REPORTS,
    CONTEXT_FOOTER,
])


def has_started(now: datetime):
    # Slot labels are stored zero-padded as HH:MM-HH:MM and compare as text.
    clock = now.strftime('%H:%M')
    return or_(
        Appointment.date < now.date(),
        and_(Appointment.date == now.date(), Appointment.time < clock),
    )


def not_started(now: datetime):
    clock = now.strftime('%H:%M')
    return or_(
        Appointment.date > now.date(),
        and_(Appointment.date == now.date(), Appointment.time >= clock),
    )


def fetch_upcoming_appointments(db: Session, patient_id: int, now: datetime) -> list[Appointment]:
    return db.query(Appointment).options(
        joinedload(Appointment.doctor).joinedload(Doctor.specialization),
    ).filter(
        Appointment.patient_id == patient_id,
        Appointment.status == AppointmentStatus.CONFIRMED,
        not_started(now),
    ).order_by(Appointment.date.asc(), Appointment.time.asc()).limit(UPCOMING_LIMIT).all()


def fetch_past_appointments(db: Session, patient_id: int, now: datetime) -> list[Appointment]:
    return db.query(Appointment).options(
        joinedload(Appointment.doctor),
    ).filter(
        Appointment.patient_id == patient_id,
        has_started(now),
    ).order_by(Appointment.date.desc(), Appointment.time.desc()).limit(PAST_LIMIT).all()


def fetch_recent_reports(db: Session, patient_id: int) -> list[Report]:
    return db.query(Report).options(
        joinedload(Report.doctor),
        selectinload(Report.prescriptions),
    ).filter(
        Report.patient_id == patient_id,
    ).order_by(Report.generated_at.desc(), Report.id.desc()).limit(REPORT_LIMIT).all()


def _doctor_name(doctor: Doctor | None) -> str:
    return doctor.name if doctor is not None else 'Unknown Doctor'


def _specialization_name(doctor: Doctor | None) -> str:
    if doctor is None or doctor.specialization is None:
        return 'General'
    return doctor.specialization.name


def format_prescriptions(report: Report) -> str:
    if not report.prescriptions:
        return 'None'
    return '; '.join(
        f'{item.medicine} ({item.frequency}, {item.duration or "N/A"})'
        for item in report.prescriptions
    )


def format_upcoming(appointment: Appointment) -> str:
    return (
        f'- On {appointment.date.isoformat()} at {appointment.time} with Dr. {_doctor_name(appointment.doctor)} '
        f'({_specialization_name(appointment.doctor)}). Symptoms: {appointment.symptoms}. '
        f'Payment: {appointment.payment_status} ({appointment.amount or 0}). '
        f'Prescription: {appointment.prescription or "None"}'
    )


def format_past(appointment: Appointment) -> str:
    return (
        f'- On {appointment.date.isoformat()} with Dr. {_doctor_name(appointment.doctor)}. '
        f'Status: {appointment.status}. Payment: {appointment.payment_status}. '
        f'Diagnosis/Notes: {appointment.prescription or "None"}'
    )


def format_report(report: Report) -> str:
    return (
        f'- Report from Dr. {_doctor_name(report.doctor)} on {report.generated_at.date().isoformat()}: '
        f'Diagnosis: "{report.diagnosis}". Prescriptions: {format_prescriptions(report)}'
    )


def _section(title: str, lines: list[str], empty_message: str) -> list[str]:
    if not lines:
        return [empty_message]
    return [title, *lines]


def build_context(db: Session, patient_id: int, now: datetime | None = None) -> str:
    now = now or datetime.now()

    try:
        upcoming = fetch_upcoming_appointments(db, patient_id, now)
        past = fetch_past_appointments(db, patient_id, now)
        reports = fetch_recent_reports(db, patient_id)

        lines = [CONTEXT_HEADER]
        lines += _section('UPCOMING APPOINTMENTS:', [format_upcoming(item) for item in upcoming], NO_UPCOMING)
        lines += _section('PAST APPOINTMENT HISTORY:', [format_past(item) for item in past], NO_PAST)
        lines += _section('RECENT MEDICAL REPORTS:', [format_report(item) for item in reports], NO_REPORTS)
        lines.append(CONTEXT_FOOTER)
    except Exception:
        logger.exception('Could not build chat context for patient %s.', patient_id)
        return DEGRADED_CONTEXT

    return '\n'.join(lines)
