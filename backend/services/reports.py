"""Report creation and report queries."""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session, joinedload, selectinload

from backend.core.errors import AlreadyExists, Forbidden, InvalidTransition, NotFound, ValidationFailure
from backend.models.appointment import Appointment, AppointmentStatus
from backend.models.report import PRESCRIPTION_FREQUENCIES, Report, ReportPrescription

logger = logging.getLogger(__name__)


@dataclass
class PrescriptionLine:
    medicine: str
    frequency: str
    duration: str | None = None


def create_report(
    db: Session,
    *,
    doctor_id: int,
    appointment_id: int,
    diagnosis: str,
    prescriptions: list[PrescriptionLine] | None = None,
    now: datetime | None = None,
) -> Report:
    diagnosis = (diagnosis or '').strip()
    if not diagnosis:
        raise ValidationFailure('Diagnosis is required.')

    for line in prescriptions or []:
        if not (line.medicine or '').strip():
            raise ValidationFailure('Each prescription needs a medicine.')
        if line.frequency not in PRESCRIPTION_FREQUENCIES:
            raise ValidationFailure(f'Frequency must be one of {", ".join(PRESCRIPTION_FREQUENCIES)}.')

    appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
    if appointment is None:
        raise NotFound('Appointment not found.')
    if appointment.doctor_id != doctor_id:
        raise Forbidden('Only the assigned doctor can write a report for this appointment.')
    if appointment.status == AppointmentStatus.CANCELLED:
        raise InvalidTransition('Cannot write a report for a cancelled appointment.')

    existing = db.query(Report.id).filter(Report.appointment_id == appointment_id).first()
    if existing:
        raise AlreadyExists('A report already exists for this appointment.')

    report = Report(
        appointment_id=appointment.id,
        doctor_id=appointment.doctor_id,
        patient_id=appointment.patient_id,
        diagnosis=diagnosis,
        generated_at=now or datetime.now(),
        prescriptions=[
            ReportPrescription(
                position=position,
                medicine=line.medicine.strip(),
                frequency=line.frequency,
                duration=(line.duration or '').strip() or None,
            )
            for position, line in enumerate(prescriptions or [])
        ],
    )
    db.add(report)

    if appointment.status in AppointmentStatus.ACTIVE:
        appointment.status = AppointmentStatus.COMPLETED

    db.commit()
    db.refresh(report)

    logger.info('Doctor %s issued report %s for appointment %s.', doctor_id, report.id, appointment_id)
    return report


def _report_query(db: Session):
    return db.query(Report).options(
        joinedload(Report.doctor),
        joinedload(Report.patient),
        joinedload(Report.appointment),
        selectinload(Report.prescriptions),
    )


def get_report_for_appointment(db: Session, appointment_id: int) -> Report | None:
    return _report_query(db).filter(Report.appointment_id == appointment_id).first()


def list_patient_reports(db: Session, patient_id: int) -> list[Report]:
    return _report_query(db).filter(Report.patient_id == patient_id).order_by(Report.generated_at.desc(), Report.id.desc()).all()


def list_doctor_reports(db: Session, doctor_id: int) -> list[Report]:
    return _report_query(db).filter(Report.doctor_id == doctor_id).order_by(Report.generated_at.desc(), Report.id.desc()).all()
