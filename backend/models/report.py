"""Report model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from backend.database import Base

PRESCRIPTION_FREQUENCIES = ('Once', 'Twice', 'Thrice')


class Report(Base):
    """Diagnostic report a doctor issues for an appointment."""
    __tablename__ = 'reports'
    __table_args__ = (
        Index('idx_reports_patient_generated', 'patient_id', 'generated_at'),
        Index('idx_reports_doctor_generated', 'doctor_id', 'generated_at'),
    )

    id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, ForeignKey('appointments.id'), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey('doctors.id'), nullable=False)
    patient_id = Column(Integer, ForeignKey('patients.id'), nullable=False)
    diagnosis = Column(Text, nullable=False)
    generated_at = Column(DateTime, nullable=False, default=datetime.now)

    prescriptions = relationship(
        'ReportPrescription',
        order_by='ReportPrescription.position',
        cascade='all, delete-orphan',
    )
    appointment = relationship('Appointment')
    doctor = relationship('Doctor')
    patient = relationship('Patient')


class ReportPrescription(Base):
    """One medicine line of a report, kept in the order the doctor wrote it."""
    __tablename__ = 'report_prescriptions'

    id = Column(Integer, primary_key=True)
    report_id = Column(Integer, ForeignKey('reports.id'), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    medicine = Column(String, nullable=False)
    frequency = Column(String, nullable=False)
    duration = Column(String)
