"""Appointment model definitions."""

from datetime import datetime

from sqlalchemy import Boolean, Column, Date, DateTime, Float, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import relationship

from backend.database import Base


class AppointmentStatus:
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    CANCELLED = 'cancelled'
    COMPLETED = 'completed'

    ACTIVE = (PENDING, CONFIRMED)


class PaymentStatus:
    PENDING = 'Pending'
    PAID = 'Paid'
    REFUNDED = 'Refunded'


class Appointment(Base):
    """Represents a booked doctor slot."""
    __tablename__ = 'appointments'
    __table_args__ = (
        # One live booking per patient per slot; cancelled rows free the slot again.
        Index(
            'uq_appointments_active_patient_slot',
            'patient_id',
            'doctor_id',
            'date',
            'time',
            unique=True,
            sqlite_where=text("status != 'cancelled'"),
            postgresql_where=text("status != 'cancelled'"),
        ),
        Index('idx_appointments_slot', 'doctor_id', 'date', 'time', 'status'),
        Index('idx_appointments_patient_date', 'patient_id', 'date'),
    )

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey('patients.id'), nullable=False)
    doctor_id = Column(Integer, ForeignKey('doctors.id'), nullable=False)
    date = Column(Date, nullable=False)
    time = Column(String, nullable=False)
    status = Column(String, nullable=False, default=AppointmentStatus.PENDING)
    symptoms = Column(Text, nullable=False)
    amount = Column(Float)
    payment_method = Column(String)
    payment_status = Column(String, nullable=False, default=PaymentStatus.PENDING)
    refund_amount = Column(Float)
    reminder_sent = Column(Boolean, nullable=False, default=False)
    prescription = Column(Text, default='')
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    patient = relationship('Patient')
    doctor = relationship('Doctor')
