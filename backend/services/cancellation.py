"""Appointment cancellation and time-based refunds.

Patients can always cancel; how much they get back depends on how far away
the appointment is:

    more than 6 hours   100%
    2 to 6 hours         50%
    2 hours or less       0%

Doctors cannot cancel inside the 2-hour window, and a doctor-side
cancellation always refunds the full amount. Only pending or confirmed
appointments can be cancelled; a second cancellation is rejected.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from backend.auth.accounts import AccountRole
from backend.core.errors import Forbidden, InvalidTransition, NotFound, SomeTooLate, TooLate
from backend.models.appointment import Appointment, AppointmentStatus, PaymentStatus
from backend.services.slot_allocator import slot_start_datetime

logger = logging.getLogger(__name__)

PATIENT_FULL_REFUND_HOURS = 6
PATIENT_PARTIAL_REFUND_HOURS = 2
PATIENT_PARTIAL_REFUND_PERCENTAGE = 50
DOCTOR_CANCELLATION_CUTOFF_HOURS = 2


@dataclass
class CancellationResult:
    status: str
    refund_percentage: int
    refund_amount: float
    message: str = 'Appointment cancelled successfully'


@dataclass
class BulkCancellationResult:
    cancelled_count: int
    message: str


def hours_until_start(appointment: Appointment, now: datetime) -> float:
    start = slot_start_datetime(appointment.date, appointment.time)
    return (start - now).total_seconds() / 3600


def patient_refund_percentage(diff_hours: float) -> int:
    if diff_hours > PATIENT_FULL_REFUND_HOURS:
        return 100
    if diff_hours > PATIENT_PARTIAL_REFUND_HOURS:
        return PATIENT_PARTIAL_REFUND_PERCENTAGE
    return 0


def ensure_cancellable(appointment: Appointment) -> None:
    if appointment.status == AppointmentStatus.CANCELLED:
        raise InvalidTransition('Appointment is already cancelled.')
    if appointment.status not in AppointmentStatus.ACTIVE:
        raise InvalidTransition(f'A {appointment.status} appointment cannot be cancelled.')


def authorize_cancellation(appointment: Appointment, actor_role: AccountRole, actor_id: int) -> None:
    if actor_role == AccountRole.PATIENT and appointment.patient_id != actor_id:
        raise Forbidden('Not authorized to cancel this appointment.')
    if actor_role == AccountRole.DOCTOR and appointment.doctor_id != actor_id:
        raise Forbidden('Not authorized to cancel this appointment.')
    if actor_role not in (AccountRole.PATIENT, AccountRole.DOCTOR):
        raise Forbidden('Only patients and doctors can cancel appointments.')


def cancel_appointment(
    db: Session,
    appointment_id: int,
    actor_role: AccountRole,
    actor_id: int,
    now: datetime | None = None,
) -> CancellationResult:
    now = now or datetime.now()
    actor_role = AccountRole(actor_role)

    appointment = db.query(Appointment).filter(
        Appointment.id == appointment_id,
    ).populate_existing().with_for_update().first()
    if appointment is None:
        raise NotFound('Appointment not found.')

    authorize_cancellation(appointment, actor_role, actor_id)
    ensure_cancellable(appointment)

    diff_hours = hours_until_start(appointment, now)
    paid_amount = appointment.amount or 0

    if actor_role == AccountRole.PATIENT:
        refund_percentage = patient_refund_percentage(diff_hours)
        refund_amount = paid_amount * refund_percentage / 100
        if refund_amount > 0:
            appointment.payment_status = PaymentStatus.REFUNDED
    else:
        if diff_hours < DOCTOR_CANCELLATION_CUTOFF_HOURS:
            raise TooLate()
        refund_percentage = 100
        refund_amount = paid_amount
        appointment.payment_status = PaymentStatus.REFUNDED

    appointment.status = AppointmentStatus.CANCELLED
    appointment.refund_amount = refund_amount
    db.commit()

    logger.info(
        'Appointment %s cancelled by %s %s %.2fh before start; refund %d%% (%s).',
        appointment.id,
        actor_role.value,
        actor_id,
        diff_hours,
        refund_percentage,
        refund_amount,
    )
    return CancellationResult(
        status=appointment.status,
        refund_percentage=refund_percentage,
        refund_amount=refund_amount,
    )


def cancel_all_appointments(db: Session, doctor_id: int, now: datetime | None = None) -> BulkCancellationResult:
    """Cancel every active appointment of a doctor, or none of them."""
    now = now or datetime.now()

    appointments = db.query(Appointment).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.status.in_(AppointmentStatus.ACTIVE),
    ).populate_existing().with_for_update().all()

    if not appointments:
        return BulkCancellationResult(cancelled_count=0, message='No active appointments to cancel.')

    blocking = [
        appointment
        for appointment in appointments
        if hours_until_start(appointment, now) < DOCTOR_CANCELLATION_CUTOFF_HOURS
    ]
    if blocking:
        raise SomeTooLate(count=len(blocking))

    for appointment in appointments:
        appointment.status = AppointmentStatus.CANCELLED
        appointment.payment_status = PaymentStatus.REFUNDED
        appointment.refund_amount = appointment.amount or 0
    db.commit()

    logger.info('Doctor %s cancelled %d appointments in bulk.', doctor_id, len(appointments))
    return BulkCancellationResult(
        cancelled_count=len(appointments),
        message=f'Successfully cancelled all {len(appointments)} appointments.',
    )
