from datetime import date, datetime, timedelta

import pytest
from sqlalchemy import event
from sqlalchemy.dialects import postgresql

from backend.auth.accounts import AccountRole
from backend.core.errors import Forbidden, InvalidTransition, NotFound, SomeTooLate, TooLate
from backend.models.appointment import Appointment, AppointmentStatus, PaymentStatus
from backend.services.cancellation import (
    cancel_all_appointments,
    cancel_appointment,
    patient_refund_percentage,
)

SLOT_DATE = date(2026, 3, 3)
START = datetime(2026, 3, 3, 9, 0)


def _hours_before(hours: float) -> datetime:
    return START - timedelta(hours=hours)


@pytest.mark.parametrize(
    ('diff_hours', 'expected'),
    [(24, 100), (6.5, 100), (6, 50), (4, 50), (2.01, 50), (2, 0), (0.5, 0), (-1, 0)],
)
def test_patient_refund_percentage_follows_the_schedule(diff_hours: float, expected: int) -> None:
    assert patient_refund_percentage(diff_hours) == expected


def test_patient_cancel_more_than_six_hours_out_refunds_everything(
    db, doctor, patient, make_appointment
) -> None:
    appointment = make_appointment(patient.id, doctor.id, SLOT_DATE)

    result = cancel_appointment(db, appointment.id, AccountRole.PATIENT, patient.id, now=_hours_before(8))

    assert result.status == AppointmentStatus.CANCELLED
    assert result.refund_percentage == 100
    assert result.refund_amount == 500
    assert result.message == 'Appointment cancelled successfully'
    db.refresh(appointment)
    assert appointment.status == AppointmentStatus.CANCELLED
    assert appointment.payment_status == PaymentStatus.REFUNDED
    assert appointment.refund_amount == 500


def test_patient_cancel_between_two_and_six_hours_refunds_half(
    db, doctor, patient, make_appointment
) -> None:
    appointment = make_appointment(patient.id, doctor.id, SLOT_DATE)

    result = cancel_appointment(db, appointment.id, AccountRole.PATIENT, patient.id, now=_hours_before(4))

    assert (result.refund_percentage, result.refund_amount) == (50, 250)
    db.refresh(appointment)
    assert appointment.payment_status == PaymentStatus.REFUNDED


def test_patient_cancel_inside_two_hours_refunds_nothing(db, doctor, patient, make_appointment) -> None:
    appointment = make_appointment(patient.id, doctor.id, SLOT_DATE)

    result = cancel_appointment(db, appointment.id, AccountRole.PATIENT, patient.id, now=_hours_before(1))

    assert (result.refund_percentage, result.refund_amount) == (0, 0)
    db.refresh(appointment)
    assert appointment.status == AppointmentStatus.CANCELLED
    assert appointment.payment_status == PaymentStatus.PAID
    assert appointment.refund_amount == 0


def test_doctor_cannot_cancel_inside_two_hours(db, doctor, patient, make_appointment) -> None:
    appointment = make_appointment(patient.id, doctor.id, SLOT_DATE)

    with pytest.raises(TooLate) as exception_info:
        cancel_appointment(db, appointment.id, AccountRole.DOCTOR, doctor.id, now=_hours_before(1.5))

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'Cannot cancel appointments within 2 hours of start time.'
    db.refresh(appointment)
    assert appointment.status == AppointmentStatus.CONFIRMED


def test_doctor_cancel_refunds_in_full(db, doctor, patient, make_appointment) -> None:
    appointment = make_appointment(patient.id, doctor.id, SLOT_DATE)

    result = cancel_appointment(db, appointment.id, AccountRole.DOCTOR, doctor.id, now=_hours_before(3))

    assert (result.refund_percentage, result.refund_amount) == (100, 500)
    db.refresh(appointment)
    assert appointment.payment_status == PaymentStatus.REFUNDED
    assert appointment.refund_amount == 500


def test_cancel_rejects_unknown_appointment(db, patient) -> None:
    with pytest.raises(NotFound):
        cancel_appointment(db, 4242, AccountRole.PATIENT, patient.id, now=_hours_before(8))


def test_cancel_rejects_other_patients(db, doctor, patients, make_appointment) -> None:
    appointment = make_appointment(patients[0].id, doctor.id, SLOT_DATE)

    with pytest.raises(Forbidden) as exception_info:
        cancel_appointment(db, appointment.id, AccountRole.PATIENT, patients[1].id, now=_hours_before(8))

    assert exception_info.value.status_code == 403


def test_cancel_rejects_other_doctors(db, doctor, other_doctor, patient, make_appointment) -> None:
    appointment = make_appointment(patient.id, doctor.id, SLOT_DATE)

    with pytest.raises(Forbidden):
        cancel_appointment(db, appointment.id, AccountRole.DOCTOR, other_doctor.id, now=_hours_before(8))


def test_admins_cannot_cancel(db, doctor, patient, admin, make_appointment) -> None:
    appointment = make_appointment(patient.id, doctor.id, SLOT_DATE)

    with pytest.raises(Forbidden) as exception_info:
        cancel_appointment(db, appointment.id, AccountRole.ADMIN, admin.id, now=_hours_before(8))

    assert exception_info.value.detail == 'Only patients and doctors can cancel appointments.'


def test_second_cancellation_is_rejected_and_keeps_the_first_refund(
    db, doctor, patient, make_appointment
) -> None:
    appointment = make_appointment(patient.id, doctor.id, SLOT_DATE)
    cancel_appointment(db, appointment.id, AccountRole.PATIENT, patient.id, now=_hours_before(4))

    with pytest.raises(InvalidTransition) as exception_info:
        cancel_appointment(db, appointment.id, AccountRole.PATIENT, patient.id, now=_hours_before(8))

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail == 'Appointment is already cancelled.'
    db.refresh(appointment)
    assert appointment.refund_amount == 250


def test_completed_appointments_cannot_be_cancelled(db, doctor, patient, make_appointment) -> None:
    appointment = make_appointment(patient.id, doctor.id, SLOT_DATE, status=AppointmentStatus.COMPLETED)

    with pytest.raises(InvalidTransition):
        cancel_appointment(db, appointment.id, AccountRole.DOCTOR, doctor.id, now=_hours_before(8))


def test_cancel_all_refuses_when_any_appointment_is_too_close(
    db, doctor, patients, make_appointment
) -> None:
    make_appointment(patients[0].id, doctor.id, SLOT_DATE, '09:00-10:00')
    make_appointment(patients[1].id, doctor.id, SLOT_DATE, '10:00-11:00')
    make_appointment(patients[2].id, doctor.id, SLOT_DATE, '15:00-16:00')

    with pytest.raises(SomeTooLate) as exception_info:
        cancel_all_appointments(db, doctor.id, now=datetime(2026, 3, 3, 8, 30))

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == {
        'message': 'Cannot cancel all. Some appointments are within 2 hours.',
        'count': 2,
    }
    remaining = db.query(Appointment).filter(Appointment.status == AppointmentStatus.CONFIRMED).count()
    assert remaining == 3


def test_cancel_all_refunds_each_appointment_its_own_amount(
    db, doctor, other_doctor, patients, make_appointment
) -> None:
    first = make_appointment(patients[0].id, doctor.id, SLOT_DATE, '09:00-10:00', amount=500)
    second = make_appointment(patients[1].id, doctor.id, SLOT_DATE, '10:00-11:00', amount=300)
    pending = make_appointment(
        patients[2].id,
        doctor.id,
        date(2026, 3, 10),
        status=AppointmentStatus.PENDING,
        payment_status=PaymentStatus.PENDING,
    )
    finished = make_appointment(patients[3].id, doctor.id, date(2026, 3, 1), status=AppointmentStatus.COMPLETED)
    untouched = make_appointment(patients[4].id, other_doctor.id, SLOT_DATE)

    result = cancel_all_appointments(db, doctor.id, now=datetime(2026, 3, 2, 8, 0))

    assert result.cancelled_count == 3
    assert result.message == 'Successfully cancelled all 3 appointments.'
    for appointment in (first, second, pending, finished, untouched):
        db.refresh(appointment)
    assert [first.status, second.status, pending.status] == [AppointmentStatus.CANCELLED] * 3
    assert (first.refund_amount, second.refund_amount) == (500, 300)
    assert first.payment_status == PaymentStatus.REFUNDED
    assert finished.status == AppointmentStatus.COMPLETED
    assert untouched.status == AppointmentStatus.CONFIRMED


def test_cancel_all_with_nothing_active_is_a_no_op(db, doctor) -> None:
    result = cancel_all_appointments(db, doctor.id, now=datetime(2026, 3, 2, 8, 0))

    assert result.cancelled_count == 0
    assert result.message == 'No active appointments to cancel.'


@pytest.fixture
def locked_selects(db):
    statements = []

    def record(orm_execute_state) -> None:
        if orm_execute_state.is_select:
            statements.append(str(orm_execute_state.statement.compile(dialect=postgresql.dialect())))

    event.listen(db, 'do_orm_execute', record)
    try:
        yield statements
    finally:
        event.remove(db, 'do_orm_execute', record)


def test_cancel_locks_the_appointment_row(db, doctor, patient, make_appointment, locked_selects) -> None:
    appointment = make_appointment(patient.id, doctor.id, SLOT_DATE)
    appointment_id, patient_id = appointment.id, patient.id
    locked_selects.clear()

    cancel_appointment(db, appointment_id, AccountRole.PATIENT, patient_id, now=_hours_before(8))

    assert 'FROM appointments' in locked_selects[0]
    assert locked_selects[0].endswith('FOR UPDATE')


def test_cancel_all_locks_the_doctors_rows(db, doctor, patient, make_appointment, locked_selects) -> None:
    make_appointment(patient.id, doctor.id, SLOT_DATE)
    doctor_id = doctor.id
    locked_selects.clear()

    cancel_all_appointments(db, doctor_id, now=_hours_before(8))

    assert 'FROM appointments' in locked_selects[0]
    assert locked_selects[0].endswith('FOR UPDATE')

