from datetime import date

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from backend.auth.accounts import AccountRole
from backend.routes.report_routes import (
    CreateReportRequest,
    PrescriptionItem,
    create_report,
    ensure_can_view,
    get_appointment_report,
    list_my_doctor_reports,
    list_patient_reports,
)
from backend.services.cache import appointment_report_key, patient_reports_key

SLOT_DATE = date(2026, 3, 3)


def _report_request(appointment_id: int) -> CreateReportRequest:
    return CreateReportRequest(
        appointment_id=appointment_id,
        diagnosis=' Acute bronchitis ',
        prescriptions=[
            PrescriptionItem(medicine=' Azithromycin ', frequency='Once', duration='3 days'),
            PrescriptionItem(medicine='Salbutamol', frequency='Twice'),
        ],
    )


def test_prescription_item_rejects_unknown_frequency() -> None:
    with pytest.raises(ValidationError):
        PrescriptionItem(medicine='Paracetamol', frequency='Daily')


def test_create_report_request_requires_diagnosis() -> None:
    with pytest.raises(ValidationError):
        CreateReportRequest(appointment_id=1, diagnosis='   ')


def test_create_report_returns_serialized_report(db, doctor, patient, make_appointment, as_account) -> None:
    appointment = make_appointment(patient.id, doctor.id, SLOT_DATE)

    report = create_report(_report_request(appointment.id), account=as_account(doctor, AccountRole.DOCTOR), db=db)

    assert report['diagnosis'] == 'Acute bronchitis'
    assert report['doctor_name'] == 'Asha Rao'
    assert report['patient_name'] == patient.name
    assert report['appointment_date'] == '2026-03-03'
    assert report['appointment_time'] == '09:00-10:00'
    assert report['prescriptions'] == [
        {'medicine': 'Azithromycin', 'frequency': 'Once', 'duration': '3 days'},
        {'medicine': 'Salbutamol', 'frequency': 'Twice', 'duration': None},
    ]


def test_create_report_by_another_doctor_is_forbidden(
    db, doctor, other_doctor, patient, make_appointment, as_account
) -> None:
    appointment = make_appointment(patient.id, doctor.id, SLOT_DATE)

    with pytest.raises(HTTPException) as exception_info:
        create_report(_report_request(appointment.id), account=as_account(other_doctor, AccountRole.DOCTOR), db=db)

    assert exception_info.value.status_code == 403


def test_get_appointment_report_is_cached_and_access_checked(
    db, cache, doctor, patients, make_appointment, as_account
) -> None:
    appointment = make_appointment(patients[0].id, doctor.id, SLOT_DATE)
    create_report(_report_request(appointment.id), account=as_account(doctor, AccountRole.DOCTOR), db=db)

    report = get_appointment_report(
        appointment.id,
        account=as_account(patients[0], AccountRole.PATIENT),
        db=db,
        cache=cache,
    )

    assert report['appointment_id'] == appointment.id
    assert cache.backend.get(appointment_report_key(appointment.id)) is not None

    with pytest.raises(HTTPException) as exception_info:
        get_appointment_report(
            appointment.id,
            account=as_account(patients[1], AccountRole.PATIENT),
            db=db,
            cache=cache,
        )

    assert exception_info.value.status_code == 403


def test_get_appointment_report_missing_is_not_found(db, cache, doctor, as_account) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_appointment_report(77, account=as_account(doctor, AccountRole.DOCTOR), db=db, cache=cache)

    assert exception_info.value.status_code == 404


def test_list_patient_reports_only_for_owner_doctors_and_admins(
    db, cache, doctor, patients, admin, make_appointment, as_account
) -> None:
    appointment = make_appointment(patients[0].id, doctor.id, SLOT_DATE)
    create_report(_report_request(appointment.id), account=as_account(doctor, AccountRole.DOCTOR), db=db)

    own = list_patient_reports(patients[0].id, account=as_account(patients[0], AccountRole.PATIENT), db=db, cache=cache)
    by_admin = list_patient_reports(patients[0].id, account=as_account(admin, AccountRole.ADMIN), db=db, cache=cache)

    assert [item['diagnosis'] for item in own] == ['Acute bronchitis']
    assert by_admin == own
    assert cache.backend.get(patient_reports_key(patients[0].id)) is not None

    with pytest.raises(HTTPException) as exception_info:
        list_patient_reports(patients[0].id, account=as_account(patients[1], AccountRole.PATIENT), db=db, cache=cache)

    assert exception_info.value.status_code == 403


def test_list_my_doctor_reports(db, cache, doctor, other_doctor, patient, make_appointment, as_account) -> None:
    appointment = make_appointment(patient.id, doctor.id, SLOT_DATE)
    create_report(_report_request(appointment.id), account=as_account(doctor, AccountRole.DOCTOR), db=db)

    mine = list_my_doctor_reports(account=as_account(doctor, AccountRole.DOCTOR), db=db, cache=cache)
    theirs = list_my_doctor_reports(account=as_account(other_doctor, AccountRole.DOCTOR), db=db, cache=cache)

    assert len(mine) == 1
    assert theirs == []


def test_ensure_can_view_rules(doctor, other_doctor, patient, as_account) -> None:
    ensure_can_view(as_account(doctor, AccountRole.DOCTOR), patient.id, doctor.id)
    ensure_can_view(as_account(patient, AccountRole.PATIENT), patient.id, doctor.id)

    with pytest.raises(HTTPException):
        ensure_can_view(as_account(other_doctor, AccountRole.DOCTOR), patient.id, doctor.id)
