import os
from datetime import date, datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite://')
os.environ.setdefault('GEMINI_API_KEY', '')

from backend.auth.accounts import Account, AccountRole  # noqa: E402
from backend.database import Base  # noqa: E402
from backend.models.admin import Admin  # noqa: E402
from backend.models.appointment import Appointment, AppointmentStatus, PaymentStatus  # noqa: E402
from backend.models.chat import Chat, ChatMessage  # noqa: E402,F401
from backend.models.doctor import Doctor  # noqa: E402
from backend.models.patient import Patient  # noqa: E402
from backend.models.report import Report, ReportPrescription  # noqa: E402,F401
from backend.models.specialization import Specialization  # noqa: E402
from backend.services.cache import InMemoryCache, ReadThroughCache  # noqa: E402


@pytest.fixture
def engine():
    test_engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=test_engine)
    try:
        yield test_engine
    finally:
        Base.metadata.drop_all(bind=test_engine)
        test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def cache_backend():
    return InMemoryCache()


@pytest.fixture
def cache(cache_backend):
    return ReadThroughCache(cache_backend)


@pytest.fixture
def cardiology(db):
    specialization = Specialization(name='Cardiology', description='Heart care')
    db.add(specialization)
    db.commit()
    db.refresh(specialization)
    return specialization


@pytest.fixture
def doctor(db, cardiology):
    record = Doctor(
        name='Asha Rao',
        email='asha.rao@medicare.test',
        specialization_id=cardiology.id,
        experience=12,
        fees=500,
        department='Cardiology',
        availability=[{'day': 'Tuesday', 'slots': ['09:00-10:00', '10:00-11:00']}],
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


@pytest.fixture
def other_doctor(db):
    record = Doctor(
        name='Ben Okafor',
        email='ben.okafor@medicare.test',
        experience=4,
        fees=300,
        department='General Medicine',
        availability=[],
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


@pytest.fixture
def patients(db):
    records = [
        Patient(
            name=f'Patient {index}',
            email=f'patient{index}@example.test',
            gender='female' if index % 2 else 'male',
            date_of_birth=date(1990, 1, index + 1),
            address=f'{index} Hospital Road',
        )
        for index in range(7)
    ]
    db.add_all(records)
    db.commit()
    for record in records:
        db.refresh(record)
    return records


@pytest.fixture
def patient(patients):
    return patients[0]


@pytest.fixture
def admin(db):
    record = Admin(name='Front Desk', email='desk@medicare.test')
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


@pytest.fixture
def make_appointment(db):
    def factory(patient_id, doctor_id, slot_date, slot_label='09:00-10:00', **overrides):
        values = {
            'status': AppointmentStatus.CONFIRMED,
            'symptoms': 'Chest pain',
            'amount': 500,
            'payment_status': PaymentStatus.PAID,
            'reminder_sent': False,
            'prescription': '',
        }
        values.update(overrides)
        appointment = Appointment(
            patient_id=patient_id,
            doctor_id=doctor_id,
            date=slot_date,
            time=slot_label,
            **values,
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment

    return factory


def account_for(record, role: AccountRole) -> Account:
    return Account(role=role, id=record.id, name=record.name, email=record.email)


@pytest.fixture
def as_account():
    return account_for


@pytest.fixture
def fixed_now():
    return datetime(2026, 3, 2, 8, 0)
