import logging
from threading import Lock

from sqlalchemy import create_engine, inspect, select, text, update
from sqlalchemy.orm import declarative_base, sessionmaker

from backend.core import config


logger = logging.getLogger(__name__)


def build_engine(database_url: str):
    connect_args = {}
    if database_url.startswith('sqlite'):
        connect_args['check_same_thread'] = False
    return create_engine(
        database_url,
        echo=config.SQL_ECHO,
        pool_pre_ping=True,
        connect_args=connect_args,
    )


engine = build_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_appointment_schema_checked = False
_doctor_schema_checked = False


def ensure_appointment_schema(bind=None) -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    bind = bind or engine

    with _schema_lock:
        if _appointment_schema_checked:
            return

        inspector = inspect(bind)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('amount', 'ALTER TABLE appointments ADD COLUMN amount FLOAT'),
            ('payment_method', 'ALTER TABLE appointments ADD COLUMN payment_method VARCHAR'),
            ('payment_status', "ALTER TABLE appointments ADD COLUMN payment_status VARCHAR DEFAULT 'Pending'"),
            ('refund_amount', 'ALTER TABLE appointments ADD COLUMN refund_amount FLOAT'),
            ('reminder_sent', 'ALTER TABLE appointments ADD COLUMN reminder_sent BOOLEAN DEFAULT FALSE'),
            ('prescription', "ALTER TABLE appointments ADD COLUMN prescription VARCHAR DEFAULT ''"),
        ]

        with bind.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_slot ON appointments(doctor_id, date, time, status)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_patient_date ON appointments(patient_id, date)')
            )

        _appointment_schema_checked = True


def ensure_doctor_schema(bind=None) -> None:
    """Rewrite legacy ``{day, startTime, endTime}`` availability into ``{day, slots}``."""
    global _doctor_schema_checked

    if _doctor_schema_checked:
        return

    # Imported here because the doctor model imports Base from this module.
    from backend.models.doctor import Doctor, normalize_availability

    bind = bind or engine
    doctors = Doctor.__table__

    with _schema_lock:
        if _doctor_schema_checked:
            return

        inspector = inspect(bind)

        if 'doctors' not in inspector.get_table_names():
            _doctor_schema_checked = True
            return

        migrated = 0
        with bind.begin() as connection:
            rows = connection.execute(select(doctors.c.id, doctors.c.availability)).all()
            for doctor_id, availability in rows:
                if not availability:
                    continue
                normalized = normalize_availability(availability)
                if normalized != availability:
                    connection.execute(
                        update(doctors).where(doctors.c.id == doctor_id).values(availability=normalized)
                    )
                    migrated += 1

        if migrated:
            logger.info('Migrated availability for %d doctors to the slot-label shape.', migrated)

        _doctor_schema_checked = True


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
