"""One account abstraction over the patient, doctor and admin tables."""

from dataclasses import dataclass
from enum import Enum

from sqlalchemy.orm import Session

from backend.models.admin import Admin
from backend.models.doctor import Doctor
from backend.models.patient import Patient


class AccountRole(str, Enum):
    PATIENT = 'patient'
    DOCTOR = 'doctor'
    ADMIN = 'admin'


ACCOUNT_MODELS = {
    AccountRole.PATIENT: Patient,
    AccountRole.DOCTOR: Doctor,
    AccountRole.ADMIN: Admin,
}


@dataclass(frozen=True)
class Account:
    role: AccountRole
    id: int
    name: str
    email: str

    @property
    def room(self) -> str:
        """Realtime notification room for this account."""
        return f'{self.role.value}:{self.id}'


def lookup_account(db: Session, role: AccountRole | str, account_id: int) -> Account | None:
    try:
        role = AccountRole(role)
    except ValueError:
        return None

    model = ACCOUNT_MODELS[role]
    record = db.query(model).filter(model.id == account_id).first()
    if record is None:
        return None
    return Account(role=role, id=record.id, name=record.name, email=record.email)
