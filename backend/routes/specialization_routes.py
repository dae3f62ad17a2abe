from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.accounts import Account, AccountRole
from backend.auth.dependencies import require_role
from backend.core import config
from backend.core.errors import AlreadyExists, DownstreamUnavailable
from backend.database import get_db
from backend.lifecycle import get_cache
from backend.models.specialization import Specialization
from backend.services.cache import ReadThroughCache, specializations_key

router = APIRouter(tags=['specializations'])


class SpecializationResponse(BaseModel):
    id: int
    name: str
    description: str | None = None
    image: str | None = None

    class Config:
        from_attributes = True


class CreateSpecializationRequest(BaseModel):
    name: str
    description: str | None = None
    image: str | None = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Name is required.')
        return normalized


def load_specializations(db: Session) -> list[dict]:
    specializations = db.query(Specialization).order_by(Specialization.name.asc()).all()
    return [
        SpecializationResponse.model_validate(specialization).model_dump(mode='json')
        for specialization in specializations
    ]


@router.get('', response_model=list[SpecializationResponse])
def list_specializations(
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache),
):
    try:
        return cache.fetch(
            specializations_key(),
            config.SPECIALIZATIONS_CACHE_TTL_SECONDS,
            lambda: load_specializations(db),
        )
    except SQLAlchemyError as exc:
        raise DownstreamUnavailable() from exc


@router.post('', response_model=SpecializationResponse, status_code=status.HTTP_201_CREATED)
def create_specialization(
    data: CreateSpecializationRequest,
    account: Account = Depends(require_role(AccountRole.ADMIN)),
    db: Session = Depends(get_db),
):
    specialization = Specialization(name=data.name, description=data.description, image=data.image)

    try:
        db.add(specialization)
        db.commit()
        db.refresh(specialization)
    except IntegrityError as exc:
        db.rollback()
        raise AlreadyExists('A specialization with this name already exists.') from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise DownstreamUnavailable() from exc

    return specialization
