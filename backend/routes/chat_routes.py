import logging

from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.accounts import Account, AccountRole
from backend.auth.dependencies import require_role
from backend.core.errors import DownstreamUnavailable
from backend.database import get_db
from backend.lifecycle import AppServices, get_services
from backend.models.chat import Chat, ChatMessage
from backend.services.context_assembler import build_context

router = APIRouter(tags=['chat'])

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 2000


class ChatRequest(BaseModel):
    message: str

    @field_validator('message')
    @classmethod
    def validate_message(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Message is required.')
        if len(normalized) > MAX_MESSAGE_LENGTH:
            raise ValueError(f'Message must be {MAX_MESSAGE_LENGTH} characters or fewer.')
        return normalized


class ChatResponse(BaseModel):
    response: str


class ChatMessageResponse(BaseModel):
    role: str
    text: str


class ChatHistoryResponse(BaseModel):
    messages: list[ChatMessageResponse]


def save_chat_exchange(session_factory, account: Account, question: str, answer: str) -> None:
    """Persist one question/answer pair; runs after the response is sent."""
    db = session_factory()
    try:
        chat = db.query(Chat).filter(
            Chat.account_role == account.role.value,
            Chat.account_id == account.id,
        ).first()
        if chat is None:
            chat = Chat(account_role=account.role.value, account_id=account.id)
            db.add(chat)

        chat.messages.append(ChatMessage(role='user', text=question))
        chat.messages.append(ChatMessage(role='bot', text=answer))
        db.commit()
    except Exception:
        db.rollback()
        logger.exception('Could not save chat history for %s %s.', account.role.value, account.id)
    finally:
        db.close()


@router.post('', response_model=ChatResponse)
def chat(
    data: ChatRequest,
    background_tasks: BackgroundTasks,
    account: Account = Depends(require_role(AccountRole.PATIENT, AccountRole.DOCTOR)),
    db: Session = Depends(get_db),
    services: AppServices = Depends(get_services),
):
    context = build_context(db, account.id) if account.role == AccountRole.PATIENT else ''
    response = services.answerer.answer(data.message, context)

    background_tasks.add_task(save_chat_exchange, services.session_factory, account, data.message, response)

    return ChatResponse(response=response)


@router.get('/history', response_model=ChatHistoryResponse)
def chat_history(
    account: Account = Depends(require_role(AccountRole.PATIENT, AccountRole.DOCTOR)),
    db: Session = Depends(get_db),
):
    try:
        chat = db.query(Chat).filter(
            Chat.account_role == account.role.value,
            Chat.account_id == account.id,
        ).first()
    except SQLAlchemyError as exc:
        raise DownstreamUnavailable() from exc

    if chat is None:
        return ChatHistoryResponse(messages=[])

    return ChatHistoryResponse(
        messages=[ChatMessageResponse(role=message.role, text=message.text) for message in chat.messages]
    )
