"""Chat history model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from backend.database import Base


class Chat(Base):
    """Conversation history between one account and the assistant."""
    __tablename__ = 'chats'
    __table_args__ = (UniqueConstraint('account_role', 'account_id', name='uq_chats_account'),)

    id = Column(Integer, primary_key=True)
    account_role = Column(String, nullable=False)
    account_id = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.now)

    messages = relationship(
        'ChatMessage',
        order_by='ChatMessage.id',
        cascade='all, delete-orphan',
    )


class ChatMessage(Base):
    __tablename__ = 'chat_messages'

    id = Column(Integer, primary_key=True)
    chat_id = Column(Integer, ForeignKey('chats.id'), nullable=False, index=True)
    role = Column(String, nullable=False)  # user/bot
    text = Column(Text, nullable=False)
    timestamp = Column(DateTime, default=datetime.now)
