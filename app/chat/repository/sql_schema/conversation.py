from sqlalchemy import Column, String, DateTime, Text, ForeignKey
from sqlalchemy.sql import func
import uuid

from pkg.db_util.sql_alchemy.declarative_base import Base


def _new_id() -> str:
    return str(uuid.uuid4())


# Chat Table
class ChatModel(Base):
    __tablename__ = "chats"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String, nullable=False, index=True)
    project_id = Column(String(36), nullable=True, index=True)
    title = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


# Message Table
class MessageModel(Base):
    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=_new_id)
    chat_id = Column(String(36), ForeignKey("chats.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, nullable=True)
    role = Column(String(16), nullable=False)
    content = Column(Text, nullable=False, default="")
    # Serialized JSON text, written by several encoder generations
    parts = Column(Text, nullable=True)
    attachments = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
