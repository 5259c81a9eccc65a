# app/chat/repository/chat_repository.py

from datetime import datetime, timezone
from typing import Callable, List, Optional

from sqlalchemy import delete
from sqlalchemy.future import select

from app.chat.entity.chat import Chat
from app.chat.repository.sql_schema.conversation import ChatModel, MessageModel
from app.chat.service.service import IChatRepository
from app.core.logger import get_logger

logger = get_logger(__name__)


class ChatRepository(IChatRepository):
    """Handles all database interactions for chat records."""

    def __init__(self, get_session: Callable):
        self.get_session = get_session
        self.logger = logger

    @staticmethod
    def _to_entity(c: ChatModel) -> Chat:
        return Chat(
            chat_id=c.id,
            user_id=c.user_id,
            project_id=c.project_id,
            title=c.title,
            created_at=c.created_at,
            updated_at=c.updated_at,
        )

    async def create_chat(self, user_id: str, title: Optional[str] = None, project_id: Optional[str] = None) -> Chat:
        async with self.get_session() as session:
            now = datetime.now(timezone.utc)
            new_chat = ChatModel(
                user_id=user_id,
                project_id=project_id,
                title=title or "New Chat",
                created_at=now,
                updated_at=now,
            )
            session.add(new_chat)
            await session.commit()
            self.logger.info(f"Chat saved: {new_chat.id}")
            return self._to_entity(new_chat)

    async def get_chat(self, chat_id: str) -> Optional[Chat]:
        async with self.get_session() as session:
            result = await session.execute(
                select(ChatModel).where(ChatModel.id == chat_id)
            )
            chat = result.scalar_one_or_none()
            return self._to_entity(chat) if chat else None

    async def list_chats(self, user_id: str, project_id: Optional[str] = None) -> List[Chat]:
        """List chats for a user, newest first, optionally limited to one project."""
        async with self.get_session() as session:
            query = select(ChatModel).where(ChatModel.user_id == user_id)
            if project_id:
                query = query.where(ChatModel.project_id == project_id)
            result = await session.execute(query.order_by(ChatModel.updated_at.desc()))
            return [self._to_entity(c) for c in result.scalars().all()]

    async def delete_chat(self, chat_id: str) -> None:
        """Delete a chat and all its messages."""
        async with self.get_session() as session:
            await session.execute(
                delete(MessageModel).where(MessageModel.chat_id == chat_id)
            )
            await session.execute(
                delete(ChatModel).where(ChatModel.id == chat_id)
            )
            await session.commit()
            self.logger.info(f"Deleted chat {chat_id}")
