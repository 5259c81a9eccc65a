# app/chat/repository/message_repository.py

from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.future import select

from app.chat.entity.chat import MessageRecord
from app.chat.exceptions import PersistenceError
from app.chat.repository.sql_schema.conversation import MessageModel
from app.chat.service.service import IMessageRepository
from app.core.logger import get_logger

logger = get_logger(__name__)

_TICK = timedelta(microseconds=1)


class MessageRepository(IMessageRepository):
    """
    Append-only message store.

    ``created_at`` is the only ordering key, so timestamps handed out by one
    repository never go backwards and rows of one batch get strictly
    increasing values in submission order.
    """

    def __init__(self, get_session: Callable):
        self.get_session = get_session
        self.logger = logger
        self._last_created_at: Optional[datetime] = None

    def _next_timestamp(self) -> datetime:
        now = datetime.now(timezone.utc)
        if self._last_created_at is not None and now <= self._last_created_at:
            now = self._last_created_at + _TICK
        self._last_created_at = now
        return now

    def _to_model(self, record: MessageRecord) -> MessageModel:
        return MessageModel(
            chat_id=record.chat_id,
            user_id=record.user_id,
            role=record.role,
            content=record.content or "",
            parts=record.parts,
            attachments=record.attachments,
            created_at=self._next_timestamp(),
        )

    @staticmethod
    def _to_record(m: MessageModel) -> MessageRecord:
        return MessageRecord(
            id=m.id,
            chat_id=m.chat_id,
            user_id=m.user_id,
            role=m.role,
            content=m.content or "",
            parts=m.parts,
            attachments=m.attachments,
            created_at=m.created_at,
        )

    async def append(self, record: MessageRecord) -> str:
        """Persist one record and return its new id."""
        try:
            async with self.get_session() as session:
                row = self._to_model(record)
                session.add(row)
                await session.flush()
                message_id = row.id
                await session.commit()
        except (SQLAlchemyError, OSError, ConnectionError) as e:
            raise PersistenceError(f"Failed to append message to chat {record.chat_id}: {e}") from e

        self.logger.debug(f"Message {message_id} ({record.role}) saved for chat {record.chat_id}")
        return message_id

    async def append_batch(self, records: List[MessageRecord]) -> int:
        """Persist records in one transaction, keeping submission order."""
        if not records:
            return 0
        try:
            async with self.get_session() as session:
                session.add_all([self._to_model(r) for r in records])
                await session.commit()
        except (SQLAlchemyError, OSError, ConnectionError) as e:
            raise PersistenceError(f"Failed to append {len(records)} messages: {e}") from e

        self.logger.debug(f"{len(records)} messages saved for chat {records[0].chat_id}")
        return len(records)

    async def list_by_chat(self, chat_id: str) -> List[MessageRecord]:
        try:
            async with self.get_session() as session:
                result = await session.execute(
                    select(MessageModel)
                    .where(MessageModel.chat_id == chat_id)
                    .order_by(MessageModel.created_at.asc())
                )
                rows = result.scalars().all()
        except (SQLAlchemyError, OSError, ConnectionError) as e:
            raise PersistenceError(f"Failed to load messages for chat {chat_id}: {e}") from e

        return [self._to_record(m) for m in rows]

    async def delete_by_chat(self, chat_id: str) -> int:
        try:
            async with self.get_session() as session:
                result = await session.execute(
                    delete(MessageModel).where(MessageModel.chat_id == chat_id)
                )
                await session.commit()
        except (SQLAlchemyError, OSError, ConnectionError) as e:
            raise PersistenceError(f"Failed to clear messages for chat {chat_id}: {e}") from e

        self.logger.info(f"Cleared {result.rowcount} messages from chat {chat_id}")
        return result.rowcount
