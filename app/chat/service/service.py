from abc import ABC, abstractmethod
from typing import List, Optional

from app.chat.entity.chat import Chat, MessageRecord


class IMessageRepository(ABC):
    @abstractmethod
    async def append(self, record: MessageRecord) -> str:
        pass

    @abstractmethod
    async def append_batch(self, records: List[MessageRecord]) -> int:
        pass

    @abstractmethod
    async def list_by_chat(self, chat_id: str) -> List[MessageRecord]:
        pass

    @abstractmethod
    async def delete_by_chat(self, chat_id: str) -> int:
        pass


class IChatRepository(ABC):
    @abstractmethod
    async def create_chat(self, user_id: str, title: Optional[str] = None, project_id: Optional[str] = None) -> Chat:
        pass

    @abstractmethod
    async def get_chat(self, chat_id: str) -> Optional[Chat]:
        pass

    @abstractmethod
    async def list_chats(self, user_id: str, project_id: Optional[str] = None) -> List[Chat]:
        pass

    @abstractmethod
    async def delete_chat(self, chat_id: str) -> None:
        pass


class IUsageGate(ABC):
    @abstractmethod
    async def check(self, user_id: str, model: str, is_authenticated: bool) -> None:
        """Raise LimitExceededError when the user may not send another message."""

    @abstractmethod
    async def increment(self, user_id: str, model: str, is_authenticated: bool) -> None:
        pass
