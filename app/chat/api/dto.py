from pydantic import BaseModel, Field
from typing import Any, List, Optional

from app.chat.entity.chat import CamelModel, Turn


class ChatRequest(CamelModel):
    """Body of ``POST /api/chat``. Identifiers are checked by the controller."""
    messages: List[Turn] = Field(default_factory=list)
    chat_id: Optional[str] = None
    user_id: Optional[str] = None
    model: Optional[str] = None
    is_authenticated: bool = False
    system_prompt: Optional[str] = None
    enable_search: bool = False
    project_id: Optional[str] = None


class CreateChatDTO(CamelModel):
    title: Optional[str] = Field(default=None, max_length=255)
    project_id: Optional[str] = None


class ChatResponse(CamelModel):
    chat_id: str
    user_id: str
    project_id: Optional[str] = None
    title: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class BulkMessagesDTO(CamelModel):
    messages: List[Turn] = Field(..., min_length=1)


class BaseResponse(BaseModel):
    status: bool = True
    message: str = ""
    data: Optional[Any] = None
