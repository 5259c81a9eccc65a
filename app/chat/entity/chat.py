# app/chat/entity/chat.py
"""
Models for chats, conversation turns and persisted message records.

A ``Turn`` is the structured in-memory shape exchanged with the client and the
completion engine. A ``MessageRecord`` is its flattened, persisted form.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    DATA = "data"
    TOOL = "tool"


Role = Literal["user", "assistant", "system", "data", "tool"]


class CamelModel(BaseModel):
    """Accepts and emits the camelCase keys used by the web client."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ToolInvocation(CamelModel):
    tool_call_id: str
    tool_name: str
    args: Any = None
    state: Literal["partial-call", "call", "result"] = "call"
    result: Any = None


class ContentSegment(CamelModel):
    """One typed piece of structured content: text, reasoning or tool-invocation.

    Unknown segment types written by older clients are kept as-is.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    type: str
    text: Optional[str] = None
    reasoning: Optional[str] = None
    tool_invocation: Optional[ToolInvocation] = None


class Attachment(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    url: str
    name: Optional[str] = None
    content_type: Optional[str] = None


class Turn(CamelModel):
    """One logical message of a conversation."""
    id: Optional[str] = None
    role: Role
    # left_to_right keeps malformed content as-is so the encoder can degrade it
    content: Union[str, List[ContentSegment], Any] = Field(default="", union_mode="left_to_right")
    tool_invocations: Optional[List[ToolInvocation]] = None
    experimental_attachments: Optional[List[Attachment]] = Field(
        default=None, alias="experimental_attachments"
    )
    created_at: Optional[datetime] = None

    def to_client(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class MessageRecord(BaseModel):
    """Persisted message row. ``parts`` and ``attachments`` are serialized JSON text."""
    id: Optional[str] = None
    chat_id: str
    user_id: Optional[str] = None
    role: Role
    content: str = ""
    parts: Optional[str] = None
    attachments: Optional[str] = None
    created_at: Optional[datetime] = None


class Chat(BaseModel):
    """Chat DTO; owned by exactly one user, optionally inside a project."""
    chat_id: str
    user_id: str
    project_id: Optional[str] = None
    title: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
