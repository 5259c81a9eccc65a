# app/llm/entity/events.py
"""Events emitted by a completion engine while it streams one response."""

from typing import Any, Literal, Optional, Union

from pydantic import BaseModel


class TextDeltaEvent(BaseModel):
    type: Literal["text_delta"] = "text_delta"
    text: str


class ReasoningDeltaEvent(BaseModel):
    type: Literal["reasoning_delta"] = "reasoning_delta"
    reasoning: str


class ToolCallStartEvent(BaseModel):
    type: Literal["tool_call_start"] = "tool_call_start"
    tool_call_id: str
    tool_name: str


class ToolCallArgsEvent(BaseModel):
    """Either an incremental JSON fragment (``args_delta``) or the final ``args``."""
    type: Literal["tool_call_delta"] = "tool_call_delta"
    tool_call_id: str
    tool_name: Optional[str] = None
    args_delta: Optional[str] = None
    args: Any = None


class ToolResultEvent(BaseModel):
    type: Literal["tool_result"] = "tool_result"
    tool_call_id: str
    tool_name: str
    result: Any = None


class MessageBoundaryEvent(BaseModel):
    """Ends the current assistant message; following events start a new one."""
    type: Literal["step_finish"] = "step_finish"


StreamEvent = Union[
    TextDeltaEvent,
    ReasoningDeltaEvent,
    ToolCallStartEvent,
    ToolCallArgsEvent,
    ToolResultEvent,
    MessageBoundaryEvent,
]
