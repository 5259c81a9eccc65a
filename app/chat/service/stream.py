"""Accumulates streamed engine events into finished assistant turns."""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from app.chat.entity.chat import ContentSegment, MessageRole, ToolInvocation, Turn
from app.chat.service.encoder import TEXT_SEPARATOR
from app.core.logger import get_logger
from app.llm.entity.events import (
    MessageBoundaryEvent,
    ReasoningDeltaEvent,
    StreamEvent,
    TextDeltaEvent,
    ToolCallArgsEvent,
    ToolCallStartEvent,
    ToolResultEvent,
)

logger = get_logger(__name__)


@dataclass
class _PendingInvocation:
    tool_call_id: str
    tool_name: str = ""
    args_text: str = ""
    args: Any = None
    result: Any = None
    has_result: bool = False

    def to_model(self) -> ToolInvocation:
        args = self.args
        if args is None and self.args_text:
            try:
                args = json.loads(self.args_text)
            except ValueError:
                logger.warning(f"Tool call {self.tool_call_id} streamed unparseable arguments")
                args = self.args_text
        return ToolInvocation(
            tool_call_id=self.tool_call_id,
            tool_name=self.tool_name,
            args=args if args is not None else {},
            state="result" if self.has_result else "call",
            result=self.result if self.has_result else None,
        )


@dataclass
class _TurnBuffer:
    # Ordered segments; tool-invocation entries reference ``invocations`` by id
    segments: List[Dict[str, Any]] = field(default_factory=list)
    invocations: Dict[str, _PendingInvocation] = field(default_factory=dict)

    def is_empty(self) -> bool:
        if self.invocations:
            return False
        return not any(s.get("text") or s.get("reasoning") for s in self.segments)

    def append_text(self, kind: str, chunk: str) -> None:
        if self.segments and self.segments[-1]["type"] == kind:
            self.segments[-1][kind] += chunk
        else:
            self.segments.append({"type": kind, kind: chunk})

    def invocation(self, tool_call_id: str, tool_name: Optional[str] = None) -> _PendingInvocation:
        pending = self.invocations.get(tool_call_id)
        if pending is None:
            pending = _PendingInvocation(tool_call_id=tool_call_id)
            self.invocations[tool_call_id] = pending
            self.segments.append({"type": "tool-invocation", "tool_call_id": tool_call_id})
        if tool_name and not pending.tool_name:
            pending.tool_name = tool_name
        return pending

    def to_turn(self) -> Turn:
        texts = [s["text"] for s in self.segments if s["type"] == "text" and s["text"]]
        has_reasoning = any(s["type"] == "reasoning" for s in self.segments)

        if has_reasoning:
            # Keep reasoning and inline tool calls together as a segment list
            content = []
            for s in self.segments:
                if s["type"] == "tool-invocation":
                    content.append(ContentSegment(
                        type="tool-invocation",
                        tool_invocation=self.invocations[s["tool_call_id"]].to_model(),
                    ))
                elif s["type"] == "text":
                    content.append(ContentSegment(type="text", text=s["text"]))
                else:
                    content.append(ContentSegment(type="reasoning", reasoning=s["reasoning"]))
            return Turn(role=MessageRole.ASSISTANT.value, content=content)

        text = TEXT_SEPARATOR.join(texts)
        if self.invocations:
            return Turn(
                role=MessageRole.ASSISTANT.value,
                content=text,
                tool_invocations=[p.to_model() for p in self.invocations.values()],
            )
        return Turn(role=MessageRole.ASSISTANT.value, content=text)


class TurnAccumulator:
    """
    Folds the engine's event stream into assistant turns.

    A turn is complete once a message boundary closes it. ``finish`` also
    closes the in-progress turn; after a cancellation only ``completed``
    should be used.
    """

    def __init__(self):
        self.completed: List[Turn] = []
        self._current = _TurnBuffer()

    @property
    def has_partial_turn(self) -> bool:
        return not self._current.is_empty()

    def feed(self, event: StreamEvent) -> None:
        current = self._current
        if isinstance(event, TextDeltaEvent):
            current.append_text("text", event.text)
        elif isinstance(event, ReasoningDeltaEvent):
            current.append_text("reasoning", event.reasoning)
        elif isinstance(event, ToolCallStartEvent):
            current.invocation(event.tool_call_id, event.tool_name)
        elif isinstance(event, ToolCallArgsEvent):
            pending = current.invocation(event.tool_call_id, event.tool_name)
            if event.args is not None:
                pending.args = event.args
            elif event.args_delta:
                pending.args_text += event.args_delta
        elif isinstance(event, ToolResultEvent):
            pending = current.invocation(event.tool_call_id, event.tool_name)
            pending.result = event.result
            pending.has_result = True
        elif isinstance(event, MessageBoundaryEvent):
            self.close_turn()
        else:
            logger.debug(f"Ignoring unknown stream event {event!r}")

    def close_turn(self) -> Optional[Turn]:
        if self._current.is_empty():
            self._current = _TurnBuffer()
            return None
        turn = self._current.to_turn()
        self.completed.append(turn)
        self._current = _TurnBuffer()
        return turn

    def finish(self) -> List[Turn]:
        """Close the in-progress turn and return every turn in emission order."""
        self.close_turn()
        return list(self.completed)
