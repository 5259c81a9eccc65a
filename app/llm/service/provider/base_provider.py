# app/llm/service/provider/base_provider.py
from abc import ABC, abstractmethod
from typing import AsyncIterator, List

from app.agents.agent import ToolContext
from app.chat.entity.chat import Turn
from app.llm.entity.events import StreamEvent


class ICompletionEngine(ABC):
    """Streams one assistant response for a conversation."""

    @abstractmethod
    def has_model(self, model: str) -> bool:
        pass

    @abstractmethod
    def stream(
        self,
        model: str,
        messages: List[Turn],
        system_prompt: str,
        tool_context: ToolContext,
        enable_search: bool = False,
    ) -> AsyncIterator[StreamEvent]:
        """
        Yield stream events in emission order.

        Failed tool invocations are raised as ``StreamProtocolError``
        subclasses; any other exception is a generic stream failure.
        """
