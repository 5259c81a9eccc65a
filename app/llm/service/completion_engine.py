# app/llm/service/completion_engine.py
"""
Completion engine backed by the pydantic-ai agent graph.

Conversation turns are converted to pydantic-ai messages, the agent run is
walked node by node and every model or tool event is re-emitted as one of our
stream events. A ``MessageBoundaryEvent`` follows each tool step, so the tool
step and the answer that follows become separate assistant turns.
"""

from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Iterator, List, Optional, Tuple, Union

from pydantic_ai import Agent
from pydantic_ai.exceptions import UnexpectedModelBehavior
from pydantic_ai.messages import (
    FunctionToolCallEvent,
    FunctionToolResultEvent,
    ImageUrl,
    ModelMessage,
    ModelRequest,
    ModelResponse,
    PartDeltaEvent,
    PartStartEvent,
    RetryPromptPart,
    SystemPromptPart,
    TextPart,
    TextPartDelta,
    ThinkingPart,
    ThinkingPartDelta,
    ToolCallPart,
    ToolCallPartDelta,
    ToolReturnPart,
    UserPromptPart,
)
from pydantic_ai.models import Model

from app.agents.agent import CoreframeAgent, ToolContext
from app.agents.base_agent import DEFAULT_MODEL_MAP
from app.chat.entity.chat import MessageRole, ToolInvocation, Turn
from app.chat.exceptions import (
    InvalidToolArgumentsError,
    StreamProtocolError,
    ToolExecutionError,
    ToolNotAvailableError,
)
from app.chat.service.encoder import flatten_text
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
from app.llm.service.provider.base_provider import ICompletionEngine

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Turn -> pydantic-ai message history
# ---------------------------------------------------------------------------

def _user_prompt_content(turn: Turn) -> Union[str, List[Any]]:
    text = flatten_text(turn.content)
    images = [
        ImageUrl(url=a.url)
        for a in turn.experimental_attachments or []
        if (a.content_type or "").startswith("image/")
    ]
    if images:
        return [text, *images]
    return text


def _assistant_items(turn: Turn) -> Iterator[Tuple[str, Any]]:
    if isinstance(turn.content, list):
        for segment in turn.content:
            if segment.type == "text":
                yield "text", segment.text or ""
            elif segment.type == "tool-invocation" and segment.tool_invocation:
                yield "tool", segment.tool_invocation
        return
    yield "text", flatten_text(turn.content)
    for invocation in turn.tool_invocations or []:
        yield "tool", invocation


def _assistant_messages(turn: Turn) -> List[ModelMessage]:
    """Split an assistant turn into model responses and the tool returns answering them."""
    messages: List[ModelMessage] = []
    response_parts: List[Any] = []
    returns: List[Any] = []

    def flush():
        if response_parts:
            messages.append(ModelResponse(parts=list(response_parts)))
        if returns:
            messages.append(ModelRequest(parts=list(returns)))
        response_parts.clear()
        returns.clear()

    for kind, value in _assistant_items(turn):
        if kind == "text":
            if returns:
                flush()
            if value:
                response_parts.append(TextPart(content=value))
            continue

        invocation: ToolInvocation = value
        # A call without a result cannot be replayed to the model
        if invocation.state != "result":
            continue
        args = invocation.args if isinstance(invocation.args, (dict, str)) else {}
        response_parts.append(
            ToolCallPart(tool_name=invocation.tool_name, args=args, tool_call_id=invocation.tool_call_id)
        )
        returns.append(
            ToolReturnPart(tool_name=invocation.tool_name, content=invocation.result, tool_call_id=invocation.tool_call_id)
        )

    flush()
    return messages


def to_model_messages(turns: List[Turn], system_prompt: str) -> Tuple[Optional[Union[str, List[Any]]], List[ModelMessage]]:
    """
    Convert a transcript into ``(prompt, message_history)`` for an agent run.

    The trailing user turn becomes the prompt; the system prompt opens the
    history.
    """
    turns = list(turns)
    prompt = None
    if turns and turns[-1].role == MessageRole.USER.value:
        prompt = _user_prompt_content(turns.pop())

    history: List[ModelMessage] = [ModelRequest(parts=[SystemPromptPart(content=system_prompt)])]
    for turn in turns:
        if turn.role == MessageRole.USER.value:
            history.append(ModelRequest(parts=[UserPromptPart(content=_user_prompt_content(turn))]))
        elif turn.role == MessageRole.ASSISTANT.value:
            history.extend(_assistant_messages(turn))
        elif turn.role == MessageRole.SYSTEM.value:
            history.append(ModelRequest(parts=[SystemPromptPart(content=flatten_text(turn.content))]))
    return prompt, history


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

def tool_result_part(event: FunctionToolResultEvent) -> Union[ToolReturnPart, RetryPromptPart, None]:
    """The return or retry part of a tool result event.

    pydantic-ai 2 exposes it as ``part``; 1.x releases call it ``result``.
    """
    part = getattr(event, "part", None)
    if part is None:
        part = getattr(event, "result", None)
    return part


@dataclass
class _RetryLog:
    unknown_tool: bool = False
    invalid_args: bool = False


class PydanticAICompletionEngine(ICompletionEngine):

    def __init__(self, agent: CoreframeAgent, models: Optional[Dict[str, Union[str, Model]]] = None):
        self.agent = agent
        self.models = models if models is not None else dict(DEFAULT_MODEL_MAP)

    def has_model(self, model: str) -> bool:
        return model in self.models

    async def stream(
        self,
        model: str,
        messages: List[Turn],
        system_prompt: str,
        tool_context: ToolContext,
        enable_search: bool = False,
    ) -> AsyncIterator[StreamEvent]:
        if enable_search:
            logger.info(f"Search requested for chat {tool_context.chat_id}; no search tool is configured")

        prompt, history = to_model_messages(messages, system_prompt)
        retries = _RetryLog()

        try:
            async with self.agent.iter(self.models[model], prompt, deps=tool_context, message_history=history) as run:
                async for node in run:
                    if Agent.is_model_request_node(node):
                        async with node.stream(run.ctx) as request_stream:
                            async for event in self._model_events(request_stream):
                                yield event
                    elif Agent.is_call_tools_node(node):
                        async for event in self._tool_events(node, run, retries):
                            yield event
        except UnexpectedModelBehavior as e:
            if retries.unknown_tool:
                raise ToolNotAvailableError(str(e)) from e
            if retries.invalid_args:
                raise InvalidToolArgumentsError(str(e)) from e
            raise

    async def _model_events(self, request_stream) -> AsyncIterator[StreamEvent]:
        # Deltas only carry the part index; remember which call each index is
        call_ids: Dict[int, str] = {}
        async for event in request_stream:
            if isinstance(event, PartStartEvent):
                part = event.part
                if isinstance(part, TextPart):
                    if part.content:
                        yield TextDeltaEvent(text=part.content)
                elif isinstance(part, ThinkingPart):
                    if part.content:
                        yield ReasoningDeltaEvent(reasoning=part.content)
                elif isinstance(part, ToolCallPart):
                    call_ids[event.index] = part.tool_call_id
                    yield ToolCallStartEvent(tool_call_id=part.tool_call_id, tool_name=part.tool_name)
                    if isinstance(part.args, str) and part.args:
                        yield ToolCallArgsEvent(tool_call_id=part.tool_call_id, args_delta=part.args)
                    elif isinstance(part.args, dict):
                        yield ToolCallArgsEvent(tool_call_id=part.tool_call_id, args=part.args)
            elif isinstance(event, PartDeltaEvent):
                delta = event.delta
                if isinstance(delta, TextPartDelta):
                    if delta.content_delta:
                        yield TextDeltaEvent(text=delta.content_delta)
                elif isinstance(delta, ThinkingPartDelta):
                    if delta.content_delta:
                        yield ReasoningDeltaEvent(reasoning=delta.content_delta)
                elif isinstance(delta, ToolCallPartDelta):
                    call_id = delta.tool_call_id or call_ids.get(event.index)
                    if call_id is None:
                        continue
                    if isinstance(delta.args_delta, str):
                        yield ToolCallArgsEvent(tool_call_id=call_id, args_delta=delta.args_delta)
                    elif isinstance(delta.args_delta, dict):
                        yield ToolCallArgsEvent(tool_call_id=call_id, args=delta.args_delta)

    async def _tool_events(self, node, run, retries: _RetryLog) -> AsyncIterator[StreamEvent]:
        emitted = False
        try:
            async with node.stream(run.ctx) as tool_stream:
                async for event in tool_stream:
                    if isinstance(event, FunctionToolCallEvent):
                        emitted = True
                        try:
                            args = event.part.args_as_dict()
                        except ValueError:
                            args = None
                        if args is not None:
                            yield ToolCallArgsEvent(
                                tool_call_id=event.part.tool_call_id,
                                tool_name=event.part.tool_name,
                                args=args,
                            )
                    elif isinstance(event, FunctionToolResultEvent):
                        emitted = True
                        result = tool_result_part(event)
                        if isinstance(result, ToolReturnPart):
                            yield ToolResultEvent(
                                tool_call_id=result.tool_call_id,
                                tool_name=result.tool_name,
                                result=result.content,
                            )
                        elif isinstance(result, RetryPromptPart):
                            if result.tool_name and result.tool_name not in self.agent.tool_names:
                                retries.unknown_tool = True
                                logger.warning(f"Model called unknown tool {result.tool_name!r}")
                            else:
                                retries.invalid_args = True
                                logger.warning(f"Model retried tool {result.tool_name!r}: {result.model_response()}")
        except (StreamProtocolError, UnexpectedModelBehavior):
            raise
        except Exception as e:
            logger.error(f"Tool execution failed: {e}", exc_info=True)
            raise ToolExecutionError(str(e)) from e

        if emitted:
            yield MessageBoundaryEvent()
