from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from pydantic_ai.messages import (
    ModelRequest,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    ToolCallPart,
    ToolReturnPart,
    UserPromptPart,
)
from pydantic_ai.models.function import AgentInfo, DeltaToolCall, FunctionModel

from app.agents.agent import CoreframeAgent, ToolContext
from app.chat.entity.chat import ContentSegment, ToolInvocation, Turn
from app.chat.exceptions import ToolExecutionError
from app.chat.service.stream import TurnAccumulator
from app.llm.entity.events import MessageBoundaryEvent, TextDeltaEvent, ToolResultEvent
from app.llm.service.completion_engine import PydanticAICompletionEngine, to_model_messages, tool_result_part
from app.memory.repository.memory_repository import IMemoryRepository


def _has_tool_return(messages) -> bool:
    last = messages[-1]
    return isinstance(last, ModelRequest) and any(isinstance(p, ToolReturnPart) for p in last.parts)


async def call_tool_then_answer(messages, info: AgentInfo):
    if _has_tool_return(messages):
        yield "You have "
        yield "no memories."
    else:
        yield {0: DeltaToolCall(name="getGeneralMemories", json_args="{}")}


async def create_general_memory(messages, info: AgentInfo):
    if _has_tool_return(messages):
        yield "ok"
    else:
        yield {0: DeltaToolCall(name="createGeneralMemory", json_args='{"title": "t", "content": "c"}')}


def test_trailing_user_turn_becomes_the_prompt():
    prompt, history = to_model_messages(
        [Turn(role="user", content="hi"), Turn(role="assistant", content="hello"), Turn(role="user", content="again")],
        "system text",
    )

    assert prompt == "again"
    assert isinstance(history[0], ModelRequest)
    assert isinstance(history[0].parts[0], SystemPromptPart)
    assert history[0].parts[0].content == "system text"
    assert isinstance(history[1].parts[0], UserPromptPart)
    assert history[1].parts[0].content == "hi"
    assert isinstance(history[2], ModelResponse)
    assert history[2].parts[0].content == "hello"


def test_tool_invocations_replay_as_call_and_return():
    turn = Turn(
        role="assistant",
        content="Checking.",
        tool_invocations=[
            ToolInvocation(tool_call_id="t1", tool_name="getMemories", args={"limit": 3}, state="result", result={"success": True}),
            ToolInvocation(tool_call_id="t2", tool_name="getMemories", args={}, state="call"),
        ],
    )

    _, history = to_model_messages([turn], "sys")

    response, returns = history[1], history[2]
    assert isinstance(response.parts[0], TextPart)
    [call] = [p for p in response.parts if isinstance(p, ToolCallPart)]
    assert call.tool_call_id == "t1"
    [tool_return] = returns.parts
    assert tool_return.tool_call_id == "t1"
    assert tool_return.content == {"success": True}


def test_text_after_tool_result_starts_a_new_response():
    turn = Turn(
        role="assistant",
        content=[
            ContentSegment(type="reasoning", reasoning="skip me"),
            ContentSegment(
                type="tool-invocation",
                tool_invocation=ToolInvocation(tool_call_id="t1", tool_name="getMemories", args={}, state="result", result=[]),
            ),
            ContentSegment(type="text", text="Here they are."),
        ],
    )

    _, history = to_model_messages([turn], "sys")

    assert [type(m) for m in history[1:]] == [ModelResponse, ModelRequest, ModelResponse]
    assert history[3].parts[0].content == "Here they are."


@pytest.mark.asyncio
async def test_tool_step_and_answer_stream_as_two_turns(memory_repo):
    engine = PydanticAICompletionEngine(
        CoreframeAgent(memory_repo),
        models={"fn": FunctionModel(stream_function=call_tool_then_answer)},
    )
    assert engine.has_model("fn")
    assert not engine.has_model("gpt-4o")

    events = [
        e async for e in engine.stream(
            "fn", [Turn(role="user", content="what do you know?")], "sys", ToolContext(user_id="u-1", chat_id="c-1")
        )
    ]

    [result] = [e for e in events if isinstance(e, ToolResultEvent)]
    assert result.tool_name == "getGeneralMemories"
    assert result.result == {"success": True, "memories": []}
    assert any(isinstance(e, MessageBoundaryEvent) for e in events)
    assert "".join(e.text for e in events if isinstance(e, TextDeltaEvent)) == "You have no memories."

    accumulator = TurnAccumulator()
    for event in events:
        accumulator.feed(event)
    tool_turn, answer = accumulator.finish()
    assert tool_turn.tool_invocations[0].tool_call_id == result.tool_call_id
    assert answer.content == "You have no memories."


@pytest.mark.asyncio
async def test_failing_tool_raises_tool_execution_error():
    memory_repo = AsyncMock(spec=IMemoryRepository)
    memory_repo.create_general_memory.side_effect = RuntimeError("database is gone")
    engine = PydanticAICompletionEngine(
        CoreframeAgent(memory_repo),
        models={"fn": FunctionModel(stream_function=create_general_memory)},
    )

    with pytest.raises(ToolExecutionError):
        async for _ in engine.stream(
            "fn", [Turn(role="user", content="remember c")], "sys", ToolContext(user_id="u-1", chat_id="c-1")
        ):
            pass


def test_tool_result_part_reads_both_event_shapes():
    part = ToolReturnPart(tool_name="getMemories", content={"success": True}, tool_call_id="t1")

    assert tool_result_part(SimpleNamespace(part=part)) is part
    assert tool_result_part(SimpleNamespace(result=part)) is part
