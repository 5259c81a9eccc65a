from app.chat.entity.chat import ContentSegment
from app.chat.service.stream import TurnAccumulator
from app.llm.entity.events import (
    MessageBoundaryEvent,
    ReasoningDeltaEvent,
    TextDeltaEvent,
    ToolCallArgsEvent,
    ToolCallStartEvent,
    ToolResultEvent,
)


def feed_all(accumulator: TurnAccumulator, events) -> None:
    for event in events:
        accumulator.feed(event)


def test_text_deltas_merge_into_one_plain_turn():
    acc = TurnAccumulator()
    feed_all(acc, [TextDeltaEvent(text="Hel"), TextDeltaEvent(text="lo")])

    [turn] = acc.finish()

    assert turn.role == "assistant"
    assert turn.content == "Hello"
    assert turn.tool_invocations is None


def test_boundary_splits_turns_in_emission_order():
    acc = TurnAccumulator()
    feed_all(acc, [
        ToolCallStartEvent(tool_call_id="t1", tool_name="getMemories"),
        ToolCallArgsEvent(tool_call_id="t1", args={"limit": 5}),
        ToolResultEvent(tool_call_id="t1", tool_name="getMemories", result={"success": True, "memories": []}),
        MessageBoundaryEvent(),
        TextDeltaEvent(text="Nothing saved yet."),
    ])

    assert len(acc.completed) == 1
    tool_turn, answer = acc.finish()

    [invocation] = tool_turn.tool_invocations
    assert invocation.args == {"limit": 5}
    assert invocation.state == "result"
    assert answer.content == "Nothing saved yet."


def test_call_without_result_stays_in_call_state():
    acc = TurnAccumulator()
    feed_all(acc, [
        ToolCallStartEvent(tool_call_id="t1", tool_name="createMemory"),
        ToolCallArgsEvent(tool_call_id="t1", args_delta='{"title": "a"'),
    ])

    [turn] = acc.finish()
    [invocation] = turn.tool_invocations

    assert invocation.state == "call"
    assert invocation.result is None
    # Incomplete JSON is kept as the raw text
    assert invocation.args == '{"title": "a"'


def test_reasoning_produces_segment_content_with_inline_tool_calls():
    acc = TurnAccumulator()
    feed_all(acc, [
        ReasoningDeltaEvent(reasoning="User wants "),
        ReasoningDeltaEvent(reasoning="a memory."),
        ToolCallStartEvent(tool_call_id="t1", tool_name="createMemory"),
        ToolResultEvent(tool_call_id="t1", tool_name="createMemory", result={"success": True}),
        TextDeltaEvent(text="Done."),
    ])

    [turn] = acc.finish()

    assert [s.type for s in turn.content] == ["reasoning", "tool-invocation", "text"]
    assert turn.content[0] == ContentSegment(type="reasoning", reasoning="User wants a memory.")
    assert turn.content[1].tool_invocation.tool_call_id == "t1"
    assert turn.tool_invocations is None


def test_empty_steps_produce_no_turns():
    acc = TurnAccumulator()
    feed_all(acc, [MessageBoundaryEvent(), MessageBoundaryEvent()])

    assert acc.finish() == []
    assert not acc.has_partial_turn


def test_result_for_unstarted_call_still_links_by_id():
    acc = TurnAccumulator()
    acc.feed(ToolResultEvent(tool_call_id="t7", tool_name="getGeneralMemories", result=[]))

    [turn] = acc.finish()

    assert turn.tool_invocations[0].tool_name == "getGeneralMemories"
    assert turn.tool_invocations[0].args == {}
