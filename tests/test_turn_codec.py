import json

from app.chat.entity.chat import Attachment, ContentSegment, MessageRecord, ToolInvocation, Turn
from app.chat.service.decoder import PartsEncoding, decode_record, decode_records, detect_encoding
from app.chat.service.encoder import encode_turn, encode_turns, flatten_text

CHAT_ID = "chat-1"


def _with_id(record: MessageRecord, message_id: str = "m-1") -> MessageRecord:
    return record.model_copy(update={"id": message_id})


def test_plain_assistant_turn_round_trip():
    record = encode_turn(Turn(role="assistant", content="hello"), CHAT_ID)

    assert record.content == "hello"
    assert record.parts is None
    assert record.user_id is None

    turn = decode_record(_with_id(record))
    assert turn.role == "assistant"
    assert turn.content == "hello"
    assert turn.tool_invocations is None


def test_tool_invocation_turn_round_trip():
    invocation = ToolInvocation(
        tool_call_id="t1",
        tool_name="createMemory",
        args={"title": "x"},
        state="result",
        result={"success": True},
    )
    record = encode_turn(Turn(role="assistant", content="", tool_invocations=[invocation]), CHAT_ID)

    envelope = json.loads(record.parts)
    assert envelope["content"] == ""
    assert envelope["toolInvocations"][0]["toolCallId"] == "t1"
    assert detect_encoding(record) == PartsEncoding.ENVELOPE

    turn = decode_record(_with_id(record))
    assert turn.content == ""
    assert turn.tool_invocations == [invocation]


def test_segment_array_turn_round_trip():
    segments = [ContentSegment(type="text", text="A"), ContentSegment(type="text", text="B")]
    record = encode_turn(Turn(role="assistant", content=segments), CHAT_ID)

    assert record.content == "A\n\nB"
    assert json.loads(record.parts) == [{"type": "text", "text": "A"}, {"type": "text", "text": "B"}]
    assert detect_encoding(record) == PartsEncoding.SEGMENT_ARRAY

    turn = decode_record(_with_id(record))
    assert turn.content == segments


def test_segment_array_keeps_reasoning_and_inline_tool_calls():
    segments = [
        ContentSegment(type="reasoning", reasoning="think first"),
        ContentSegment(
            type="tool-invocation",
            tool_invocation=ToolInvocation(tool_call_id="t9", tool_name="getMemories", args={}, state="result", result=[]),
        ),
        ContentSegment(type="text", text="done"),
    ]
    record = encode_turn(Turn(role="assistant", content=segments), CHAT_ID)

    assert record.content == "done"
    turn = decode_record(_with_id(record))
    assert turn.content[1].tool_invocation.tool_call_id == "t9"
    assert turn.content[0].reasoning == "think first"


def test_user_turn_keeps_submitted_text_and_attachments():
    turn = Turn(
        role="user",
        content="look at this",
        experimental_attachments=[Attachment(url="https://cdn.example/a.png", name="a.png", content_type="image/png")],
    )
    record = encode_turn(turn, CHAT_ID, user_id="u-1")

    assert record.user_id == "u-1"
    assert record.content == "look at this"
    assert record.parts is None
    assert json.loads(record.attachments) == [
        {"url": "https://cdn.example/a.png", "name": "a.png", "contentType": "image/png"}
    ]

    decoded = decode_record(_with_id(record))
    assert decoded.content == "look at this"
    assert decoded.experimental_attachments[0].content_type == "image/png"


def test_user_segment_content_is_stored_as_json_text():
    turn = Turn(role="user", content=[ContentSegment(type="text", text="hi")])
    record = encode_turn(turn, CHAT_ID, user_id="u-1")

    assert json.loads(record.content) == [{"type": "text", "text": "hi"}]


def test_malformed_content_is_encoded_as_empty_string():
    record = encode_turn(Turn(role="assistant", content={"unexpected": True}), CHAT_ID)

    assert record.content == ""
    assert record.parts is None


def test_malformed_parts_fall_back_to_plain_content():
    record = MessageRecord(id="m-1", chat_id=CHAT_ID, role="assistant", content="fallback", parts="{not valid json")

    turn = decode_record(record)

    assert turn.role == "assistant"
    assert turn.content == "fallback"
    assert detect_encoding(record) == PartsEncoding.LEGACY


def test_invalid_envelope_falls_back_to_plain_content():
    record = MessageRecord(
        id="m-1",
        chat_id=CHAT_ID,
        role="assistant",
        content="plain",
        parts=json.dumps({"content": "x", "toolInvocations": [{"toolName": "missing id"}]}),
    )

    turn = decode_record(record)

    assert turn.content == "plain"
    assert turn.tool_invocations is None


def test_unknown_object_parts_use_plain_content():
    record = MessageRecord(id="m-1", chat_id=CHAT_ID, role="assistant", content="plain", parts='{"foo": 1}')

    assert decode_record(record).content == "plain"


def test_envelope_without_content_uses_record_content():
    record = MessageRecord(
        id="m-1",
        chat_id=CHAT_ID,
        role="assistant",
        content="from record",
        parts=json.dumps({"toolInvocations": []}),
    )

    turn = decode_record(record)

    assert turn.content == "from record"
    assert turn.tool_invocations == []


def test_unreadable_attachments_are_dropped():
    record = MessageRecord(id="m-1", chat_id=CHAT_ID, role="user", content="hi", attachments="[{]")

    turn = decode_record(record)

    assert turn.content == "hi"
    assert turn.experimental_attachments is None


def test_decode_records_keeps_input_order():
    records = [
        MessageRecord(id=f"m-{i}", chat_id=CHAT_ID, role=role, content=str(i))
        for i, role in enumerate(["user", "assistant", "user"])
    ]

    assert [t.content for t in decode_records(records)] == ["0", "1", "2"]


def test_encode_turns_sets_author_only_on_user_records():
    records = encode_turns(
        [Turn(role="user", content="q"), Turn(role="assistant", content="a")],
        CHAT_ID,
        user_id="u-1",
    )

    assert [r.user_id for r in records] == ["u-1", None]


def test_flatten_text_ignores_non_text_segments():
    content = [
        ContentSegment(type="reasoning", reasoning="hidden"),
        ContentSegment(type="text", text="one"),
        ContentSegment(type="text", text="two"),
    ]

    assert flatten_text(content) == "one\n\ntwo"
    assert flatten_text(None) == ""
