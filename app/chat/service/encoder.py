"""
Turn encoder: flattens an in-memory ``Turn`` into a ``MessageRecord``.

Record shapes written here:

* user turn          -> ``content`` is the submitted text (segment lists are
                        stored as JSON text), ``attachments`` as JSON.
* plain assistant    -> ``content`` is the text, no ``parts``.
* segment content    -> ``content`` is the text segments joined by a blank
                        line, ``parts`` holds the full segment list.
* tool invocations   -> ``parts`` holds ``{"content", "toolInvocations"}``,
                        ``content`` the plain text (possibly empty).
"""

import json
from typing import Any, Iterable, List, Optional

from app.chat.entity.chat import ContentSegment, MessageRecord, MessageRole, Turn
from app.core.logger import get_logger

logger = get_logger(__name__)

TEXT_SEPARATOR = "\n\n"


def _is_segment_list(content: Any) -> bool:
    return isinstance(content, list) and all(isinstance(s, ContentSegment) for s in content)


def _dump_segments(segments: List[ContentSegment]) -> list:
    return [s.model_dump(mode="json", by_alias=True, exclude_none=True) for s in segments]


def flatten_text(content: Any) -> str:
    """Plain-text projection of turn content; empty for malformed content."""
    if isinstance(content, str):
        return content
    if _is_segment_list(content):
        return TEXT_SEPARATOR.join(s.text or "" for s in content if s.type == "text")
    return ""


def _encode_user_turn(turn: Turn, chat_id: str, user_id: Optional[str]) -> MessageRecord:
    if isinstance(turn.content, str):
        content = turn.content
    elif _is_segment_list(turn.content):
        content = json.dumps(_dump_segments(turn.content), ensure_ascii=False)
    else:
        logger.warning(f"Malformed user content in chat {chat_id}; storing empty content")
        content = ""

    attachments = None
    if turn.experimental_attachments:
        attachments = json.dumps(
            [a.model_dump(mode="json", by_alias=True, exclude_none=True) for a in turn.experimental_attachments],
            ensure_ascii=False,
        )

    return MessageRecord(
        chat_id=chat_id,
        user_id=user_id,
        role=MessageRole.USER.value,
        content=content,
        attachments=attachments,
    )


def _encode_assistant_turn(turn: Turn, chat_id: str) -> MessageRecord:
    parts = None
    if not isinstance(turn.content, str) and not _is_segment_list(turn.content):
        logger.warning(f"Malformed {turn.role} content in chat {chat_id}; storing empty content")
    content = flatten_text(turn.content)

    if _is_segment_list(turn.content):
        parts = json.dumps(_dump_segments(turn.content), ensure_ascii=False)

    if turn.tool_invocations:
        envelope = {
            "content": content,
            "toolInvocations": [
                t.model_dump(mode="json", by_alias=True, exclude_none=True) for t in turn.tool_invocations
            ],
        }
        parts = json.dumps(envelope, ensure_ascii=False)

    return MessageRecord(
        chat_id=chat_id,
        user_id=None,
        role=turn.role,
        content=content,
        parts=parts,
    )


def encode_turn(turn: Turn, chat_id: str, user_id: Optional[str] = None) -> MessageRecord:
    """Build the persisted record for one turn. Never raises on malformed content."""
    if turn.role == MessageRole.USER.value:
        return _encode_user_turn(turn, chat_id, user_id)
    return _encode_assistant_turn(turn, chat_id)


def encode_turns(turns: Iterable[Turn], chat_id: str, user_id: Optional[str] = None) -> List[MessageRecord]:
    return [encode_turn(t, chat_id, user_id) for t in turns]
