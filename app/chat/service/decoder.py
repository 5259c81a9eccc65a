"""
Turn decoder: rebuilds structured turns from persisted message records.

Stored ``parts`` come in three shapes, told apart only by structure:

1. envelope        ``{"content": ..., "toolInvocations": [...]}``
2. segment array   ``[{"type": "text", ...}, ...]``
3. legacy plain    no ``parts`` at all

The interpretations are tried in that order; anything unreadable falls back to
the legacy reading of ``record.content``.
"""

import json
from enum import Enum
from typing import Any, Callable, Iterable, List, Optional

from pydantic import TypeAdapter, ValidationError

from app.chat.entity.chat import Attachment, ContentSegment, MessageRecord, ToolInvocation, Turn
from app.core.logger import get_logger

logger = get_logger(__name__)

_tool_invocations_adapter = TypeAdapter(List[ToolInvocation])
_segments_adapter = TypeAdapter(List[ContentSegment])
_attachments_adapter = TypeAdapter(List[Attachment])


class PartsEncoding(str, Enum):
    LEGACY = "legacy"
    ENVELOPE = "envelope"
    SEGMENT_ARRAY = "segment_array"


class MalformedPartsError(ValueError):
    pass


def _base_turn(record: MessageRecord, content: Any = None, tool_invocations: Optional[List[ToolInvocation]] = None) -> Turn:
    return Turn(
        id=record.id,
        role=record.role,
        content=(record.content or "") if content is None else content,
        tool_invocations=tool_invocations,
        experimental_attachments=_decode_attachments(record),
        created_at=record.created_at,
    )


def _decode_attachments(record: MessageRecord) -> Optional[List[Attachment]]:
    if not record.attachments:
        return None
    try:
        return _attachments_adapter.validate_python(json.loads(record.attachments))
    except (ValueError, ValidationError) as e:
        logger.warning(f"Dropping unreadable attachments of message {record.id} in chat {record.chat_id}: {e}")
        return None


def _try_envelope(payload: Any, record: MessageRecord) -> Optional[Turn]:
    if not isinstance(payload, dict) or "toolInvocations" not in payload:
        return None
    try:
        invocations = _tool_invocations_adapter.validate_python(payload["toolInvocations"] or [])
    except ValidationError as e:
        raise MalformedPartsError(f"invalid toolInvocations: {e}") from e

    return _base_turn(record, content=payload.get("content"), tool_invocations=invocations)


def _try_segment_array(payload: Any, record: MessageRecord) -> Optional[Turn]:
    if not isinstance(payload, list):
        return None
    try:
        segments = _segments_adapter.validate_python(payload)
    except ValidationError as e:
        raise MalformedPartsError(f"invalid segment array: {e}") from e

    return _base_turn(record, content=segments)


# Order matters: an envelope is an object and must be recognised first
_INTERPRETATIONS: List[tuple[PartsEncoding, Callable[[Any, MessageRecord], Optional[Turn]]]] = [
    (PartsEncoding.ENVELOPE, _try_envelope),
    (PartsEncoding.SEGMENT_ARRAY, _try_segment_array),
]


def detect_encoding(record: MessageRecord) -> PartsEncoding:
    """Classify a record's ``parts`` without building the turn."""
    if not record.parts:
        return PartsEncoding.LEGACY
    try:
        payload = json.loads(record.parts)
    except ValueError:
        return PartsEncoding.LEGACY
    if isinstance(payload, dict) and "toolInvocations" in payload:
        return PartsEncoding.ENVELOPE
    if isinstance(payload, list):
        return PartsEncoding.SEGMENT_ARRAY
    return PartsEncoding.LEGACY


def decode_record(record: MessageRecord) -> Turn:
    """Rebuild one turn. Never raises on malformed ``parts``."""
    if not record.parts:
        return _base_turn(record)

    try:
        payload = json.loads(record.parts)
        for _, interpret in _INTERPRETATIONS:
            turn = interpret(payload, record)
            if turn is not None:
                return turn
    except (ValueError, MalformedPartsError) as e:
        logger.warning(
            f"Unreadable parts on message {record.id} in chat {record.chat_id}, "
            f"falling back to plain content: {e}"
        )
        return _base_turn(record)

    logger.debug(f"Message {record.id} has parts in no known encoding; using plain content")
    return _base_turn(record)


def decode_records(records: Iterable[MessageRecord]) -> List[Turn]:
    """Decode records, keeping the store's created_at order."""
    return [decode_record(r) for r in records]
