"""
Streaming reconciliation controller.

One ``ChatSession`` per request walks through:

    validating -> admitting -> persisting_user_turn -> streaming
        -> persisting_assistant_turns -> completed

``failed`` is reachable from every state. The user turn is written before the
engine is called; assistant turns are written only after the stream ends,
one record per turn, and a failed write never stops the next one.
"""

import asyncio
import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional, Set

from pydantic.alias_generators import to_camel
from redis.exceptions import RedisError

from app.agents.agent import ToolContext
from app.agents.prompt import build_system_prompt
from app.auth.entity.entity import AuthContext
from app.chat.api.dto import ChatRequest
from app.chat.entity.chat import MessageRole, Turn
from app.chat.exceptions import (
    ChatAccessDeniedError,
    ChatError,
    ChatNotFoundError,
    ClientInputError,
    PersistenceError,
    StreamProtocolError,
)
from app.chat.service.encoder import encode_turn
from app.chat.service.service import IChatRepository, IMessageRepository, IUsageGate
from app.chat.service.stream import TurnAccumulator
from app.core.config import settings
from app.core.logger import get_logger
from app.llm.entity.events import StreamEvent
from app.llm.service.provider.base_provider import ICompletionEngine

logger = get_logger("ChatController")

TIMEOUT_MESSAGE = "The response took too long and was stopped. Please try again."
GENERIC_STREAM_ERROR = "An error occurred while generating the response. Please try again."


class ChatRequestState(str, Enum):
    VALIDATING = "validating"
    ADMITTING = "admitting"
    PERSISTING_USER_TURN = "persisting_user_turn"
    STREAMING = "streaming"
    PERSISTING_ASSISTANT_TURNS = "persisting_assistant_turns"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ChatSession:
    chat_id: str
    user_id: str
    model: str
    is_authenticated: bool
    messages: List[Turn]
    system_prompt: str
    tool_context: ToolContext
    enable_search: bool = False
    state: ChatRequestState = ChatRequestState.VALIDATING
    user_message_id: Optional[str] = None
    assistant_message_ids: List[str] = field(default_factory=list)
    error: Optional[str] = None

    def transition(self, state: ChatRequestState) -> None:
        logger.debug(f"Chat {self.chat_id}: {self.state.value} -> {state.value}")
        self.state = state


def _sse(event: str, data: Dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


def _event_frame(event: StreamEvent) -> str:
    payload = event.model_dump(mode="json", exclude={"type"}, exclude_none=True)
    return _sse(event.type, {to_camel(k): v for k, v in payload.items()})


def _extract_error_message(error: Exception) -> str:
    """Extract a user-friendly error message from an exception."""
    error_str = str(error)

    # Handle rate limit errors (429)
    if "429" in error_str or "quota" in error_str.lower() or "rate limit" in error_str.lower():
        retry_match = re.search(r'retry in ([\d.]+)s', error_str, re.IGNORECASE)
        if retry_match:
            return f"Rate limit exceeded. Please retry in {retry_match.group(1)} seconds."
        return "Rate limit exceeded. Please try again in a moment."

    # Handle authentication errors
    if "api_key" in error_str.lower() or "authentication" in error_str.lower() or "401" in error_str:
        return "Authentication error. Please check your API key configuration."

    # Handle model not found errors
    if "model" in error_str.lower() and ("not found" in error_str.lower() or "404" in error_str):
        return "Model not available. Please try a different model."

    # Anything else keeps its provider text in the log only
    return GENERIC_STREAM_ERROR


class ChatController:

    def __init__(
        self,
        message_repository: IMessageRepository,
        chat_repository: IChatRepository,
        usage_gate: IUsageGate,
        completion_engine: ICompletionEngine,
        stream_timeout: float = settings.CHAT_STREAM_TIMEOUT_SECONDS,
    ):
        self.messages = message_repository
        self.chats = chat_repository
        self.usage_gate = usage_gate
        self.engine = completion_engine
        self.stream_timeout = stream_timeout
        # Strong references to fire-and-forget persistence tasks
        self._background: Set[asyncio.Task] = set()

    async def start(self, request: ChatRequest, auth: Optional[AuthContext]) -> ChatSession:
        """
        Validate, admit and persist the user turn.

        Raises a ``ChatError`` subclass when the request must not be streamed;
        in that case nothing has been written.
        """
        if not request.messages or not request.chat_id or not request.user_id:
            raise ClientInputError("Error, missing information")

        if auth is not None and auth.user_id != request.user_id:
            raise ChatAccessDeniedError("Token does not belong to this user")

        model = request.model or settings.DEFAULT_MODEL
        session = ChatSession(
            chat_id=request.chat_id,
            user_id=request.user_id,
            model=model,
            is_authenticated=bool(request.is_authenticated and auth is not None and not auth.anonymous),
            messages=list(request.messages),
            system_prompt=build_system_prompt(request.system_prompt or settings.SYSTEM_PROMPT_DEFAULT),
            tool_context=ToolContext(user_id=request.user_id, chat_id=request.chat_id, project_id=request.project_id),
            enable_search=request.enable_search,
        )

        try:
            await self._validate(session)

            session.transition(ChatRequestState.ADMITTING)
            await self.usage_gate.check(session.user_id, session.model, session.is_authenticated)
        except ChatError as e:
            session.error = e.message
            session.transition(ChatRequestState.FAILED)
            raise

        last = session.messages[-1]
        if last.role == MessageRole.USER.value:
            session.transition(ChatRequestState.PERSISTING_USER_TURN)
            await self._persist_user_turn(session, last)

        return session

    async def _validate(self, session: ChatSession) -> None:
        chat = await self.chats.get_chat(session.chat_id)
        if chat is None:
            raise ChatNotFoundError("Chat not found")
        if chat.user_id != session.user_id:
            raise ChatAccessDeniedError("You do not have access to this chat")
        if not self.engine.has_model(session.model):
            raise ClientInputError(f"Model not found: {session.model}")

        if session.tool_context.project_id is None and chat.project_id:
            session.tool_context = ToolContext(
                user_id=session.user_id, chat_id=session.chat_id, project_id=chat.project_id
            )

    async def _persist_user_turn(self, session: ChatSession, turn: Turn) -> None:
        try:
            session.user_message_id = await self.messages.append(
                encode_turn(turn, session.chat_id, session.user_id)
            )
        except PersistenceError as e:
            logger.error(f"Failed to save user message for chat {session.chat_id}: {e}", exc_info=True)

        try:
            await self.usage_gate.increment(session.user_id, session.model, session.is_authenticated)
        except RedisError as e:
            logger.error(f"Failed to count usage for {session.user_id}: {e}", exc_info=True)

    async def stream(self, session: ChatSession) -> AsyncIterator[str]:
        """Yield SSE frames for the engine's response, then persist the assistant turns."""
        session.transition(ChatRequestState.STREAMING)
        accumulator = TurnAccumulator()
        yield _sse("start", {"chatId": session.chat_id, "userMessageId": session.user_message_id})

        events = self.engine.stream(
            session.model,
            session.messages,
            session.system_prompt,
            session.tool_context,
            session.enable_search,
        )
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.stream_timeout
        error_message = None

        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise asyncio.TimeoutError()
                try:
                    event = await asyncio.wait_for(events.__anext__(), remaining)
                except StopAsyncIteration:
                    break
                accumulator.feed(event)
                yield _event_frame(event)
        except (asyncio.CancelledError, GeneratorExit):
            # Client went away; keep what a message boundary already closed
            logger.info(
                f"Stream for chat {session.chat_id} cancelled; "
                f"saving {len(accumulator.completed)} finished assistant turn(s)"
            )
            session.error = "cancelled"
            session.transition(ChatRequestState.FAILED)
            self._persist_in_background(session, list(accumulator.completed))
            await events.aclose()
            raise
        except StreamProtocolError as e:
            logger.warning(f"Tool failure in chat {session.chat_id}: {e}")
            error_message = e.user_message
        except asyncio.TimeoutError:
            logger.warning(f"Stream for chat {session.chat_id} exceeded {self.stream_timeout}s")
            error_message = TIMEOUT_MESSAGE
        except Exception as e:
            logger.error(f"Streaming error in chat {session.chat_id}: {e}", exc_info=True)
            error_message = _extract_error_message(e)

        await events.aclose()

        session.transition(ChatRequestState.PERSISTING_ASSISTANT_TURNS)
        await self.persist_assistant_turns(session, accumulator.finish())

        if error_message:
            session.error = error_message
            session.transition(ChatRequestState.FAILED)
            yield _sse("error", {"error": error_message})
            return

        session.transition(ChatRequestState.COMPLETED)
        yield _sse("done", {"chatId": session.chat_id, "messageIds": session.assistant_message_ids})

    async def persist_assistant_turns(self, session: ChatSession, turns: List[Turn]) -> List[str]:
        """Write each turn in order; a failed write is logged and skipped."""
        for turn in turns:
            try:
                message_id = await self.messages.append(encode_turn(turn, session.chat_id))
            except PersistenceError as e:
                logger.error(f"Failed to save assistant message for chat {session.chat_id}: {e}", exc_info=True)
                continue
            session.assistant_message_ids.append(message_id)
        return session.assistant_message_ids

    def _persist_in_background(self, session: ChatSession, turns: List[Turn]) -> None:
        if not turns:
            return
        task = asyncio.get_running_loop().create_task(self.persist_assistant_turns(session, turns))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
