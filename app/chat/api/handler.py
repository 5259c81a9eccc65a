from typing import List, Optional

from fastapi import HTTPException

from app.auth.entity.entity import AuthContext
from app.chat.api.dto import BulkMessagesDTO, ChatRequest, ChatResponse, CreateChatDTO
from app.chat.entity.chat import Chat, Turn
from app.chat.exceptions import INTERNAL_ERROR_MESSAGE, ChatAccessDeniedError, ChatError, ChatNotFoundError
from app.chat.service.controller import ChatController, ChatSession
from app.chat.service.decoder import decode_records
from app.chat.service.encoder import encode_turn, encode_turns
from app.chat.service.service import IChatRepository, IMessageRepository
from app.core.logger import get_logger

logger = get_logger("ChatHandler")


def to_http_exception(error: ChatError) -> HTTPException:
    if error.status_code >= 500:
        # Driver and provider detail goes to the log only
        logger.error(f"Chat request failed: {error.message}", exc_info=error)
        return HTTPException(status_code=error.status_code, detail=INTERNAL_ERROR_MESSAGE)
    return HTTPException(status_code=error.status_code, detail=error.message)


def _chat_response(chat: Chat) -> dict:
    return ChatResponse(
        chat_id=chat.chat_id,
        user_id=chat.user_id,
        project_id=chat.project_id,
        title=chat.title,
        created_at=chat.created_at.isoformat() if chat.created_at else None,
        updated_at=chat.updated_at.isoformat() if chat.updated_at else None,
    ).model_dump(by_alias=True)


async def _owned_chat(chat_repo: IChatRepository, chat_id: str, user_id: str) -> Chat:
    chat = await chat_repo.get_chat(chat_id)
    if chat is None:
        raise ChatNotFoundError("Chat not found")
    if chat.user_id != user_id:
        raise ChatAccessDeniedError("You do not have access to this chat")
    return chat


async def handle_chat_start(body: ChatRequest, auth: Optional[AuthContext], controller: ChatController) -> ChatSession:
    """Run everything that must succeed before the SSE response starts."""
    try:
        return await controller.start(body, auth)
    except ChatError as e:
        logger.info(f"Chat request rejected ({e.status_code}): {e.message}")
        raise to_http_exception(e)


async def handle_create_chat(user_id: str, body: CreateChatDTO, chat_repo: IChatRepository) -> dict:
    chat = await chat_repo.create_chat(user_id, title=body.title, project_id=body.project_id)
    return _chat_response(chat)


async def handle_list_chats(user_id: str, project_id: Optional[str], chat_repo: IChatRepository) -> List[dict]:
    chats = await chat_repo.list_chats(user_id, project_id=project_id)
    return [_chat_response(c) for c in chats]


async def handle_delete_chat(chat_id: str, user_id: str, chat_repo: IChatRepository) -> None:
    try:
        await _owned_chat(chat_repo, chat_id, user_id)
    except ChatError as e:
        raise to_http_exception(e)
    await chat_repo.delete_chat(chat_id)


async def handle_get_messages(
    chat_id: str, user_id: str, chat_repo: IChatRepository, message_repo: IMessageRepository
) -> List[dict]:
    """Decoded transcript of a chat, oldest first."""
    try:
        await _owned_chat(chat_repo, chat_id, user_id)
        records = await message_repo.list_by_chat(chat_id)
    except ChatError as e:
        raise to_http_exception(e)
    return [turn.to_client() for turn in decode_records(records)]


async def handle_add_message(
    chat_id: str, user_id: str, turn: Turn, chat_repo: IChatRepository, message_repo: IMessageRepository
) -> str:
    try:
        await _owned_chat(chat_repo, chat_id, user_id)
        return await message_repo.append(encode_turn(turn, chat_id, user_id))
    except ChatError as e:
        raise to_http_exception(e)


async def handle_add_messages_bulk(
    chat_id: str, user_id: str, body: BulkMessagesDTO, chat_repo: IChatRepository, message_repo: IMessageRepository
) -> int:
    try:
        await _owned_chat(chat_repo, chat_id, user_id)
        return await message_repo.append_batch(encode_turns(body.messages, chat_id, user_id))
    except ChatError as e:
        raise to_http_exception(e)


async def handle_clear_messages(
    chat_id: str, user_id: str, chat_repo: IChatRepository, message_repo: IMessageRepository
) -> int:
    try:
        await _owned_chat(chat_repo, chat_id, user_id)
        return await message_repo.delete_by_chat(chat_id)
    except ChatError as e:
        raise to_http_exception(e)
