from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from typing import Optional

from app.auth.api.dependencies import CurrentUserDep, OptionalCurrentUserDep
from app.chat.api.dto import BaseResponse, BulkMessagesDTO, ChatRequest, CreateChatDTO
from app.chat.api.handler import (
    handle_add_message,
    handle_add_messages_bulk,
    handle_chat_start,
    handle_clear_messages,
    handle_create_chat,
    handle_delete_chat,
    handle_get_messages,
    handle_list_chats,
)
from app.chat.entity.chat import Turn
from app.chat.service.controller import ChatController
from app.chat.service.service import IChatRepository, IMessageRepository
from app.core.logger import get_logger

chat_router = APIRouter(prefix="/api", tags=["Chat"])
logger = get_logger("ChatRouter")


def get_chat_controller(request: Request) -> ChatController:
    """Dependency to get the chat controller from app.state."""
    controller = getattr(request.app.state, "chat_controller", None)
    if controller is None:
        raise HTTPException(status_code=503, detail="Chat service not available")
    return controller


def get_chat_repository(request: Request) -> IChatRepository:
    chat_repo = getattr(request.app.state, "chat_repo", None)
    if chat_repo is None:
        raise HTTPException(status_code=503, detail="Chat service not available")
    return chat_repo


def get_message_repository(request: Request) -> IMessageRepository:
    message_repo = getattr(request.app.state, "message_repo", None)
    if message_repo is None:
        raise HTTPException(status_code=503, detail="Chat service not available")
    return message_repo


@chat_router.post("/chat")
async def chat_stream_api(
    body: ChatRequest,
    current_user: OptionalCurrentUserDep,
    controller: ChatController = Depends(get_chat_controller),
):
    """
    Streaming chat endpoint (Server-Sent Events).

    Validation, usage limits and the user message write happen before the
    response starts, so their failures come back as plain JSON errors.
    """
    session = await handle_chat_start(body, current_user, controller)

    return StreamingResponse(
        controller.stream(session),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # for Nginx
        },
    )


@chat_router.post("/chats", response_model=BaseResponse)
async def create_chat(
    body: CreateChatDTO,
    current_user: CurrentUserDep,
    chat_repo: IChatRepository = Depends(get_chat_repository),
):
    chat = await handle_create_chat(current_user.user_id, body, chat_repo)
    return BaseResponse(status=True, message="Chat created successfully", data=chat)


@chat_router.get("/chats", response_model=BaseResponse)
async def list_chats(
    current_user: CurrentUserDep,
    chat_repo: IChatRepository = Depends(get_chat_repository),
    project_id: Optional[str] = Query(default=None, alias="projectId"),
):
    """Chats of the authenticated user, most recently updated first."""
    chats = await handle_list_chats(current_user.user_id, project_id, chat_repo)
    return BaseResponse(status=True, message="Chats fetched successfully", data={"chats": chats})


@chat_router.delete("/chats/{chat_id}", response_model=BaseResponse)
async def delete_chat(
    chat_id: str,
    current_user: CurrentUserDep,
    chat_repo: IChatRepository = Depends(get_chat_repository),
):
    """Delete a chat and all of its messages."""
    await handle_delete_chat(chat_id, current_user.user_id, chat_repo)
    logger.info(f"Deleted chat_id={chat_id}")
    return BaseResponse(status=True, message="Chat deleted successfully", data={"chatId": chat_id})


@chat_router.get("/chats/{chat_id}/messages", response_model=BaseResponse)
async def get_messages(
    chat_id: str,
    current_user: CurrentUserDep,
    chat_repo: IChatRepository = Depends(get_chat_repository),
    message_repo: IMessageRepository = Depends(get_message_repository),
):
    messages = await handle_get_messages(chat_id, current_user.user_id, chat_repo, message_repo)
    return BaseResponse(status=True, message="Messages fetched successfully", data={"messages": messages})


@chat_router.post("/chats/{chat_id}/messages", response_model=BaseResponse)
async def add_message(
    chat_id: str,
    body: Turn,
    current_user: CurrentUserDep,
    chat_repo: IChatRepository = Depends(get_chat_repository),
    message_repo: IMessageRepository = Depends(get_message_repository),
):
    message_id = await handle_add_message(chat_id, current_user.user_id, body, chat_repo, message_repo)
    return BaseResponse(status=True, message="Message saved", data={"id": message_id})


@chat_router.post("/chats/{chat_id}/messages/bulk", response_model=BaseResponse)
async def add_messages_bulk(
    chat_id: str,
    body: BulkMessagesDTO,
    current_user: CurrentUserDep,
    chat_repo: IChatRepository = Depends(get_chat_repository),
    message_repo: IMessageRepository = Depends(get_message_repository),
):
    count = await handle_add_messages_bulk(chat_id, current_user.user_id, body, chat_repo, message_repo)
    return BaseResponse(status=True, message="Messages saved", data={"count": count})


@chat_router.delete("/chats/{chat_id}/messages", response_model=BaseResponse)
async def clear_messages(
    chat_id: str,
    current_user: CurrentUserDep,
    chat_repo: IChatRepository = Depends(get_chat_repository),
    message_repo: IMessageRepository = Depends(get_message_repository),
):
    count = await handle_clear_messages(chat_id, current_user.user_id, chat_repo, message_repo)
    return BaseResponse(status=True, message="Messages cleared", data={"count": count})
