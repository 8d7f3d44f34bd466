from fastapi import APIRouter, Depends, Response
from typing import Dict, List

from family_chat.core.dependencies import (
    expose_notifications, get_chat_directory, get_current_user, get_message_store, get_notifier
)
from family_chat.core.exceptions import PermissionDeniedError
from family_chat.core.notifications import Notifier
from family_chat.modules.auth.schemas import CurrentUser
from family_chat.modules.chats.schemas import Chat, ChatCreate
from family_chat.modules.chats.service import ChatDirectory
from family_chat.modules.messages.schemas import MessagePreview
from family_chat.modules.messages.store import MessageStore

router = APIRouter(prefix="/chats", tags=["chats"])


@router.get("", response_model=List[Chat])
async def list_chats(
    response: Response,
    current_user: CurrentUser = Depends(get_current_user),
    directory: ChatDirectory = Depends(get_chat_directory),
    notifier: Notifier = Depends(get_notifier)
):
    """List the chats the current user is a member of, oldest first. Unresolved peers are reported as Warning headers."""
    chats = await directory.list_chats(current_user.id)
    expose_notifications(response, notifier)
    return chats


@router.post("", response_model=Chat, status_code=201)
async def create_chat(
    chat_data: ChatCreate,
    current_user: CurrentUser = Depends(get_current_user),
    directory: ChatDirectory = Depends(get_chat_directory)
):
    """Start a conversation. One other member makes a private chat, which is reused if it already exists."""
    family_id = chat_data.family_id or current_user.family_id
    if current_user.family_id and family_id != current_user.family_id:
        raise PermissionDeniedError("Chats can only be created in your own family")
    return await directory.create_chat(current_user.id, chat_data.member_ids, family_id)


@router.get("/previews", response_model=Dict[str, MessagePreview])
async def list_previews(
    response: Response,
    current_user: CurrentUser = Depends(get_current_user),
    directory: ChatDirectory = Depends(get_chat_directory),
    store: MessageStore = Depends(get_message_store),
    notifier: Notifier = Depends(get_notifier)
):
    """Latest message of each of the user's chats, keyed by chat id"""
    chats = await directory.list_chats(current_user.id)
    previews = await store.load_previews([c.id for c in chats])
    expose_notifications(response, notifier)
    return previews


@router.get("/{chat_id}", response_model=Chat)
async def get_chat(
    chat_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    directory: ChatDirectory = Depends(get_chat_directory)
):
    """Get chat by ID (only if user is a member)"""
    return await directory.get_chat(chat_id, current_user.id)
