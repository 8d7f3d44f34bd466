from fastapi import APIRouter, Depends
from typing import List

from family_chat.core.dependencies import get_chat_directory, get_current_user, get_message_store
from family_chat.modules.auth.schemas import CurrentUser
from family_chat.modules.chats.service import ChatDirectory
from family_chat.modules.messages.schemas import Message, MessageCreate
from family_chat.modules.messages.store import MessageStore

router = APIRouter(prefix="/chats/{chat_id}/messages", tags=["messages"])


@router.get("", response_model=List[Message])
async def list_messages(
    chat_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    directory: ChatDirectory = Depends(get_chat_directory),
    store: MessageStore = Depends(get_message_store)
):
    """All messages of a chat, oldest first (only if user is a member)"""
    await directory.get_chat(chat_id, current_user.id)
    return await store.load(chat_id)


@router.post("", status_code=202)
async def send_message(
    chat_id: str,
    message_data: MessageCreate,
    current_user: CurrentUser = Depends(get_current_user),
    directory: ChatDirectory = Depends(get_chat_directory),
    store: MessageStore = Depends(get_message_store)
):
    """Persist a message. It is delivered back to every subscriber, the sender included, over the realtime channel."""
    await directory.get_chat(chat_id, current_user.id)
    await store.send(chat_id, current_user.id, message_data.content)
    return {"status": "accepted", "chat_id": chat_id}
