import logging
from typing import List, Optional

from family_chat.core.exceptions import (
    AuthRequired, ChatError, NotFoundError, PermissionDeniedError, ValidationError
)
from family_chat.core.notifications import Notifier
from family_chat.modules.chats.repository import ChatRepository
from family_chat.modules.chats.schemas import Chat, ChatKind
from family_chat.modules.profiles.schemas import Profile
from family_chat.modules.profiles.service import ProfileCache

logger = logging.getLogger(__name__)


class ChatDirectory:
    """Which chats a user belongs to, with peer display metadata for private chats."""

    def __init__(self, repository: ChatRepository, profiles: ProfileCache, notifier: Notifier):
        self.repository = repository
        self.profiles = profiles
        self.notifier = notifier

    async def list_chats(self, user_id: Optional[str]) -> List[Chat]:
        """Chats containing user_id, oldest first. A failed peer lookup leaves that chat's peer empty."""
        if not user_id:
            raise AuthRequired()
        chats = await self.repository.list_chats_for_member(user_id)

        peer_ids = [c.peer_id(user_id) for c in chats if c.kind == ChatKind.PRIVATE]
        try:
            await self.profiles.ensure(pid for pid in peer_ids if pid)
        except ChatError as e:
            logger.warning(f"Batched peer lookup failed for user {user_id}: {e.detail}")

        enriched = []
        for chat in chats:
            if chat.kind == ChatKind.PRIVATE:
                try:
                    chat = chat.model_copy(update={"peer": await self.resolve_peer(chat, user_id)})
                except ChatError as e:
                    self.notifier.warning("Profile unavailable", f"Could not load the other member of chat {chat.id}")
                    logger.warning(f"Peer lookup failed for chat {chat.id}: {e.detail}")
            enriched.append(chat)
        return enriched

    async def resolve_peer(self, chat: Chat, user_id: str) -> Profile:
        """The other member of a private chat. Served from the profile cache after the first call."""
        if chat.kind != ChatKind.PRIVATE:
            raise ValidationError("Only private chats have a peer")
        peer_id = chat.peer_id(user_id)
        if not peer_id:
            raise ValidationError(f"User {user_id} has no peer in chat {chat.id}")
        profile = await self.profiles.resolve(peer_id)
        if profile is None:
            raise NotFoundError(f"Profile {peer_id} not found")
        return profile

    async def get_chat(self, chat_id: str, user_id: Optional[str]) -> Chat:
        if not user_id:
            raise AuthRequired()
        chat = await self.repository.get_chat(chat_id)
        if chat is None:
            raise NotFoundError("Chat not found")
        if not chat.has_member(user_id):
            raise PermissionDeniedError("You are not a member of this chat")
        if chat.kind == ChatKind.PRIVATE:
            try:
                chat = chat.model_copy(update={"peer": await self.resolve_peer(chat, user_id)})
            except ChatError as e:
                logger.warning(f"Peer lookup failed for chat {chat.id}: {e.detail}")
        return chat

    async def create_chat(self, user_id: Optional[str], member_ids: List[str], family_id: Optional[str]) -> Chat:
        """
        Create a chat between user_id and member_ids.

        The chat is private when exactly one other member is given, otherwise a
        group. An existing private chat between the same pair is returned
        instead of inserting a duplicate. The caller subscribes if needed.
        """
        if not user_id:
            raise AuthRequired()
        if not family_id:
            raise ValidationError("A family is required to create a chat")
        others = [m for m in dict.fromkeys(member_ids or []) if m and m != user_id]
        if not others:
            raise ValidationError("Select at least one family member")

        kind = ChatKind.PRIVATE if len(others) == 1 else ChatKind.GROUP
        chat = None
        if kind == ChatKind.PRIVATE:
            chat = await self.repository.find_private_chat(user_id, others[0])
            if chat is not None:
                logger.info(f"Reusing private chat {chat.id} between {user_id} and {others[0]}")
        if chat is None:
            chat = await self.repository.insert_chat(kind, [user_id, *others], family_id)
            logger.info(f"Created {kind.value} chat {chat.id} in family {family_id}")

        if kind == ChatKind.PRIVATE:
            try:
                chat = chat.model_copy(update={"peer": await self.resolve_peer(chat, user_id)})
            except ChatError as e:
                logger.warning(f"Peer lookup failed for new chat {chat.id}: {e.detail}")
        return chat
