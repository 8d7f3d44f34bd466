import asyncio
import logging
from typing import Callable, Dict, List, Optional, Set

from supabase import AsyncClient

from family_chat.core.exceptions import AuthRequired, ChatError, PermissionDeniedError, ValidationError
from family_chat.core.notifications import Notification, Notifier
from family_chat.modules.chats.repository import ChatRepository
from family_chat.modules.chats.schemas import Chat
from family_chat.modules.chats.service import ChatDirectory
from family_chat.modules.messages.repository import MessageRepository
from family_chat.modules.messages.schemas import Message, MessagePreview
from family_chat.modules.messages.store import MessageStore
from family_chat.modules.profiles.repository import ProfileRepository
from family_chat.modules.profiles.service import ProfileCache
from family_chat.modules.realtime.feed import SupabaseChangeFeed
from family_chat.modules.realtime.manager import SubscriptionHandle, SubscriptionManager
from family_chat.modules.realtime.schemas import ConnectionState, View
from family_chat.modules.sessions.schemas import Pane, SessionEvent, SessionEventType

logger = logging.getLogger(__name__)

SessionListener = Callable[[SessionEvent], None]


class ChatSession:
    """
    Which chat is open for one connected user.

    Selecting a chat closes the previous pane channel, opens the chat in the
    message store, loads it and subscribes a pane channel whose inserts are
    appended to the store. Everything the client should render is emitted
    as a SessionEvent to the registered listeners.
    """

    def __init__(
        self,
        user_id: str,
        family_id: Optional[str],
        directory: ChatDirectory,
        store: MessageStore,
        subscriptions: SubscriptionManager,
        profiles: ProfileCache,
        notifier: Notifier,
    ):
        if not user_id:
            raise AuthRequired()
        self.user_id = user_id
        self.family_id = family_id
        self.directory = directory
        self.store = store
        self.subscriptions = subscriptions
        self.profiles = profiles
        self.notifier = notifier

        self.active_chat: Optional[Chat] = None
        self.draft = ""
        self._pane_handle: Optional[SubscriptionHandle] = None
        self._preview_handles: Dict[str, SubscriptionHandle] = {}
        self._emitted_previews: Dict[str, str] = {}
        self._reconnecting: Set[int] = set()
        self._selection = 0
        self._listeners: List[SessionListener] = []
        self._background: Set[asyncio.Task] = set()

        notifier.add_listener(self._on_notification)
        subscriptions.add_state_listener(self._on_connection_state)

    @classmethod
    def for_user(cls, supabase: AsyncClient, user_id: str, family_id: Optional[str]) -> "ChatSession":
        notifier = Notifier()
        profiles = ProfileCache(ProfileRepository(supabase))
        return cls(
            user_id=user_id,
            family_id=family_id,
            directory=ChatDirectory(ChatRepository(supabase), profiles, notifier),
            store=MessageStore(MessageRepository(supabase)),
            subscriptions=SubscriptionManager(SupabaseChangeFeed(supabase)),
            profiles=profiles,
            notifier=notifier,
        )

    @property
    def visible_pane(self) -> Pane:
        return Pane.CONVERSATION if self.active_chat else Pane.LIST

    @property
    def messages(self) -> List[Message]:
        return self.store.messages

    @property
    def pane_handle(self) -> Optional[SubscriptionHandle]:
        return self._pane_handle

    def add_listener(self, listener: SessionListener) -> None:
        self._listeners.append(listener)

    def _emit(self, event_type: SessionEventType, **data) -> None:
        event = SessionEvent(type=event_type, data=data)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Session listener failed on {event_type.value}: {e}")

    async def list_chats(self) -> List[Chat]:
        try:
            return await self.directory.list_chats(self.user_id)
        except ChatError as e:
            logger.error(f"Error fetching chats for {self.user_id}: {e.detail}")
            self.notifier.error("Error", "Failed to load chats")
            return []

    async def select_chat_by_id(self, chat_id: str) -> Optional[Chat]:
        try:
            chat = await self.directory.get_chat(chat_id, self.user_id)
        except ChatError as e:
            self.notifier.error("Error", f"Could not open chat: {e.detail}")
            return None
        await self.select_chat(chat)
        return chat

    async def select_chat(self, chat: Chat) -> None:
        if not chat.has_member(self.user_id):
            raise PermissionDeniedError("You are not a member of this chat")
        self._selection += 1
        selection = self._selection

        if self._pane_handle is not None:
            previous, self._pane_handle = self._pane_handle, None
            await self.subscriptions.unsubscribe(previous)

        self.active_chat = chat
        self.store.open(chat.id)
        self._emit(SessionEventType.CHAT_SELECTED, chat=chat.model_dump(mode="json"), pane=self.visible_pane.value)

        # Load is in flight while the channel is established; inserts that
        # land in between arrive through the channel and survive the merge.
        load = asyncio.ensure_future(self.store.load(chat.id))
        handle = await self.subscriptions.subscribe(chat.id, self._on_message, View.PANE)
        if selection == self._selection:
            self._pane_handle = handle
        else:
            await self.subscriptions.unsubscribe(handle)

        try:
            await load
        except ChatError as e:
            if selection == self._selection:
                logger.error(f"Error fetching messages for chat {chat.id}: {e.detail}")
                self.notifier.error("Error", "Failed to load messages")
            return
        if selection != self._selection:
            return

        try:
            await self.profiles.ensure(m.sender_id for m in self.store.messages)
        except ChatError as e:
            logger.warning(f"Could not cache sender profiles for chat {chat.id}: {e.detail}")
        self._emit(
            SessionEventType.MESSAGES_LOADED,
            chat_id=chat.id,
            messages=[m.model_dump(mode="json") for m in self.store.messages],
        )

    async def deselect_chat(self) -> None:
        self._selection += 1
        if self._pane_handle is not None:
            previous, self._pane_handle = self._pane_handle, None
            await self.subscriptions.unsubscribe(previous)
        had_chat = self.active_chat is not None
        self.active_chat = None
        self.draft = ""
        self.store.close()
        if had_chat:
            self._emit(SessionEventType.CHAT_DESELECTED, pane=self.visible_pane.value)

    async def send(self, content: str) -> bool:
        """Send to the active chat. The draft is kept when sending fails so it can be retried."""
        self.draft = content
        if self.active_chat is None:
            self.notifier.error("Error", "Select a conversation first")
            return False
        try:
            await self.store.send(self.active_chat.id, self.user_id, content)
        except ValidationError as e:
            self.notifier.warning("Message not sent", e.detail)
            return False
        except ChatError as e:
            logger.error(f"Error sending message to chat {self.active_chat.id}: {e.detail}")
            self.notifier.error("Error", "Failed to send message")
            return False
        self.draft = ""
        return True

    async def watch_previews(self, chats: Optional[List[Chat]] = None) -> Dict[str, MessagePreview]:
        """Load last-message previews for chats (default: all of the user's chats) and keep them live."""
        if chats is None:
            chats = await self.list_chats()
        chat_ids = [c.id for c in chats]

        for chat_id in [cid for cid in self._preview_handles if cid not in chat_ids]:
            await self.subscriptions.unsubscribe(self._preview_handles.pop(chat_id))

        previews: Dict[str, MessagePreview] = {}
        try:
            previews = await self.store.load_previews(chat_ids)
        except ChatError as e:
            logger.warning(f"Could not load previews: {e.detail}")
            self.notifier.warning("Previews unavailable", "Latest messages could not be loaded")
        for chat_id, preview in previews.items():
            self._emitted_previews[chat_id] = preview.message.id

        for chat_id in chat_ids:
            if chat_id not in self._preview_handles:
                self._preview_handles[chat_id] = await self.subscriptions.subscribe(chat_id, self._on_message, View.LIST)
        return previews

    async def unwatch_previews(self) -> None:
        handles, self._preview_handles = list(self._preview_handles.values()), {}
        for handle in handles:
            await self.subscriptions.unsubscribe(handle)

    def _on_message(self, message: Message) -> None:
        in_log = message.chat_id == self.store.active_chat_id
        was_known = self.store.contains(message.id)
        self.store.append(message)

        if in_log and not was_known and self.store.contains(message.id):
            self._emit(SessionEventType.MESSAGE_CREATED, message=message.model_dump(mode="json"))
            if message.sender_id not in self.profiles:
                self._spawn(self._fetch_sender(message.sender_id))

        self._emit_preview(message.chat_id)

    def _emit_preview(self, chat_id: str) -> None:
        preview = self.store.previews.get(chat_id)
        if (
            chat_id in self._preview_handles
            and preview is not None
            and self._emitted_previews.get(chat_id) != preview.message.id
        ):
            self._emitted_previews[chat_id] = preview.message.id
            self._emit(SessionEventType.PREVIEW_UPDATED, preview=preview.model_dump(mode="json"))

    async def _fetch_sender(self, sender_id: str) -> None:
        try:
            profile = await self.profiles.resolve(sender_id)
        except ChatError as e:
            logger.warning(f"Could not fetch profile {sender_id}: {e.detail}")
            return
        if profile is not None:
            self._emit(SessionEventType.PROFILE_UPDATED, profile=profile.model_dump(mode="json"))

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _on_connection_state(self, handle: SubscriptionHandle, state: ConnectionState) -> None:
        self._emit(
            SessionEventType.CONNECTION_STATE,
            chat_id=handle.chat_id,
            view=handle.key.view,
            state=state.value,
        )
        if state == ConnectionState.RECONNECTING:
            self._reconnecting.add(handle.id)
        elif state == ConnectionState.SUBSCRIBED and handle.id in self._reconnecting:
            self._reconnecting.discard(handle.id)
            # Inserts made while the channel was down were never delivered
            if handle.key.view == View.PANE.value:
                self._spawn(self._backfill(handle.chat_id))
            else:
                self._spawn(self._refresh_preview(handle.chat_id))
        else:
            self._reconnecting.discard(handle.id)
        if state == ConnectionState.FAILED and handle is self._pane_handle:
            self.notifier.warning("Connection lost", "Live updates stopped. Reopen the conversation to retry.")

    async def _backfill(self, chat_id: str) -> None:
        selection = self._selection
        try:
            added = await self.store.refresh(chat_id)
        except ChatError as e:
            logger.warning(f"Could not backfill chat {chat_id} after reconnect: {e.detail}")
            return
        if not added or selection != self._selection:
            return
        try:
            await self.profiles.ensure(m.sender_id for m in added)
        except ChatError as e:
            logger.warning(f"Could not cache sender profiles for chat {chat_id}: {e.detail}")
        self._emit(
            SessionEventType.MESSAGES_LOADED,
            chat_id=chat_id,
            messages=[m.model_dump(mode="json") for m in self.store.messages],
        )
        self._emit_preview(chat_id)

    async def _refresh_preview(self, chat_id: str) -> None:
        try:
            await self.store.load_previews([chat_id])
        except ChatError as e:
            logger.warning(f"Could not refresh preview of chat {chat_id} after reconnect: {e.detail}")
            return
        self._emit_preview(chat_id)

    def _on_notification(self, notification: Notification) -> None:
        self._emit(SessionEventType.NOTIFICATION, notification=notification.model_dump(mode="json"))

    async def close(self) -> None:
        """Tear down every channel this session opened."""
        self._selection += 1
        self._pane_handle = None
        self._preview_handles = {}
        await self.subscriptions.close_all()
        for task in list(self._background):
            task.cancel()
        self.notifier.remove_listener(self._on_notification)
        self.active_chat = None
        self.store.close()
