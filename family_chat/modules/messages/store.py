import logging
from bisect import insort
from typing import Dict, List, Optional, Set

from family_chat.core.exceptions import (
    AuthRequired, ChatError, LoadError, PermissionDeniedError,
    RequestTimeoutError, SendError, ValidationError
)
from family_chat.modules.messages.repository import MessageRepository
from family_chat.modules.messages.schemas import LogState, Message, MessagePreview

logger = logging.getLogger(__name__)

# Errors that keep their own type instead of becoming LoadError/SendError
_PASSTHROUGH_ERRORS = (RequestTimeoutError, PermissionDeniedError)


class MessageStore:
    """
    Ordered message log for the one chat currently open, plus last-message
    previews for every chat seen.

    The log is only ever mutated by a load result or by append, both on the
    event loop, so no locking is needed. A load that resolves after the chat
    was switched (or reopened) is discarded; a load that resolves after live
    appends merges with them by id.
    """

    def __init__(self, repository: MessageRepository):
        self.repository = repository
        self.active_chat_id: Optional[str] = None
        self.state: Optional[LogState] = None
        self.previews: Dict[str, MessagePreview] = {}
        self._log: List[Message] = []
        self._ids: Set[str] = set()
        self._generation = 0

    @property
    def messages(self) -> List[Message]:
        return list(self._log)

    def contains(self, message_id: str) -> bool:
        return message_id in self._ids

    def open(self, chat_id: str) -> None:
        """Make chat_id the active chat; the previous chat's log is discarded, not cached."""
        self._generation += 1
        self.active_chat_id = chat_id
        self.state = LogState.EMPTY
        self._clear_log()

    def close(self) -> None:
        self._generation += 1
        self.active_chat_id = None
        self.state = None
        self._clear_log()

    def _clear_log(self) -> None:
        self._log = []
        self._ids = set()

    async def load(self, chat_id: str) -> List[Message]:
        """
        Fetch chat_id's messages (ascending timestamp) and merge them into the log.

        Opens chat_id first when it is not the active chat. Returns the
        committed log, or an empty list when the result was stale.
        """
        if chat_id != self.active_chat_id:
            self.open(chat_id)
        generation = self._generation
        self.state = LogState.LOADING

        try:
            fetched = await self.repository.list_messages(chat_id)
        except ChatError as e:
            if generation != self._generation:
                logger.info(f"Ignoring failed load for chat {chat_id}: selection changed")
                return []
            self.state = LogState.LOAD_FAILED
            self._clear_log()
            if isinstance(e, _PASSTHROUGH_ERRORS):
                raise
            raise LoadError(f"Failed to load messages for chat {chat_id}") from e

        if generation != self._generation:
            logger.info(f"Discarding stale load for chat {chat_id} ({len(fetched)} messages)")
            return []

        self._merge(fetched)
        self.state = LogState.LOADED
        if self._log:
            self._update_preview(self._log[-1])
        logger.debug(f"Loaded {len(self._log)} messages for chat {chat_id}")
        return self.messages

    async def refresh(self, chat_id: str) -> List[Message]:
        """
        Re-fetch the active chat and merge rows the log is missing, e.g. inserts
        made while its channel was down. Returns the rows that were added.
        Unlike load, a failure leaves the log and its state untouched.
        """
        if chat_id != self.active_chat_id:
            return []
        generation = self._generation
        try:
            fetched = await self.repository.list_messages(chat_id)
        except _PASSTHROUGH_ERRORS:
            raise
        except ChatError as e:
            raise LoadError(f"Failed to refresh messages for chat {chat_id}") from e
        if generation != self._generation:
            return []

        missing = [m for m in fetched if m.id not in self._ids]
        if missing:
            self._merge(fetched)
            self._update_preview(self._log[-1])
            logger.info(f"Backfilled {len(missing)} message(s) for chat {chat_id}")
        return missing

    def _merge(self, fetched: List[Message]) -> None:
        fetched_ids = {m.id for m in fetched}
        appended = [m for m in self._log if m.id not in fetched_ids]
        if appended:
            logger.debug(f"Keeping {len(appended)} live message(s) missing from the load result")
        merged = list(fetched) + appended
        # Stable: equal timestamps keep source order, live arrivals after loaded rows
        merged.sort(key=lambda m: m.timestamp)
        self._log = merged
        self._ids = {m.id for m in merged}

    def append(self, message: Message) -> bool:
        """
        Add a live message. Only the active chat's full log grows; every chat's
        preview is refreshed. Returns False when the message was already known.
        """
        changed = self._update_preview(message)
        if message.chat_id == self.active_chat_id and message.id not in self._ids:
            insort(self._log, message, key=lambda m: m.timestamp)
            self._ids.add(message.id)
            changed = True
        return changed

    def _update_preview(self, message: Message) -> bool:
        current = self.previews.get(message.chat_id)
        if current is not None:
            if current.message.id == message.id or message.timestamp < current.message.timestamp:
                return False
        self.previews[message.chat_id] = MessagePreview.from_message(message)
        return True

    async def send(self, chat_id: str, sender_id: str, content: str) -> None:
        """
        Persist a new message. Nothing is appended locally: the message shows
        up in the log when the realtime channel echoes the insert back.
        """
        if not sender_id:
            raise AuthRequired()
        if not chat_id:
            raise ValidationError("No chat selected")
        text = (content or "").strip()
        if not text:
            raise ValidationError("Message cannot be empty")
        try:
            await self.repository.insert_message(chat_id, sender_id, text)
        except _PASSTHROUGH_ERRORS:
            raise
        except ChatError as e:
            raise SendError(f"Failed to send message to chat {chat_id}") from e
        logger.debug(f"Message from {sender_id} persisted to chat {chat_id}")

    async def load_previews(self, chat_ids: List[str]) -> Dict[str, MessagePreview]:
        """Latest message of each chat in one batched query; newer live previews are kept."""
        try:
            latest = await self.repository.latest_messages(list(chat_ids))
        except _PASSTHROUGH_ERRORS:
            raise
        except ChatError as e:
            raise LoadError("Failed to load last messages") from e
        for message in latest.values():
            self._update_preview(message)
        return {cid: self.previews[cid] for cid in chat_ids if cid in self.previews}
