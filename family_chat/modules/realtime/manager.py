import asyncio
import itertools
import logging
from typing import Callable, Dict, List, Optional

from family_chat.modules.messages.repository import to_message
from family_chat.modules.messages.schemas import Message
from family_chat.modules.realtime.feed import Channel, ChangeFeed
from family_chat.modules.realtime.schemas import (
    ChannelKey, ChannelStatus, ConnectionState, RetryPolicy, View
)

logger = logging.getLogger(__name__)

MESSAGES = "messages"

MessageCallback = Callable[[Message], None]
StateListener = Callable[["SubscriptionHandle", ConnectionState], None]

_handle_ids = itertools.count(1)


class SubscriptionHandle:
    """One live channel bound to a (resource_kind, resource_id, view) key."""

    def __init__(self, key: ChannelKey, on_message: MessageCallback):
        self.id = next(_handle_ids)
        self.key = key
        self.on_message = on_message
        self.state = ConnectionState.CONNECTING
        self.channel: Optional[Channel] = None
        self.attempts = 0
        self._listeners: List[StateListener] = []
        self._reconnect_task: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return f"<SubscriptionHandle {self.id} {self.key.topic} {self.state.value}>"

    @property
    def chat_id(self) -> str:
        return self.key.resource_id

    @property
    def closed(self) -> bool:
        return self.state == ConnectionState.CLOSED

    def add_state_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def _set_state(self, state: ConnectionState) -> None:
        if state == self.state:
            return
        self.state = state
        for listener in list(self._listeners):
            try:
                listener(self, state)
            except Exception as e:
                logger.error(f"State listener failed for {self}: {e}")


class SubscriptionManager:
    """
    Opens and closes realtime channels and routes inserted rows to callbacks.

    At most one live handle exists per key; handles for different views of the
    same chat are independent. A channel that errors or drops is re-subscribed
    with bounded exponential backoff; a handle that runs out of attempts ends
    in FAILED until its owner subscribes again.
    """

    def __init__(self, feed: ChangeFeed, retry: Optional[RetryPolicy] = None):
        self.feed = feed
        self.retry = retry or RetryPolicy.from_settings()
        self._handles: Dict[ChannelKey, SubscriptionHandle] = {}
        self._listeners: List[StateListener] = []

    @property
    def handles(self) -> List[SubscriptionHandle]:
        return list(self._handles.values())

    def get(self, chat_id: str, view: str = View.PANE.value) -> Optional[SubscriptionHandle]:
        return self._handles.get(ChannelKey(MESSAGES, chat_id, view))

    def add_state_listener(self, listener: StateListener) -> None:
        """Observe connection state changes of every handle this manager creates."""
        self._listeners.append(listener)

    def _dispatch_state(self, handle: SubscriptionHandle, state: ConnectionState) -> None:
        for listener in list(self._listeners):
            listener(handle, state)

    async def subscribe(self, chat_id: str, on_message: MessageCallback, view: str = View.PANE.value) -> SubscriptionHandle:
        key = ChannelKey(MESSAGES, chat_id, str(getattr(view, "value", view)))
        existing = self._handles.get(key)
        if existing is not None:
            logger.info(f"Replacing open handle {existing.id} for {key.topic}")
            await self.unsubscribe(existing)

        handle = SubscriptionHandle(key, on_message)
        handle.add_state_listener(self._dispatch_state)
        self._handles[key] = handle
        try:
            await self._open(handle)
        except Exception as e:
            logger.warning(f"Could not subscribe {key.topic}: {e}")
            self._schedule_reconnect(handle)
        return handle

    async def _open(self, handle: SubscriptionHandle) -> None:
        key = handle.key
        channel = await self.feed.open_channel(
            f"{key.topic}:{handle.id}",
            MESSAGES,
            f"chat_id=eq.{key.resource_id}",
            lambda row: self._deliver(handle, row),
            lambda status, error: self._on_status(handle, status, error),
        )
        if handle.closed:
            # Unsubscribed while the channel was being established
            await self._close_channel(channel)
            return
        handle.channel = channel
        handle.attempts = 0
        handle._set_state(ConnectionState.SUBSCRIBED)
        logger.info(f"Subscribed {key.topic} (handle {handle.id})")

    def _deliver(self, handle: SubscriptionHandle, row: dict) -> None:
        if handle.closed:
            return
        message = to_message(row)
        if message is None:
            return
        if message.chat_id != handle.chat_id:
            logger.warning(f"Dropping message {message.id} for chat {message.chat_id} on {handle.key.topic}")
            return
        try:
            handle.on_message(message)
        except Exception:
            logger.exception(f"Message callback failed on {handle.key.topic}")

    def _on_status(self, handle: SubscriptionHandle, status: ChannelStatus, error: Optional[Exception]) -> None:
        if handle.closed or status == ChannelStatus.SUBSCRIBED:
            return
        logger.warning(f"Channel {handle.key.topic} reported {status.value}: {error}")
        self._schedule_reconnect(handle)

    def _schedule_reconnect(self, handle: SubscriptionHandle) -> None:
        if handle.closed:
            return
        task = handle._reconnect_task
        if task is not None and not task.done():
            return
        handle._set_state(ConnectionState.RECONNECTING)
        handle._reconnect_task = asyncio.ensure_future(self._reconnect(handle))

    async def _reconnect(self, handle: SubscriptionHandle) -> None:
        stale, handle.channel = handle.channel, None
        if stale is not None:
            await self._close_channel(stale)
        while handle.attempts < self.retry.max_retries:
            delay = self.retry.delay(handle.attempts)
            handle.attempts += 1
            logger.info(f"Reconnecting {handle.key.topic} in {delay:.2f}s (attempt {handle.attempts}/{self.retry.max_retries})")
            await asyncio.sleep(delay)
            if handle.closed:
                return
            try:
                await self._open(handle)
                return
            except Exception as e:
                logger.warning(f"Reconnect attempt {handle.attempts} for {handle.key.topic} failed: {e}")
        if not handle.closed:
            logger.error(f"Giving up on {handle.key.topic} after {handle.attempts} attempts")
            handle._set_state(ConnectionState.FAILED)

    async def unsubscribe(self, handle: Optional[SubscriptionHandle]) -> None:
        """Close handle's channel. Safe to repeat and safe on handles whose channel already died."""
        if handle is None or handle.closed:
            return
        handle._set_state(ConnectionState.CLOSED)
        if self._handles.get(handle.key) is handle:
            del self._handles[handle.key]
        task = handle._reconnect_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        channel, handle.channel = handle.channel, None
        if channel is not None:
            await self._close_channel(channel)
        logger.info(f"Unsubscribed {handle.key.topic} (handle {handle.id})")

    async def _close_channel(self, channel: Channel) -> None:
        try:
            await channel.close()
        except Exception as e:
            logger.debug(f"Channel already gone while closing: {e}")

    async def close_all(self) -> None:
        for handle in list(self._handles.values()):
            await self.unsubscribe(handle)
