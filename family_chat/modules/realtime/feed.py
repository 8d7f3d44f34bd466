"""
Push/change-feed boundary.

The subscription manager only knows ChangeFeed.open_channel and
Channel.close; SupabaseChangeFeed backs them with Supabase Realtime
postgres_changes channels.
"""
import asyncio
import logging
from typing import Any, Callable, Optional, Protocol

from supabase import AsyncClient

from family_chat.config import settings
from family_chat.core.exceptions import BackendError, RequestTimeoutError
from family_chat.modules.realtime.schemas import ChannelStatus

logger = logging.getLogger(__name__)

RowCallback = Callable[[dict], None]
StatusCallback = Callable[[ChannelStatus, Optional[Exception]], None]


class Channel(Protocol):
    async def close(self) -> None:
        ...


class ChangeFeed(Protocol):
    async def open_channel(
        self,
        topic: str,
        table: str,
        row_filter: str,
        on_row: RowCallback,
        on_status: StatusCallback,
    ) -> Channel:
        """Open a channel delivering INSERT rows of table matching row_filter; returns once subscribed."""
        ...


def extract_record(payload: Any) -> Optional[dict]:
    """Pull the inserted row out of a postgres_changes payload."""
    if not isinstance(payload, dict):
        return None
    data = payload.get("data", payload)
    if not isinstance(data, dict):
        return None
    record = data.get("record") or data.get("new")
    return record if isinstance(record, dict) else None


def _to_status(state: Any) -> Optional[ChannelStatus]:
    try:
        return ChannelStatus(str(getattr(state, "value", state)))
    except ValueError:
        return None


class SupabaseChannel:
    def __init__(self, supabase: AsyncClient, channel: Any, topic: str):
        self.supabase = supabase
        self.channel = channel
        self.topic = topic

    async def close(self) -> None:
        await self.supabase.remove_channel(self.channel)


class SupabaseChangeFeed:
    def __init__(self, supabase: AsyncClient, schema: str = "public", subscribe_timeout: Optional[float] = None):
        self.supabase = supabase
        self.schema = schema
        self.subscribe_timeout = subscribe_timeout or settings.request_timeout_sec

    async def open_channel(
        self,
        topic: str,
        table: str,
        row_filter: str,
        on_row: RowCallback,
        on_status: StatusCallback,
    ) -> SupabaseChannel:
        loop = asyncio.get_running_loop()
        subscribed = loop.create_future()

        def _on_change(payload):
            record = extract_record(payload)
            if record is None:
                logger.warning(f"Ignoring {topic} event without a record")
                return
            on_row(record)

        def _on_subscribe(state, error=None):
            status = _to_status(state)
            if status is None:
                logger.debug(f"Unknown channel state {state} on {topic}")
                return
            if not subscribed.done():
                if status == ChannelStatus.SUBSCRIBED:
                    subscribed.set_result(None)
                else:
                    subscribed.set_exception(BackendError(f"Channel {topic} failed to subscribe: {status.value}"))
                return
            on_status(status, error)

        channel = self.supabase.channel(topic)
        channel.on_postgres_changes(
            "INSERT",
            schema=self.schema,
            table=table,
            filter=row_filter,
            callback=_on_change,
        )
        try:
            await channel.subscribe(_on_subscribe)
            await asyncio.wait_for(subscribed, timeout=self.subscribe_timeout)
        except asyncio.TimeoutError:
            await self.supabase.remove_channel(channel)
            raise RequestTimeoutError(f"Channel {topic} did not subscribe in time")
        except Exception:
            await self.supabase.remove_channel(channel)
            raise
        logger.debug(f"Channel {topic} subscribed ({row_filter})")
        return SupabaseChannel(self.supabase, channel, topic)
