import logging
from typing import Dict, List, Optional

from pydantic import ValidationError as SchemaError
from supabase import AsyncClient

from family_chat.config import settings
from family_chat.core.exceptions import BackendError
from family_chat.database.query import run_query
from family_chat.modules.messages.schemas import Message

logger = logging.getLogger(__name__)


def to_message(row: dict) -> Optional[Message]:
    """Map a messages row (select result or realtime record) to a Message; None when malformed."""
    try:
        return Message(**row)
    except (SchemaError, TypeError) as e:
        logger.warning(f"Dropping malformed message row {row.get('id') if isinstance(row, dict) else row}: {e}")
        return None


class MessageRepository:
    def __init__(self, supabase: AsyncClient):
        self.supabase = supabase

    async def list_messages(self, chat_id: str) -> List[Message]:
        rows = await run_query(
            self.supabase.table("messages")
                .select("*")
                .eq("chat_id", chat_id)
                .order("timestamp"),
            "Load messages"
        )
        return [m for m in (to_message(row) for row in rows) if m is not None]

    async def insert_message(self, chat_id: str, sender_id: str, content: str) -> None:
        rows = await run_query(
            self.supabase.table("messages").insert({
                "chat_id": chat_id,
                "sender_id": sender_id,
                "content": content
            }),
            "Send message"
        )
        if not rows:
            raise BackendError("Failed to send message")

    async def latest_messages(self, chat_ids: List[str], scan_limit: Optional[int] = None) -> Dict[str, Message]:
        """
        Most recent message per chat in one round trip.

        PostgREST has no DISTINCT ON, so the newest scan_limit rows across all
        chat_ids are fetched and the first row per chat wins. Chats whose
        latest message falls outside the window get no entry.
        """
        if not chat_ids:
            return {}
        rows = await run_query(
            self.supabase.table("messages")
                .select("*")
                .in_("chat_id", chat_ids)
                .order("timestamp", desc=True)
                .limit(scan_limit or settings.preview_scan_limit),
            "Load last messages"
        )
        latest: Dict[str, Message] = {}
        for row in rows:
            message = to_message(row)
            if message is not None and message.chat_id not in latest:
                latest[message.chat_id] = message
        return latest
