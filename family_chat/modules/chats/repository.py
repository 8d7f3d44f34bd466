import logging
from typing import List, Optional

from pydantic import ValidationError as SchemaError
from supabase import AsyncClient

from family_chat.core.exceptions import BackendError
from family_chat.database.query import run_query
from family_chat.modules.chats.schemas import Chat, ChatKind

logger = logging.getLogger(__name__)


def _to_chats(rows: List[dict]) -> List[Chat]:
    chats = []
    for row in rows:
        try:
            chats.append(Chat(**row))
        except SchemaError as e:
            logger.warning(f"Skipping malformed chat row {row.get('id')}: {e}")
    return chats


class ChatRepository:
    """Boundary adapter for the chats table; rows leave here as Chat models."""

    def __init__(self, supabase: AsyncClient):
        self.supabase = supabase

    async def list_chats_for_member(self, user_id: str) -> List[Chat]:
        rows = await run_query(
            self.supabase.table("chats")
                .select("*")
                .contains("members", [user_id])
                .order("created_at"),
            "List chats"
        )
        return _to_chats(rows)

    async def get_chat(self, chat_id: str) -> Optional[Chat]:
        rows = await run_query(
            self.supabase.table("chats")
                .select("*")
                .eq("id", chat_id)
                .limit(1),
            "Fetch chat"
        )
        return Chat(**rows[0]) if rows else None

    async def find_private_chat(self, user_id: str, other_id: str) -> Optional[Chat]:
        """Existing private chat whose member set is exactly {user_id, other_id}."""
        rows = await run_query(
            self.supabase.table("chats")
                .select("*")
                .eq("type", ChatKind.PRIVATE.value)
                .contains("members", [user_id, other_id])
                .order("created_at"),
            "Look up private chat"
        )
        pair = {user_id, other_id}
        for row in rows:
            if set(row.get("members") or []) == pair:
                return Chat(**row)
        return None

    async def insert_chat(self, kind: ChatKind, members: List[str], family_id: str) -> Chat:
        rows = await run_query(
            self.supabase.table("chats").insert({
                "type": kind.value,
                "members": members,
                "family_id": family_id
            }),
            "Create chat"
        )
        if not rows:
            raise BackendError("Failed to create chat")
        return Chat(**rows[0])
