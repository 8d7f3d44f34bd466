import asyncio
from typing import Optional

from supabase import AsyncClient, acreate_client
from family_chat.config import settings


class SupabaseClient:
    _client: Optional[AsyncClient] = None
    _service_client: Optional[AsyncClient] = None
    _lock: Optional[asyncio.Lock] = None

    @classmethod
    def _get_lock(cls) -> asyncio.Lock:
        if cls._lock is None:
            cls._lock = asyncio.Lock()
        return cls._lock

    @classmethod
    async def get_client(cls) -> AsyncClient:
        """Shared async client. Realtime channels need the async client, so every module uses it."""
        if cls._client is None:
            async with cls._get_lock():
                if cls._client is None:
                    cls._client = await acreate_client(settings.supabase_url, settings.supabase_key)
        return cls._client

    @classmethod
    async def get_service_client(cls) -> AsyncClient:
        """Client with service_role key; bypasses RLS. Falls back to the shared client when no key is set."""
        if cls._service_client is None and settings.supabase_service_role_key:
            cls._service_client = await acreate_client(
                settings.supabase_url, settings.supabase_service_role_key
            )
        return cls._service_client or await cls.get_client()

    @classmethod
    def reset_client(cls):
        cls._client = None
        cls._service_client = None
        cls._lock = None


async def get_supabase() -> AsyncClient:
    return await SupabaseClient.get_client()
