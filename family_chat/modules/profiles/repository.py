from typing import List, Optional

from supabase import AsyncClient

from family_chat.database.query import run_query
from family_chat.modules.profiles.schemas import PROFILE_COLUMNS, Profile


class ProfileRepository:
    def __init__(self, supabase: AsyncClient):
        self.supabase = supabase

    async def get_profiles(self, user_ids: List[str]) -> List[Profile]:
        if not user_ids:
            return []
        rows = await run_query(
            self.supabase.table("profiles")
                .select(PROFILE_COLUMNS)
                .in_("id", user_ids),
            "Fetch profiles"
        )
        return [Profile(**row) for row in rows]

    async def list_family_profiles(self, family_id: str, exclude_user_id: Optional[str] = None) -> List[Profile]:
        query = self.supabase.table("profiles")\
            .select(PROFILE_COLUMNS)\
            .eq("family_id", family_id)
        if exclude_user_id:
            query = query.neq("id", exclude_user_id)
        rows = await run_query(query.order("name"), "List family members")
        return [Profile(**row) for row in rows]

