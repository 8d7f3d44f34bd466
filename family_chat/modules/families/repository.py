from typing import Optional

from supabase import AsyncClient

from family_chat.core.exceptions import BackendError, NotFoundError
from family_chat.database.query import run_query
from family_chat.modules.families.schemas import Family


class FamilyRepository:
    """
    Family writes go through database functions so that each one is a single
    transaction; see models.py for their contract.
    """

    def __init__(self, supabase: AsyncClient):
        self.supabase = supabase

    async def create_family_with_owner(self, name: str, user_id: str) -> Family:
        rows = await run_query(
            self.supabase.rpc("create_family_with_owner", {
                "family_name": name,
                "user_id": user_id
            }),
            "Create family"
        )
        if not rows:
            raise BackendError("Failed to create family")
        return Family(**rows[0])

    async def join_family_by_invite(self, invite_code: str, user_id: str) -> str:
        """Returns the joined family's id."""
        rows = await run_query(
            self.supabase.rpc("join_family_by_invite", {
                "invite_code": invite_code,
                "user_id": user_id
            }),
            "Join family"
        )
        result = rows[0] if rows else {}
        if result.get("success") is not True or not result.get("family_id"):
            raise NotFoundError(result.get("message") or "Invalid invite code")
        return str(result["family_id"])

    async def get_family(self, family_id: str) -> Optional[Family]:
        rows = await run_query(
            self.supabase.table("families")
                .select("*")
                .eq("id", family_id)
                .limit(1),
            "Fetch family"
        )
        return Family(**rows[0]) if rows else None
