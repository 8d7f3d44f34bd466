import logging
from typing import Optional

from family_chat.core.exceptions import AuthRequired, NotFoundError, ValidationError
from family_chat.modules.families.repository import FamilyRepository
from family_chat.modules.families.schemas import INVITE_CODE_LENGTH, Family

logger = logging.getLogger(__name__)


def normalize_invite_code(invite_code: Optional[str]) -> str:
    code = (invite_code or "").strip().upper()
    if len(code) != INVITE_CODE_LENGTH:
        raise ValidationError(f"Invite code must be exactly {INVITE_CODE_LENGTH} characters")
    return code


class FamilyService:
    def __init__(self, families: FamilyRepository):
        self.families = families

    async def create_family(self, user_id: Optional[str], name: str) -> Family:
        """Create a family owned by user_id together with its group chat, in one transaction."""
        if not user_id:
            raise AuthRequired()
        name = (name or "").strip()
        if not name:
            raise ValidationError("Family name is required")

        family = await self.families.create_family_with_owner(name, user_id)
        logger.info(f"Created family {family.id} owned by {user_id}")
        return family

    async def join_family(self, user_id: Optional[str], invite_code: str) -> Family:
        """Join the family behind invite_code; the user is added to each of its group chats."""
        if not user_id:
            raise AuthRequired()
        code = normalize_invite_code(invite_code)
        family_id = await self.families.join_family_by_invite(code, user_id)
        family = await self.families.get_family(family_id)
        if family is None:
            raise NotFoundError("Family not found")
        logger.info(f"User {user_id} joined family {family.id}")
        return family
