import logging
from typing import Dict, Iterable, List, Optional

from family_chat.modules.profiles.repository import ProfileRepository
from family_chat.modules.profiles.schemas import Profile

logger = logging.getLogger(__name__)


class ProfileCache:
    """
    Display metadata (name, avatar) for chat peers and message senders.

    Entries are populated lazily and never evicted; one cache lives as long as
    the session that owns it, and families are small.
    """

    def __init__(self, repository: ProfileRepository):
        self.repository = repository
        self._profiles: Dict[str, Profile] = {}

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._profiles

    def __len__(self) -> int:
        return len(self._profiles)

    def get(self, user_id: str) -> Optional[Profile]:
        return self._profiles.get(user_id)

    def put(self, profile: Profile) -> None:
        self._profiles[profile.id] = profile

    async def ensure(self, user_ids: Iterable[str]) -> Dict[str, Profile]:
        """Fetch every id not cached yet in a single query; return the cached entries for user_ids."""
        wanted = list(dict.fromkeys(uid for uid in user_ids if uid))
        missing = [uid for uid in wanted if uid not in self._profiles]
        if missing:
            logger.debug(f"Fetching {len(missing)} profile(s)")
            for profile in await self.repository.get_profiles(missing):
                self._profiles[profile.id] = profile
        return {uid: self._profiles[uid] for uid in wanted if uid in self._profiles}

    async def resolve(self, user_id: str) -> Optional[Profile]:
        found = await self.ensure([user_id])
        return found.get(user_id)


class ProfileService:
    def __init__(self, repository: ProfileRepository):
        self.repository = repository

    async def list_family_members(
        self,
        family_id: str,
        exclude_user_id: Optional[str] = None,
        search: Optional[str] = None
    ) -> List[Profile]:
        """Family members for the conversation picker, optionally filtered by a case-insensitive name match."""
        members = await self.repository.list_family_profiles(family_id, exclude_user_id)
        if search:
            needle = search.lower()
            members = [m for m in members if needle in m.name.lower()]
        return members
