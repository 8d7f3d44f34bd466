from pydantic import BaseModel
from typing import Optional

PROFILE_COLUMNS = "id, name, avatar_url, family_id"


class Profile(BaseModel):
    id: str
    name: str
    avatar_url: Optional[str] = None
    family_id: Optional[str] = None

    class Config:
        from_attributes = True

    @property
    def initials(self) -> str:
        return self.name[:2].upper() if self.name else "?"
