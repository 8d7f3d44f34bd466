from pydantic import BaseModel
from typing import Optional


class CurrentUser(BaseModel):
    id: str
    email: Optional[str] = None
    family_id: Optional[str] = None


class MeResponse(BaseModel):
    id: str
    email: Optional[str] = None
    family_id: Optional[str] = None
    name: Optional[str] = None
    avatar_url: Optional[str] = None
