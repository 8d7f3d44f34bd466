from datetime import datetime
from typing import Optional

from pydantic import BaseModel

INVITE_CODE_LENGTH = 6


class Family(BaseModel):
    id: str
    name: str
    invite_code: str
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class FamilyCreate(BaseModel):
    name: str


class FamilyJoin(BaseModel):
    invite_code: str
