from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator

from family_chat.modules.profiles.schemas import Profile


class ChatKind(str, Enum):
    GROUP = "group"
    PRIVATE = "private"


class Chat(BaseModel):
    id: str
    # The backend column is "type"
    kind: ChatKind = Field(validation_alias=AliasChoices("kind", "type"))
    family_id: str
    members: List[str]
    created_at: Optional[datetime] = None
    peer: Optional[Profile] = None

    class Config:
        from_attributes = True

    @field_validator("members")
    @classmethod
    def unique_members(cls, members: List[str]) -> List[str]:
        return list(dict.fromkeys(members))

    @model_validator(mode="after")
    def check_member_count(self) -> "Chat":
        if self.kind == ChatKind.PRIVATE and len(self.members) != 2:
            raise ValueError("A private chat has exactly 2 members")
        if self.kind == ChatKind.GROUP and not self.members:
            raise ValueError("A group chat has at least 1 member")
        return self

    def has_member(self, user_id: str) -> bool:
        return user_id in self.members

    def peer_id(self, user_id: str) -> Optional[str]:
        """The other member of a private chat, relative to user_id."""
        if self.kind != ChatKind.PRIVATE:
            return None
        others = [m for m in self.members if m != user_id]
        return others[0] if len(others) == 1 else None

    @property
    def display_name(self) -> str:
        if self.kind == ChatKind.GROUP:
            return "Family Group Chat"
        return self.peer.name if self.peer else "Private Chat"


class ChatCreate(BaseModel):
    member_ids: List[str]
    family_id: Optional[str] = None  # Defaults to the caller's family
