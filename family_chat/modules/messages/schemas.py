from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from family_chat.config import settings


class Message(BaseModel):
    id: str
    chat_id: str
    sender_id: str
    content: str = Field(min_length=1)
    timestamp: datetime

    class Config:
        frozen = True
        from_attributes = True


class MessageCreate(BaseModel):
    content: str


class LogState(str, Enum):
    EMPTY = "empty"
    LOADING = "loading"
    LOADED = "loaded"
    LOAD_FAILED = "load_failed"


def truncate_message(content: str, max_length: int = None) -> str:
    max_length = max_length or settings.preview_snippet_length
    if len(content) <= max_length:
        return content
    return content[:max_length] + "..."


class MessagePreview(BaseModel):
    chat_id: str
    message: Message
    snippet: str

    @classmethod
    def from_message(cls, message: Message) -> "MessagePreview":
        return cls(chat_id=message.chat_id, message=message, snippet=truncate_message(message.content))
