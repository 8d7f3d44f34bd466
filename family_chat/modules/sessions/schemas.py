from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel


class Pane(str, Enum):
    """Which pane a single-pane (small screen) client shows."""
    LIST = "list"
    CONVERSATION = "conversation"


class SessionEventType(str, Enum):
    CHAT_SELECTED = "chat.selected"
    CHAT_DESELECTED = "chat.deselected"
    MESSAGES_LOADED = "messages.loaded"
    MESSAGE_CREATED = "message.created"
    PREVIEW_UPDATED = "preview.updated"
    PROFILE_UPDATED = "profile.updated"
    CONNECTION_STATE = "connection.state"
    NOTIFICATION = "notification"


class SessionEvent(BaseModel):
    type: SessionEventType
    data: Dict[str, Any] = {}


class WsInbound(BaseModel):
    """Client -> Server."""

    type: str  # chats.list | chat.select | chat.deselect | message.send | previews.watch | previews.unwatch | ping
    data: Dict[str, Any] = {}


class WsOutbound(BaseModel):
    """Server -> Client."""

    type: str  # a SessionEventType value, or chats.listed | previews.loaded | message.accepted | message.rejected | error | pong
    data: Dict[str, Any] = {}
