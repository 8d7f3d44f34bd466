from dataclasses import dataclass
from enum import Enum

from family_chat.config import settings


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"
    FAILED = "failed"


class ChannelStatus(str, Enum):
    """Channel lifecycle states as reported by Supabase Realtime."""
    SUBSCRIBED = "SUBSCRIBED"
    TIMED_OUT = "TIMED_OUT"
    CLOSED = "CLOSED"
    CHANNEL_ERROR = "CHANNEL_ERROR"


class View(str, Enum):
    PANE = "pane"  # full log of the open chat
    LIST = "list"  # last-message previews in the chat list


@dataclass(frozen=True)
class ChannelKey:
    resource_kind: str
    resource_id: str
    view: str

    @property
    def topic(self) -> str:
        return f"{self.view}:{self.resource_kind}:{self.resource_id}"


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int
    base_delay: float
    max_delay: float

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_retries=settings.realtime_max_retries,
            base_delay=settings.realtime_backoff_base_sec,
            max_delay=settings.realtime_backoff_max_sec,
        )

    def delay(self, attempt: int) -> float:
        return min(self.max_delay, self.base_delay * (2 ** attempt))
