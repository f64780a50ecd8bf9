# data_models.py
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union


class MessageSource(Enum):
    """Which upstream produced a message."""
    PUSH = "push"
    PULL = "pull"


@dataclass(frozen=True)
class NormalizedMessage:
    """
    A standardized, immutable representation of a chat message from either source.

    This structure decouples the session and subscriber layers from the
    specific data formats of the Twitch and YouTube APIs.

    Attributes:
        id (str): Source-provided message id. Unique per source only.
        source (MessageSource): The upstream that produced the message.
        author (str): The display name of the user who sent the message.
        text (str): The message body. May be empty, never None.
        is_privileged (bool): True if the author holds elevated standing in
                              that source's community.
        platform (str): Human readable platform label, e.g. 'Twitch', 'YouTube'.
        timestamp (datetime): Timezone-aware publish (pull) or receipt (push) time.
        accent_color (Optional[str]): '#RRGGBB' author colour, when the source supplies one.
    """
    id: str
    source: MessageSource
    author: str
    text: str
    is_privileged: bool
    platform: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    accent_color: Optional[str] = None

    def __post_init__(self):
        # frozen, so go through object.__setattr__
        if self.text is None:
            object.__setattr__(self, "text", "")
        if not self.id:
            raise ValueError("NormalizedMessage.id cannot be empty.")
        if self.author is None:
            raise ValueError("NormalizedMessage.author cannot be None.")

    def to_dict(self) -> Dict[str, Any]:
        """Wire shape sent to subscribers."""
        return {
            "id": self.id,
            "source": self.source.value,
            "platform": self.platform,
            "author": self.author,
            "text": self.text,
            "isPrivileged": self.is_privileged,
            "accentColor": self.accent_color,
            "timestamp": self.timestamp.isoformat(),
        }


CHAT_MESSAGE = "chat message"
NOTICE = "notice"


@dataclass(frozen=True)
class ChatEvent:
    """One item of the outbound stream: a chat message or an operator-visible notice."""
    kind: str
    payload: Union[NormalizedMessage, str]

    @classmethod
    def chat(cls, message: NormalizedMessage) -> "ChatEvent":
        return cls(kind=CHAT_MESSAGE, payload=message)

    @classmethod
    def notice(cls, text: str) -> "ChatEvent":
        return cls(kind=NOTICE, payload=text)

    @property
    def is_notice(self) -> bool:
        return self.kind == NOTICE

    def to_dict(self) -> Dict[str, Any]:
        data = self.payload.to_dict() if isinstance(self.payload, NormalizedMessage) else self.payload
        return {"event": self.kind, "data": data}
