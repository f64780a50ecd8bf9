# errors.py
from enum import Enum


class ConnectorError(Exception):
    """Base class for failures raised by a chat connector or its transport."""
    pass


class AuthError(ConnectorError):
    """The upstream rejected our credentials."""
    pass


class ConnectError(ConnectorError):
    """The transport could not establish its connection."""
    pass


class JoinError(ConnectorError):
    """The connection is up but the channel could not be joined."""
    pass


class FetchError(ConnectorError):
    """A transient failure while reading from a polled feed."""
    pass


class TerminalReason(Enum):
    CHAT_ENDED = "chat_ended"
    QUOTA_EXHAUSTED = "quota_exhausted"


class FeedEnded(ConnectorError):
    """
    The polled feed is gone for good. The caller must stop polling and must
    not reuse the same feed handle.
    """
    def __init__(self, reason: TerminalReason = TerminalReason.CHAT_ENDED, detail: str = ""):
        self.reason = reason
        self.detail = detail
        super().__init__(detail or reason.value)


class ResolveError(ConnectorError):
    """The upstream rejected a feed lookup outright, e.g. an unknown channel id. Not worth retrying."""
    pass
