"""
livechat-relay: merges Twitch (push) and YouTube (pull) live chat into one
deduplicated stream per session and fans it out to websocket subscribers.
"""
from livechat_relay.data_models import ChatEvent, MessageSource, NormalizedMessage
from livechat_relay.hub import SubscriberHub
from livechat_relay.session import AggregationSession, SessionRegistry, SessionState, SessionStatus

__all__ = [
    "AggregationSession",
    "ChatEvent",
    "MessageSource",
    "NormalizedMessage",
    "SessionRegistry",
    "SessionState",
    "SessionStatus",
    "SubscriberHub",
]
