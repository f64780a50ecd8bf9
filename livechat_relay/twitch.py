# twitch.py
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

import twitchio
from twitchio import eventsub

from livechat_relay.data_models import MessageSource, NormalizedMessage
from livechat_relay.errors import AuthError, ConnectError, ConnectorError, JoinError
from livechat_relay.livechat_utils import normalize_hex_color

logger = logging.getLogger(__name__)

MessageCallback = Callable[[NormalizedMessage], Awaitable[None]]


@dataclass(frozen=True)
class RawChatMessage:
    """A chat message as delivered by the push transport, before normalization."""
    id: str
    author: str
    author_id: str
    text: str
    is_subscriber: bool = False
    is_moderator: bool = False
    color: Optional[str] = None
    channel: Optional[str] = None


class PushTransport(Protocol):
    """What TwitchConnector needs from a persistent chat connection."""

    @property
    def identity(self) -> Optional[str]: ...

    @property
    def connected(self) -> bool: ...

    async def connect(self) -> None: ...

    async def join(self, channel: str) -> None: ...

    async def part(self, channel: str) -> None: ...

    def set_message_handler(self, handler: Callable[[RawChatMessage], Awaitable[None]]) -> None: ...

    async def close(self) -> None: ...


def is_privileged_chatter(raw: RawChatMessage) -> bool:
    """Moderators count as privileged exactly like subscribers."""
    return bool(raw.is_subscriber or raw.is_moderator)


def is_self_message(raw: RawChatMessage, identity: Optional[str]) -> bool:
    """True when the bot's own account authored the message."""
    if not identity or not raw.author_id:
        return False
    return raw.author_id.lower() == identity.lower()


class TwitchConnector:
    """
    Push connector for Twitch chat.

    Owns one channel attachment at a time. Inbound messages are filtered
    (self-messages, foreign channels), normalized and handed to the callback
    given to `attach`. The connector never touches session state.
    """
    platform = "Twitch"

    def __init__(self, transport: PushTransport):
        self._transport = transport
        self._transport.set_message_handler(self._handle_raw)
        self._channel: Optional[str] = None
        self._on_message: Optional[MessageCallback] = None

    @classmethod
    def create(cls, config: Dict[str, Any]) -> Optional["TwitchConnector"]:
        """Builds a connector backed by twitchio, or None when Twitch is disabled."""
        if not config.get("enabled"):
            logger.info("Twitch connector disabled (TW_FETCH off or credentials missing).")
            return None
        transport = TwitchIOTransport(
            client_id=config["client_id"],
            client_secret=config["client_secret"],
            bot_id=config["bot_id"],
            token=config.get("token"),
            refresh_token=config.get("refresh_token"),
        )
        return cls(transport)

    @property
    def channel(self) -> Optional[str]:
        return self._channel

    async def attach(self, channel: str, on_message: MessageCallback) -> str:
        """
        Joins `channel` and starts forwarding its messages to `on_message`.

        Returns the handle (the normalized channel name).
        Raises AuthError / ConnectError if the connection cannot be made and
        JoinError if the channel cannot be joined.
        """
        channel = (channel or "").strip().lstrip("#").lower()
        if not channel:
            raise JoinError("Twitch channel name cannot be empty.")
        if self._channel == channel:
            return channel
        if self._channel is not None:
            raise JoinError(f"Already attached to Twitch channel '{self._channel}'.")

        if not self._transport.connected:
            await self._transport.connect()
        await self._transport.join(channel)

        self._channel = channel
        self._on_message = on_message
        logger.info(f"Connected to Twitch channel: {channel}")
        return channel

    async def detach(self, handle: Optional[str]) -> None:
        """Parts the channel. Calling it twice, or with a stale handle, does nothing."""
        if self._channel is None or handle != self._channel:
            return
        self._channel = None
        self._on_message = None
        try:
            await self._transport.part(handle)
            logger.info(f"Disconnected from Twitch channel: {handle}")
        except ConnectorError as e:
            logger.warning(f"Could not cleanly part Twitch channel '{handle}': {e}")

    async def close(self) -> None:
        await self.detach(self._channel)
        await self._transport.close()

    def normalize(self, raw: RawChatMessage) -> NormalizedMessage:
        return NormalizedMessage(
            id=raw.id,
            source=MessageSource.PUSH,
            author=raw.author,
            text=raw.text or "",
            is_privileged=is_privileged_chatter(raw),
            platform=self.platform,
            timestamp=datetime.now(timezone.utc),
            accent_color=normalize_hex_color(raw.color),
        )

    async def _handle_raw(self, raw: RawChatMessage) -> None:
        on_message = self._on_message
        if on_message is None:
            return
        if raw.channel and raw.channel.lower() != self._channel:
            return
        if is_self_message(raw, self._transport.identity):
            logger.debug(f"Dropping self-authored Twitch message {raw.id}")
            return
        await on_message(self.normalize(raw))


def _subscription_id(response: Any) -> Optional[str]:
    """Pulls the subscription id out of an EventSub subscribe response."""
    if isinstance(response, dict):
        data = response.get("data") or []
        if data and isinstance(data[0], dict):
            return data[0].get("id")
    return getattr(response, "id", None)


class _RelayClient(twitchio.Client):
    """twitchio client that hands every chat notification to the transport."""

    def __init__(self, transport: "TwitchIOTransport", **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._transport = transport

    async def event_ready(self) -> None:
        logger.info(f"Logged in to Twitch as: {self.user}")

    async def event_message(self, payload: twitchio.ChatMessage) -> None:
        await self._transport.dispatch(payload)


class TwitchIOTransport:
    """PushTransport over twitchio's EventSub websocket chat subscriptions."""

    def __init__(self, client_id: str, client_secret: str, bot_id: str,
                 token: Optional[str] = None, refresh_token: Optional[str] = None) -> None:
        if not client_id or not client_secret or not bot_id:
            raise ValueError("Twitch client_id, client_secret and bot_id are required.")
        self._client_id = client_id
        self._client_secret = client_secret
        self._bot_id = str(bot_id)
        self._token = token
        self._refresh_token = refresh_token
        self._client: Optional[_RelayClient] = None
        self._handler: Optional[Callable[[RawChatMessage], Awaitable[None]]] = None
        self._subscriptions: Dict[str, Optional[str]] = {}

    @property
    def identity(self) -> Optional[str]:
        return self._bot_id

    @property
    def connected(self) -> bool:
        return self._client is not None

    def set_message_handler(self, handler: Callable[[RawChatMessage], Awaitable[None]]) -> None:
        self._handler = handler

    async def connect(self) -> None:
        client = _RelayClient(
            self,
            client_id=self._client_id,
            client_secret=self._client_secret,
            bot_id=self._bot_id,
        )
        try:
            await client.login()
            if self._token:
                await client.add_token(self._token, self._refresh_token)
        except twitchio.HTTPException as e:
            await client.close()
            if getattr(e, "status", None) in (400, 401, 403):
                raise AuthError(f"Twitch rejected the bot credentials: {e}") from e
            raise ConnectError(f"Could not log in to Twitch: {e}") from e
        except Exception as e:
            await client.close()
            raise ConnectError(f"Could not log in to Twitch: {e}") from e
        self._client = client

    async def join(self, channel: str) -> None:
        if self._client is None:
            raise ConnectError("Twitch transport is not connected.")
        try:
            users = await self._client.fetch_users(logins=[channel])
            if not users:
                raise JoinError(f"Twitch channel '{channel}' does not exist.")
            subscription = eventsub.ChatMessageSubscription(
                broadcaster_user_id=users[0].id, user_id=self._bot_id
            )
            response = await self._client.subscribe_websocket(subscription, token_for=self._bot_id)
        except JoinError:
            raise
        except Exception as e:
            raise JoinError(f"Could not join Twitch channel '{channel}': {e}") from e
        self._subscriptions[channel] = _subscription_id(response)

    async def part(self, channel: str) -> None:
        if channel not in self._subscriptions:
            return
        subscription_id = self._subscriptions.pop(channel)
        if self._client is None or subscription_id is None:
            return
        try:
            await self._client.delete_websocket_subscription(subscription_id)
        except Exception as e:
            raise ConnectError(f"Could not leave Twitch channel '{channel}': {e}") from e

    async def close(self) -> None:
        self._subscriptions.clear()
        if self._client is not None:
            client, self._client = self._client, None
            await client.close()

    async def dispatch(self, payload: twitchio.ChatMessage) -> None:
        if self._handler is None:
            return
        chatter = payload.chatter
        raw = RawChatMessage(
            id=str(payload.id),
            author=getattr(chatter, "display_name", None) or chatter.name,
            author_id=str(chatter.id),
            text=payload.text,
            is_subscriber=bool(getattr(chatter, "subscriber", False)),
            is_moderator=bool(getattr(chatter, "moderator", False)),
            color=str(payload.color) if payload.color else None,
            channel=payload.broadcaster.name,
        )
        await self._handler(raw)
