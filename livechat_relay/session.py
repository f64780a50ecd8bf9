# session.py
import asyncio
import functools
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from livechat_relay.common.config import DEFAULT_LIVECHAT_SETTINGS
from livechat_relay.data_models import ChatEvent, NormalizedMessage
from livechat_relay.errors import ConnectorError, FeedEnded, TerminalReason
from livechat_relay.hub import SendFunc, SubscriberHub
from livechat_relay.services import DispatchService, PollService
from livechat_relay.twitch import TwitchConnector
from livechat_relay.youtube import PollResult, YouTubeConnector

logger = logging.getLogger(__name__)

PUSH_NOT_CONFIGURED_NOTICE = "Twitch is not configured on this server."
PULL_NOT_CONFIGURED_NOTICE = "YouTube is not configured on this server."
FEED_NOT_FOUND_NOTICE = "Could not find an active YouTube live stream for that channel."
FEED_ENDED_NOTICE = "YouTube Live Chat has ended."
QUOTA_EXHAUSTED_NOTICE = "YouTube API quota exhausted. Stopped polling."
FETCH_ERROR_NOTICE = "Error fetching YouTube messages. Still trying."


class SessionStatus(Enum):
    IDLE = "idle"
    STARTING = "starting"
    ACTIVE = "active"
    ENDING = "ending"


@dataclass
class SessionState:
    """Mutable state of one aggregation session. Only AggregationSession writes it."""
    push_source_handle: Optional[str] = None
    pull_source_handle: Optional[str] = None
    watermark: Optional[datetime] = None
    subscriber_count: int = 0

    def reset(self, subscriber_count: int = 0) -> None:
        self.push_source_handle = None
        self.pull_source_handle = None
        self.watermark = None
        self.subscriber_count = subscriber_count


class AggregationSession:
    """
    Owns the connectors of one aggregation, merges what they emit into a
    single outbound queue, and fans it out through its SubscriberHub.

    Lifecycle: IDLE -> STARTING -> ACTIVE -> ENDING -> IDLE. Start requests are
    serialised; re-requesting an attached source is a no-op. The session ends
    when the last subscriber leaves, or when the pull feed ends and no push
    source is left.
    """

    def __init__(self, session_id: str = "default",
                 push_connector: Optional[TwitchConnector] = None,
                 pull_connector: Optional[YouTubeConnector] = None,
                 settings: Optional[Dict[str, Any]] = None,
                 on_idle: Optional[Callable[["AggregationSession"], Awaitable[None]]] = None):
        self.session_id = session_id
        self.logger = logging.getLogger(f"{self.__class__.__name__}.{session_id}")
        self.settings = dict(DEFAULT_LIVECHAT_SETTINGS)
        self.settings.update(settings or {})

        self.push_connector = push_connector
        self.pull_connector = pull_connector
        self.state = SessionState()
        self.status = SessionStatus.IDLE
        self.hub = SubscriberHub(on_empty=self._on_last_subscriber_left,
                                 send_timeout=self.settings["broadcast_timeout_s"])
        self._on_idle = on_idle

        self._lock = asyncio.Lock()
        self._outbound: asyncio.Queue = asyncio.Queue()
        self._shared_resources = {
            "config": self.settings,
            "logger": self.logger,
            "queues": {"outbound": self._outbound},
        }
        self._dispatcher = DispatchService(self._shared_resources, self.hub)
        self._poller: Optional[PollService] = None
        self._teardown_task: Optional[asyncio.Task] = None

    # --- subscribers ---

    def add_subscriber(self, send: SendFunc) -> str:
        subscriber_id = self.hub.register(send)
        self.state.subscriber_count = self.hub.current_count()
        return subscriber_id

    def remove_subscriber(self, subscriber_id: str) -> None:
        self.hub.unregister(subscriber_id)
        self.state.subscriber_count = self.hub.current_count()

    def _on_last_subscriber_left(self) -> None:
        self.state.subscriber_count = 0
        if self.status is not SessionStatus.IDLE:
            self.status = SessionStatus.ENDING
        self.logger.info("Last subscriber left. Ending session.")
        self._teardown_task = asyncio.get_running_loop().create_task(self._stop_if_empty())

    # --- lifecycle ---

    async def start(self, push_channel: Optional[str] = None, pull_channel: Optional[str] = None) -> SessionStatus:
        """
        Attaches whichever of the requested sources are not attached yet.
        Attach failures are reported as notices; the session still becomes ACTIVE.
        """
        async with self._lock:
            if self.status in (SessionStatus.IDLE, SessionStatus.ENDING):
                self.status = SessionStatus.STARTING
            self.logger.info(f"Received connection request: push={push_channel!r} pull={pull_channel!r}")
            if not self._dispatcher.is_running():
                await self._dispatcher.start()

            if push_channel:
                await self._start_push(push_channel)
            if pull_channel:
                await self._start_pull(pull_channel)

            if self.status is SessionStatus.STARTING:
                self.status = SessionStatus.ACTIVE
            return self.status

    async def stop(self) -> None:
        """Detaches everything and returns to IDLE. Safe to call at any time, any number of times."""
        async with self._lock:
            await self._teardown()
        await self._notify_idle()

    async def _stop_if_empty(self) -> None:
        async with self._lock:
            if self.hub.current_count() > 0:
                # Someone reconnected before the teardown got the lock.
                if self.status is SessionStatus.ENDING:
                    self.status = SessionStatus.ACTIVE if self._has_sources() else SessionStatus.IDLE
                return
            await self._teardown()
        await self._notify_idle()

    async def close(self) -> None:
        """Final shutdown: teardown plus closing the connectors' transports."""
        async with self._lock:
            await self._teardown()
        for connector in (self.push_connector, self.pull_connector):
            if connector is None:
                continue
            try:
                await connector.close()
            except ConnectorError as e:
                self.logger.warning(f"Error closing {connector.platform} connector: {e}")

    async def _teardown(self) -> None:
        if self.status is SessionStatus.IDLE and not self._has_sources() and not self._dispatcher.is_running():
            self.state.reset(self.hub.current_count())
            return

        self.status = SessionStatus.ENDING
        if self._poller is not None:
            poller, self._poller = self._poller, None
            await poller.stop()
            self.logger.info("Stopped polling YouTube.")

        push_handle = self.state.push_source_handle
        if push_handle is not None and self.push_connector is not None:
            try:
                await self.push_connector.detach(push_handle)
            except ConnectorError as e:
                self.logger.warning(f"Error leaving Twitch channel {push_handle}: {e}")

        # Let already emitted events reach whoever is still listening.
        await self.flush()
        await self._dispatcher.stop()
        self._discard_pending()

        self.state.reset(self.hub.current_count())
        self.status = SessionStatus.IDLE
        self.logger.info("Session is idle.")

    async def _notify_idle(self) -> None:
        if self._on_idle is not None and self.status is SessionStatus.IDLE and self.hub.current_count() == 0:
            await self._on_idle(self)

    def _has_sources(self) -> bool:
        return self.state.push_source_handle is not None or self.state.pull_source_handle is not None

    # --- push ---

    async def _start_push(self, channel: str) -> None:
        if self.push_connector is None:
            await self._notice(PUSH_NOT_CONFIGURED_NOTICE)
            return
        if self.state.push_source_handle is not None:
            self.logger.debug(f"Twitch channel {self.state.push_source_handle} already joined, ignoring request.")
            return
        try:
            handle = await self.push_connector.attach(channel, self._publish_message)
        except ConnectorError as e:
            self.logger.error(f"Failed to connect to Twitch channel '{channel}': {e}")
            await self._notice(f"Could not connect to Twitch channel '{channel}': {e}")
            return
        self.state.push_source_handle = handle

    # --- pull ---

    async def _start_pull(self, channel_id: str) -> None:
        if self.pull_connector is None:
            await self._notice(PULL_NOT_CONFIGURED_NOTICE)
            return
        if self.state.pull_source_handle is not None:
            self.logger.debug(f"Already polling YouTube chat {self.state.pull_source_handle}, ignoring request.")
            return
        try:
            feed = await self.pull_connector.resolve_feed(channel_id)
        except FeedEnded as e:
            self.logger.error(f"YouTube refused the live chat lookup for {channel_id}: {e}")
            await self._notice(QUOTA_EXHAUSTED_NOTICE if e.reason is TerminalReason.QUOTA_EXHAUSTED else FEED_NOT_FOUND_NOTICE)
            return
        except ConnectorError as e:
            self.logger.error(f"Error getting YouTube Live Chat ID: {e}")
            await self._notice(f"Could not look up YouTube channel '{channel_id}': {e}")
            return
        if not feed:
            await self._notice(FEED_NOT_FOUND_NOTICE)
            return

        self.state.pull_source_handle = feed
        # Skip the backlog: only items published after we attached are new.
        self.state.watermark = datetime.now(timezone.utc) if self.settings["skip_backlog"] else None
        self._poller = PollService(self._shared_resources, functools.partial(self._poll_once, feed))
        await self._poller.start()

    async def _poll_once(self, feed: str) -> Optional[PollResult]:
        if self.state.pull_source_handle != feed:
            return None
        result = await self.pull_connector.poll(feed, self.state.watermark)
        if self.state.pull_source_handle != feed:
            # Torn down while the fetch was in flight.
            return None

        for message in result.messages:
            await self._publish_message(message)
        if result.watermark is not None and (self.state.watermark is None or result.watermark > self.state.watermark):
            self.state.watermark = result.watermark

        # The poller counts the streak once this poll returns, so zero means first failure.
        if result.error and self._poller is not None and self._poller.consecutive_errors == 0:
            await self._notice(FETCH_ERROR_NOTICE)

        if result.terminal:
            await self._end_pull(result.terminal_reason)
        return result

    async def _end_pull(self, reason: Optional[TerminalReason]) -> None:
        self.logger.info(f"YouTube feed {self.state.pull_source_handle} ended ({reason}).")
        self.state.pull_source_handle = None
        self.state.watermark = None
        # Called from inside the poller; it exits once this poll returns.
        self._poller = None
        await self._notice(QUOTA_EXHAUSTED_NOTICE if reason is TerminalReason.QUOTA_EXHAUSTED else FEED_ENDED_NOTICE)

        if self.state.push_source_handle is None and self.status is SessionStatus.ACTIVE:
            self.status = SessionStatus.ENDING
            self._teardown_task = asyncio.get_running_loop().create_task(self.stop())

    def poll_now(self) -> bool:
        """Asks the poller to fetch immediately. False when nothing is being polled."""
        if self._poller is None:
            return False
        self._poller.trigger_immediate_poll()
        return True

    # --- outbound ---

    async def _publish_message(self, message: NormalizedMessage) -> None:
        await self._outbound.put(ChatEvent.chat(message))

    async def _notice(self, text: str) -> None:
        self.logger.info(f"Notice: {text}")
        if not self._dispatcher.is_running():
            await self._dispatcher.start()
        await self._outbound.put(ChatEvent.notice(text))

    async def flush(self) -> None:
        """Waits until every queued event has been broadcast."""
        if self._dispatcher.is_running():
            await self._outbound.join()

    def _discard_pending(self) -> None:
        while not self._outbound.empty():
            self._outbound.get_nowait()
            self._outbound.task_done()

    def snapshot(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "status": self.status.value,
            "pushSourceHandle": self.state.push_source_handle,
            "pullSourceHandle": self.state.pull_source_handle,
            "watermark": self.state.watermark.isoformat() if self.state.watermark else None,
            "subscriberCount": self.state.subscriber_count,
            "deliveryFailures": sum(self.hub.failures.values()),
        }


SessionFactory = Callable[[str, Callable[[AggregationSession], Awaitable[None]]], AggregationSession]


class SessionRegistry:
    """Independent aggregation sessions keyed by session id."""

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory
        self._sessions: Dict[str, AggregationSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def get(self, session_id: str) -> Optional[AggregationSession]:
        return self._sessions.get(session_id)

    def get_or_create(self, session_id: str) -> AggregationSession:
        session = self._sessions.get(session_id)
        if session is None:
            session = self._session_factory(session_id, self.discard)
            self._sessions[session_id] = session
            logger.info(f"Created session {session_id}")
        return session

    def sessions(self):
        return list(self._sessions.values())

    async def discard(self, session: AggregationSession) -> None:
        """Drops an idle session nobody listens to any more and closes its connectors."""
        if self._sessions.get(session.session_id) is not session:
            return
        if session.hub.current_count() > 0 or session.status is not SessionStatus.IDLE:
            return
        del self._sessions[session.session_id]
        logger.info(f"Discarded session {session.session_id}")
        await session.close()

    async def close_all(self) -> None:
        sessions, self._sessions = list(self._sessions.values()), {}
        for session in sessions:
            await session.close()
