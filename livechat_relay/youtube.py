# youtube.py
import asyncio
import logging
import os.path
import pickle
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httplib2
from dateutil.parser import isoparse
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import Resource, build
from googleapiclient.errors import HttpError

from livechat_relay.data_models import MessageSource, NormalizedMessage
from livechat_relay.errors import FeedEnded, FetchError, ResolveError, TerminalReason
from livechat_relay.livechat_utils import retry_with_backoff

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 200

# Error reasons reported by the YouTube Data API that mean the feed is gone for good.
TERMINAL_REASONS = {
    "liveChatEnded": TerminalReason.CHAT_ENDED,
    "liveChatNotFound": TerminalReason.CHAT_ENDED,
    "liveChatDisabled": TerminalReason.CHAT_ENDED,
    "quotaExceeded": TerminalReason.QUOTA_EXHAUSTED,
    "dailyLimitExceeded": TerminalReason.QUOTA_EXHAUSTED,
}

# Failures below the HTTP layer: sockets, timeouts, httplib2 and credential refresh.
TRANSPORT_ERRORS = (OSError, httplib2.HttpLib2Error, GoogleAuthError)


@dataclass(frozen=True)
class RawFeedItem:
    """One live chat item as returned by the pull transport, before normalization."""
    id: str
    author: str
    text: str
    published_at: datetime
    is_chat_sponsor: bool = False
    is_moderator: bool = False
    is_owner: bool = False


@dataclass
class PollResult:
    """
    Outcome of a single poll. The session applies it; the connector never
    stores the watermark itself.
    """
    messages: List[NormalizedMessage] = field(default_factory=list)
    watermark: Optional[datetime] = None
    terminal: bool = False
    terminal_reason: Optional[TerminalReason] = None
    error: Optional[str] = None


class PullTransport(Protocol):
    """What YouTubeConnector needs from a paginated live chat API."""

    async def search_active_feed(self, channel_id: str) -> Optional[str]: ...

    async def fetch_batch(self, feed_id: str, max_results: int) -> Sequence[RawFeedItem]: ...


def is_privileged_author(item: RawFeedItem) -> bool:
    """Channel members (sponsors), moderators and the owner count as privileged."""
    return bool(item.is_chat_sponsor or item.is_moderator or item.is_owner)


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


class YouTubeConnector:
    """
    Pull connector for YouTube live chat.

    `poll` filters every batch against the watermark the caller passes in:
    only items published strictly after it are returned, and the returned
    watermark is the publish time of the newest item in the batch.
    """
    platform = "YouTube"

    def __init__(self, transport: PullTransport, batch_size: int = DEFAULT_BATCH_SIZE):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive.")
        self._transport = transport
        self.batch_size = batch_size

    @classmethod
    def create(cls, config: Dict[str, Any], batch_size: int = DEFAULT_BATCH_SIZE) -> Optional["YouTubeConnector"]:
        """Builds a connector backed by the YouTube Data API, or None when YouTube is disabled."""
        if not config.get("enabled"):
            logger.info("YouTube connector disabled (YT_FETCH off or credentials missing).")
            return None
        transport = YouTubeDataApi(
            api_key=config.get("api_key"),
            client_secret_file=config.get("client_secret_file"),
        )
        return cls(transport, batch_size=batch_size)

    async def resolve_feed(self, channel_id: str) -> Optional[str]:
        """
        Finds the live chat id of the channel's current livestream.

        Returns None when nothing is live. Raises FetchError if the lookup itself failed,
        FeedEnded if the API refuses it for good (quota, disabled chat).
        """
        if not channel_id:
            return None
        try:
            feed = await self._transport.search_active_feed(channel_id)
        except TRANSPORT_ERRORS as e:
            raise FetchError(f"Network error looking up live stream for {channel_id}: {e!r}") from e
        if feed:
            logger.info(f"Found YouTube Live Chat ID: {feed}")
        else:
            logger.info(f"No active YouTube live chat for channel {channel_id}")
        return feed

    async def poll(self, feed: str, watermark: Optional[datetime]) -> PollResult:
        try:
            items = await self._transport.fetch_batch(feed, self.batch_size)
        except FeedEnded as e:
            logger.info(f"YouTube live chat {feed} has ended ({e.reason.value}). Stopping polling.")
            return PollResult(watermark=watermark, terminal=True, terminal_reason=e.reason)
        except FetchError as e:
            logger.error(f"Error fetching YouTube messages: {e}")
            return PollResult(watermark=watermark, error=str(e))
        except TRANSPORT_ERRORS as e:
            logger.error(f"Network error fetching YouTube messages: {e!r}")
            return PollResult(watermark=watermark, error=repr(e))

        if not items:
            return PollResult(watermark=watermark)

        ordered = sorted(items, key=lambda item: _as_utc(item.published_at))
        fresh = [
            item for item in ordered
            if watermark is None or _as_utc(item.published_at) > watermark
        ]

        newest = _as_utc(ordered[-1].published_at)
        new_watermark = newest if watermark is None else max(watermark, newest)

        if len(fresh) < len(ordered):
            logger.debug(f"Filtered {len(ordered) - len(fresh)} already delivered YouTube messages")
        return PollResult(messages=[self.normalize(item) for item in fresh], watermark=new_watermark)

    def normalize(self, item: RawFeedItem) -> NormalizedMessage:
        return NormalizedMessage(
            id=item.id,
            source=MessageSource.PULL,
            author=item.author,
            text=item.text or "",
            is_privileged=is_privileged_author(item),
            platform=self.platform,
            timestamp=_as_utc(item.published_at),
        )

    async def close(self) -> None:
        close = getattr(self._transport, "close", None)
        if close is not None:
            await close()


def error_reasons(error: HttpError) -> List[str]:
    """The machine-readable `reason` codes carried by a Data API error."""
    details = getattr(error, "error_details", None) or []
    if isinstance(details, dict):
        details = [details]
    if not isinstance(details, list):
        return []
    return [d["reason"] for d in details if isinstance(d, dict) and d.get("reason")]


def _raise_for_http_error(error: HttpError, action: str) -> None:
    for reason in error_reasons(error):
        if reason in TERMINAL_REASONS:
            raise FeedEnded(TERMINAL_REASONS[reason], detail=f"{action}: {reason}") from error
    status = getattr(error.resp, "status", None)
    raise FetchError(f"HTTP error {status} while {action}: {error}") from error


class YouTubeDataApi:
    """
    PullTransport over the YouTube Data API v3.
    Authenticates with an API key, or with an OAuth client secret file when no key is given.
    """
    SCOPES = ['https://www.googleapis.com/auth/youtube.readonly']

    def __init__(self, api_key: Optional[str] = None, client_secret_file: Optional[str] = None,
                 resource: Optional[Resource] = None, token_file: str = 'token.pickle'):
        if resource is None and not api_key and not client_secret_file:
            raise ValueError("YouTube needs either an api_key or a client_secret_file.")
        self.client_secret_file = client_secret_file
        self.token_file = token_file
        if resource is not None:
            self.youtube = resource
        elif api_key:
            self.youtube = build('youtube', 'v3', developerKey=api_key)
        else:
            self.youtube = build('youtube', 'v3', credentials=self._load_credentials())

    def _load_credentials(self):
        """Loads or refreshes user credentials for OAuth2."""
        creds = None
        if os.path.exists(self.token_file):
            with open(self.token_file, 'rb') as token:
                creds = pickle.load(token)

        if not creds or not creds.valid:
            if creds and creds.expired and creds.refresh_token:
                logger.info("Refreshing expired YouTube credentials.")
                creds.refresh(Request())
            else:
                logger.info("Fetching new YouTube credentials via OAuth flow.")
                if not os.path.exists(self.client_secret_file):
                    raise FileNotFoundError(f"YouTube client secret JSON not found at path: {self.client_secret_file}")
                flow = InstalledAppFlow.from_client_secrets_file(self.client_secret_file, self.SCOPES)
                creds = flow.run_local_server(port=0)

            with open(self.token_file, 'wb') as token:
                pickle.dump(creds, token)

        logger.info("YouTube credentials loaded successfully.")
        return creds

    @retry_with_backoff(max_retries=3, initial_delay=2, backoff_factor=2, exceptions=(FetchError,))
    async def search_active_feed(self, channel_id: str) -> Optional[str]:
        """Live chat id of the channel's active livestream, or None if it is not live."""
        def _search():
            return self.youtube.search().list(
                part="snippet",
                channelId=channel_id,
                eventType="live",
                maxResults=1,
                type="video",
            ).execute()

        def _details(video_id):
            return self.youtube.videos().list(
                part='liveStreamingDetails',
                id=video_id,
            ).execute()

        try:
            response = await asyncio.to_thread(_search)
            if not response.get('items'):
                return None
            video_id = response['items'][0]['id']['videoId']

            response = await asyncio.to_thread(_details, video_id)
        except HttpError as e:
            status = getattr(e.resp, "status", None)
            if status in (400, 404) and not any(r in TERMINAL_REASONS for r in error_reasons(e)):
                raise ResolveError(f"YouTube rejected the lookup for {channel_id} (HTTP {status}): {e}") from e
            _raise_for_http_error(e, f"looking up live stream for {channel_id}")
        except TRANSPORT_ERRORS as e:
            raise FetchError(f"Network error looking up live stream for {channel_id}: {e!r}") from e

        items = response.get('items') or []
        if not items or 'liveStreamingDetails' not in items[0]:
            logger.warning("Livestream found, but it has no live chat details. It may have ended.")
            return None
        return items[0]['liveStreamingDetails'].get('activeLiveChatId')

    async def fetch_batch(self, feed_id: str, max_results: int) -> List[RawFeedItem]:
        def _execute_request():
            return self.youtube.liveChatMessages().list(
                liveChatId=feed_id,
                part='snippet,authorDetails',
                maxResults=max_results,
            ).execute()

        try:
            response = await asyncio.to_thread(_execute_request)
        except HttpError as e:
            _raise_for_http_error(e, "fetching live chat messages")
        except TRANSPORT_ERRORS as e:
            raise FetchError(f"Network error fetching live chat messages: {e!r}") from e

        try:
            return [self._parse_item(item) for item in response.get('items', [])]
        except (KeyError, ValueError, TypeError) as e:
            raise FetchError(f"Malformed live chat response: {e}") from e

    async def close(self) -> None:
        self.youtube.close()

    @staticmethod
    def _parse_item(item: Dict[str, Any]) -> RawFeedItem:
        snippet = item['snippet']
        author = item.get('authorDetails', {})
        return RawFeedItem(
            id=item['id'],
            author=author.get('displayName', ''),
            text=snippet.get('displayMessage') or '',
            published_at=_as_utc(isoparse(snippet['publishedAt'])),
            is_chat_sponsor=bool(author.get('isChatSponsor')),
            is_moderator=bool(author.get('isChatModerator')),
            is_owner=bool(author.get('isChatOwner')),
        )
