import asyncio
import os
import sys
from datetime import datetime, timedelta, timezone

import pytest
from dotenv import load_dotenv

# Add the project's root directory to sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

load_dotenv()  # get .env file variables

from livechat_relay.session import AggregationSession  # noqa: E402
from livechat_relay.twitch import RawChatMessage, TwitchConnector  # noqa: E402
from livechat_relay.youtube import RawFeedItem, YouTubeConnector  # noqa: E402

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)

FAST_SETTINGS = {
    "poll_interval_s": 0.01,
    "poll_backoff_max_s": 0.05,
    "skip_backlog": False,
    "broadcast_timeout_s": 1,
}


def at(seconds):
    """A fixed point in time `seconds` after BASE_TIME."""
    return BASE_TIME + timedelta(seconds=seconds)


class FakePushTransport:
    """In-memory stand-in for the Twitch chat connection."""

    def __init__(self, identity="bot", connect_error=None, join_error=None, join_gate=None):
        self.identity = identity
        self.connected = False
        self.connect_error = connect_error
        self.join_error = join_error
        self.join_gate = join_gate
        self.connect_calls = 0
        self.joined = []
        self.parted = []
        self.closed = False
        self._handler = None

    def set_message_handler(self, handler):
        self._handler = handler

    async def connect(self):
        self.connect_calls += 1
        if self.connect_error:
            raise self.connect_error
        self.connected = True

    async def join(self, channel):
        if self.join_gate is not None:
            await self.join_gate.wait()
        if self.join_error:
            raise self.join_error
        self.joined.append(channel)

    async def part(self, channel):
        self.parted.append(channel)

    async def close(self):
        self.closed = True
        self.connected = False

    async def deliver(self, raw):
        await self._handler(raw)


class FakePullTransport:
    """In-memory stand-in for the YouTube live chat API. Batches may be exceptions."""

    def __init__(self, feed="live-chat-1", batches=None):
        self.feed = feed
        self.batches = list(batches or [])
        self.search_calls = []
        self.fetch_calls = []

    async def search_active_feed(self, channel_id):
        self.search_calls.append(channel_id)
        if isinstance(self.feed, Exception):
            raise self.feed
        return self.feed

    async def fetch_batch(self, feed_id, max_results):
        self.fetch_calls.append((feed_id, max_results))
        if not self.batches:
            return []
        batch = self.batches.pop(0)
        if isinstance(batch, Exception):
            raise batch
        return batch


class Recorder:
    """A subscriber that keeps everything it is sent."""

    def __init__(self):
        self.received = []

    async def send(self, payload):
        self.received.append(payload)

    def events(self, kind):
        return [p["data"] for p in self.received if p["event"] == kind]


def raw_chat(id="1", author="viewer", author_id=None, text="hello", **kwargs):
    return RawChatMessage(id=id, author=author, author_id=author_id or author, text=text, **kwargs)


def feed_item(id, seconds, author="viewer", text=None, **kwargs):
    return RawFeedItem(id=id, author=author, text=text if text is not None else f"msg {id}",
                       published_at=at(seconds), **kwargs)


@pytest.fixture
def push_transport():
    return FakePushTransport()


@pytest.fixture
def pull_transport():
    return FakePullTransport()


@pytest.fixture
def make_session():
    """Builds an AggregationSession over fake transports."""
    def _make(push=None, pull=None, settings=None, on_idle=None, session_id="test"):
        merged = dict(FAST_SETTINGS)
        merged.update(settings or {})
        return AggregationSession(
            session_id,
            push_connector=TwitchConnector(push) if push is not None else None,
            pull_connector=YouTubeConnector(pull) if pull is not None else None,
            settings=merged,
            on_idle=on_idle,
        )
    return _make


@pytest.fixture
def wait_until():
    """Polls `predicate` until it holds or `timeout` seconds pass."""
    async def _wait(predicate, timeout=2.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.005)
    return _wait
