# hub.py
import asyncio
import logging
import uuid
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, Optional

from livechat_relay.data_models import ChatEvent

logger = logging.getLogger(__name__)

SendFunc = Callable[[Dict[str, Any]], Awaitable[None]]


class SubscriberHub:
    """
    Explicit registry of subscriber connections.

    Every broadcast goes to the subscribers registered at the moment of the
    call. A slow or broken subscriber only costs its own delivery: each send
    is bounded by `send_timeout` and failures are counted per subscriber.
    """

    def __init__(self, on_empty: Optional[Callable[[], None]] = None, send_timeout: float = 5.0):
        self._subscribers: Dict[str, SendFunc] = {}
        self._on_empty = on_empty
        self.send_timeout = send_timeout
        self.failures: Dict[str, int] = defaultdict(int)

    def register(self, send: SendFunc) -> str:
        subscriber_id = uuid.uuid4().hex
        self._subscribers[subscriber_id] = send
        logger.info(f"Subscriber {subscriber_id} registered ({len(self._subscribers)} connected)")
        return subscriber_id

    def unregister(self, subscriber_id: str) -> None:
        if self._subscribers.pop(subscriber_id, None) is None:
            return
        self.failures.pop(subscriber_id, None)
        remaining = len(self._subscribers)
        logger.info(f"Subscriber {subscriber_id} left ({remaining} connected)")
        if remaining == 0 and self._on_empty is not None:
            self._on_empty()

    def current_count(self) -> int:
        return len(self._subscribers)

    async def broadcast(self, event: ChatEvent) -> int:
        """Delivers `event` to every registered subscriber. Returns how many got it."""
        targets = list(self._subscribers.items())
        if not targets:
            return 0
        payload = event.to_dict()
        results = await asyncio.gather(*(self._deliver(sid, send, payload) for sid, send in targets))
        return sum(results)

    async def _deliver(self, subscriber_id: str, send: SendFunc, payload: Dict[str, Any]) -> bool:
        try:
            await asyncio.wait_for(send(payload), timeout=self.send_timeout)
            return True
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Still registered? count it; the transport unregisters dead sockets itself.
            if subscriber_id in self._subscribers:
                self.failures[subscriber_id] += 1
            logger.warning(f"Delivery to subscriber {subscriber_id} failed: {e!r}")
            return False
