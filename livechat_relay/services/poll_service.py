"""
Poll Service Module for livechat-relay
Drives the pull connector on a fixed cadence as a cancellable task owned by a session.
"""
import asyncio

from livechat_relay.livechat_utils import backoff_delay
from .base_service import BaseService


class PollService(BaseService):
    def __init__(self, shared_resources, poll_once):
        """
        poll_once: coroutine function returning a PollResult, or None once the
                   feed handle it was started for is no longer current.
        """
        super().__init__(shared_resources)
        self.poll_once = poll_once
        self.poll_interval = self.config.get("poll_interval_s", 10)
        self.backoff_max = self.config.get("poll_backoff_max_s", 60)
        self.immediate_poll_event = asyncio.Event()
        self.consecutive_errors = 0
        self.polls = 0

    def trigger_immediate_poll(self):
        """Skip the rest of the current wait and poll right away."""
        self.immediate_poll_event.set()

    def next_delay(self):
        return backoff_delay(self.poll_interval, self.consecutive_errors, 2, self.backoff_max)

    async def run_worker(self):
        self.logger.info(f"Polling every {self.poll_interval}s.")
        try:
            while True:
                await self._wait_for_next_poll()
                try:
                    result = await self.poll_once()
                except Exception as e:
                    self.logger.error(f"Unexpected error while polling: {e}", exc_info=True)
                    self.consecutive_errors += 1
                    continue

                self.polls += 1
                if result is None or result.terminal:
                    break
                self.consecutive_errors = self.consecutive_errors + 1 if result.error else 0
        except asyncio.CancelledError:
            self.logger.info(f"{self.__class__.__name__} cancelled.")
        finally:
            self.logger.info(f"{self.__class__.__name__} stopped after {self.polls} polls.")

    async def _wait_for_next_poll(self):
        """Wait for either the poll interval (stretched by backoff) OR an immediate poll request."""
        delay = self.next_delay()
        try:
            await asyncio.wait_for(self.immediate_poll_event.wait(), timeout=delay)
            self.logger.debug("Immediate poll requested")
        except asyncio.TimeoutError:
            pass
        finally:
            self.immediate_poll_event.clear()
