"""
Base Service Module for livechat-relay
Defines the abstract base class for the session's background workers.
"""
import asyncio
import logging
from abc import ABC, abstractmethod


class BaseService(ABC):
    def __init__(self, shared_resources=None):
        shared_resources = shared_resources or {}
        self.config = shared_resources.get("config", {})
        self.logger = shared_resources.get("logger") or logging.getLogger(self.__class__.__name__)
        self.queues = shared_resources.get("queues", {})
        self.shared_resources = shared_resources
        self._task = None

    @abstractmethod
    async def run_worker(self):
        """The main logic for the service worker. Must be implemented by subclasses."""
        pass

    async def start(self):
        """Starts the service worker as an asyncio task."""
        if not self._task or self._task.done():
            self._task = asyncio.create_task(self.run_worker(), name=self.__class__.__name__)
            self.logger.debug(f"{self.__class__.__name__} started.")
        else:
            self.logger.warning(f"{self.__class__.__name__} is already running.")

    async def stop(self):
        """Stops the service worker. Safe to call repeatedly."""
        task, self._task = self._task, None
        if task is None:
            return
        if task is asyncio.current_task():
            # Stopping from inside the worker: it finishes on its own once it returns.
            return
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            self.logger.debug(f"{self.__class__.__name__} cancelled successfully.")
        except Exception as e:
            self.logger.error(f"Error during {self.__class__.__name__} shutdown: {e}")

    def is_running(self):
        """Checks if the service worker task is currently running."""
        return self._task is not None and not self._task.done()
