"""
Dispatch Service Module for livechat-relay
Moves events from a session's outbound queue to its subscribers.
"""
import asyncio

from .base_service import BaseService


class DispatchService(BaseService):
    def __init__(self, shared_resources, hub):
        super().__init__(shared_resources)
        self.hub = hub
        self.outbound_queue = self.queues.get("outbound")
        if self.outbound_queue is None:
            raise ValueError("DispatchService needs an 'outbound' queue in shared_resources.")

    async def run_worker(self):
        try:
            while True:
                event = await self.outbound_queue.get()
                try:
                    delivered = await self.hub.broadcast(event)
                    self.logger.debug(f"Broadcast {event.kind} to {delivered} subscribers")
                except Exception as e:
                    self.logger.error(f"Broadcast failed: {e}", exc_info=True)
                finally:
                    self.outbound_queue.task_done()
        except asyncio.CancelledError:
            self.logger.debug(f"{self.__class__.__name__} cancelled.")
