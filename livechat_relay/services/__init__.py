from .base_service import BaseService
from .dispatch_service import DispatchService
from .poll_service import PollService

__all__ = ["BaseService", "DispatchService", "PollService"]
