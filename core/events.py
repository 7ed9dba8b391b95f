import logging
from typing import Callable, Awaitable, List

from schemas.models import Job

logger = logging.getLogger(__name__)

JOB_UPDATED = "job:updated"
JOB_LOG     = "job:log"


class EventEmitter:
    """Fire-and-forget fan-out of job notifications to registered callbacks."""

    def __init__(self):
        self.callbacks: List[Callable[[dict], Awaitable[None]]] = []

    def add_callback(self, callback: Callable[[dict], Awaitable[None]]):
        self.callbacks.append(callback)

    async def emit(self, event_data: dict):
        for cb in self.callbacks:
            try:
                await cb(event_data)
            except Exception as e:
                logger.error(f"Error in event callback: {e}")

    async def job_updated(self, job: Job):
        await self.emit({"event": JOB_UPDATED, "job": job.to_dict()})

    async def job_log(self, job_id: str, line: str):
        await self.emit({"event": JOB_LOG, "id": job_id, "line": line})
