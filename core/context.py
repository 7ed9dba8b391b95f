import logging
from pathlib import Path
from typing import Optional

import httpx

from config import BASE_DIR
from core.background import TaskRegistry
from core.config_store import ConfigStore
from core.downloads import DownloadManager
from core.events import EventEmitter
from core.job_manager import JobManager
from core.job_store import JobStore
from core.resolver import BinaryResolver
from core.summarizer import OllamaClient

logger = logging.getLogger(__name__)


class AppContext:
    """Everything the API needs, built once at startup from a data directory."""

    def __init__(self, data_dir: Optional[Path] = None,
                 resolver: Optional[BinaryResolver] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.data_dir = Path(data_dir) if data_dir else BASE_DIR
        self.index_path  = self.data_dir / "index.json"
        self.config_path = self.data_dir / "config.json"
        self.jobs_dir    = self.data_dir / "jobs"
        self.models_dir  = self.data_dir / "models"
        self.whisper_dir = self.data_dir / "whisper"
        self.ffmpeg_dir  = self.data_dir / "ffmpeg"
        for d in (self.jobs_dir, self.models_dir, self.whisper_dir, self.ffmpeg_dir):
            d.mkdir(parents=True, exist_ok=True)

        self.config = ConfigStore(self.config_path)
        self.store = JobStore(self.index_path)
        self.events = EventEmitter()
        self.tasks = TaskRegistry()
        self.resolver = resolver or BinaryResolver(self.data_dir)
        self.downloads = DownloadManager(self.models_dir, self.whisper_dir, self.ffmpeg_dir,
                                         self.tasks, self.events, transport=transport)
        self.summarizer = OllamaClient(transport=transport)
        self.job_manager = JobManager(self.store, self.config, self.resolver, self.events,
                                      self.tasks, self.jobs_dir, self.summarizer)
        logger.info(f"Data directory: {self.data_dir}")

    async def start(self):
        await self.job_manager.start()

    async def stop(self):
        await self.job_manager.stop()
        await self.tasks.cancel_all()
