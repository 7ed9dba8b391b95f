import asyncio
import dataclasses
import logging
import os
import threading
import time
from pathlib import Path
from typing import Dict, Optional

import httpx

from config import USER_AGENT, HEAD_TIMEOUT, PROBE_TIMEOUT
from schemas.models import ArtifactStatus, DownloadState
from core.background import TaskRegistry
from core.errors import AppError, NetworkError, StorageError, ConcurrencyConflict
from core.events import EventEmitter
from core.installer import extract_whisper_zip, extract_ffmpeg_zip, make_executable
from core.model_manager import model_filename, model_url
from core.releases import resolve_whisper_download_url, latest_whisper_release_url
from core.resolver import ensure_lgpl_ffmpeg

logger = logging.getLogger(__name__)

WHISPER_KEY = "whisper-binary"
FFMPEG_KEY  = "ffmpeg"
CHUNK_SIZE  = 64 * 1024
LOCK_TIMEOUT = 10.0


def now_ts() -> int:
    return int(time.time())


class DownloadManager:
    """Downloads and installs models and binaries in the background.

    One status entry per artifact key; a key that is already downloading is
    never started twice, so two writers can't race on the same file.
    """

    def __init__(self, models_dir: Path, whisper_dir: Path, ffmpeg_dir: Path,
                 tasks: TaskRegistry, events: Optional[EventEmitter] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.models_dir = models_dir
        self.whisper_dir = whisper_dir
        self.ffmpeg_dir = ffmpeg_dir
        self.tasks = tasks
        self.events = events
        self.transport = transport
        self._lock = threading.Lock()
        self._statuses: Dict[str, ArtifactStatus] = {}

    def _client(self, **kwargs) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport, follow_redirects=True,
                                 headers={"User-Agent": USER_AGENT}, **kwargs)

    def _acquire(self):
        if not self._lock.acquire(timeout=LOCK_TIMEOUT):
            raise ConcurrencyConflict("download status map is busy")

    # -- status map --

    def get_status(self, key: str, repo_id: str = "whisper.cpp") -> ArtifactStatus:
        self._acquire()
        try:
            status = self._statuses.get(key)
            return dataclasses.replace(status) if status else ArtifactStatus(key=key, repo_id=repo_id)
        finally:
            self._lock.release()

    def _publish(self, status: ArtifactStatus):
        self._acquire()
        try:
            self._statuses[status.key] = dataclasses.replace(status)
        finally:
            self._lock.release()

    def _in_flight(self, key: str) -> Optional[ArtifactStatus]:
        self._acquire()
        try:
            existing = self._statuses.get(key)
            if existing and existing.state == DownloadState.DOWNLOADING:
                return dataclasses.replace(existing)
            return None
        finally:
            self._lock.release()

    def _claim(self, key: str, repo_id: str, message: str):
        """Atomically marks key as downloading. Returns (status, started_new)."""
        self._acquire()
        try:
            existing = self._statuses.get(key)
            if existing and existing.state == DownloadState.DOWNLOADING:
                return dataclasses.replace(existing), False
            status = ArtifactStatus(
                key=key,
                repo_id=repo_id,
                state=DownloadState.DOWNLOADING,
                message=message,
                started_at=now_ts(),
            )
            self._statuses[key] = status
            return dataclasses.replace(status), True
        finally:
            self._lock.release()

    def _launch(self, status: ArtifactStatus, job):
        async def _runner():
            result = dataclasses.replace(status)
            try:
                await job(result)
            except asyncio.CancelledError:
                result.state = DownloadState.ERROR
                result.message = "Download cancelled"
                self._publish(result)
                raise
            except (AppError, OSError, httpx.HTTPError) as e:
                result.state = DownloadState.ERROR
                result.message = str(e)
                logger.error(f"Download of {status.key} failed: {e}")
                await self._notify(status.key, f"Download of {status.key} failed: {e}")
                self._publish(result)
                return
            except Exception as e:
                # Never leave a key stuck in DOWNLOADING; the registry logs the traceback
                result.state = DownloadState.ERROR
                result.message = f"Unexpected error: {e}"
                await self._notify(status.key, f"Download of {status.key} failed: {e}")
                self._publish(result)
                raise
            result.state = DownloadState.DONE
            result.finished_at = now_ts()
            result.message = "Download complete"
            logger.info(f"Download of {status.key} complete")
            await self._notify(status.key, "Download complete")
            # Last step: a retry may claim the key as soon as this is visible
            self._publish(result)

        self.tasks.spawn(f"download:{status.key}", _runner())

    async def _notify(self, key: str, line: str):
        if self.events:
            await self.events.job_log(f"{key}-download", line)

    async def wait(self, key: str):
        await self.tasks.wait(f"download:{key}")

    # -- transfer --

    async def download_to_file(self, url: str, dest: Path, status: ArtifactStatus):
        """Streams url into dest, publishing byte counters after every chunk."""
        dest.parent.mkdir(parents=True, exist_ok=True)
        # No timeout on the transfer itself
        async with self._client(timeout=None) as client:
            try:
                async with client.stream("GET", url) as response:
                    if not response.is_success:
                        body = (await response.aread()).decode("utf-8", "replace")
                        raise NetworkError(f"Download failed ({response.status_code}): {body[:500]}")
                    length = response.headers.get("Content-Length")
                    if length and length.isdigit():
                        status.total_bytes = int(length)
                        self._publish(status)
                    with open(dest, "wb") as f:
                        async for chunk in response.aiter_bytes(chunk_size=CHUNK_SIZE):
                            f.write(chunk)
                            status.downloaded_bytes += len(chunk)
                            self._publish(status)
            except httpx.TimeoutException as e:
                raise NetworkError(f"Download timed out: {e}") from e
            except httpx.HTTPError as e:
                raise NetworkError(f"Request failed: {e}") from e

    # -- artifacts --

    async def get_model_size(self, model_size: str) -> int:
        try:
            url = model_url(model_size)
        except AppError:
            return 0
        try:
            async with self._client(timeout=HEAD_TIMEOUT) as client:
                resp = await client.head(url)
        except httpx.HTTPError:
            return 0
        length = resp.headers.get("Content-Length", "")
        return int(length) if length.isdigit() else 0

    async def start_model_download(self, model_size: str) -> ArtifactStatus:
        filename = model_filename(model_size)
        url = model_url(model_size)
        dest_path = self.models_dir / filename
        tmp_path = self.models_dir / f"{filename}.part"

        status, started = self._claim(model_size, "whisper.cpp", f"Downloading {filename}")
        if not started:
            return status

        async def job(result: ArtifactStatus):
            await self.download_to_file(url, tmp_path, result)
            try:
                os.replace(tmp_path, dest_path)
            except OSError as e:
                raise StorageError(f"Finalize error: {e}") from e

        self._launch(status, job)
        return status

    async def start_whisper_download(self, url: str) -> ArtifactStatus:
        existing = self._in_flight(WHISPER_KEY)
        if existing:
            return existing
        async with self._client() as client:
            resolved = await resolve_whisper_download_url(url, client)

        bin_dir = self.whisper_dir / "bin"
        dest_path = bin_dir / ("whisper.exe" if os.name == "nt" else "whisper")
        tmp_path = bin_dir / "whisper.part"

        status, started = self._claim(WHISPER_KEY, "whisper.cpp", "Downloading whisper.cpp binary")
        if not started:
            return status

        async def job(result: ArtifactStatus):
            await self.download_to_file(resolved, tmp_path, result)
            if resolved.split("?", 1)[0].lower().endswith(".zip"):
                await asyncio.to_thread(extract_whisper_zip, tmp_path, dest_path)
                tmp_path.unlink(missing_ok=True)
            else:
                try:
                    os.replace(tmp_path, dest_path)
                except OSError as e:
                    raise StorageError(f"Finalize error: {e}") from e
                make_executable(dest_path)

        self._launch(status, job)
        return status

    async def start_ffmpeg_download(self, url: str) -> ArtifactStatus:
        url = url.strip()
        if not url:
            raise NetworkError("FFmpeg download URL is empty.")
        url = url.replace("http://", "https://", 1)
        bin_dir = self.ffmpeg_dir / "bin"
        tmp_path = self.ffmpeg_dir / "ffmpeg.part"
        ffmpeg_path = bin_dir / ("ffmpeg.exe" if os.name == "nt" else "ffmpeg")

        status, started = self._claim(FFMPEG_KEY, "ffmpeg", "Downloading FFmpeg")
        if not started:
            return status

        async def job(result: ArtifactStatus):
            await self.download_to_file(url, tmp_path, result)
            if url.split("?", 1)[0].lower().endswith(".zip"):
                await asyncio.to_thread(extract_ffmpeg_zip, tmp_path, self.ffmpeg_dir)
                tmp_path.unlink(missing_ok=True)
            else:
                bin_dir.mkdir(parents=True, exist_ok=True)
                try:
                    os.replace(tmp_path, ffmpeg_path)
                except OSError as e:
                    raise StorageError(f"Finalize error: {e}") from e
                make_executable(ffmpeg_path)
            await asyncio.to_thread(ensure_lgpl_ffmpeg, ffmpeg_path)

        self._launch(status, job)
        return status

    async def latest_whisper_url(self) -> str:
        async with self._client(timeout=PROBE_TIMEOUT) as client:
            return await latest_whisper_release_url(client)
