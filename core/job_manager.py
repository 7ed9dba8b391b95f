import asyncio
import logging
import shutil
from pathlib import Path
from typing import Callable, List, Optional

from schemas.models import Job, JobStatus, JobStage, SummaryStatus, SummaryResult, Segment
from core.background import TaskRegistry
from core.config_store import ConfigStore
from core.errors import AppError, NotFoundError, StorageError, ConcurrencyConflict
from core.events import EventEmitter
from core.job_store import JobStore
from core.media_processor import convert_to_wav, ensure_clip
from core.model_manager import check_ram_availability
from core.process import map_progress
from core.resolver import BinaryResolver
from core.summarizer import OllamaClient, read_transcript_text, write_summary_file
from core.transcriber import (
    run_whisper_cpp, output_paths, write_stub_artifacts, load_segments, STUB_PREVIEW,
)

logger = logging.getLogger(__name__)

CONVERT_PROGRESS = 0.10
TRANSCRIBE_START = 0.30
TRANSCRIBE_END   = 0.90
READY_PREVIEW    = "Transcript ready."


def build_job_audio_path(jobs_dir: Path, job_id: str, source_path: Path) -> Path:
    ext = source_path.suffix.lstrip(".")
    filename = f"audio.original.{ext}" if ext else "audio.original"
    return jobs_dir / job_id / filename


class JobManager:
    """
    Owns the worker queue and runs the transcription pipeline.

    Exactly one consumer task pulls job ids off the queue, so only one
    convert/transcribe pipeline runs at any time. Summaries run outside the
    queue as tracked background tasks.
    """

    def __init__(self, store: JobStore, config: ConfigStore, resolver: BinaryResolver,
                 events: EventEmitter, tasks: TaskRegistry, jobs_dir: Path,
                 summarizer: Optional[OllamaClient] = None):
        self.store = store
        self.config = config
        self.resolver = resolver
        self.events = events
        self.tasks = tasks
        self.jobs_dir = jobs_dir
        self.summarizer = summarizer or OllamaClient()
        self._job_queue: asyncio.Queue = asyncio.Queue()
        self._process_queue_task = None
        self._stopped = False

    # -- lifecycle --

    async def start(self):
        """Starts the single consumer of the job queue."""
        if self._process_queue_task is None:
            self._stopped = False
            self._process_queue_task = asyncio.create_task(self._process_jobs(), name="job-worker")

    async def stop(self):
        self._stopped = True
        if self._process_queue_task:
            self._process_queue_task.cancel()
            await asyncio.gather(self._process_queue_task, return_exceptions=True)
            self._process_queue_task = None

    async def join(self):
        """Waits until every enqueued job has been processed."""
        await self._job_queue.join()

    def enqueue(self, job_id: str):
        if self._stopped:
            raise ConcurrencyConflict("failed to enqueue job: worker has stopped")
        self._job_queue.put_nowait(job_id)

    # -- store + events --

    async def _update(self, job_id: str, mutator: Callable[[Job], None]) -> Optional[Job]:
        # Saved to disk before anyone hears about it
        snapshot = self.store.mutate(job_id, mutator)
        if snapshot is not None:
            await self.events.job_updated(snapshot)
        return snapshot

    async def _log(self, job_id: str, line: str):
        snapshot = await self._update(job_id, lambda job: job.push_log(line))
        if snapshot is not None:
            await self.events.job_log(job_id, line)

    async def _fail(self, job_id: str, message: str):
        def mark_error(job: Job):
            job.push_log(message)
            if job.status == JobStatus.RUNNING:
                job.status = JobStatus.ERROR
                job.stage = JobStage.ERROR
                job.error = message

        logger.error(f"Job {job_id} failed: {message}")
        if await self._update(job_id, mark_error) is not None:
            await self.events.job_log(job_id, message)

    def _is_running(self, job_id: str) -> bool:
        job = self.store.get(job_id)
        return job is not None and job.status == JobStatus.RUNNING

    # -- submission --

    async def create_job_from_path(self, path: str) -> Job:
        source = Path(path)
        if not source.is_file():
            raise NotFoundError(f"File not found: {path}")
        job = Job(filename=source.name or "unknown-audio")
        dest = build_job_audio_path(self.jobs_dir, job.id, source)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(shutil.copyfile, source, dest)
        except OSError as e:
            raise StorageError(f"failed to copy audio into job folder: {e}") from e
        job.audio_path = str(dest)
        job.push_log("Queued for processing.")
        snapshot = self.store.insert(job)
        await self.events.job_updated(snapshot)
        await self.events.job_log(snapshot.id, "Queued for processing.")
        self.enqueue(snapshot.id)
        return snapshot

    async def add_files(self, paths: List[str]) -> List[Job]:
        return [await self.create_job_from_path(p) for p in paths]

    async def cancel_job(self, job_id: str) -> bool:
        changed = []

        def cancel(job: Job):
            if job.status.is_terminal:
                return
            job.status = JobStatus.CANCELLED
            job.stage = JobStage.CANCELLED
            job.push_log("Job cancelled.")
            changed.append(True)

        await self._update(job_id, cancel)
        if changed:
            logger.info(f"Job {job_id} cancelled")
            await self.events.job_log(job_id, "Job cancelled.")
        return bool(changed)

    async def delete_job(self, job_id: str) -> bool:
        job = self.store.get(job_id)
        if job is None or not self.store.delete(job_id):
            return False
        job_dir = self.jobs_dir / job_id
        if job.status == JobStatus.RUNNING:
            logger.warning(f"Job {job_id} deleted while running; keeping {job_dir}")
        elif job_dir.is_dir():
            try:
                await asyncio.to_thread(shutil.rmtree, job_dir)
            except OSError as e:
                logger.error(f"Failed to remove {job_dir}: {e}")
        return True

    # -- worker --

    async def _process_jobs(self):
        """Continuously pulls job ids from the queue and processes them one by one."""
        while True:
            try:
                job_id = await self._job_queue.get()
            except asyncio.CancelledError:
                break
            try:
                await self.process_job(job_id)
            except asyncio.CancelledError:
                self._job_queue.task_done()
                break
            except Exception as e:
                logger.exception(f"Worker error on job {job_id}: {e}")
                await self._record_worker_error(job_id, e)
            self._job_queue.task_done()

    async def _record_worker_error(self, job_id: str, error: Exception):
        try:
            await self._fail(job_id, f"Worker error: {error}")
        except AppError as e:
            logger.error(f"Could not record worker error for {job_id}: {e}")
            await self.events.job_log(job_id, f"Worker error: {error}")

    async def process_job(self, job_id: str):
        """Drives one job through convert → transcribe → done."""
        cfg = self.config.snapshot()

        def begin(job: Job):
            if job.status != JobStatus.QUEUED:
                return
            job.status = JobStatus.RUNNING
            job.stage = JobStage.CONVERT
            job.error = None
            job.advance_progress(CONVERT_PROGRESS)
            job.push_log("Worker started.")

        job = await self._update(job_id, begin)
        if job is None or job.status != JobStatus.RUNNING or job.stage != JobStage.CONVERT:
            logger.info(f"Skipping job {job_id}: no longer queued")
            return
        await self.events.job_log(job_id, "Worker started.")

        audio_path = Path(job.audio_path)
        job_dir = audio_path.parent

        async def log_line(line: str):
            await self._log(job_id, line)

        async def on_progress(percent: float):
            mapped = map_progress(percent, TRANSCRIBE_START, TRANSCRIBE_END)
            await self._update(job_id, lambda j: self._advance(j, JobStage.TRANSCRIBE, mapped))

        output_base = job_dir / "whisper"
        try:
            ffmpeg_path = await asyncio.to_thread(self.resolver.resolve_ffmpeg)
            wav_path = job_dir / "audio.wav"
            if not wav_path.exists():
                await self._log(job_id, "Converting audio to 16k mono WAV...")
                await convert_to_wav(ffmpeg_path, audio_path, wav_path, on_line=log_line)
            if not self._is_running(job_id):
                return

            await self._update(job_id, lambda j: self._advance(j, JobStage.TRANSCRIBE, TRANSCRIBE_START))
            whisper_bin, whisper_model = await asyncio.to_thread(
                self.resolver.resolve_whisper, cfg.model_size
            )
            ram = check_ram_availability(cfg.model_size)
            if not ram["sufficient"]:
                await self._log(job_id, f"Low memory: {ram['available_gb']} GB available, "
                                        f"about {ram['required_gb']} GB needed for {cfg.model_size}.")
            await self._log(job_id, "Running whisper.cpp...")
            await run_whisper_cpp(whisper_bin, whisper_model, wav_path, output_base,
                                  cfg.language, on_progress, log_line)
        except AppError as e:
            await self._fail(job_id, str(e))
            return

        txt_path, json_path, srt_path = output_paths(output_base)
        if not txt_path.exists() or not json_path.exists():
            await self._log(job_id, "Whisper output missing; falling back to stub.")
            txt, seg, srt = write_stub_artifacts(job_dir)
            await self._finish(job_id, txt, seg, srt, STUB_PREVIEW, SummaryStatus.SKIPPED,
                               "Worker finished (stub).")
            return

        summary_status = SummaryStatus.NOT_STARTED if cfg.enable_summarization else SummaryStatus.SKIPPED
        done = await self._finish(job_id, txt_path, json_path, srt_path, READY_PREVIEW,
                                  summary_status, "Whisper finished.")
        if not done:
            return

        if cfg.enable_summarization and cfg.auto_summarize_after_transcription:
            await self._log(job_id, "Summarization queued.")
            self.tasks.spawn(
                f"summary:{job_id}",
                self.summarize_job_internal(job_id, cfg.ollama_base_url, cfg.ollama_model,
                                            cfg.summary_prompt, force=False),
            )
        else:
            await self._log(job_id, "Summarization skipped.")

    @staticmethod
    def _advance(job: Job, stage: JobStage, progress: float):
        if job.status == JobStatus.RUNNING:
            job.stage = stage
            job.advance_progress(progress)

    async def _finish(self, job_id: str, txt: Path, json_path: Path, srt: Path,
                      preview: str, summary_status: SummaryStatus, line: str) -> bool:
        finished = []

        def complete(job: Job):
            if job.status != JobStatus.RUNNING:
                return
            job.status = JobStatus.DONE
            job.stage = JobStage.DONE
            job.progress = 1.0
            job.transcript_txt_path = str(txt)
            job.transcript_json_path = str(json_path)
            job.transcript_srt_path = str(srt)
            job.md_preview = preview
            job.summary_status = summary_status
            job.push_log(line)
            finished.append(True)

        await self._update(job_id, complete)
        if finished:
            logger.info(f"Job {job_id} done")
            await self.events.job_log(job_id, line)
        return bool(finished)

    # -- results --

    def _require(self, job_id: str) -> Job:
        job = self.store.get(job_id)
        if job is None:
            raise NotFoundError("job not found")
        return job

    def get_segments(self, job_id: str) -> List[Segment]:
        job = self._require(job_id)
        if not job.transcript_json_path:
            return []
        return load_segments(Path(job.transcript_json_path))

    async def get_clip_path(self, job_id: str, start: float, end: float) -> str:
        job = self._require(job_id)
        audio_path = Path(job.audio_path)
        try:
            ffmpeg_path = await asyncio.to_thread(self.resolver.resolve_ffmpeg)
        except AppError as e:
            await self.events.job_log(job_id, str(e))
            return job.audio_path
        return str(await ensure_clip(ffmpeg_path, audio_path, audio_path.parent, start, end))

    # -- summaries --

    def get_summary(self, job_id: str) -> SummaryResult:
        job = self._require(job_id)
        status = job.summary_status
        model = job.summary_model or ""
        if job.summary_md and job.summary_md.strip():
            return SummaryResult(status or SummaryStatus.DONE, model, job.summary_error, job.summary_md)
        summary_path = Path(job.audio_path).parent / "summary.md"
        if job.audio_path and summary_path.exists():
            return SummaryResult(status or SummaryStatus.DONE, model, job.summary_error,
                                 read_transcript_text(summary_path))
        return SummaryResult(status or SummaryStatus.NOT_STARTED, model, job.summary_error, "")

    async def summarize_job(self, job_id: str) -> SummaryResult:
        """User-triggered summary. Returns immediately; the run happens in the background."""
        cfg = self.config.snapshot()
        if not cfg.enable_summarization:
            return SummaryResult(SummaryStatus.SKIPPED, cfg.ollama_model)

        job = self._require(job_id)
        if job.summary_status == SummaryStatus.RUNNING:
            return SummaryResult(SummaryStatus.RUNNING, job.summary_model or cfg.ollama_model,
                                 job.summary_error, job.summary_md or "")

        def mark_running(j: Job):
            j.summary_status = SummaryStatus.RUNNING
            j.summary_model = cfg.ollama_model
            j.summary_error = None

        await self._update(job_id, mark_running)
        await self._log(job_id, "Summarization started.")
        # A finished run may still be logging; let it exit so this run isn't refused
        await self.tasks.wait(f"summary:{job_id}")
        self.tasks.spawn(
            f"summary:{job_id}",
            self.summarize_job_internal(job_id, cfg.ollama_base_url, cfg.ollama_model,
                                        cfg.summary_prompt, force=True),
        )
        return SummaryResult(SummaryStatus.RUNNING, cfg.ollama_model)

    async def summarize_job_internal(self, job_id: str, base_url: str, model: str,
                                     prompt_template: str, force: bool) -> SummaryResult:
        job = self.store.get(job_id)
        if job is None:
            return SummaryResult(SummaryStatus.ERROR, model, "job not found")

        if not force:
            if job.summary_status == SummaryStatus.RUNNING:
                return SummaryResult(SummaryStatus.RUNNING, job.summary_model or model,
                                     job.summary_error, job.summary_md or "")
            if job.summary_status == SummaryStatus.DONE and job.summary_md and job.summary_md.strip():
                return SummaryResult(SummaryStatus.DONE, job.summary_model or model,
                                     job.summary_error, job.summary_md)

            def mark_running(j: Job):
                j.summary_status = SummaryStatus.RUNNING
                j.summary_model = model

            await self._update(job_id, mark_running)
            await self._log(job_id, "Summarization started.")

        try:
            if not job.transcript_txt_path:
                raise NotFoundError("Transcript path missing.")
            summary = await self.summarizer.summarize(
                Path(job.transcript_txt_path), prompt_template, base_url, model
            )
            write_summary_file(Path(job.audio_path).parent, summary)
        except AppError as e:
            message = str(e)

            def mark_failed(j: Job):
                j.summary_status = SummaryStatus.ERROR
                j.summary_error = message
                j.summary_model = model

            await self._update(job_id, mark_failed)
            await self._log(job_id, f"Summarization failed: {message}")
            return SummaryResult(SummaryStatus.ERROR, model, message, "")

        def mark_done(j: Job):
            j.summary_status = SummaryStatus.DONE
            j.summary_md = summary
            j.summary_error = None
            j.summary_model = model
            j.md_preview = summary

        await self._update(job_id, mark_done)
        await self._log(job_id, "Summarization finished.")
        return SummaryResult(SummaryStatus.DONE, model, None, summary)
