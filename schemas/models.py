from enum import Enum
from dataclasses import dataclass, field, fields, asdict
import os
import threading
import time
from typing import Optional, Any, Dict, List

from config import JOB_LOG_CAPACITY

class JobStatus(str, Enum):
    QUEUED    = "queued"
    RUNNING   = "running"
    DONE      = "done"
    ERROR     = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.DONE, JobStatus.ERROR, JobStatus.CANCELLED)

class JobStage(str, Enum):
    IMPORT     = "import"
    CONVERT    = "convert"
    TRANSCRIBE = "transcribe"
    DONE       = "done"
    ERROR      = "error"
    CANCELLED  = "cancelled"

class SummaryStatus(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING     = "running"
    DONE        = "done"
    ERROR       = "error"
    SKIPPED     = "skipped"

class DownloadState(str, Enum):
    IDLE        = "idle"
    DOWNLOADING = "downloading"
    DONE        = "done"
    ERROR       = "error"


_id_lock = threading.Lock()
_last_id_micros = 0

def generate_job_id() -> str:
    """job_<unix micros>_<pid>, strictly increasing within this process."""
    global _last_id_micros
    with _id_lock:
        now = time.time_ns() // 1000
        if now <= _last_id_micros:
            now = _last_id_micros + 1
        _last_id_micros = now
    return f"job_{now}_{os.getpid()}"

def unix_timestamp() -> int:
    return int(time.time())


def _known_fields(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}

def _enum_or_none(enum_cls, value):
    if value is None:
        return None
    return enum_cls(value)


@dataclass
class Job:
    id: str                                   = field(default_factory=generate_job_id)
    filename: str                             = ""
    status: JobStatus                         = JobStatus.QUEUED
    progress: float                           = 0.0    # 0.0 → 1.0
    stage: JobStage                           = JobStage.IMPORT
    logs: List[str]                           = field(default_factory=list)
    created_at: str                           = field(default_factory=lambda: str(unix_timestamp()))
    audio_path: str                           = ""     # copy inside the job folder
    transcript_txt_path: str                  = ""
    transcript_json_path: str                 = ""
    transcript_srt_path: str                  = ""
    md_preview: Optional[str]                 = None
    summary_status: Optional[SummaryStatus]   = SummaryStatus.NOT_STARTED
    summary_model: Optional[str]              = None
    summary_error: Optional[str]              = None
    summary_md: Optional[str]                 = None
    exported_to_obsidian: bool                = False
    error: Optional[str]                      = None   # stage failure reason

    def push_log(self, line: str):
        """Append to the bounded log buffer, dropping the oldest lines first."""
        self.logs.append(line)
        excess = len(self.logs) - JOB_LOG_CAPACITY
        if excess > 0:
            del self.logs[:excess]

    def advance_progress(self, value: float):
        # Never moves backwards within a run
        self.progress = max(self.progress, min(1.0, max(0.0, value)))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["stage"] = self.stage.value
        data["summary_status"] = self.summary_status.value if self.summary_status else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        kwargs = _known_fields(cls, data)
        if "status" in kwargs:
            kwargs["status"] = JobStatus(kwargs["status"])
        if "stage" in kwargs:
            kwargs["stage"] = JobStage(kwargs["stage"])
        if "summary_status" in kwargs:
            kwargs["summary_status"] = _enum_or_none(SummaryStatus, kwargs["summary_status"])
        kwargs["logs"] = list(kwargs.get("logs") or [])[-JOB_LOG_CAPACITY:]
        return cls(**kwargs)


@dataclass
class Segment:
    start: float
    end: float
    text: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SummaryResult:
    summary_status: SummaryStatus
    summary_model: str               = ""
    summary_error: Optional[str]     = None
    summary_md: str                  = ""

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["summary_status"] = self.summary_status.value
        return data


@dataclass
class ArtifactStatus:
    key: str                          # model size tag, "whisper-binary" or "ffmpeg"
    repo_id: str                      = "whisper.cpp"
    state: DownloadState              = DownloadState.IDLE
    total_bytes: int                  = 0
    downloaded_bytes: int             = 0
    message: Optional[str]            = None
    started_at: Optional[int]         = None
    finished_at: Optional[int]        = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data


@dataclass
class AppConfig:
    initialized: bool                         = False
    vault_path: str                           = ""
    output_subfolder: str                     = "VoiceNote"
    model_size: str                           = "small"
    preload_model: bool                       = False
    language: Optional[str]                   = "en"
    enable_summarization: bool                = True
    auto_summarize_after_transcription: bool  = True
    ollama_base_url: str                      = "http://127.0.0.1:11434"
    ollama_model: str                         = "qwen2.5:7b-instruct"
    summary_prompt: str                       = "Summarize the transcript."
    include_timestamps: bool                  = True
    watch_inbox_enabled: bool                 = False
    inbox_poll_seconds: int                   = 10
    whisper_binary_url: Optional[str]         = "https://github.com/bizenlabs/whisper-cpp-macos-bin/releases/latest"
    ffmpeg_binary_url: Optional[str]          = "https://github.com/ravaru/voicenoteapp/releases/latest/download/ffmpeg-macos-arm64-lgpl.zip"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppConfig":
        return cls(**_known_fields(cls, data or {}))
