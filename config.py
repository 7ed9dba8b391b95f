import platformdirs
from pathlib import Path

APP_NAME   = "VoiceNote"
APP_AUTHOR = "VoiceNote"

BASE_DIR     = Path(platformdirs.user_data_dir(APP_NAME, APP_AUTHOR))
LOG_FILE     = BASE_DIR / "voicenote.log"
PROJECT_ROOT = Path(__file__).resolve().parent

FASTAPI_PORT = 47822   # Fixed, uncommon port to avoid collisions
USER_AGENT   = "voicenote"

# Bounded per-job log buffer
JOB_LOG_CAPACITY = 2000

# Environment overrides for the external tools
ENV_WHISPER_PATH  = "VOICENOTE_WHISPER_PATH"
ENV_WHISPER_MODEL = "VOICENOTE_WHISPER_MODEL"
ENV_FFMPEG_PATH   = "VOICENOTE_FFMPEG_PATH"

# whisper.cpp ggml models
MODEL_BASE_URL = "https://huggingface.co/ggerganov/whisper.cpp/resolve/main"
MODEL_SIZES    = ("tiny", "base", "small", "medium", "large-v3")

# Release pages scanned when looking for a prebuilt whisper.cpp
WHISPER_RELEASE_SOURCES = (
    "https://api.github.com/repos/bizenlabs/whisper-cpp-macos-bin/releases/latest",
    "https://api.github.com/repos/ggml-org/whisper.cpp/releases/latest",
)
WHISPER_RELEASES_BACKUP = "https://api.github.com/repos/ggml-org/whisper.cpp/releases"

# Network timeouts (seconds). Subprocesses are never timed out.
SUMMARY_TIMEOUT = 120.0
PROBE_TIMEOUT   = 10.0
HEAD_TIMEOUT    = 5.0

# ffmpeg build flags that may not be redistributed with the app
BANNED_FFMPEG_FLAGS = ("--enable-gpl", "--enable-nonfree")
