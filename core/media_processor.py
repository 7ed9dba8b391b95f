import logging
from pathlib import Path
from typing import Optional

from core.errors import ProcessFailed
from core.process import run_subprocess, LineCallback

logger = logging.getLogger(__name__)

# Whisper-compatible 16kHz, mono, 16-bit PCM
WAV_ARGS = ["-vn", "-acodec", "pcm_s16le", "-ar", "16000", "-ac", "1"]

async def convert_to_wav(ffmpeg_path: Path, input_path: Path, output_path: Path,
                         on_line: Optional[LineCallback] = None) -> Path:
    """
    Converts any audio/video input to a 16kHz mono WAV for whisper.cpp.
    ffmpeg output lines are forwarded to on_line.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)
    # Remove if it exists
    if output_path.exists():
        output_path.unlink()

    args = ["-hide_banner", "-nostats", "-y", "-i", str(input_path), *WAV_ARGS, str(output_path)]
    try:
        await run_subprocess(ffmpeg_path, args, on_line, on_line)
    except ProcessFailed as e:
        raise ProcessFailed(f"ffmpeg convert failed: {e}", returncode=e.returncode) from e

    if not output_path.exists():
        raise ProcessFailed(f"ffmpeg reported success, but {output_path.name} is missing")
    return output_path

async def ensure_clip(ffmpeg_path: Path, audio_path: Path, job_dir: Path,
                      start: float, end: float) -> Path:
    """
    Cuts [start, end] seconds of the job audio into clips/clip_<startms>_<endms>.wav.
    Reuses an existing clip; falls back to the full audio file if ffmpeg fails.
    """
    clips_dir = job_dir / "clips"
    clips_dir.mkdir(parents=True, exist_ok=True)
    start_ms = round(max(start, 0.0) * 1000)
    end_ms = round(max(end, 0.0) * 1000)
    clip_path = clips_dir / f"clip_{start_ms}_{end_ms}.wav"
    if clip_path.exists():
        return clip_path

    args = ["-hide_banner", "-loglevel", "error", "-y", "-i", str(audio_path),
            "-ss", str(start), "-to", str(end), *WAV_ARGS, str(clip_path)]
    try:
        await run_subprocess(ffmpeg_path, args)
    except ProcessFailed as e:
        logger.warning(f"Clip extraction failed for {audio_path}: {e}")
        return audio_path
    return clip_path
