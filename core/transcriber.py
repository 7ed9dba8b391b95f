import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from schemas.models import Segment
from core.errors import FormatError, StorageError
from core.process import run_subprocess, parse_progress_from_line, LineCallback

logger = logging.getLogger(__name__)

STUB_PREVIEW = "Stub transcript (speech engine produced no output)."
STUB_SEGMENTS = [
    {"start": 0.0, "end": 1.5, "text": "Stub segment one."},
    {"start": 1.6, "end": 3.2, "text": "Stub segment two."},
]

def whisper_args(model: Path, audio_path: Path, output_base: Path,
                 language: Optional[str]) -> List[str]:
    args = [
        "-m", str(model),
        "-f", str(audio_path),
        "-oj", "-osrt", "-otxt",
        "-of", str(output_base),
    ]
    if language and language.strip():
        args += ["-l", language.strip()]
    return args

def output_paths(output_base: Path) -> Tuple[Path, Path, Path]:
    """whisper.cpp appends .txt/.json/.srt to the -of base path."""
    return (
        output_base.with_name(output_base.name + ".txt"),
        output_base.with_name(output_base.name + ".json"),
        output_base.with_name(output_base.name + ".srt"),
    )

async def run_whisper_cpp(
    bin_path: Path,
    model: Path,
    audio_path: Path,
    output_base: Path,
    language: Optional[str],
    on_progress: Callable[[float], Awaitable[None]],
    on_line: LineCallback,
):
    """
    Runs the whisper.cpp CLI. Percentages printed on stdout are reported through
    on_progress (0-100); every stdout/stderr line goes to on_line.
    Exit status only; callers must check the output files themselves.
    """
    async def on_stdout(line: str):
        percent = parse_progress_from_line(line)
        if percent is not None:
            await on_progress(percent)
        await on_line(line)

    await run_subprocess(bin_path, whisper_args(model, audio_path, output_base, language),
                         on_stdout, on_line)

def write_stub_artifacts(job_dir: Path) -> Tuple[Path, Path, Path]:
    """Placeholder transcript/segments/subtitle triple for when whisper wrote nothing."""
    try:
        job_dir.mkdir(parents=True, exist_ok=True)
        transcript_path = job_dir / "transcript.txt"
        segments_path = job_dir / "segments.json"
        srt_path = job_dir / "transcript.srt"
        transcript_path.write_text(STUB_PREVIEW + "\n", encoding="utf-8")
        segments_path.write_text(json.dumps(STUB_SEGMENTS), encoding="utf-8")
        srt_path.write_text("", encoding="utf-8")
    except OSError as e:
        raise StorageError(f"failed to write stub artifacts: {e}") from e
    return transcript_path, segments_path, srt_path

def _text(seg: Dict[str, Any]) -> str:
    return str(seg.get("text") or "").strip()

def _num(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)

def parse_segments(data: Any) -> List[Segment]:
    """
    Normalizes the transcript JSON shapes we meet into seconds:
    a flat [{start, end, text}] array, {segments: [...]} with start/end seconds
    or t0/t1 centiseconds, and whisper.cpp's {transcription: [{offsets: {from, to}}]} in ms.
    """
    if isinstance(data, list):
        items, shape = data, "segments"
    elif isinstance(data, dict) and isinstance(data.get("segments"), list):
        items, shape = data["segments"], "segments"
    elif isinstance(data, dict) and isinstance(data.get("transcription"), list):
        items, shape = data["transcription"], "transcription"
    else:
        raise FormatError("segments not found in transcript json")

    segments = []
    for seg in items:
        if not isinstance(seg, dict):
            continue
        text = _text(seg)
        if not text:
            continue
        if shape == "transcription":
            offsets = seg.get("offsets") or {}
            start = (_num(offsets.get("from")) or 0.0) / 1000.0
            end_ms = _num(offsets.get("to"))
            end = end_ms / 1000.0 if end_ms is not None else start
        else:
            start = _num(seg.get("start"))
            if start is None:
                t0 = _num(seg.get("t0"))
                start = t0 / 100.0 if t0 is not None else 0.0
            end = _num(seg.get("end"))
            if end is None:
                t1 = _num(seg.get("t1"))
                end = t1 / 100.0 if t1 is not None else start
        segments.append(Segment(start=start, end=end, text=text))
    return segments

def load_segments(path: Path) -> List[Segment]:
    try:
        contents = path.read_text(encoding="utf-8")
    except OSError as e:
        raise StorageError(f"failed to read transcript json: {e}") from e
    try:
        data = json.loads(contents)
    except ValueError as e:
        raise FormatError(f"invalid transcript json: {e}") from e
    return parse_segments(data)
