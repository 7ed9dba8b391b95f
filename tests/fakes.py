import json
from pathlib import Path

import httpx

from core.errors import NotFoundError, ProcessFailed
from core.transcriber import output_paths

SUMMARY_TEXT = "## Summary\n- first point"


class FakeResolver:
    """Stands in for BinaryResolver so the pipeline never looks at the real disk."""

    def __init__(self, ffmpeg=Path("/opt/ffmpeg"), whisper=(Path("/opt/whisper"), Path("/opt/ggml-small.bin"))):
        self.ffmpeg = ffmpeg
        self.whisper = whisper

    def resolve_ffmpeg(self):
        if self.ffmpeg is None:
            raise NotFoundError("FFmpeg not found.", probed=[Path("/nowhere/ffmpeg")])
        return self.ffmpeg

    def resolve_whisper(self, model_size):
        if self.whisper is None:
            raise NotFoundError("Whisper binary/model not found.")
        return self.whisper


def ollama_handler(request: httpx.Request) -> httpx.Response:
    assert request.url.path == "/api/generate"
    body = json.loads(request.content)
    assert body["stream"] is False
    return httpx.Response(200, json={"response": SUMMARY_TEXT})


async def fake_convert(ffmpeg_path, input_path, output_path, on_line=None):
    if Path(input_path).suffix == ".broken":
        raise ProcessFailed("ffmpeg convert failed: broken (exit code 1)", returncode=1)
    output_path.write_bytes(b"RIFF")
    if on_line:
        await on_line("size=64kB time=00:00:02.00")
    return output_path


async def fake_whisper(bin_path, model, audio_path, output_base, language, on_progress, on_line):
    await on_progress(50.0)
    await on_line("whisper_full: progress = 50%")
    txt, js, srt = output_paths(output_base)
    txt.write_text("hello world\n", encoding="utf-8")
    js.write_text(json.dumps({"transcription": [
        {"offsets": {"from": 0, "to": 1500}, "text": " hello"},
        {"offsets": {"from": 1500, "to": 3000}, "text": " world"},
    ]}), encoding="utf-8")
    srt.write_text("1\n00:00:00,000 --> 00:00:01,500\nhello\n", encoding="utf-8")
    await on_progress(100.0)


async def silent_whisper(bin_path, model, audio_path, output_base, language, on_progress, on_line):
    await on_line("whisper exited without output")


