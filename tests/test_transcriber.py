import asyncio
import json
import os
from pathlib import Path

import pytest

from core.errors import FormatError
from core.transcriber import (
    parse_segments, load_segments, write_stub_artifacts, whisper_args, output_paths, STUB_PREVIEW,
    run_whisper_cpp,
)

EXPECTED = [(0.0, 1.5, "Hello"), (1.5, 3.0, "world")]


def as_tuples(segments):
    return [(s.start, s.end, s.text) for s in segments]


def test_flat_array():
    data = [{"start": 0.0, "end": 1.5, "text": " Hello"}, {"start": 1.5, "end": 3.0, "text": "world "}]
    assert as_tuples(parse_segments(data)) == EXPECTED


def test_segments_with_centiseconds():
    data = {"segments": [{"t0": 0, "t1": 150, "text": "Hello"}, {"t0": 150, "t1": 300, "text": "world"}]}
    assert as_tuples(parse_segments(data)) == EXPECTED


def test_whisper_cpp_offsets_in_milliseconds():
    data = {"transcription": [
        {"offsets": {"from": 0, "to": 1500}, "text": "Hello"},
        {"offsets": {"from": 1500, "to": 3000}, "text": "world"},
    ]}
    assert as_tuples(parse_segments(data)) == EXPECTED


def test_empty_text_is_dropped():
    data = [{"start": 0, "end": 1, "text": "   "}, {"start": 1, "end": 2, "text": "kept"}]
    assert [s.text for s in parse_segments(data)] == ["kept"]


def test_unknown_shape_raises():
    with pytest.raises(FormatError):
        parse_segments({"words": []})


def test_load_segments_rejects_bad_json(tmp_path):
    path = tmp_path / "whisper.json"
    path.write_text("{oops")
    with pytest.raises(FormatError):
        load_segments(path)


def test_stub_artifacts(tmp_path):
    txt, seg, srt = write_stub_artifacts(tmp_path / "job")
    assert txt.read_text(encoding="utf-8").strip() == STUB_PREVIEW
    assert srt.read_text() == ""
    assert len(load_segments(seg)) == 2


def test_whisper_args_and_outputs():
    args = whisper_args(Path("m.bin"), Path("a.wav"), Path("/j/whisper"), " de ")
    assert args[-2:] == ["-l", "de"]
    assert "-oj" in args and "-osrt" in args and "-otxt" in args
    assert "-l" not in whisper_args(Path("m.bin"), Path("a.wav"), Path("/j/whisper"), "")
    txt, js, srt = output_paths(Path("/j/whisper"))
    assert (txt.name, js.name, srt.name) == ("whisper.txt", "whisper.json", "whisper.srt")


@pytest.mark.skipif(os.name == "nt", reason="a shell script stands in for whisper.cpp")
def test_run_whisper_cpp_reports_progress(tmp_path):
    fake_bin = tmp_path / "whisper-cli"
    fake_bin.write_text(
        "#!/bin/sh\n"
        "echo 'whisper_full: progress = 25%'\n"
        "echo 'loading model' >&2\n"
        "echo 'whisper_full: progress = 75%'\n",
        encoding="utf-8",
    )
    fake_bin.chmod(0o755)
    progress, lines = [], []

    async def on_progress(percent):
        progress.append(percent)

    async def on_line(line):
        lines.append(line)

    asyncio.run(run_whisper_cpp(fake_bin, tmp_path / "ggml-tiny.bin", tmp_path / "audio.wav",
                                tmp_path / "audio", "en", on_progress, on_line))
    assert progress == [25.0, 75.0]
    assert "loading model" in lines
    assert "whisper_full: progress = 75%" in lines
