import httpx
import pytest

from core.context import AppContext
from fakes import FakeResolver, ollama_handler, fake_convert, fake_whisper


@pytest.fixture
def make_ctx(tmp_path):
    def _make(handler=ollama_handler, resolver=None):
        return AppContext(
            data_dir=tmp_path / "data",
            resolver=resolver or FakeResolver(),
            transport=httpx.MockTransport(handler),
        )
    return _make


@pytest.fixture
def pipeline(monkeypatch):
    """Replaces the external tools used by the pipeline with in-process fakes."""
    monkeypatch.setattr("core.job_manager.convert_to_wav", fake_convert)
    monkeypatch.setattr("core.job_manager.run_whisper_cpp", fake_whisper)
    return monkeypatch


@pytest.fixture
def audio_file(tmp_path):
    def _make(name="memo.m4a"):
        path = tmp_path / "inbox" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"\x00\x01audio")
        return path
    return _make
