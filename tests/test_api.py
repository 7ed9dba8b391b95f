import time

import httpx
import pytest
from fastapi.testclient import TestClient

from main import create_app, error_status
from core.errors import ConcurrencyConflict, LicenseViolation, NetworkError, NotFoundError
from core.resolver import BinaryResolver
from fakes import SUMMARY_TEXT

MODEL_BYTES = b"ggml-model"


def handler(request):
    if request.url.path == "/api/generate":
        return httpx.Response(200, json={"response": SUMMARY_TEXT})
    if request.url.path.endswith("/ggml-tiny.bin"):
        return httpx.Response(200, content=MODEL_BYTES)
    return httpx.Response(404)


@pytest.fixture
def ctx(make_ctx, tmp_path):
    resolver = BinaryResolver(tmp_path / "data", tmp_path / "res", tmp_path / "work", tmp_path / "exe", env={})
    ctx = make_ctx(handler=handler, resolver=resolver)
    return ctx


@pytest.fixture
def client(ctx):
    with TestClient(create_app(ctx)) as client:
        yield client


def wait_for(client, url, done, timeout=10.0):
    deadline = time.monotonic() + timeout
    while True:
        body = client.get(url).json()
        if done(body) or time.monotonic() > deadline:
            return body
        time.sleep(0.02)


def test_error_status_mapping():
    assert error_status(NotFoundError("x")) == 404
    assert error_status(NetworkError("x")) == 502
    assert error_status(ConcurrencyConflict("x")) == 500
    assert error_status(LicenseViolation("x")) == 400


def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok"}


def test_config_endpoints(client):
    assert client.get("/api/config").json()["model_size"] == "small"
    assert client.get("/api/config/initialized").json() == {"initialized": False}

    updated = client.put("/api/config", json={"model_size": "base"}).json()
    assert updated["model_size"] == "base"
    assert updated["enable_summarization"] is True

    assert client.post("/api/config/initialize", json={}).json()["initialized"] is True
    assert client.get("/api/config/initialized").json() == {"initialized": True}


def test_unknown_job_is_404(client):
    assert client.get("/api/jobs/job_missing").status_code == 404
    assert client.post("/api/jobs/job_missing/cancel").status_code == 404
    assert client.delete("/api/jobs/job_missing").status_code == 404
    response = client.get("/api/jobs/job_missing/segments")
    assert response.status_code == 404
    assert response.json() == {"detail": "job not found"}


def test_missing_file_is_404(client, tmp_path):
    response = client.post("/api/jobs", json={"paths": [str(tmp_path / "gone.m4a")]})
    assert response.status_code == 404
    assert "File not found" in response.json()["detail"]


def test_job_runs_through_api(make_ctx, pipeline, audio_file):
    with TestClient(create_app(make_ctx(handler=handler))) as client:
        run_job_through_api(client, audio_file)


def run_job_through_api(client, audio_file):
    with client.websocket_connect("/ws/events") as ws:
        created = client.post("/api/jobs", json={"paths": [str(audio_file())]}).json()["jobs"]
        job_id = created[0]["id"]
        first = ws.receive_json()
        assert first["event"] == "job:updated"
        assert first["job"]["id"] == job_id

    job = wait_for(client, f"/api/jobs/{job_id}",
                   lambda j: j["status"] == "done" and j["summary_status"] == "done")
    assert job["status"] == "done"
    assert job["md_preview"] == SUMMARY_TEXT

    assert [j["id"] for j in client.get("/api/jobs").json()["jobs"]] == [job_id]
    segments = client.get(f"/api/jobs/{job_id}/segments").json()["segments"]
    assert [s["text"] for s in segments] == ["hello", "world"]
    assert client.get(f"/api/jobs/{job_id}/summary").json()["summary_md"] == SUMMARY_TEXT
    assert client.post(f"/api/jobs/{job_id}/cancel").json() == {"cancelled": False}
    assert client.delete(f"/api/jobs/{job_id}").json() == {"deleted": True}


def test_model_download_through_api(client, ctx):
    status = client.get("/api/model/status", params={"size": "tiny"}).json()
    assert status["installed"] is False
    assert status["download"]["state"] == "idle"
    assert "sufficient" in status["ram_check"]

    started = client.post("/api/model/download", params={"size": "tiny"}).json()
    assert started["key"] == "tiny"

    status = wait_for(client, "/api/model/status?size=tiny", lambda s: s["download"]["state"] == "done")
    assert status["installed"] is True
    assert (ctx.models_dir / "ggml-tiny.bin").read_bytes() == MODEL_BYTES
    assert client.post("/api/model/download", params={"size": "tiny"}).json() == {"status": "already_downloaded"}


def test_tool_status(client):
    assert client.get("/api/whisper/status").json()["installed"] is False
    ffmpeg = client.get("/api/ffmpeg/status").json()
    assert ffmpeg["download"]["repo_id"] == "ffmpeg"
    assert ffmpeg["download"]["state"] == "idle"
