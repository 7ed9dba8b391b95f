from schemas.models import (
    Job, JobStatus, JobStage, SummaryStatus, AppConfig, generate_job_id,
)
from config import JOB_LOG_CAPACITY


def test_log_buffer_keeps_newest_lines():
    job = Job(filename="a.m4a")
    for i in range(2100):
        job.push_log(f"line {i}")
    assert len(job.logs) == JOB_LOG_CAPACITY
    assert job.logs[0] == "line 100"
    assert job.logs[-1] == "line 2099"


def test_progress_never_moves_backwards():
    job = Job()
    job.advance_progress(0.5)
    job.advance_progress(0.3)
    assert job.progress == 0.5
    job.advance_progress(4.0)
    assert job.progress == 1.0


def test_job_ids_are_unique_and_increasing():
    ids = [generate_job_id() for _ in range(50)]
    assert len(set(ids)) == 50
    micros = [int(i.split("_")[1]) for i in ids]
    assert micros == sorted(micros)
    assert all(i.startswith("job_") for i in ids)


def test_job_dict_uses_plain_values():
    job = Job(filename="a.m4a", status=JobStatus.RUNNING, stage=JobStage.TRANSCRIBE)
    data = job.to_dict()
    assert data["status"] == "running"
    assert data["stage"] == "transcribe"
    assert data["summary_status"] == "not_started"


def test_job_from_dict_ignores_unknown_fields_and_trims_logs():
    data = Job(filename="a.m4a").to_dict()
    data["unexpected"] = 1
    data["logs"] = [str(i) for i in range(JOB_LOG_CAPACITY + 5)]
    data["summary_status"] = None
    job = Job.from_dict(data)
    assert job.filename == "a.m4a"
    assert job.summary_status is None
    assert len(job.logs) == JOB_LOG_CAPACITY
    assert job.logs[0] == "5"


def test_terminal_statuses():
    assert JobStatus.DONE.is_terminal
    assert JobStatus.CANCELLED.is_terminal
    assert not JobStatus.QUEUED.is_terminal
    assert SummaryStatus("skipped") is SummaryStatus.SKIPPED


def test_app_config_defaults_fill_missing_fields():
    cfg = AppConfig.from_dict({"model_size": "base", "bogus": True})
    assert cfg.model_size == "base"
    assert cfg.enable_summarization is True
    assert cfg.ollama_base_url == "http://127.0.0.1:11434"
