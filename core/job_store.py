import copy
import json
import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, List, Optional

from schemas.models import Job
from core.errors import StorageError, FormatError, ConcurrencyConflict

logger = logging.getLogger(__name__)

LOCK_TIMEOUT = 30.0


def load_index(path: Path) -> List[Job]:
    """Reads the job index document. Missing or blank files give an empty index."""
    if not path.exists():
        return []
    try:
        contents = path.read_text(encoding="utf-8")
    except OSError as e:
        raise StorageError(f"failed to read {path.name}: {e}") from e
    if not contents.strip():
        return []
    try:
        data = json.loads(contents)
        return [Job.from_dict(item) for item in data.get("jobs", [])]
    except (ValueError, TypeError, AttributeError) as e:
        raise FormatError(f"invalid {path.name}: {e}") from e


def save_index(path: Path, jobs: List[Job]):
    """Rewrites the whole document through a temp file so a crash never leaves it half-written."""
    payload = json.dumps({"jobs": [j.to_dict() for j in jobs]}, indent=2, ensure_ascii=False)
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except OSError as e:
        raise StorageError(f"failed to save {path.name}: {e}") from e


class JobStore:
    """Owns the canonical job list. Everything handed out is a copy."""

    def __init__(self, path: Path):
        self.path = path
        self._lock = threading.Lock()
        self._jobs: List[Job] = load_index(path)
        logger.info(f"Loaded {len(self._jobs)} job(s) from {path}")

    @contextmanager
    def _locked(self):
        if not self._lock.acquire(timeout=LOCK_TIMEOUT):
            raise ConcurrencyConflict("job index is busy")
        try:
            yield
        finally:
            self._lock.release()

    def _find(self, job_id: str) -> Optional[Job]:
        return next((j for j in self._jobs if j.id == job_id), None)

    def list(self) -> List[Job]:
        with self._locked():
            return copy.deepcopy(self._jobs)

    def get(self, job_id: str) -> Optional[Job]:
        with self._locked():
            job = self._find(job_id)
            return copy.deepcopy(job) if job else None

    def insert(self, job: Job) -> Job:
        # Newest first
        with self._locked():
            self._jobs.insert(0, copy.deepcopy(job))
            save_index(self.path, self._jobs)
            return copy.deepcopy(job)

    def mutate(self, job_id: str, fn: Callable[[Job], None]) -> Optional[Job]:
        """Applies fn in place and persists. Returns the saved snapshot, or None if not found."""
        with self._locked():
            job = self._find(job_id)
            if job is None:
                return None
            fn(job)
            save_index(self.path, self._jobs)
            return copy.deepcopy(job)

    def delete(self, job_id: str) -> bool:
        with self._locked():
            before = len(self._jobs)
            self._jobs = [j for j in self._jobs if j.id != job_id]
            if len(self._jobs) == before:
                return False
            save_index(self.path, self._jobs)
            return True
