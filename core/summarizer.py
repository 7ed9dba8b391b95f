import logging
from pathlib import Path
from typing import Optional

import httpx

from config import SUMMARY_TIMEOUT
from core.errors import NetworkError, StorageError

logger = logging.getLogger(__name__)

PLACEHOLDER = "{text}"

def build_summary_prompt(template: str, transcript: str) -> str:
    if PLACEHOLDER in template:
        return template.replace(PLACEHOLDER, transcript)
    return f"{template}\n\n{transcript}\n"

def read_transcript_text(path: Path) -> str:
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise StorageError(f"failed to read transcript: {e}") from e

def write_summary_file(job_dir: Path, content: str) -> Path:
    summary_path = job_dir / "summary.md"
    try:
        summary_path.write_text(content, encoding="utf-8")
    except OSError as e:
        raise StorageError(f"failed to write summary.md: {e}") from e
    return summary_path


class OllamaClient:
    """Single non-streaming /api/generate call against a local Ollama server."""

    def __init__(self, timeout: float = SUMMARY_TIMEOUT,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.transport = transport

    async def generate(self, base_url: str, model: str, prompt: str) -> str:
        url = f"{base_url.rstrip('/')}/api/generate"
        payload = {"model": model, "prompt": prompt, "stream": False}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.post(url, json=payload)
        except httpx.TimeoutException as e:
            raise NetworkError(f"Ollama timeout after {self.timeout:g}s at {url}") from e
        except httpx.ConnectError as e:
            raise NetworkError(f"Ollama not reachable at {url}. Is Ollama running?") from e
        except httpx.HTTPError as e:
            raise NetworkError(f"Ollama request failed: {e}") from e

        if not resp.is_success:
            raise NetworkError(f"Ollama error: {resp.status_code} {resp.text}")
        try:
            data = resp.json()
        except ValueError as e:
            raise NetworkError(f"Invalid Ollama response: {e}") from e
        out = (data or {}).get("response") if isinstance(data, dict) else None
        if not isinstance(out, str) or not out.strip():
            raise NetworkError("Ollama returned empty response.")
        return out

    async def summarize(self, transcript_path: Path, prompt_template: str,
                        base_url: str, model: str) -> str:
        transcript = read_transcript_text(transcript_path)
        prompt = build_summary_prompt(prompt_template, transcript)
        logger.info(f"Calling Ollama model {model} for summarization")
        return await self.generate(base_url, model, prompt)
