import asyncio
import json

import httpx
import pytest

from core.errors import NetworkError, StorageError
from core.summarizer import OllamaClient, build_summary_prompt


def test_prompt_placeholder():
    assert build_summary_prompt("Summarize:\n{text}\nEnd", "hi") == "Summarize:\nhi\nEnd"
    assert build_summary_prompt("Summarize the transcript.", "hi") == "Summarize the transcript.\n\nhi\n"


def generate(handler, base_url="http://127.0.0.1:11434/"):
    client = OllamaClient(transport=httpx.MockTransport(handler))
    return asyncio.run(client.generate(base_url, "qwen2.5:7b-instruct", "prompt"))


def test_generate_posts_non_streaming_request():
    def handler(request):
        assert str(request.url) == "http://127.0.0.1:11434/api/generate"
        assert json.loads(request.content) == {
            "model": "qwen2.5:7b-instruct", "prompt": "prompt", "stream": False,
        }
        return httpx.Response(200, json={"response": "short summary"})

    assert generate(handler) == "short summary"


@pytest.mark.parametrize("response, message", [
    (httpx.Response(500, text="boom"), "Ollama error: 500 boom"),
    (httpx.Response(200, text="not json"), "Invalid Ollama response"),
    (httpx.Response(200, json={"response": "  "}), "Ollama returned empty response."),
])
def test_generate_errors(response, message):
    with pytest.raises(NetworkError) as excinfo:
        generate(lambda request: response)
    assert str(excinfo.value).startswith(message)


def test_unreachable_server():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(NetworkError, match="Is Ollama running"):
        generate(handler)


def test_timeout():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(NetworkError, match="Ollama timeout"):
        generate(handler)


def test_summarize_reads_transcript(tmp_path):
    transcript = tmp_path / "whisper.txt"
    transcript.write_text("we met on monday", encoding="utf-8")

    def handler(request):
        assert "we met on monday" in json.loads(request.content)["prompt"]
        return httpx.Response(200, json={"response": "Meeting on Monday."})

    client = OllamaClient(transport=httpx.MockTransport(handler))
    result = asyncio.run(client.summarize(transcript, "{text}", "http://localhost:11434", "m"))
    assert result == "Meeting on Monday."
    with pytest.raises(StorageError):
        asyncio.run(client.summarize(tmp_path / "missing.txt", "{text}", "http://localhost:11434", "m"))
