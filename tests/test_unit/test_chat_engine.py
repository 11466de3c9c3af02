"""
Unit tests for the ChatEngine Ollama client.
"""
import httpx
import pytest

from pdfchat.models.schemas import ModelLoadProgress
from pdfchat.services.chat_engine import (
    ChatEngine,
    ChatEngineError,
    ChatEngineUnavailableError,
)


async def _collect(stream) -> list:
    return [delta async for delta in stream]


class TestChatEngine:
    """Tests for ChatEngine against the fake runtime."""

    async def test_check_available(self, chat_engine):
        assert await chat_engine.check_available() == "0.5.7"

    async def test_check_unavailable(self, chat_engine, fake_ollama, no_retry_wait):
        fake_ollama.unreachable = True

        with pytest.raises(ChatEngineUnavailableError, match="ollama.test"):
            await chat_engine.check_available()

    async def test_load_reports_progress(self, chat_engine, fake_ollama):
        reports = []

        await chat_engine.load("llama3.2:1b", progress_callback=reports.append)

        assert chat_engine.is_loaded is True
        assert chat_engine.model_id == "llama3.2:1b"
        assert all(isinstance(r, ModelLoadProgress) for r in reports)
        assert reports[0].progress == 0.0
        assert reports[-1].progress == 1.0
        assert reports[-1].text == "Finish loading llama3.2:1b"
        assert any(r.progress == 0.5 for r in reports)
        assert fake_ollama.paths == ["/api/pull", "/api/generate"]
        assert fake_ollama.bodies("/api/generate")[0]["keep_alive"] == chat_engine.keep_alive

    async def test_load_without_callback(self, chat_engine):
        await chat_engine.load("llama3.2:1b")

        assert chat_engine.is_loaded is True

    async def test_load_pull_error(self, chat_engine, fake_ollama):
        fake_ollama.pull_error = "pull model manifest: file does not exist"

        with pytest.raises(ChatEngineError, match="file does not exist"):
            await chat_engine.load("nope:latest")

        assert chat_engine.is_loaded is False
        assert chat_engine.model_id is None

    async def test_stream_chat_yields_deltas(self, chat_engine, fake_ollama):
        await chat_engine.load("llama3.2:1b")
        messages = [{"role": "user", "content": "Hi"}]

        deltas = await _collect(chat_engine.stream_chat(messages))

        assert deltas == ["Llamas ", "live in ", "the Andes."]
        body = fake_ollama.bodies("/api/chat")[0]
        assert body["model"] == "llama3.2:1b"
        assert body["messages"] == messages
        assert body["stream"] is True

    async def test_stream_chat_requires_loaded_model(self, chat_engine):
        with pytest.raises(ChatEngineError, match="No chat model loaded"):
            await _collect(chat_engine.stream_chat([{"role": "user", "content": "Hi"}]))

    async def test_stream_chat_runtime_error_event(self, chat_engine, fake_ollama):
        await chat_engine.load("llama3.2:1b")
        fake_ollama.chat_error = "context window exceeded"

        received = []
        with pytest.raises(ChatEngineError, match="context window exceeded"):
            async for delta in chat_engine.stream_chat([{"role": "user", "content": "Hi"}]):
                received.append(delta)

        assert received == ["Llamas ", "live in ", "the Andes."]

    async def test_stream_chat_http_error(self, chat_engine, fake_ollama):
        await chat_engine.load("llama3.2:1b")
        fake_ollama.chat_status = 500

        with pytest.raises(ChatEngineError, match="500: model runner crashed"):
            await _collect(chat_engine.stream_chat([{"role": "user", "content": "Hi"}]))

    async def test_auth_header_sent(self, fake_ollama):
        engine = ChatEngine(
            base_url="http://ollama.test",
            api_key="secret-token",
            transport=httpx.MockTransport(fake_ollama.handle),
        )

        await engine.check_available()

        assert fake_ollama.requests[0].headers["Authorization"] == "Bearer secret-token"

    async def test_no_auth_header_without_key(self, chat_engine, fake_ollama):
        await chat_engine.check_available()

        assert "Authorization" not in fake_ollama.requests[0].headers

    async def test_failed_reload_keeps_current_model(self, chat_engine, fake_ollama):
        await chat_engine.load("llama3.2:1b")
        fake_ollama.pull_error = "network down"

        with pytest.raises(ChatEngineError, match="network down"):
            await chat_engine.load("llama3.2:3b")

        assert chat_engine.is_loaded is True
        assert chat_engine.model_id == "llama3.2:1b"
