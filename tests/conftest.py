"""
Shared Test Fixtures for PDF Chat Tests

This file contains:
- FastAPI TestClient setup bound to an isolated RagSession
- A fake Ollama runtime served through httpx.MockTransport
- A deterministic keyword embedding function
- Mock fixtures for python-magic and unstructured
"""
import json
import os
import sys
from typing import Generator, List, Optional
from unittest.mock import patch

import httpx
import pytest
from fastapi.testclient import TestClient
from langchain_core.embeddings import Embeddings
from tenacity import wait_none
from unstructured.documents.elements import ElementMetadata, NarrativeText, Title

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pdfchat.main import app
from pdfchat.services.chat_engine import ChatEngine
from pdfchat.services.chunking_service import ChunkingService
from pdfchat.services.document_parser import DocumentParser
from pdfchat.services.event_log import EventLog
from pdfchat.services.file_handler import FileHandler
from pdfchat.services.rag_session import RagSession, get_rag_session


# ═══════════════════════════════════════════════════════════════
# FAKE EMBEDDINGS
# ═══════════════════════════════════════════════════════════════

class KeywordEmbeddings(Embeddings):
    """Counts vocabulary words; texts sharing words end up close together."""

    VOCAB = ["llama", "ocean", "invoice", "python", "pdf"]

    def _vector(self, text: str) -> List[float]:
        lowered = text.lower()
        # Constant component keeps every vector non-zero
        return [float(lowered.count(word)) for word in self.VOCAB] + [0.1]

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        return [self._vector(t) for t in texts]

    def embed_query(self, text: str) -> List[float]:
        return self._vector(text)


# ═══════════════════════════════════════════════════════════════
# FAKE OLLAMA RUNTIME
# ═══════════════════════════════════════════════════════════════

def _ndjson(events: List[dict]) -> bytes:
    return "".join(json.dumps(e) + "\n" for e in events).encode()


class FakeOllama:
    """Answers the subset of the Ollama HTTP API the chat engine uses."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.reply_chunks = ["Llamas ", "live in ", "the Andes."]
        self.unreachable = False
        self.pull_error: Optional[str] = None
        self.chat_error: Optional[str] = None
        self.chat_status = 200

    @property
    def paths(self) -> List[str]:
        return [r.url.path for r in self.requests]

    def bodies(self, path: str) -> List[dict]:
        return [json.loads(r.content) for r in self.requests if r.url.path == path]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.unreachable:
            raise httpx.ConnectError("Connection refused", request=request)

        path = request.url.path
        if path == "/api/version":
            return httpx.Response(200, json={"version": "0.5.7"})

        if path == "/api/pull":
            events = [{"status": "pulling manifest"}]
            if self.pull_error:
                events.append({"error": self.pull_error})
            else:
                events += [
                    {"status": "pulling 74701a8c35f6", "digest": "sha256:74701a8c35f6",
                     "total": 1_300_000_000, "completed": 650_000_000},
                    {"status": "pulling 74701a8c35f6", "digest": "sha256:74701a8c35f6",
                     "total": 1_300_000_000, "completed": 1_300_000_000},
                    {"status": "verifying sha256 digest"},
                    {"status": "success"},
                ]
            return httpx.Response(200, content=_ndjson(events))

        if path == "/api/generate":
            body = json.loads(request.content)
            return httpx.Response(200, json={
                "model": body["model"], "response": "", "done": True, "done_reason": "load"
            })

        if path == "/api/chat":
            if self.chat_status != 200:
                return httpx.Response(self.chat_status, json={"error": "model runner crashed"})
            body = json.loads(request.content)
            events = [
                {"model": body["model"], "message": {"role": "assistant", "content": chunk}, "done": False}
                for chunk in self.reply_chunks
            ]
            if self.chat_error:
                events.append({"error": self.chat_error})
            events.append({"model": body["model"], "message": {"role": "assistant", "content": ""},
                           "done": True, "done_reason": "stop"})
            return httpx.Response(200, content=_ndjson(events))

        return httpx.Response(404, json={"error": f"unknown path {path}"})


# ═══════════════════════════════════════════════════════════════
# SERVICE FIXTURES
# ═══════════════════════════════════════════════════════════════

@pytest.fixture
def fake_ollama() -> FakeOllama:
    return FakeOllama()


@pytest.fixture
def chat_engine(fake_ollama) -> ChatEngine:
    """Chat engine wired to the fake runtime."""
    return ChatEngine(
        base_url="http://ollama.test",
        api_key="",
        transport=httpx.MockTransport(fake_ollama.handle),
    )


@pytest.fixture
def no_retry_wait(monkeypatch):
    """Skip tenacity back-off so unreachable-runtime tests stay fast."""
    monkeypatch.setattr(ChatEngine._fetch_version.retry, "wait", wait_none())


@pytest.fixture
def embeddings() -> KeywordEmbeddings:
    return KeywordEmbeddings()


@pytest.fixture
def file_handler() -> Generator[FileHandler, None, None]:
    handler = FileHandler()
    yield handler
    handler.cleanup()


@pytest.fixture
def event_log() -> EventLog:
    return EventLog(max_entries=100)


@pytest.fixture
def rag_session(file_handler, embeddings, chat_engine, event_log) -> RagSession:
    """An isolated session; nothing is shared with the app singleton."""
    return RagSession(
        file_handler=file_handler,
        document_parser=DocumentParser(),
        chunking_service=ChunkingService(chunk_size=500, chunk_overlap=50),
        embeddings=embeddings,
        chat_engine=chat_engine,
        event_log=event_log,
    )


# ═══════════════════════════════════════════════════════════════
# FASTAPI CLIENT FIXTURES
# ═══════════════════════════════════════════════════════════════

@pytest.fixture
def client(rag_session) -> Generator[TestClient, None, None]:
    """Synchronous FastAPI test client bound to the test session."""
    app.dependency_overrides[get_rag_session] = lambda: rag_session
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# ═══════════════════════════════════════════════════════════════
# MOCK FIXTURES
# ═══════════════════════════════════════════════════════════════

@pytest.fixture
def mock_magic():
    """Mock python-magic so every upload is detected as a PDF."""
    with patch("pdfchat.services.file_handler.magic") as mock:
        mock.Magic.return_value.from_file.return_value = "application/pdf"
        yield mock


@pytest.fixture
def sample_elements() -> list:
    """Elements as unstructured returns them for a three-page PDF."""
    return [
        Title(text="Llamas of the Andes", metadata=ElementMetadata(page_number=1)),
        NarrativeText(
            text="The llama is a domesticated camelid. Every llama herd in the Andes "
                 "is kept for wool and as a pack animal.",
            metadata=ElementMetadata(page_number=1),
        ),
        NarrativeText(
            text="The ocean covers most of the planet and the ocean floor is mostly unexplored.",
            metadata=ElementMetadata(page_number=2),
        ),
        NarrativeText(
            text="Each invoice must be paid within thirty days of the invoice date.",
            metadata=ElementMetadata(page_number=3),
        ),
    ]


@pytest.fixture
def mock_partition(sample_elements):
    """Mock unstructured's partition to return the sample elements."""
    with patch("pdfchat.services.document_parser.partition", return_value=sample_elements) as mock:
        yield mock


# ═══════════════════════════════════════════════════════════════
# FILE FIXTURES
# ═══════════════════════════════════════════════════════════════

@pytest.fixture
def sample_pdf_bytes() -> bytes:
    """Minimal valid PDF bytes for testing."""
    return b"""%PDF-1.4
1 0 obj << /Type /Catalog /Pages 2 0 R >> endobj
2 0 obj << /Type /Pages /Kids [3 0 R] /Count 1 >> endobj
3 0 obj << /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] >> endobj
xref
0 4
0000000000 65535 f
0000000009 00000 n
0000000058 00000 n
0000000115 00000 n
trailer << /Size 4 /Root 1 0 R >>
startxref
196
%%EOF"""
