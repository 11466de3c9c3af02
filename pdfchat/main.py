"""
PDF Chat FastAPI Application
Upload a PDF, load a local model, and chat about the document.
"""
import asyncio
import logging
from pathlib import Path
from typing import AsyncIterator, Optional, Tuple

from fastapi import Depends, FastAPI, HTTPException, Query, UploadFile, File, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, StreamingResponse
import structlog

from pdfchat.config import get_settings
from pdfchat.models.schemas import (
    ChatRequest,
    IndexResponse,
    LogResponse,
    ModelLoadProgress,
    SearchResponse,
    SystemStatus,
    TranscriptResponse,
)
from pdfchat.services.chat_engine import ChatEngineError, ChatEngineUnavailableError
from pdfchat.services.file_handler import UnsupportedFileTypeError
from pdfchat.services.rag_session import (
    ModelLoadInProgressError,
    RagSession,
    SystemNotReadyError,
    get_rag_session,
)

settings = get_settings()

# Configure logging for terminal readability
logging.basicConfig(format="%(message)s", level=settings.log_level.upper())
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.processors.TimeStamper(fmt="%H:%M:%S"),
        structlog.dev.ConsoleRenderer()  # Human-readable format in terminal
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger()

STATIC_DIR = Path(__file__).parent / "static"

# Create FastAPI app
app = FastAPI(
    title="PDF Chat",
    description="Chat with a local language model about an uploaded PDF",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─────────────────────────────────────────────────────────────
# Page
# ─────────────────────────────────────────────────────────────

@app.get("/", response_class=HTMLResponse)
async def index_page():
    """Serve the single-page chat interface."""
    return HTMLResponse((STATIC_DIR / "index.html").read_text(encoding="utf-8"))


# ─────────────────────────────────────────────────────────────
# API 1: Upload & Index PDF
# ─────────────────────────────────────────────────────────────

@app.post("/upload", response_model=IndexResponse)
async def upload_file(
    file: UploadFile = File(...),
    session: RagSession = Depends(get_rag_session),
):
    """
    Upload a PDF and build the in-memory index over its text.
    """
    content = await file.read()
    file_name = file.filename or "upload.pdf"
    logger.info(f"Uploading file '{file_name}'", size_bytes=len(content))

    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Uploaded file is empty")
    if len(content) > session.file_handler.max_upload_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds {settings.max_upload_mb} MB limit"
        )

    try:
        return await session.index_document(content, file_name)
    except UnsupportedFileTypeError as e:
        raise HTTPException(status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE, detail=f"PDF Error: {e}")
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"PDF Error: {e}")


# ─────────────────────────────────────────────────────────────
# API 2: Load Chat Model (streams progress)
# ─────────────────────────────────────────────────────────────

def _start_load(session: RagSession) -> Tuple[asyncio.Queue, asyncio.Task]:
    """Run a reserved model load in the background, feeding progress into a queue."""
    queue: asyncio.Queue = asyncio.Queue()
    task = asyncio.create_task(session.load_model(progress_callback=queue.put_nowait, reserved=True))
    task.add_done_callback(lambda _: queue.put_nowait(None))
    return queue, task


async def _progress_stream(
    session: RagSession, queue: asyncio.Queue, task: asyncio.Task
) -> AsyncIterator[str]:
    try:
        while True:
            progress = await queue.get()
            if progress is None:
                break
            yield progress.model_dump_json() + "\n"

        try:
            await task
        except Exception as e:
            final = ModelLoadProgress(progress=session.model_progress.progress, text="AI Error", error=str(e))
        else:
            final = ModelLoadProgress(progress=1.0, text="AI Engine Active.", loaded=True)
        yield final.model_dump_json() + "\n"
    finally:
        # Client went away mid-load
        if not task.done():
            task.cancel()
        elif not task.cancelled():
            task.exception()


@app.post("/model/load")
async def load_model(session: RagSession = Depends(get_rag_session)):
    """
    Load the configured chat model, streaming NDJSON progress updates.
    """
    try:
        session.reserve_model_load()
    except ModelLoadInProgressError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    try:
        await session.ensure_engine_available()
    except ChatEngineUnavailableError as e:
        session.release_model_load()
        session.event_log.log(f"AI Error: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    except BaseException:
        session.release_model_load()
        raise

    queue, task = _start_load(session)
    return StreamingResponse(_progress_stream(session, queue, task), media_type="application/x-ndjson")


# ─────────────────────────────────────────────────────────────
# API 3: Chat (streams answer text)
# ─────────────────────────────────────────────────────────────

async def _answer_stream(first: str, rest: AsyncIterator[str]) -> AsyncIterator[str]:
    if first:
        yield first
    try:
        async for delta in rest:
            yield delta
    except ChatEngineError as e:
        # Headers are already sent; the failure is in the event log
        logger.error("Answer stream aborted", error=str(e))


@app.post("/chat")
async def chat(request: ChatRequest, session: RagSession = Depends(get_rag_session)):
    """
    Answer a question about the indexed PDF, streaming plain-text deltas.
    """
    try:
        stream = await session.answer(request.question)
        # Pull the first delta so engine failures still map to an HTTP status
        first = await anext(stream, "")
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except SystemNotReadyError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ChatEngineUnavailableError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=f"AI Error: {e}")
    except ChatEngineError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"AI Error: {e}")
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"AI Error: {e}")

    return StreamingResponse(_answer_stream(first, stream), media_type="text/plain; charset=utf-8")


# ─────────────────────────────────────────────────────────────
# Helper Endpoints
# ─────────────────────────────────────────────────────────────

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/status", response_model=SystemStatus)
async def get_status(session: RagSession = Depends(get_rag_session)):
    """Readiness of the document index and the chat model."""
    return session.status()


@app.get("/log", response_model=LogResponse)
async def get_log(since: int = Query(default=0, ge=0), session: RagSession = Depends(get_rag_session)):
    """Event log lines written at or after position `since`."""
    return LogResponse(entries=session.event_log.entries(since), total=session.event_log.total)


@app.get("/search", response_model=SearchResponse)
async def search(
    query: str,
    k: Optional[int] = Query(default=None, ge=1, le=50),
    session: RagSession = Depends(get_rag_session),
):
    """Top-k fragments of the indexed PDF most similar to the query."""
    try:
        results = await session.search(query, k)
    except SystemNotReadyError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return SearchResponse(query=query, results=results)


@app.get("/transcript", response_model=TranscriptResponse)
async def get_transcript(session: RagSession = Depends(get_rag_session)):
    """Chat turns so far."""
    return TranscriptResponse(messages=session.transcript)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("pdfchat.main:app", host="0.0.0.0", port=8000, reload=True)
