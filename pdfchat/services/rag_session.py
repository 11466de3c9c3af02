"""
RAG Session
Sequences upload, indexing, model loading and question answering, and
tracks whether the chat is ready.
"""
from typing import AsyncIterator, Dict, List, Optional
import structlog
from langchain_core.embeddings import Embeddings

from pdfchat.config import get_settings
from pdfchat.models.schemas import (
    ChatMessage,
    ChunkResult,
    IndexResponse,
    ModelLoadProgress,
    SystemStatus,
)
from pdfchat.services.chat_engine import ChatEngine, ProgressCallback, get_chat_engine
from pdfchat.services.chunking_service import ChunkingService, get_chunking_service
from pdfchat.services.document_parser import DocumentParser, get_document_parser
from pdfchat.services.embedding_service import get_embedding_service
from pdfchat.services.event_log import EventLog
from pdfchat.services.file_handler import FileHandler, get_file_handler
from pdfchat.services.vector_store import DocumentIndex

logger = structlog.get_logger()


class SystemNotReadyError(RuntimeError):
    """Chat was requested before a document was indexed and the model loaded."""


class ModelLoadInProgressError(RuntimeError):
    """A model load is already running."""


class RagSession:
    """Holds the vector store and chat engine handles for one user."""

    NOT_READY_MESSAGE = "System not ready. Load a PDF and initialize AI first."

    def __init__(
        self,
        file_handler: Optional[FileHandler] = None,
        document_parser: Optional[DocumentParser] = None,
        chunking_service: Optional[ChunkingService] = None,
        embeddings: Optional[Embeddings] = None,
        chat_engine: Optional[ChatEngine] = None,
        event_log: Optional[EventLog] = None,
    ):
        self.settings = get_settings()
        self.file_handler = file_handler or get_file_handler()
        self.document_parser = document_parser or get_document_parser()
        self.chunking_service = chunking_service or get_chunking_service()
        self.embeddings = embeddings or get_embedding_service()
        self.chat_engine = chat_engine or get_chat_engine()
        self.event_log = event_log or EventLog()

        self.vector_store: Optional[DocumentIndex] = None
        self.model_progress = ModelLoadProgress()
        self.model_loading = False
        self._transcript: List[ChatMessage] = []

    # ─────────────────────────────────────────────────────────────
    # State
    # ─────────────────────────────────────────────────────────────

    @property
    def is_ready(self) -> bool:
        return self.vector_store is not None and self.chat_engine.is_loaded

    @property
    def transcript(self) -> List[ChatMessage]:
        return list(self._transcript)

    def check_ready(self) -> bool:
        """Announce readiness once both the index and the model are available."""
        if self.is_ready:
            self.event_log.log("System ready.")
            return True
        return False

    def status(self) -> SystemStatus:
        return SystemStatus(
            document_indexed=self.vector_store is not None,
            document_name=self.vector_store.source if self.vector_store else None,
            chunk_count=self.vector_store.chunk_count if self.vector_store else 0,
            model_loaded=self.chat_engine.is_loaded,
            model_loading=self.model_loading,
            model_id=self.chat_engine.model_id,
            model_progress=self.model_progress,
            ready=self.is_ready,
        )

    # ─────────────────────────────────────────────────────────────
    # Document indexing
    # ─────────────────────────────────────────────────────────────

    async def index_document(self, content: bytes, file_name: str) -> IndexResponse:
        """
        Parse, split and index an uploaded PDF.

        The previous index stays in place until the new one is complete.

        Args:
            content: Raw PDF bytes
            file_name: Original filename

        Returns:
            IndexResponse summarising the indexed document
        """
        self.event_log.log("Reading PDF...")
        local_path = None

        try:
            local_path = self.file_handler.save_upload(content, file_name)
            self.file_handler.detect_file_type(local_path)

            pages = await self.document_parser.load(local_path, source=file_name)
            fragments = self.chunking_service.split_documents(pages)
            if not fragments:
                raise ValueError("No text extracted from document")

            index = await DocumentIndex.from_documents(fragments, self.embeddings)
        except Exception as e:
            self.event_log.log(f"PDF Error: {e}")
            logger.error("Indexing failed", file_name=file_name, error=str(e))
            raise
        finally:
            if local_path:
                self.file_handler.cleanup(local_path)

        self.vector_store = index
        self.event_log.log("PDF Indexed.")
        ready = self.check_ready()

        return IndexResponse(
            status="indexed",
            file_name=file_name,
            page_count=len(pages),
            chunk_count=index.chunk_count,
            ready=ready,
            message=f"Indexed {index.chunk_count} chunks from {len(pages)} pages",
        )

    # ─────────────────────────────────────────────────────────────
    # Model loading
    # ─────────────────────────────────────────────────────────────

    async def ensure_engine_available(self) -> str:
        return await self.chat_engine.check_available()

    def reserve_model_load(self) -> None:
        """
        Claim the single model-load slot.

        Synchronous, so a caller can claim the slot before its first await.

        Raises:
            ModelLoadInProgressError: If another load holds the slot
        """
        if self.model_loading:
            raise ModelLoadInProgressError("Model load already in progress")
        self.model_loading = True

    def release_model_load(self) -> None:
        self.model_loading = False

    async def load_model(
        self,
        progress_callback: Optional[ProgressCallback] = None,
        reserved: bool = False,
    ) -> None:
        """
        Load the configured chat model, recording progress.

        Args:
            progress_callback: Receives every ModelLoadProgress report
            reserved: The caller already holds the slot from reserve_model_load()
        """
        if not reserved:
            self.reserve_model_load()

        def on_progress(progress: ModelLoadProgress) -> None:
            self.model_progress = progress
            if progress_callback is not None:
                progress_callback(progress)

        self.event_log.log("Initializing AI Engine...")
        try:
            await self.chat_engine.load(self.settings.chat_model, progress_callback=on_progress)
        except Exception as e:
            self.model_progress = ModelLoadProgress(
                progress=self.model_progress.progress,
                text=self.model_progress.text,
                error=str(e),
            )
            self.event_log.log(f"AI Error: {e}")
            logger.error("Model load failed", model=self.settings.chat_model, error=str(e))
            raise
        finally:
            self.release_model_load()

        self.model_progress = ModelLoadProgress(
            progress=1.0, text=self.model_progress.text, loaded=True
        )
        self.event_log.log("AI Engine Active.")
        self.check_ready()

    # ─────────────────────────────────────────────────────────────
    # Retrieval & chat
    # ─────────────────────────────────────────────────────────────

    async def search(self, query: str, k: Optional[int] = None) -> List[ChunkResult]:
        if self.vector_store is None:
            raise SystemNotReadyError("No document indexed")
        if k is None:
            k = self.settings.retrieval_top_k
        return await self.vector_store.similarity_search(query, k)

    def build_messages(self, question: str, related: List[ChunkResult]) -> List[Dict[str, str]]:
        context = self.settings.context_separator.join(r.content for r in related)
        return [
            {"role": "system", "content": self.settings.system_prompt},
            {"role": "user", "content": f"Context: {context}\n\nQuestion: {question}"},
        ]

    async def answer(self, question: str) -> AsyncIterator[str]:
        """
        Retrieve context for a question and start streaming the answer.

        Args:
            question: User's question

        Returns:
            Async iterator of answer deltas

        Raises:
            ValueError: If the question is blank
            SystemNotReadyError: If no document is indexed or no model is loaded
        """
        if not question.strip():
            raise ValueError("Question must not be empty")
        if not self.is_ready:
            self.event_log.log(self.NOT_READY_MESSAGE)
            raise SystemNotReadyError(self.NOT_READY_MESSAGE)

        self.event_log.log("Searching context...")
        try:
            related = await self.vector_store.similarity_search(question, self.settings.retrieval_top_k)
            messages = self.build_messages(question, related)
        except Exception as e:
            self.event_log.log(f"AI Error: {e}")
            logger.error("Context search failed", error=str(e))
            raise

        self._transcript.append(ChatMessage(role="user", content=question))
        return self._stream_answer(messages)

    async def _stream_answer(self, messages: List[Dict[str, str]]) -> AsyncIterator[str]:
        full_text = ""
        try:
            async for delta in self.chat_engine.stream_chat(messages):
                full_text += delta
                yield delta
        except Exception as e:
            self.event_log.log(f"AI Error: {e}")
            logger.error("Chat completion failed", error=str(e))
            raise

        self._transcript.append(ChatMessage(role="assistant", content=full_text))
        self.event_log.log("Response finished.")


# Singleton instance
_rag_session: Optional[RagSession] = None


def get_rag_session() -> RagSession:
    """Get singleton RAG session instance."""
    global _rag_session
    if _rag_session is None:
        _rag_session = RagSession()
    return _rag_session
