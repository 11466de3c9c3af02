"""
Embedding Service
Generates vector embeddings locally with a sentence-transformers model.
"""
import asyncio
import threading
from typing import List, Optional
import structlog
from langchain_core.embeddings import Embeddings
from sentence_transformers import SentenceTransformer

from pdfchat.config import get_settings

logger = structlog.get_logger()


class LocalEmbeddings(Embeddings):
    """Mean-pooled, normalised sentence embeddings behind the langchain interface."""

    # Batch size for encode calls
    BATCH_SIZE = 32

    def __init__(
        self,
        model_name: Optional[str] = None,
        device: Optional[str] = None,
        in_worker: Optional[bool] = None,
    ):
        self.settings = get_settings()
        self.model_name = model_name or self.settings.embedding_model
        self.device = device or self.settings.embedding_device
        self.in_worker = self.settings.embed_in_worker if in_worker is None else in_worker
        self._model: Optional[SentenceTransformer] = None
        self._lock = threading.Lock()

    def _get_model(self) -> SentenceTransformer:
        """Load the model once, on first use."""
        if self._model is None:
            with self._lock:
                if self._model is None:
                    logger.info("Loading embedding model", model=self.model_name, device=self.device)
                    self._model = SentenceTransformer(self.model_name, device=self.device)
        return self._model

    @property
    def dimension(self) -> int:
        return self._get_model().get_sentence_embedding_dimension()

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for multiple texts.

        Args:
            texts: List of texts to embed

        Returns:
            List of embedding vectors, in input order
        """
        if not texts:
            return []

        logger.info("Generating embeddings", count=len(texts))
        vectors = self._get_model().encode(
            texts,
            batch_size=self.BATCH_SIZE,
            normalize_embeddings=True,
            convert_to_numpy=True,
            show_progress_bar=False,
        )
        logger.info("Embeddings complete", total=len(vectors))
        return [vector.tolist() for vector in vectors]

    def embed_query(self, text: str) -> List[float]:
        """
        Generate embedding for a search query.

        Args:
            text: User's search query

        Returns:
            Query embedding vector
        """
        vector = self._get_model().encode(
            text,
            normalize_embeddings=True,
            convert_to_numpy=True,
            show_progress_bar=False,
        )
        return vector.tolist()

    async def aembed_documents(self, texts: List[str]) -> List[List[float]]:
        if self.in_worker:
            return await asyncio.to_thread(self.embed_documents, texts)
        return self.embed_documents(texts)

    async def aembed_query(self, text: str) -> List[float]:
        if self.in_worker:
            return await asyncio.to_thread(self.embed_query, text)
        return self.embed_query(text)


# Singleton instance
_embedding_service: Optional[LocalEmbeddings] = None


def get_embedding_service() -> LocalEmbeddings:
    """Get singleton embedding service instance."""
    global _embedding_service
    if _embedding_service is None:
        _embedding_service = LocalEmbeddings()
    return _embedding_service
