"""
Vector Store Service
In-memory index over the fragments of one uploaded document.
"""
from typing import List, Optional
import structlog
from langchain_core.documents import Document
from langchain_core.embeddings import Embeddings
from langchain_core.vectorstores import InMemoryVectorStore

from pdfchat.models.schemas import ChunkResult

logger = structlog.get_logger()


class DocumentIndex:
    """Wraps an InMemoryVectorStore built from a single document."""

    def __init__(self, store: InMemoryVectorStore, chunk_count: int, source: Optional[str] = None):
        self.store = store
        self.chunk_count = chunk_count
        self.source = source

    @classmethod
    async def from_documents(
        cls,
        fragments: List[Document],
        embeddings: Embeddings,
    ) -> "DocumentIndex":
        """
        Embed fragments in one batch and build the index.

        Args:
            fragments: Chunked documents to index
            embeddings: Embedding function used for both indexing and queries

        Returns:
            A ready DocumentIndex
        """
        if not fragments:
            raise ValueError("Cannot build an index from zero fragments")

        source = fragments[0].metadata.get("source")
        logger.info("Building vector index", count=len(fragments), source=source)

        store = await InMemoryVectorStore.afrom_documents(fragments, embeddings)

        logger.info("Vector index built", count=len(fragments))
        return cls(store=store, chunk_count=len(fragments), source=source)

    async def similarity_search(self, query: str, k: int = 2) -> List[ChunkResult]:
        """
        Return the k fragments most similar to the query, best first.

        Args:
            query: Query text
            k: Number of results to return

        Returns:
            List of ChunkResult objects
        """
        if k < 1:
            raise ValueError(f"k must be at least 1, got {k}")

        logger.info("Querying vectors", top_k=k)
        hits = await self.store.asimilarity_search_with_score(query, k=k)

        results = []
        for doc, score in hits:
            metadata = doc.metadata or {}
            results.append(ChunkResult(
                content=doc.page_content,
                score=float(score),
                source=metadata.get("source", self.source or ""),
                page=metadata.get("page", 1),
                chunk_index=metadata.get("chunk_index", 0),
                start_index=metadata.get("start_index"),
            ))

        logger.info("Query complete", results=len(results))
        return results
