"""
Chunking Service
Splits page records into small overlapping fragments for embedding.
"""
from typing import List, Optional
import structlog

from langchain_core.documents import Document
from langchain_text_splitters import RecursiveCharacterTextSplitter

from pdfchat.config import get_settings

logger = structlog.get_logger()


class ChunkingService:
    """Recursive character splitting with a fixed size and overlap."""

    def __init__(
        self,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
    ):
        self.settings = get_settings()
        self.chunk_size = chunk_size if chunk_size is not None else self.settings.max_chunk_size
        self.chunk_overlap = chunk_overlap if chunk_overlap is not None else self.settings.chunk_overlap

        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"chunk_overlap ({self.chunk_overlap}) must be smaller than "
                f"chunk_size ({self.chunk_size})"
            )

        self.splitter = RecursiveCharacterTextSplitter(
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
            add_start_index=True,
        )

    def split_documents(self, pages: List[Document]) -> List[Document]:
        """
        Split page records into fragments.

        Each fragment keeps the metadata of its page (source, page),
        the character offset it starts at within that page (start_index)
        and its position in the whole document (chunk_index).

        Args:
            pages: Page-level records from the document parser

        Returns:
            Fragments in document order
        """
        logger.info(
            "Starting chunking",
            page_count=len(pages),
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap
        )

        fragments = [
            doc for doc in self.splitter.split_documents(pages)
            if doc.page_content.strip()
        ]
        for idx, doc in enumerate(fragments):
            doc.metadata["chunk_index"] = idx

        logger.info("Chunking complete", chunks=len(fragments))
        return fragments


# Singleton
_chunking_service: Optional[ChunkingService] = None


def get_chunking_service() -> ChunkingService:
    """Get singleton chunking service instance."""
    global _chunking_service
    if _chunking_service is None:
        _chunking_service = ChunkingService()
    return _chunking_service
