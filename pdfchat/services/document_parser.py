"""
Document Parser Service
Turns a PDF into page-level text records using unstructured.io.
"""
import asyncio
from typing import Dict, List, Optional
import structlog

from langchain_core.documents import Document
from unstructured.partition.auto import partition
from unstructured.documents.elements import Element

logger = structlog.get_logger()


class DocumentParser:
    """Parses PDFs into one record per page."""

    def __init__(self, strategy: str = "fast"):
        self.strategy = strategy

    async def load(self, file_path: str, source: Optional[str] = None) -> List[Document]:
        """
        Parse a PDF and return its text grouped by page.

        Args:
            file_path: Path to the PDF on disk
            source: Name recorded in each page's metadata (defaults to file_path)

        Returns:
            Page records ordered by page number; empty pages are skipped
        """
        source = source or file_path
        logger.info("Parsing document", path=file_path, strategy=self.strategy)

        # partition is CPU-bound; keep the event loop free
        elements = await asyncio.to_thread(self._partition, file_path)
        pages = self._group_by_page(elements, source)

        logger.info(
            "Document parsed successfully",
            element_count=len(elements),
            page_count=len(pages)
        )
        return pages

    def _partition(self, file_path: str) -> List[Element]:
        return partition(
            filename=file_path,
            content_type="application/pdf",
            strategy=self.strategy,
            include_page_breaks=False,
        )

    def _group_by_page(self, elements: List[Element], source: str) -> List[Document]:
        texts: Dict[int, List[str]] = {}
        for el in elements:
            text = self.get_element_text(el).strip()
            if not text:
                continue
            texts.setdefault(self._page_number(el), []).append(text)

        return [
            Document(
                page_content="\n\n".join(parts),
                metadata={"source": source, "page": page},
            )
            for page, parts in sorted(texts.items())
        ]

    def _page_number(self, element: Element) -> int:
        metadata = getattr(element, "metadata", None)
        page = getattr(metadata, "page_number", None) if metadata else None
        return page or 1

    def get_element_text(self, element: Element) -> str:
        """Get text content from an element."""
        if hasattr(element, 'text'):
            return str(element.text)
        return str(element)


# Singleton instance
_document_parser: Optional[DocumentParser] = None


def get_document_parser() -> DocumentParser:
    """Get singleton document parser instance."""
    global _document_parser
    if _document_parser is None:
        _document_parser = DocumentParser()
    return _document_parser
