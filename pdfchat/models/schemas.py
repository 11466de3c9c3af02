"""
Data models for the PDF chat service.
"""
from datetime import datetime, timezone
from pydantic import BaseModel, Field, field_validator
from typing import List, Literal, Optional


class ChunkResult(BaseModel):
    """Model for search results returned from vector query."""
    content: str
    score: float
    source: str
    page: int
    chunk_index: int
    start_index: Optional[int] = None


class ChatMessage(BaseModel):
    """One turn of the chat transcript."""
    role: Literal["system", "user", "assistant"]
    content: str


class ModelLoadProgress(BaseModel):
    """Progress report emitted while the chat model is loading."""
    progress: float = Field(default=0.0, ge=0.0, le=1.0)
    text: str = ""
    loaded: bool = False
    error: Optional[str] = None


class LogEntry(BaseModel):
    """A single line of the user-facing event log."""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    message: str


# ─────────────────────────────────────────────────────────────
# Request/Response Models
# ─────────────────────────────────────────────────────────────

class IndexResponse(BaseModel):
    status: str          # "indexed"
    file_name: str       # Original filename
    page_count: int
    chunk_count: int
    ready: bool          # Document indexed AND model loaded
    message: str


class ChatRequest(BaseModel):
    question: str
    
    @field_validator("question")
    @classmethod
    def question_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Question must not be empty")
        return value


class SystemStatus(BaseModel):
    document_indexed: bool
    document_name: Optional[str] = None
    chunk_count: int = 0
    model_loaded: bool
    model_loading: bool = False
    model_id: Optional[str] = None
    model_progress: ModelLoadProgress
    ready: bool


class LogResponse(BaseModel):
    entries: List[LogEntry]
    total: int


class SearchResponse(BaseModel):
    query: str
    results: List[ChunkResult]


class TranscriptResponse(BaseModel):
    messages: List[ChatMessage]
