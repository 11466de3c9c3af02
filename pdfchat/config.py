"""
Application Configuration
Loads environment variables and provides typed configuration.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )
    
    # App Settings
    environment: str = Field(default="development")
    log_level: str = Field(default="INFO")
    max_upload_mb: int = Field(default=50)
    event_log_size: int = Field(default=200)
    
    # Chunking Settings
    max_chunk_size: int = Field(default=500)
    chunk_overlap: int = Field(default=50)
    
    # Embedding Settings
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_device: Optional[str] = None
    embed_in_worker: bool = True
    
    # Chat Engine (Ollama)
    ollama_base_url: str = Field(default="http://localhost:11434")
    ollama_api_key: str = Field(default="")
    chat_model: str = "llama3.2:1b"
    chat_keep_alive: str = "30m"
    request_timeout: float = 300.0
    
    # Retrieval / Prompt
    retrieval_top_k: int = 2
    system_prompt: str = "Answer strictly based on context."
    context_separator: str = "\n---\n"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
