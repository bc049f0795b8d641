"""Typed settings configuration - single source of truth."""

from functools import lru_cache

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str = "sqlite+aiosqlite:///./docchat.db"

    # HTTP
    cors_origins: str = "*"
    log_level: str = "INFO"

    # Uploads
    upload_dir: str = "./uploads"
    max_upload_bytes: int = 10 * 1024 * 1024
    allowed_content_types: str = "application/pdf,image/png,image/jpeg,text/plain,text/csv"

    # OpenAI
    openai_api_key: SecretStr | None = None
    openai_chat_model: str = "gpt-4-turbo"
    openai_vision_model: str = "gpt-4o"
    openai_chunking_model: str = "gpt-4-turbo"
    openai_summary_model: str = "gpt-4o"

    # Pinecone (integrated inference index)
    pinecone_api_key: SecretStr | None = None
    pinecone_index_host: str = ""
    pinecone_namespace: str = "default"
    pinecone_api_version: str = "2025-01"
    pinecone_timeout_seconds: float = 30.0

    # Chunking
    chunk_part_word_limit: int = 6000
    chunk_large_threshold_chars: int = 50_000
    chunk_split_threshold_chars: int = 30_000
    fallback_chunk_size: int = 1000
    fallback_chunk_overlap: int = 200

    # Retrieval and chat
    retrieval_top_k: int = 5
    snippet_chars: int = 200
    summary_chunk_count: int = 5

    # Server-sent events
    sse_heartbeat_seconds: float = 30.0
    sse_queue_size: int = 100

    @property
    def async_database_url(self) -> str:
        """Database URL with an async driver."""
        url = self.database_url
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif url.startswith("sqlite://") and not url.startswith("sqlite+aiosqlite://"):
            url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return url

    @property
    def content_types(self) -> frozenset[str]:
        """Allowed upload content types as a set."""
        return frozenset(t.strip() for t in self.allowed_content_types.split(",") if t.strip())


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
