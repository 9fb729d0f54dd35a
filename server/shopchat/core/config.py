from functools import lru_cache
from typing import List

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    api_title: str = "Fashion RAG Chat API"
    api_version: str = "0.1.0"
    log_level: str = "INFO"
    log_json: bool = True

    openai_api_key: str | None = None
    ollama_host: str | None = None

    embeddings_provider: str = "openai"  # openai | local | fake
    embedding_model: str = "text-embedding-3-small"
    embedding_dimension: int = Field(default=768, gt=0)
    embedding_timeout_sec: float = 10.0

    vector_index_backend: str = "qdrant"  # qdrant | memory
    qdrant_url: str = "http://localhost:6333"
    qdrant_api_key: str | None = None
    qdrant_collection: str = "products"
    vector_index_timeout_sec: float = 10.0

    chat_model_provider: str = "openai"  # openai | local | fake
    chat_model: str = "gpt-4.1-mini"
    chat_temperature: float = 0.4
    vision_temperature: float = 0.3
    vision_max_tokens: int = 500
    chat_timeout_sec: float = 20.0

    upstream_max_retries: int = Field(default=2, ge=0)
    upstream_backoff_sec: float = Field(default=0.3, ge=0)

    retrieval_default_k: int = Field(default=5, ge=1)
    retrieval_max_k: int = Field(default=20, ge=1)
    ingest_concurrency: int = Field(default=4, ge=1)
    description_max_chars: int = Field(default=400, ge=10)
    default_currency: str = "VND"

    catalog_db_url: str = Field(
        default="sqlite:///./data/sqlite/catalog.db",
        validation_alias=AliasChoices("CATALOG_DB_URL", "DATABASE_URL"),
    )

    cors_origins: List[str] = Field(
        default_factory=lambda: [
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ]
    )
    render_frontend_origin: str | None = Field(default=None, alias="RENDER_FRONTEND_ORIGIN")
    langfuse_public_key: str | None = None
    langfuse_secret_key: str | None = None
    langfuse_host: str | None = None
    langfuse_release: str | None = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def resolved_cors_origins(self) -> List[str]:
        """
        Returns the configured CORS origins plus the optional frontend origin, deduped.
        """
        normalized: list[str] = []

        def _append(origin: str | None) -> None:
            if not origin:
                return
            cleaned = origin.rstrip("/")
            if cleaned not in normalized:
                normalized.append(cleaned)

        for origin in self.cors_origins:
            _append(origin)

        _append(self.render_frontend_origin)
        return normalized


@lru_cache
def get_settings() -> AppSettings:
    return AppSettings()
