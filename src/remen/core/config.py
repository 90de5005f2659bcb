"""
Application Configuration

Centralized settings management using Pydantic BaseSettings.
All values are loaded from environment variables or .env file.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings with environment variable binding.

    Required env vars (no defaults):
        POSTGRES_USER, POSTGRES_PASSWORD, POSTGRES_HOST, POSTGRES_DB

    Optional env vars:
        POSTGRES_PORT (5432), OLLAMA_BASE_URL, OLLAMA_MODEL (mistral),
        OLLAMA_TIMEOUT (30.0), EMBEDDING_MODEL (all-MiniLM-L6-v2),
        EMBEDDING_DIMENSION (384), INFERENCE_TIMEOUT (30.0),
        LOG_LEVEL (INFO)
    """

    PROJECT_NAME: str = "Remen"

    # Database
    POSTGRES_USER: str
    POSTGRES_PASSWORD: str
    POSTGRES_HOST: str
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str

    # Language model (Ollama)
    OLLAMA_BASE_URL: str = "http://host.docker.internal:11434"
    OLLAMA_MODEL: str = "mistral"
    OLLAMA_TIMEOUT: float = 30.0

    # Embedding model (sentence-transformers)
    EMBEDDING_MODEL: str = "all-MiniLM-L6-v2"
    EMBEDDING_DIMENSION: int = 384

    # Upper bound for a single inference call (classification, title, embedding)
    INFERENCE_TIMEOUT: float = 30.0
    # Delay between readiness probes while a model is unavailable
    MODEL_LOAD_RETRY_SECONDS: float = 30.0

    # Retrieval tuning
    SEARCH_MIN_SIMILARITY: float = 0.25
    SEARCH_LOW_CONFIDENCE_SIMILARITY: float = 0.1
    SEARCH_MAX_RESULTS: int = 50
    RELATED_MIN_SIMILARITY: float = 0.3

    # Logging
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",  # Silently ignore unknown env vars
    )

    @property
    def DATABASE_URL(self) -> str:
        """Async PostgreSQL connection string using asyncpg driver."""
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )


settings = Settings()  # type: ignore[call-arg]
