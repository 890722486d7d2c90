"""Application configuration managed via environment variables."""
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Orbit Backend"
    debug: bool = False
    log_level: str = "INFO"
    database_url: str = "postgresql+psycopg2://orbit@localhost:5432/orbit"
    opik_enabled: bool = False
    opik_api_key: str | None = None
    opik_project: str = "orbit"

    # Primary intent interpretation (chat turns).
    openai_api_key: str | None = None
    intent_provider: str = "openai"
    intent_model: str = "gpt-4o-mini"
    ollama_base_url: str = "http://localhost:11434/v1"
    ollama_model: str = "phi3.5:3.8b"

    # Fact extraction is always routed to the provider that is best at structured output,
    # independently of which provider serves chat turns.
    structured_output_provider: str = "openai"
    fact_extraction_model: str = "gpt-4o-mini"
    fact_extraction_enabled: bool = True

    llm_timeout_seconds: float = 30.0
    llm_max_retries: int = 3
    max_image_bytes: int = 5 * 1024 * 1024


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()


settings = get_settings()
