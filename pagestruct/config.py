"""Configuration loaded from environment (.env) and defaults."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Locate the project root .env file regardless of CWD
_THIS_DIR = Path(__file__).resolve().parent          # pagestruct/
_PROJECT_ROOT = _THIS_DIR.parent
_ENV_FILE = _PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE) if _ENV_FILE.exists() else ".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # LLM provider: openai | anthropic
    pagestruct_llm_provider: str = "openai"

    # OpenAI
    openai_api_key: str | None = None
    pagestruct_openai_model: str = "gpt-4o-mini"

    # Anthropic
    anthropic_api_key: str | None = None
    pagestruct_anthropic_model: str = "claude-3-5-sonnet-20241022"

    # Job store backend: "memory" (default) or "file"
    pagestruct_job_store: str = "memory"

    # Data directory for the file job store
    pagestruct_data_dir: str = "./data"

    # Job retention (seconds). expires_at = created_at + job_ttl_seconds
    job_ttl_seconds: int = 24 * 60 * 60
    sweep_interval_seconds: float = 60 * 60

    # Primary (static) fetch
    fetch_timeout_seconds: float = 10.0
    user_agent: str = "Mozilla/5.0 (compatible; pagestruct/0.1; +https://example.com/bot)"
    fetch_max_attempts: int = 2
    fetch_backoff_seconds: float = 0.5
    min_content_chars: int = 100
    max_content_chars: int = 100_000

    # Headless rendering; headless_timeout_seconds is the ceiling for the whole render
    headless_enabled: bool = True
    headless_timeout_seconds: float = 15.0
    headless_settle_ms: int = 1500
    headless_max_sessions: int = 5
    headless_acquire_timeout_seconds: float = 10.0

    # Schema endpoint
    schema_fetch_timeout_seconds: float = 10.0
    schema_cache_ttl_seconds: float = 300.0
    schema_cache_max_entries: int = 256

    # Model calls
    llm_timeout_seconds: float = 30.0
    llm_max_attempts: int = 3
    llm_backoff_base_seconds: float = 1.0
    llm_backoff_max_seconds: float = 8.0

    # Per-job budget: soft target drives estimated_completion, hard cutoff fails the job
    soft_timeout_seconds: float = 30.0
    hard_timeout_seconds: float = 60.0

    # Disable the private-address guard (local development only)
    allow_private_urls: bool = False

    # CORS origins (comma-separated). Defaults to localhost dev.
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
    cors_origin_regex: str | None = None

    # Server port (hosting platforms inject PORT)
    port: int = 8000
    log_level: str = "INFO"

    @property
    def data_dir(self) -> Path:
        """Get data directory as Path.

        Relative paths are resolved against the project root (not CWD).
        """
        p = Path(self.pagestruct_data_dir)
        if not p.is_absolute():
            return (_PROJECT_ROOT / p).resolve()
        return p.resolve()

    @property
    def jobs_dir(self) -> Path:
        return self.data_dir / "jobs"

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
