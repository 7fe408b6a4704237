from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    PROJECT_NAME: str = "CV Formatter API"
    OPENAI_API_KEY: str | None = None
    ANTHROPIC_API_KEY: str | None = None
    GEMINI_API_KEY: str | None = None
    DATABASE_URL: str = "" # Logic: If set, use Postgres. Else, use SQLite.
    SQLITE_PATH: str = "cvs.db"
    REDIS_URL: str = "redis://localhost:6379/0" # Default local Redis
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_DEFAULT: str = "60/minute"
    MAX_UPLOAD_SIZE_MB: int = 20
    MAX_HEADSHOT_SIZE_MB: int = 5

    # ⚠ SECURITY WARNING: These defaults are for local development ONLY.
    # In production, you MUST override CORS_ORIGINS via environment variable to restrict access.
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:3000,http://localhost:8080"

    # ─── Model Backends ──────────────────────────────────────────────────
    OPENAI_MODEL: str = "gpt-4"
    ANTHROPIC_MODEL: str = "claude-3-sonnet-20240229"
    GEMINI_MODEL: str = "gemini-pro"
    ADAPTER_TIMEOUT_SECONDS: float = 120.0
    ADAPTER_MAX_RETRIES: int = 2
    ADAPTER_MAX_INPUT_TOKENS: int = 6000

    # ─── Processing ──────────────────────────────────────────────────────
    STALE_PROCESSING_SECONDS: int = 0     # 0 = derive from adapter timeout and retries
    REAPER_INTERVAL_SECONDS: int = 300
    LOCAL_WORKERS: int = 4                # executor size when Celery runs eagerly

    # ─── Storage ─────────────────────────────────────────────────────────
    UPLOAD_DIR: str = "uploads"

    class Config:
        env_file = ".env"

settings = Settings()
