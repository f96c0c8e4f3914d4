"""Application configuration using Pydantic Settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite:///./planner.db"
    RUN_MIGRATIONS: bool = True

    # Generation service (OpenAI Responses API)
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    GENERATION_MODEL: str = "gpt-5"

    # Retry controller
    GENERATION_MAX_ATTEMPTS: int = 6
    GENERATION_INITIAL_DELAY: float = 1.2
    GENERATION_MAX_DELAY: float = 18.0
    GENERATION_JITTER: float = 0.3  # +/- 30%
    GENERATION_REQUEST_TIMEOUT: float = 480.0  # ~8 minutes per attempt
    GENERATION_TIMEOUT_RETRY_DELAY: float = 2.0

    # Worker
    WORKER_WALL_CLOCK_BUDGET: float = 540.0
    STALE_JOB_SECONDS: int = 900

    # Planning
    PLAN_WINDOW_DAYS: int = 30
    PLAN_TIMEZONE: str = "Asia/Tokyo"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)


# Global settings instance
settings = Settings()
