from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Postgres
    PG_HOST: str = "localhost"
    PG_PORT: str = "5432"
    PG_DB: str = "superstore"
    PG_USER: str = "postgres"
    PG_PASSWORD: str = "postgres"
    DB_MAX_CONCURRENCY: int = 4

    @property
    def ASYNC_DATABASE_URL(self) -> str:
        return f"postgresql+asyncpg://{self.PG_USER}:{self.PG_PASSWORD}@{self.PG_HOST}:{self.PG_PORT}/{self.PG_DB}"

    # Groq (optional enrichment path)
    GROQ_API_KEY: Optional[str] = None
    GROQ_MODEL: str = "meta-llama/llama-4-scout-17b-16e-instruct"
    LLM_TEMPERATURE: float = 0.1
    ENRICHMENT_ENABLED: bool = False

    # Query planning
    DEFAULT_METRIC: str = "sales"
    DEFAULT_LIMIT: int = 5
    # "fail_open" drops offending expressions, "fail_closed" rejects the plan
    PLAN_SANITIZER_MODE: str = "fail_open"

    # Question validation
    MIN_QUESTION_LENGTH: int = 3
    MAX_QUESTION_LENGTH: int = 500

    # Session memory
    SESSION_BACKEND: str = "memory"
    REDIS_URL: str = "redis://localhost:6379/0"
    SESSION_TTL_SECONDS: int = 86400
    SESSION_HISTORY_LIMIT: int = 5

    # API
    DEBUG_RETURN_SQL: bool = Field(default=False)
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
