from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Strongly-typed settings model loaded from env / .env.

    Notes:
        - Every value has a dev-safe default; production overrides via environment.
        - Invalid values fail fast with a `ValidationError` at first access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        protected_namespaces=()
    )

    ENV: Literal["dev", "test", "staging", "prod"] = Field(default="dev", description="Deployment environment")
    SERVICE_NAME: str = Field(default="quiz-engine", description="Service name")
    LOG_LEVEL: str = Field(default="INFO", description="Root logging level")

    DATABASE_URL: Optional[str] = Field(
        default=None, description="SQLAlchemy URL; unset keeps attempts in memory"
    )
    QUIZ_BANK_PATH: Optional[str] = Field(default=None, description="YAML/JSON quiz bank seeded at startup")

    STALE_ATTEMPT_HOURS: float = Field(
        default=72.0, gt=0, description="Untimed in-progress attempts older than this are auto-submitted"
    )
    SHORT_ANSWER_POLICY: Literal["exact", "keywords"] = Field(
        default="exact", description="Short-answer matching: exact accepted string or keyword overlap"
    )
    FIRST_PASS_AWARD: bool = Field(default=True, description="Award quiz points on a user's first pass")
    TIMER_GRACE_SECONDS: float = Field(
        default=0.0, ge=0, description="Extra seconds added to a quiz countdown before auto-submit"
    )

    @field_validator("LOG_LEVEL")
    @classmethod
    def _upper_level(cls, v: str) -> str:
        return v.upper()


@lru_cache()
def get_settings() -> Settings:
    """Return a cached singleton `Settings` instance."""
    return Settings()
