"""
Runtime configuration for Pocket Pilot.

Values come from ``POCKET_PILOT_*`` environment variables or a ``.env`` file
and are copied into ``app.config`` by :func:`pocket_pilot.create_app`.
``DATABASE_URL`` is read separately by :mod:`pocket_pilot.db`.
"""

from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="POCKET_PILOT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    secret_key: str = Field(default="dev", description="Flask session signing key")
    database: Optional[str] = Field(
        default=None,
        description="SQLite database path; defaults to the Flask instance folder",
    )
    log_level: str = Field(default="INFO")
    currency: str = Field(default="CAD", min_length=3, max_length=3)

    openai_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("POCKET_PILOT_OPENAI_API_KEY", "OPENAI_API_KEY"),
    )
    openai_base_url: Optional[str] = Field(default=None, description="OpenAI-compatible endpoint override")
    openai_model: str = Field(default="gpt-4o-mini")
    chat_max_tool_rounds: int = Field(default=5, ge=1, le=10)

    default_monthly_income: float = Field(default=5000.0, gt=0)

    @field_validator("log_level")
    @classmethod
    def upper_log_level(cls, value: str) -> str:
        return value.upper()

    def to_flask_config(self) -> dict:
        return {
            "SECRET_KEY": self.secret_key,
            "LOG_LEVEL": self.log_level,
            "CURRENCY": self.currency,
            "OPENAI_API_KEY": self.openai_api_key,
            "OPENAI_BASE_URL": self.openai_base_url,
            "OPENAI_MODEL": self.openai_model,
            "CHAT_MAX_TOOL_ROUNDS": self.chat_max_tool_rounds,
            "DEFAULT_MONTHLY_INCOME": self.default_monthly_income,
        }


@lru_cache()
def get_settings() -> Settings:
    """Cached settings; call ``get_settings.cache_clear()`` to reload."""
    return Settings()
