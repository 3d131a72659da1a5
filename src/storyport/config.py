"""Configuration management for storyport."""

from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration via environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Entity detection model (any LiteLLM model string)
    default_model: str = Field(
        default="gemini/gemini-2.5-flash",
        alias="STORYPORT_MODEL",
    )

    # API Keys (LiteLLM reads these from the environment)
    gemini_api_key: Optional[str] = Field(default=None, alias="GEMINI_API_KEY")
    google_api_key: Optional[str] = Field(default=None, alias="GOOGLE_API_KEY")
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    anthropic_api_key: Optional[str] = Field(default=None, alias="ANTHROPIC_API_KEY")

    llm_temperature: float = Field(
        default=0.1,
        alias="STORYPORT_LLM_TEMPERATURE",
    )
    max_retries: int = Field(
        default=3,
        alias="STORYPORT_MAX_RETRIES",
    )

    log_level: str = Field(
        default="WARNING",
        alias="STORYPORT_LOG_LEVEL",
    )

    # Export defaults
    default_format: str = Field(
        default="markdown",
        alias="STORYPORT_DEFAULT_FORMAT",
    )
    glossary_types: str = Field(
        default="character,location",
        alias="STORYPORT_GLOSSARY_TYPES",
    )

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.strip().upper()

    @property
    def glossary_type_list(self) -> list[str]:
        """Glossary entity types in section order."""
        return [t.strip() for t in self.glossary_types.split(",") if t.strip()]

    @property
    def api_key(self) -> Optional[str]:
        """First configured provider key, if any."""
        return (
            self.gemini_api_key
            or self.google_api_key
            or self.openai_api_key
            or self.anthropic_api_key
        )


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance, creating it if needed."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def load_settings(env_file: Optional[Path] = None) -> Settings:
    """Load settings from an optional specific .env file."""
    global _settings
    if env_file:
        _settings = Settings(_env_file=env_file)
    else:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next access re-reads the environment."""
    global _settings
    _settings = None
