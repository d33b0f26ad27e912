"""
Configuration Settings.

This module defines the application configuration using Pydantic's BaseSettings.
It automatically loads all configuration from environment variables and .env file
without explicit dotenv loading.

``EngineSettings`` is the slice of the configuration the execution engine
consumes. It is a plain model so tests and embedding applications can build
one directly instead of going through the environment.
"""

from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# =====================================================================
# LLM Provider Configuration Models
# =====================================================================


class OpenAIConfig(BaseModel):
    """OpenAI API configuration."""

    api_key: Optional[str] = Field(
        default=None, alias="OPENAI_API_KEY", description="OpenAI API key for authentication"
    )
    model: str = Field(default="gpt-4o", alias="OPENAI_MODEL", description="Default OpenAI model to use")
    input_price_per_million: float = Field(
        default=2.5, alias="OPENAI_INPUT_PRICE_PER_MILLION", description="Price of one million input tokens"
    )
    output_price_per_million: float = Field(
        default=10.0, alias="OPENAI_OUTPUT_PRICE_PER_MILLION", description="Price of one million output tokens"
    )

    model_config = {"populate_by_name": True}


class AnthropicConfig(BaseModel):
    """Anthropic API configuration."""

    api_key: Optional[str] = Field(
        default=None, alias="ANTHROPIC_API_KEY", description="Anthropic API key for authentication"
    )
    model: str = Field(
        default="claude-sonnet-4-0", alias="ANTHROPIC_MODEL", description="Default Anthropic model to use"
    )
    input_price_per_million: float = Field(
        default=3.0, alias="ANTHROPIC_INPUT_PRICE_PER_MILLION", description="Price of one million input tokens"
    )
    output_price_per_million: float = Field(
        default=15.0, alias="ANTHROPIC_OUTPUT_PRICE_PER_MILLION", description="Price of one million output tokens"
    )

    model_config = {"populate_by_name": True}


class GoogleConfig(BaseModel):
    """Google API configuration."""

    api_key: Optional[str] = Field(
        default=None, alias="GOOGLE_API_KEY", description="Google API key for authentication"
    )
    model: str = Field(default="gemini-2.0-flash", alias="GOOGLE_MODEL", description="Default Google model to use")
    input_price_per_million: float = Field(
        default=0.1, alias="GOOGLE_INPUT_PRICE_PER_MILLION", description="Price of one million input tokens"
    )
    output_price_per_million: float = Field(
        default=0.4, alias="GOOGLE_OUTPUT_PRICE_PER_MILLION", description="Price of one million output tokens"
    )

    model_config = {"populate_by_name": True}


# =====================================================================
# Engine Configuration
# =====================================================================


class EngineSettings(BaseModel):
    """Runtime knobs consumed by the engine, dispatcher and resilience wrappers."""

    hil_count: int = Field(default=30, ge=1, description="Default iteration threshold before pausing")
    hil_budget: float = Field(default=5.0, gt=0.0, description="Default cost threshold before pausing")
    summary_threshold_chars: int = Field(
        default=10_000, ge=1, description="Tool output size above which a summary is generated"
    )
    generation_timeout_seconds: Optional[float] = Field(default=300.0, description="Timeout per generation call")
    tool_timeout_seconds: Optional[float] = Field(default=600.0, description="Timeout per tool call")
    quota_retries: int = Field(default=5, ge=0, description="Retries on provider quota/rate-limit errors")
    quota_initial_backoff_seconds: float = Field(default=2.0, ge=0.0, description="First quota retry delay")
    quota_max_backoff_seconds: float = Field(default=60.0, ge=0.0, description="Upper bound of the quota retry delay")
    cache_retries: int = Field(default=0, ge=0, description="Retries of a failed cached call before propagating")
    file_system_root: str = Field(default=".", description="Base directory for the Files capability")


# =====================================================================
# Main Settings Class
# =====================================================================


class Settings(BaseSettings):
    """
    Application settings model.

    All properties are automatically bound from environment variables and .env file.
    Pydantic's BaseSettings handles dotenv loading automatically via model_config.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=True,
        populate_by_name=True,
    )

    # =====================================================================
    # Logging Configuration
    # =====================================================================
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
        alias="RELAYMIND_AI_LOG_LEVEL",
    )
    log_format: str = Field(
        default="detailed",
        description="Log line format (simple, detailed, json)",
        alias="RELAYMIND_AI_LOG_FORMAT",
    )
    log_file_dir: str = Field(default="logs", description="Directory for log files", alias="RELAYMIND_AI_LOG_FILE_DIR")
    enable_file_logging: bool = Field(
        default=False, description="Write logs to a file as well", alias="RELAYMIND_AI_ENABLE_FILE_LOGGING"
    )

    # =====================================================================
    # Database Configuration
    # =====================================================================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./relaymind.db",
        description="Async SQLAlchemy URL of the agent context store",
        alias="RELAYMIND_AI_DATABASE_URL",
    )

    # =====================================================================
    # Engine Configuration
    # =====================================================================
    hil_count: int = Field(default=30, alias="RELAYMIND_AI_HIL_COUNT")
    hil_budget: float = Field(default=5.0, alias="RELAYMIND_AI_HIL_BUDGET")
    summary_threshold_chars: int = Field(default=10_000, alias="RELAYMIND_AI_SUMMARY_THRESHOLD_CHARS")
    generation_timeout_seconds: Optional[float] = Field(default=300.0, alias="RELAYMIND_AI_GENERATION_TIMEOUT")
    tool_timeout_seconds: Optional[float] = Field(default=600.0, alias="RELAYMIND_AI_TOOL_TIMEOUT")
    quota_retries: int = Field(default=5, alias="RELAYMIND_AI_QUOTA_RETRIES")
    quota_initial_backoff_seconds: float = Field(default=2.0, alias="RELAYMIND_AI_QUOTA_INITIAL_BACKOFF")
    quota_max_backoff_seconds: float = Field(default=60.0, alias="RELAYMIND_AI_QUOTA_MAX_BACKOFF")
    cache_retries: int = Field(default=0, alias="RELAYMIND_AI_CACHE_RETRIES")
    file_system_root: str = Field(default=".", alias="RELAYMIND_AI_FS_ROOT")

    # =====================================================================
    # LLM Provider Keys, Models and Pricing
    # =====================================================================
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    openai_model: str = Field(default="gpt-4o", alias="OPENAI_MODEL")
    openai_input_price_per_million: float = Field(default=2.5, alias="OPENAI_INPUT_PRICE_PER_MILLION")
    openai_output_price_per_million: float = Field(default=10.0, alias="OPENAI_OUTPUT_PRICE_PER_MILLION")
    anthropic_api_key: Optional[str] = Field(default=None, alias="ANTHROPIC_API_KEY")
    anthropic_model: str = Field(default="claude-sonnet-4-0", alias="ANTHROPIC_MODEL")
    anthropic_input_price_per_million: float = Field(default=3.0, alias="ANTHROPIC_INPUT_PRICE_PER_MILLION")
    anthropic_output_price_per_million: float = Field(default=15.0, alias="ANTHROPIC_OUTPUT_PRICE_PER_MILLION")
    google_api_key: Optional[str] = Field(default=None, alias="GOOGLE_API_KEY")
    google_model: str = Field(default="gemini-2.0-flash", alias="GOOGLE_MODEL")
    google_input_price_per_million: float = Field(default=0.1, alias="GOOGLE_INPUT_PRICE_PER_MILLION")
    google_output_price_per_million: float = Field(default=0.4, alias="GOOGLE_OUTPUT_PRICE_PER_MILLION")

    # =====================================================================
    # Computed Properties (Grouped Configurations)
    # =====================================================================

    @property
    def openai(self) -> OpenAIConfig:
        """Get OpenAI configuration from environment variables."""
        return OpenAIConfig.model_validate(self.model_dump(by_alias=True))

    @property
    def anthropic(self) -> AnthropicConfig:
        """Get Anthropic configuration from environment variables."""
        return AnthropicConfig.model_validate(self.model_dump(by_alias=True))

    @property
    def google(self) -> GoogleConfig:
        """Get Google configuration from environment variables."""
        return GoogleConfig.model_validate(self.model_dump(by_alias=True))

    @property
    def engine(self) -> EngineSettings:
        """Get the engine-facing configuration slice."""
        return EngineSettings.model_validate(self.model_dump(include=set(EngineSettings.model_fields)))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings instance, loading it on first use."""
    return Settings()
