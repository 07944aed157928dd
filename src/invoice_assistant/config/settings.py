"""Configuration settings for the invoice assistant."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

SANDBOX_API_URL = "https://sandbox-quickbooks.api.intuit.com"
PRODUCTION_API_URL = "https://quickbooks.api.intuit.com"


class FlatSettings(BaseSettings):
    """Flat settings read from environment variables or a .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # QuickBooks API
    quickbooks_environment: Literal["sandbox", "production"] = Field(
        default="sandbox", validation_alias="QUICKBOOKS_ENVIRONMENT"
    )
    quickbooks_api_url: str | None = Field(
        default=None, validation_alias="QUICKBOOKS_API_URL"
    )
    quickbooks_minor_version: int = Field(
        default=75, validation_alias="QUICKBOOKS_MINOR_VERSION"
    )
    quickbooks_timeout: float = Field(default=30.0, validation_alias="QUICKBOOKS_TIMEOUT")
    invoice_listing_cap: int = Field(default=1000, validation_alias="INVOICE_LISTING_CAP")

    # LLM provider selection and API keys
    llm_provider: Literal["openai", "claude", "gemini"] = Field(
        default="openai", validation_alias="LLM_PROVIDER"
    )
    openai_api_key: SecretStr = Field(
        default=SecretStr(""), validation_alias="OPENAI_API_KEY"
    )
    anthropic_api_key: SecretStr = Field(
        default=SecretStr(""), validation_alias="ANTHROPIC_API_KEY"
    )
    google_api_key: SecretStr = Field(
        default=SecretStr(""), validation_alias="GOOGLE_API_KEY"
    )

    # Model selections
    gpt_model: str = Field(default="gpt-4o-mini", validation_alias="GPT_MODEL")
    claude_model: str = Field(default="claude-haiku-4-5", validation_alias="CLAUDE_MODEL")
    gemini_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")

    # LLM parameters
    llm_max_tokens: int = Field(default=4096, validation_alias="LLM_MAX_TOKENS")
    llm_temperature: float = Field(default=0.2, validation_alias="LLM_TEMPERATURE")

    # Turn orchestration
    max_chained_steps: int = Field(default=5, validation_alias="MAX_CHAINED_STEPS")
    turn_timeout_seconds: float = Field(default=60.0, validation_alias="TURN_TIMEOUT_SECONDS")

    # Web application
    environment: str = Field(default="development", validation_alias="ENVIRONMENT")
    cors_allowed_origins: str = Field(
        default="http://localhost:3000", validation_alias="CORS_ALLOWED_ORIGINS"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", validation_alias="LOG_LEVEL"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", validation_alias="LOG_FORMAT"
    )

    @property
    def quickbooks_base_url(self) -> str:
        """Root URL of the QuickBooks accounting API (without the company path)."""
        if self.quickbooks_api_url:
            return self.quickbooks_api_url.rstrip("/")
        if self.quickbooks_environment == "production":
            return PRODUCTION_API_URL
        return SANDBOX_API_URL

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.cors_allowed_origins.split(",") if origin.strip()]

    def is_production(self) -> bool:
        return self.environment.lower() == "production"


@lru_cache
def get_settings() -> FlatSettings:
    """Get cached settings instance."""
    return FlatSettings()
