"""Configuration module for the invoice assistant."""

from invoice_assistant.config.logging import configure_logging, redact_secrets
from invoice_assistant.config.settings import FlatSettings, get_settings

__all__ = ["FlatSettings", "get_settings", "configure_logging", "redact_secrets"]
