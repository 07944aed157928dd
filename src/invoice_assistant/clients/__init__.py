"""LLM client implementations for the invoice assistant."""

from invoice_assistant.clients.base import LLMResponse
from invoice_assistant.clients.claude import ClaudeClient
from invoice_assistant.clients.gemini import GeminiClient
from invoice_assistant.clients.openai_client import OpenAIClient
from invoice_assistant.config import get_settings

LLMClient = ClaudeClient | OpenAIClient | GeminiClient


def create_llm_client(provider: str | None = None) -> LLMClient:
    """Build the client for ``provider`` (defaults to the LLM_PROVIDER setting)."""
    provider = (provider or get_settings().llm_provider).lower()
    if provider == "claude":
        return ClaudeClient()
    if provider == "gemini":
        return GeminiClient()
    if provider == "openai":
        return OpenAIClient()
    raise ValueError(f"Unknown LLM provider: {provider}")


__all__ = [
    "LLMClient",
    "LLMResponse",
    "ClaudeClient",
    "OpenAIClient",
    "GeminiClient",
    "create_llm_client",
]
