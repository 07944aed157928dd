"""FastAPI dependencies. Tests replace these through ``app.dependency_overrides``."""

from typing import Annotated

from fastapi import Cookie

from invoice_assistant.chat import GatewayFactory
from invoice_assistant.clients import LLMClient
from invoice_assistant.credentials import TOKENS_COOKIE
from invoice_assistant.tools.quickbooks_api import QuickBooksClient


def get_token_cookie(
    quickbooks_tokens: Annotated[str | None, Cookie(alias=TOKENS_COOKIE)] = None,
) -> str | None:
    """Raw value of the QuickBooks tokens cookie, if sent."""
    return quickbooks_tokens


def get_gateway_factory() -> GatewayFactory:
    return QuickBooksClient


def get_llm_client() -> LLMClient | None:
    """None lets the agent build the client named by LLM_PROVIDER."""
    return None
