"""HTTP API for the invoice assistant."""

from invoice_assistant.api.app import app, create_app

__all__ = ["app", "create_app"]
