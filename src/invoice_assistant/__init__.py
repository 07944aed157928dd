"""Chat assistant for managing QuickBooks invoices through LLM tool calling."""

__version__ = "0.1.0"
