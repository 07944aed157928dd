"""QuickBooks gateway and the invoice tools exposed to the LLM."""

from invoice_assistant.tools.definitions import INVOICE_TOOLS, TOOL_NAMES
from invoice_assistant.tools.executor import ToolExecutionError, ToolExecutor
from invoice_assistant.tools.quickbooks_api import QuickBooksAPIError, QuickBooksClient
from invoice_assistant.tools.results import Err, ErrorKind, Ok, Result

__all__ = [
    "INVOICE_TOOLS",
    "TOOL_NAMES",
    "Err",
    "ErrorKind",
    "Ok",
    "QuickBooksAPIError",
    "QuickBooksClient",
    "Result",
    "ToolExecutionError",
    "ToolExecutor",
]
