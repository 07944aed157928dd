"""Tool definitions for LLM function calling against QuickBooks invoices.

These schemas describe the operations the assistant may request. Parameter
descriptions double as hints to the model, so they spell out formats and the
exact-match rules the executor applies.
"""

from typing import Any

GET_INVOICE_TOOL: dict[str, Any] = {
    "name": "get_invoice",
    "description": (
        "Get details of a specific invoice by its ID or invoice (document) number. "
        "Use for requests like 'show invoice 1055' or 'get invoice #123'."
    ),
    "input_schema": {
        "type": "object",
        "properties": {
            "invoice_id": {
                "type": "string",
                "description": "The invoice ID or document number, without any '#' prefix",
            },
        },
        "required": ["invoice_id"],
    },
}

LIST_INVOICES_TOOL: dict[str, Any] = {
    "name": "list_invoices",
    "description": (
        "List invoices, optionally filtered. Use for 'show invoices', 'list unpaid invoices', "
        "'show invoices for Amy's Bird Sanctuary'. Returns every matching invoice."
    ),
    "input_schema": {
        "type": "object",
        "properties": {
            "filter": {
                "type": "string",
                "description": (
                    "Optional filter: 'unpaid', 'paid', 'overdue', or part of a customer name. "
                    "Leave empty to list all invoices."
                ),
            },
        },
        "required": [],
    },
}

CREATE_INVOICE_TOOL: dict[str, Any] = {
    "name": "create_invoice",
    "description": (
        "Create a new single-line invoice for an existing customer. "
        "The customer must already have invoices on file."
    ),
    "input_schema": {
        "type": "object",
        "properties": {
            "customer_name": {
                "type": "string",
                "description": "Name of an existing customer, e.g. \"Amy's Bird Sanctuary\"",
            },
            "amount": {
                "type": "number",
                "description": "Invoice amount in dollars, e.g. 500 for $500",
            },
            "due_date": {
                "type": "string",
                "format": "date",
                "description": "Optional due date (YYYY-MM-DD)",
            },
            "document_number": {
                "type": "string",
                "description": "Optional invoice number to assign",
            },
            "description": {
                "type": "string",
                "description": "Optional line item description",
            },
        },
        "required": ["customer_name", "amount"],
    },
}

UPDATE_INVOICE_TOOL: dict[str, Any] = {
    "name": "update_invoice",
    "description": (
        "Update an existing invoice. Only the fields provided are changed; "
        "everything else is preserved."
    ),
    "input_schema": {
        "type": "object",
        "properties": {
            "invoice_id": {
                "type": "string",
                "description": "The invoice ID or document number, without any '#' prefix",
            },
            "amount": {
                "type": "number",
                "description": "New invoice amount in dollars",
            },
            "customer_name": {
                "type": "string",
                "description": "Name of an existing customer to bill instead",
            },
            "due_date": {
                "type": "string",
                "format": "date",
                "description": "New due date (YYYY-MM-DD)",
            },
            "description": {
                "type": "string",
                "description": "New line item description",
            },
            "paid": {
                "type": "boolean",
                "description": "true marks the invoice paid (balance 0); false restores the full balance",
            },
            "balance": {
                "type": "number",
                "description": "Explicit remaining balance in dollars",
            },
            "status": {
                "type": "string",
                "enum": ["paid", "unpaid"],
                "description": "Payment status; equivalent to the paid flag",
            },
        },
        "required": ["invoice_id"],
    },
}

DELETE_INVOICE_TOOL: dict[str, Any] = {
    "name": "delete_invoice",
    "description": "Delete an invoice by its ID or invoice number.",
    "input_schema": {
        "type": "object",
        "properties": {
            "invoice_id": {
                "type": "string",
                "description": "The invoice ID or document number, without any '#' prefix",
            },
        },
        "required": ["invoice_id"],
    },
}

SEND_INVOICE_TOOL: dict[str, Any] = {
    "name": "send_invoice",
    "description": (
        "Email an invoice PDF to a recipient. When chaining after create_invoice, "
        "use the ID returned by create_invoice."
    ),
    "input_schema": {
        "type": "object",
        "properties": {
            "invoice_id": {
                "type": "string",
                "description": "The invoice ID or document number, without any '#' prefix",
            },
            "email": {
                "type": "string",
                "format": "email",
                "description": "Recipient email address",
            },
        },
        "required": ["invoice_id", "email"],
    },
}

# === Tool Collections ===

INVOICE_TOOLS: list[dict[str, Any]] = [
    GET_INVOICE_TOOL,
    LIST_INVOICES_TOOL,
    CREATE_INVOICE_TOOL,
    UPDATE_INVOICE_TOOL,
    DELETE_INVOICE_TOOL,
    SEND_INVOICE_TOOL,
]

TOOL_NAMES: frozenset[str] = frozenset(tool["name"] for tool in INVOICE_TOOLS)
