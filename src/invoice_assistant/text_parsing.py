"""Last-resort extraction of invoices narrated in model text.

Only used when a turn produced no tool steps but the model described invoice
data anyway, e.g. ``1. **Invoice ID:** 145 - **Customer:** Amy's Bird Sanctuary
- **Due Date:** 2025-08-07 - **Total Amount:** $560 - **Balance:** $560``.
"""

import re
from decimal import Decimal

from invoice_assistant.models import Invoice, parse_date, to_decimal

LABELS = (
    "Invoice ID",
    "Doc Number",
    "Customer",
    "Date",
    "Due Date",
    "Total Amount",
    "Balance",
    "Status",
)

_LABEL_ALTERNATION = "|".join(re.escape(label) for label in sorted(LABELS, key=len, reverse=True))
_RECORD_START = re.compile(r"Invoice ID\s*:", re.IGNORECASE)
_FIELD = re.compile(
    rf"\b({_LABEL_ALTERNATION})\s*:\s*(.+?)\s*(?=(?:[-|,]\s*)?\b(?:{_LABEL_ALTERNATION})\s*:|\n|$)",
    re.IGNORECASE,
)
_LABEL_KEYS = {label.lower(): label for label in LABELS}


def _clean(value: str) -> str:
    return value.strip().strip("-|,").strip()


def parse_labeled_fields(chunk: str) -> dict[str, str]:
    """Read ``Label: value`` pairs from one record chunk (first occurrence wins)."""
    fields: dict[str, str] = {}
    for match in _FIELD.finditer(chunk):
        label = _LABEL_KEYS[match.group(1).lower()]
        value = _clean(match.group(2))
        if value and label not in fields:
            fields[label] = value
    return fields


def parse_invoices_from_text(text: str | None) -> list[Invoice]:
    """Extract invoice records from free text; an empty list when none are found."""
    if not text:
        return []
    plain = text.replace("**", "").replace("__", "")

    starts = [match.start() for match in _RECORD_START.finditer(plain)]
    invoices: list[Invoice] = []
    seen: set[str] = set()
    for index, start in enumerate(starts):
        end = starts[index + 1] if index + 1 < len(starts) else len(plain)
        fields = parse_labeled_fields(plain[start:end])

        invoice_id = fields.get("Invoice ID", "").lstrip("#").strip()
        if not invoice_id or invoice_id in seen:
            continue
        seen.add(invoice_id)
        invoices.append(
            Invoice(
                id=invoice_id,
                document_number=fields.get("Doc Number"),
                customer_name=fields.get("Customer"),
                transaction_date=parse_date(fields.get("Date")),
                due_date=parse_date(fields.get("Due Date")),
                total_amount=to_decimal(fields.get("Total Amount")) or Decimal("0"),
                balance=to_decimal(fields.get("Balance")),
            )
        )
    return invoices
