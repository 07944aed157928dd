"""Natural-language summaries attached to tool results."""

from decimal import Decimal

from invoice_assistant.models import Invoice, format_money

MAX_ITEMIZED = 10


def describe_invoice_line(invoice: Invoice) -> str:
    """One labeled line per invoice, e.g. ``Invoice ID: 145 - Customer: ... - Balance: $560.00``."""
    parts = [f"Invoice ID: {invoice.id}"]
    if invoice.document_number:
        parts.append(f"Doc Number: {invoice.document_number}")
    parts.append(f"Customer: {invoice.customer_name or 'Unknown'}")
    if invoice.transaction_date:
        parts.append(f"Date: {invoice.transaction_date.isoformat()}")
    if invoice.due_date:
        parts.append(f"Due Date: {invoice.due_date.isoformat()}")
    parts.append(f"Total Amount: {format_money(invoice.total_amount)}")
    parts.append(f"Balance: {format_money(invoice.balance)}")
    return " - ".join(parts)


def summarize_invoice(invoice: Invoice) -> str:
    summary = f"Invoice {invoice.label} (ID {invoice.id})"
    if invoice.customer_name:
        summary += f" for {invoice.customer_name}"
    summary += (
        f": total {format_money(invoice.total_amount)}, "
        f"balance {format_money(invoice.balance)}"
    )
    if invoice.due_date:
        summary += f", due {invoice.due_date.isoformat()}"
    return summary + "."


def summarize_invoice_list(invoices: list[Invoice], filter_text: str | None = None) -> str:
    """Summarize a listing.

    Up to ten invoices are itemized. Longer listings lead with aggregate totals
    (amounts, balances, paid and unpaid counts) followed by the first ten.
    """
    scope = f" matching '{filter_text}'" if filter_text else ""
    if not invoices:
        return f"No invoices found{scope}."

    count = len(invoices)
    noun = "invoice" if count == 1 else "invoices"
    itemized = "\n".join(
        f"{index}. {describe_invoice_line(invoice)}"
        for index, invoice in enumerate(invoices[:MAX_ITEMIZED], 1)
    )

    if count <= MAX_ITEMIZED:
        return f"Found {count} {noun}{scope}:\n{itemized}"

    total_amount = sum((invoice.total_amount for invoice in invoices), Decimal("0"))
    total_balance = sum((invoice.balance or Decimal("0") for invoice in invoices), Decimal("0"))
    unpaid = sum(1 for invoice in invoices if invoice.is_unpaid)
    paid = count - unpaid
    return (
        f"Found {count} {noun}{scope}. "
        f"Total amount: {format_money(total_amount)}. "
        f"Total balance: {format_money(total_balance)}. "
        f"Paid: {paid}. Unpaid: {unpaid}.\n"
        f"First {MAX_ITEMIZED} invoices:\n{itemized}"
    )
