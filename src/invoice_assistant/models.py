"""Invoice domain model shared by the gateway, tools and normalizer.

QuickBooks returns PascalCase records (``Id``, ``DocNumber``, ``CustomerRef``,
``TotalAmt`` ...). The UI works with camelCase display records (``id``,
``documentNumber``, ``customerName`` ...). ``Invoice`` accepts both and renders
the display form, which deliberately omits the sync token.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any


def to_decimal(value: Any) -> Decimal | None:
    """Parse a currency amount, returning None for missing or malformed values."""
    if value is None or value == "":
        return None
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value).replace("$", "").replace(",", "").strip())
    except InvalidOperation:
        return None


def parse_date(value: Any) -> date | None:
    if not value:
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def format_money(amount: Decimal | None) -> str:
    if amount is None:
        return "$0.00"
    return f"${amount:,.2f}"


@dataclass
class LineItem:
    """A single invoice line. Order is display-significant only."""

    description: str
    amount: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {"description": self.description, "amount": float(self.amount)}


@dataclass
class Invoice:
    """An invoice as owned by the accounting provider."""

    id: str
    document_number: str | None = None
    customer_name: str | None = None
    customer_id: str | None = None
    transaction_date: date | None = None
    due_date: date | None = None
    total_amount: Decimal = Decimal("0")
    balance: Decimal | None = None
    line_items: list[LineItem] = field(default_factory=list)
    sync_token: str | None = None
    email: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def is_unpaid(self) -> bool:
        return self.balance is not None and self.balance > 0

    @property
    def is_paid(self) -> bool:
        return self.balance is None or self.balance == 0

    def is_overdue(self, today: date | None = None) -> bool:
        today = today or date.today()
        return self.due_date is not None and self.due_date < today and self.is_unpaid

    @property
    def label(self) -> str:
        """Human-facing reference, preferring the document number."""
        return f"#{self.document_number or self.id}"

    def matches_reference(self, reference: str) -> bool:
        """Exact match on id or document number. Prefixes and suffixes never match."""
        return reference == self.id or (
            self.document_number is not None and reference == self.document_number
        )

    @classmethod
    def from_quickbooks(cls, data: dict[str, Any]) -> "Invoice":
        """Build from a QuickBooks ``Invoice`` record."""
        customer_ref = data.get("CustomerRef") or {}
        lines = []
        for line in data.get("Line") or []:
            # Subtotal lines are computed by the provider and carry no description
            if line.get("DetailType") == "SubTotalLineDetail":
                continue
            amount = to_decimal(line.get("Amount"))
            if amount is None:
                continue
            lines.append(LineItem(description=line.get("Description") or "", amount=amount))

        email = (data.get("BillEmail") or {}).get("Address")
        return cls(
            id=str(data.get("Id", "")),
            document_number=data.get("DocNumber"),
            customer_name=customer_ref.get("name"),
            customer_id=customer_ref.get("value"),
            transaction_date=parse_date(data.get("TxnDate")),
            due_date=parse_date(data.get("DueDate")),
            total_amount=to_decimal(data.get("TotalAmt")) or Decimal("0"),
            balance=to_decimal(data.get("Balance")),
            line_items=lines,
            sync_token=data.get("SyncToken"),
            email=email,
            raw=data,
        )

    @classmethod
    def from_display(cls, data: dict[str, Any]) -> "Invoice":
        """Build from a camelCase display record (as previously sent to the UI)."""
        lines = [
            LineItem(
                description=item.get("description") or "",
                amount=to_decimal(item.get("amount")) or Decimal("0"),
            )
            for item in data.get("lineItems") or []
        ]
        return cls(
            id=str(data.get("id", "")),
            document_number=data.get("documentNumber"),
            customer_name=data.get("customerName"),
            customer_id=data.get("customerId"),
            transaction_date=parse_date(data.get("transactionDate")),
            due_date=parse_date(data.get("dueDate")),
            total_amount=to_decimal(data.get("totalAmount")) or Decimal("0"),
            balance=to_decimal(data.get("balance")),
            line_items=lines,
            email=data.get("email"),
            raw=data,
        )

    @classmethod
    def coerce(cls, data: Any) -> "Invoice | None":
        """Build from either record shape; None if ``data`` is not invoice-like."""
        if isinstance(data, Invoice):
            return data
        if not isinstance(data, dict):
            return None
        if data.get("Id") and (
            "DocNumber" in data or "TotalAmt" in data or "CustomerRef" in data
        ):
            return cls.from_quickbooks(data)
        if data.get("id") and (
            "documentNumber" in data or "totalAmount" in data or "customerName" in data
        ):
            return cls.from_display(data)
        return None

    def to_display(self) -> dict[str, Any]:
        """Render the UI-facing record. The sync token is never included."""
        return {
            "id": self.id,
            "documentNumber": self.document_number,
            "customerName": self.customer_name,
            "customerId": self.customer_id,
            "transactionDate": self.transaction_date.isoformat() if self.transaction_date else None,
            "dueDate": self.due_date.isoformat() if self.due_date else None,
            "totalAmount": float(self.total_amount),
            "balance": float(self.balance) if self.balance is not None else None,
            "email": self.email,
            "lineItems": [item.to_dict() for item in self.line_items],
        }
