"""Tool executor that bridges LLM tool calls to the QuickBooks gateway."""

import re
from collections.abc import Callable
from datetime import date
from decimal import Decimal
from typing import Any

import structlog

from invoice_assistant.config import get_settings
from invoice_assistant.models import Invoice, parse_date, to_decimal
from invoice_assistant.tools.definitions import INVOICE_TOOLS
from invoice_assistant.tools.quickbooks_api import QuickBooksClient
from invoice_assistant.tools.results import Err, ErrorKind, Result
from invoice_assistant.tools.summaries import summarize_invoice, summarize_invoice_list

logger = structlog.get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")

_UNPAID_FILTERS = {"unpaid", "outstanding", "open"}
_PAID_FILTERS = {"paid", "closed"}
_OVERDUE_FILTERS = {"overdue", "past due"}
_ALL_FILTERS = {"", "all", "any", "*"}

_STATUS_TO_PAID = {"paid": True, "closed": True, "unpaid": False, "open": False}

_SCHEMAS: dict[str, dict[str, Any]] = {tool["name"]: tool["input_schema"] for tool in INVOICE_TOOLS}


class ToolExecutionError(Exception):
    """Error during tool execution."""

    def __init__(
        self,
        tool_name: str,
        message: str,
        kind: ErrorKind = ErrorKind.PROVIDER_ERROR,
    ):
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name
        self.message = message
        self.kind = kind


def normalize_reference(reference: Any) -> str:
    """Trim an invoice reference and drop a leading '#' ("#1055" -> "1055")."""
    return str(reference or "").strip().lstrip("#").strip()


def invoice_filter(filter_text: str | None, today: date) -> Callable[[Invoice], bool]:
    """Client-side listing predicate.

    ``unpaid``: balance > 0. ``paid``: balance absent or zero. ``overdue``: due
    date in the past and balance > 0. Anything else is a case-insensitive
    substring match on the customer name.
    """
    key = (filter_text or "").strip().lower()
    if key in _ALL_FILTERS:
        return lambda invoice: True
    if key in _UNPAID_FILTERS:
        return lambda invoice: invoice.is_unpaid
    if key in _PAID_FILTERS:
        return lambda invoice: invoice.is_paid
    if key in _OVERDUE_FILTERS:
        return lambda invoice: invoice.is_overdue(today)
    return lambda invoice: key in (invoice.customer_name or "").lower()


def find_customer(invoices: list[Invoice], name: str) -> tuple[str, str] | None:
    """Find an existing customer reference by scanning invoices.

    Exact (case-insensitive) names win; otherwise the first bidirectional
    substring match is used. Ambiguous names can resolve to the wrong customer.
    """
    wanted = name.strip().lower()
    if not wanted:
        return None
    candidates = [inv for inv in invoices if inv.customer_id and inv.customer_name]
    for invoice in candidates:
        if invoice.customer_name.lower() == wanted:  # type: ignore[union-attr]
            return invoice.customer_id, invoice.customer_name  # type: ignore[return-value]
    for invoice in candidates:
        existing = invoice.customer_name.lower()  # type: ignore[union-attr]
        if wanted in existing or existing in wanted:
            return invoice.customer_id, invoice.customer_name  # type: ignore[return-value]
    return None


def _sales_line(amount: Decimal, description: str) -> dict[str, Any]:
    return {
        "Amount": float(amount),
        "DetailType": "SalesItemLineDetail",
        "Description": description,
        "SalesItemLineDetail": {
            "ItemRef": {"value": "1", "name": "Services"},
            "Qty": 1,
            "UnitPrice": float(amount),
        },
    }


def _rebuild_lines(
    raw_lines: list[dict[str, Any]],
    amount: Decimal | None,
    description: str | None,
) -> list[dict[str, Any]]:
    """Apply an amount/description change to the first sales line, keeping the rest."""
    lines = [dict(line) for line in raw_lines if line.get("DetailType") != "SubTotalLineDetail"]
    if not lines:
        return [_sales_line(amount or Decimal("0"), description or "Services")]

    target = next(
        (i for i, line in enumerate(lines) if line.get("DetailType") == "SalesItemLineDetail"),
        0,
    )
    line = lines[target]
    if amount is not None:
        line["Amount"] = float(amount)
        detail = dict(line.get("SalesItemLineDetail") or {})
        if detail:
            detail["Qty"] = 1
            detail["UnitPrice"] = float(amount)
            line["SalesItemLineDetail"] = detail
    if description is not None:
        line["Description"] = description
    return lines


class ToolExecutor:
    """Executes LLM tool calls against the QuickBooks gateway.

    Every call resolves to a dict: the success payload, or ``{"error": message}``
    plus the ``kind`` of failure when the handler classified it.
    Failures are data; nothing raised by a handler escapes ``execute``.
    """

    def __init__(
        self,
        gateway: QuickBooksClient,
        listing_cap: int | None = None,
        today: Callable[[], date] = date.today,
    ):
        self.gateway = gateway
        self._listing_cap = listing_cap or get_settings().invoice_listing_cap
        self._today = today
        self._tool_handlers: dict[str, Any] = {
            "get_invoice": self._get_invoice,
            "list_invoices": self._list_invoices,
            "create_invoice": self._create_invoice,
            "update_invoice": self._update_invoice,
            "delete_invoice": self._delete_invoice,
            "send_invoice": self._send_invoice,
        }

    async def execute(self, tool_name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """Execute a tool call and return the result payload."""
        handler = self._tool_handlers.get(tool_name)
        if not handler:
            logger.warning("unknown_tool", tool=tool_name)
            return {"error": f"Unknown tool: {tool_name}"}

        kwargs, problem = self._prepare_arguments(tool_name, arguments or {})
        if problem:
            logger.warning("tool_arguments_invalid", tool=tool_name, problem=problem)
            return {"error": problem}

        logger.info("executing_tool", tool=tool_name, args=sorted(kwargs))

        try:
            result = await handler(**kwargs)
            logger.info("tool_executed", tool=tool_name, success=True)
            return result
        except ToolExecutionError as e:
            logger.warning("tool_failed", tool=tool_name, kind=e.kind.value)
            return {"error": e.message, "kind": e.kind.value}
        except Exception:
            logger.exception("tool_execution_error", tool=tool_name)
            return {"error": f"Unexpected error while running {tool_name}. Please try again."}

    def _prepare_arguments(
        self, tool_name: str, arguments: dict[str, Any]
    ) -> tuple[dict[str, Any], str | None]:
        """Drop unknown keys and null values; report missing required arguments."""
        schema = _SCHEMAS.get(tool_name, {})
        known = set(schema.get("properties", {}))
        kwargs = {key: value for key, value in arguments.items() if key in known and value is not None}
        dropped = set(arguments) - known
        if dropped:
            logger.debug("tool_arguments_dropped", tool=tool_name, keys=sorted(dropped))

        missing = [
            key for key in schema.get("required", [])
            if key not in kwargs or (isinstance(kwargs[key], str) and not kwargs[key].strip())
        ]
        if missing:
            return kwargs, f"Missing required argument(s) for {tool_name}: {', '.join(missing)}"
        return kwargs, None

    # === Helpers ===

    @staticmethod
    def _unwrap(tool_name: str, result: Result[Any]) -> Any:
        if isinstance(result, Err):
            raise ToolExecutionError(tool_name, result.message, result.kind)
        return result.value

    async def _list_all(self, tool_name: str) -> list[Invoice]:
        result = await self.gateway.query_invoices(max_results=self._listing_cap)
        return self._unwrap(tool_name, result)

    @staticmethod
    def _match_exact(invoices: list[Invoice], reference: str) -> Invoice | None:
        # Ids take precedence over document numbers
        for invoice in invoices:
            if invoice.id == reference:
                return invoice
        for invoice in invoices:
            if invoice.document_number is not None and invoice.document_number == reference:
                return invoice
        return None

    async def _resolve_exact(
        self, tool_name: str, reference: str, invoices: list[Invoice] | None = None
    ) -> Invoice:
        """Resolve by exact id or document number over a fresh bounded listing."""
        if invoices is None:
            invoices = await self._list_all(tool_name)
        invoice = self._match_exact(invoices, reference)
        if invoice is None:
            raise ToolExecutionError(
                tool_name, f"Invoice {reference} not found", ErrorKind.NOT_FOUND
            )
        return invoice

    @staticmethod
    def _reference(tool_name: str, invoice_id: Any) -> str:
        reference = normalize_reference(invoice_id)
        if not reference:
            raise ToolExecutionError(
                tool_name, "An invoice ID or number is required", ErrorKind.VALIDATION_ERROR
            )
        return reference

    @staticmethod
    def _amount(tool_name: str, value: Any, field_name: str = "amount") -> Decimal:
        amount = to_decimal(value)
        if amount is None or not amount.is_finite() or amount < 0:
            raise ToolExecutionError(
                tool_name, f"Invalid {field_name}: {value}", ErrorKind.VALIDATION_ERROR
            )
        return amount

    @staticmethod
    def _date(tool_name: str, value: Any) -> date:
        parsed = parse_date(value)
        if parsed is None:
            raise ToolExecutionError(
                tool_name, f"Invalid due date: {value} (expected YYYY-MM-DD)",
                ErrorKind.VALIDATION_ERROR,
            )
        return parsed

    # === Invoice Handlers ===

    async def _get_invoice(self, invoice_id: str) -> dict[str, Any]:
        reference = self._reference("get_invoice", invoice_id)

        direct = await self.gateway.get_invoice(reference)
        if isinstance(direct, Err):
            if direct.kind == ErrorKind.NOT_AUTHENTICATED:
                raise ToolExecutionError("get_invoice", direct.message, direct.kind)
            invoice = await self._resolve_exact("get_invoice", reference)
        elif direct.value.matches_reference(reference):
            invoice = direct.value
        else:
            invoice = await self._resolve_exact("get_invoice", reference)

        return {"invoice": invoice.to_display(), "summary": summarize_invoice(invoice)}

    async def _list_invoices(self, filter: str | None = None) -> dict[str, Any]:
        invoices = await self._list_all("list_invoices")
        predicate = invoice_filter(filter, self._today())
        selected = [invoice for invoice in invoices if predicate(invoice)]
        filter_text = (filter or "").strip() or None
        return {
            "invoices": [invoice.to_display() for invoice in selected],
            "count": len(selected),
            "filter": filter_text,
            "summary": summarize_invoice_list(selected, filter_text),
        }

    async def _create_invoice(
        self,
        customer_name: str,
        amount: Any,
        due_date: str | None = None,
        document_number: str | None = None,
        description: str | None = None,
    ) -> dict[str, Any]:
        value = self._amount("create_invoice", amount)
        due = self._date("create_invoice", due_date) if due_date else None

        invoices = await self._list_all("create_invoice")
        customer = find_customer(invoices, customer_name)
        if customer is None:
            raise ToolExecutionError(
                "create_invoice",
                f"Customer '{customer_name}' not found. Please use an existing customer name.",
                ErrorKind.CUSTOMER_NOT_FOUND,
            )
        customer_id, resolved_name = customer

        payload: dict[str, Any] = {
            "CustomerRef": {"value": customer_id, "name": resolved_name},
            "Line": [_sales_line(value, description or "Services")],
        }
        if due:
            payload["DueDate"] = due.isoformat()
        if document_number:
            payload["DocNumber"] = normalize_reference(document_number)

        invoice = self._unwrap("create_invoice", await self.gateway.create_invoice(payload))
        logger.info("invoice_created", invoice_id=invoice.id, customer_id=customer_id)
        return {
            "invoice": invoice.to_display(),
            "summary": f"Created {summarize_invoice(invoice)}",
        }

    async def _update_invoice(
        self,
        invoice_id: str,
        amount: Any = None,
        customer_name: str | None = None,
        due_date: str | None = None,
        description: str | None = None,
        paid: bool | None = None,
        balance: Any = None,
        status: str | None = None,
    ) -> dict[str, Any]:
        reference = self._reference("update_invoice", invoice_id)

        if status is not None:
            status_key = status.strip().lower()
            if status_key not in _STATUS_TO_PAID:
                raise ToolExecutionError(
                    "update_invoice",
                    f"Unsupported status '{status}'. Use 'paid' or 'unpaid'.",
                    ErrorKind.VALIDATION_ERROR,
                )
            if paid is None:
                paid = _STATUS_TO_PAID[status_key]

        new_amount = self._amount("update_invoice", amount) if amount is not None else None
        new_balance = (
            self._amount("update_invoice", balance, "balance") if balance is not None else None
        )
        new_due = self._date("update_invoice", due_date) if due_date else None

        # The sync token must come from this read
        invoices = await self._list_all("update_invoice")
        invoice = await self._resolve_exact("update_invoice", reference, invoices)

        payload: dict[str, Any] = {
            "Id": invoice.id,
            "SyncToken": invoice.sync_token,
            "sparse": True,
        }
        updated: list[str] = []

        if new_amount is not None or description is not None:
            payload["Line"] = _rebuild_lines(
                invoice.raw.get("Line") or [], new_amount, description
            )
            if new_amount is not None:
                updated.append("amount")
            if description is not None:
                updated.append("description")

        if customer_name:
            customer = find_customer(invoices, customer_name)
            if customer is None:
                raise ToolExecutionError(
                    "update_invoice",
                    f"Customer '{customer_name}' not found. Please use an existing customer name.",
                    ErrorKind.CUSTOMER_NOT_FOUND,
                )
            payload["CustomerRef"] = {"value": customer[0], "name": customer[1]}
            updated.append("customer")

        if new_due is not None:
            payload["DueDate"] = new_due.isoformat()
            updated.append("due_date")

        if paid is True:
            payload["Balance"] = 0
            updated.append("paid")
        elif paid is False:
            payload["Balance"] = float(new_amount if new_amount is not None else invoice.total_amount)
            updated.append("paid")
        elif new_balance is not None:
            payload["Balance"] = float(new_balance)
            updated.append("balance")

        if not updated:
            raise ToolExecutionError(
                "update_invoice", "No fields to update were provided", ErrorKind.VALIDATION_ERROR
            )

        result = self._unwrap("update_invoice", await self.gateway.update_invoice(payload))
        logger.info("invoice_updated", invoice_id=result.id, fields=updated)
        return {
            "invoice": result.to_display(),
            "updated_fields": updated,
            "summary": f"Updated {summarize_invoice(result)}",
        }

    async def _delete_invoice(self, invoice_id: str) -> dict[str, Any]:
        reference = self._reference("delete_invoice", invoice_id)
        invoice = await self._resolve_exact("delete_invoice", reference)
        if invoice.sync_token is None:
            raise ToolExecutionError(
                "delete_invoice",
                f"Invoice {invoice.label} cannot be deleted: missing sync token",
                ErrorKind.PROVIDER_ERROR,
            )

        self._unwrap(
            "delete_invoice", await self.gateway.delete_invoice(invoice.id, invoice.sync_token)
        )
        logger.info("invoice_deleted", invoice_id=invoice.id)
        return {
            "deleted": {"id": invoice.id, "documentNumber": invoice.document_number},
            "summary": f"Invoice {invoice.label} has been deleted.",
        }

    async def _send_invoice(self, invoice_id: str, email: str) -> dict[str, Any]:
        recipient = email.strip()
        if not EMAIL_PATTERN.match(recipient):
            raise ToolExecutionError(
                "send_invoice",
                f"Invalid email address: {email}",
                ErrorKind.VALIDATION_ERROR,
            )
        reference = self._reference("send_invoice", invoice_id)
        invoice = await self._resolve_exact("send_invoice", reference)

        result = await self.gateway.send_invoice(invoice.id, recipient)
        if isinstance(result, Err) and result.kind == ErrorKind.UNSUPPORTED_OPERATION:
            raise ToolExecutionError(
                "send_invoice",
                "Emailing invoices is not available for this QuickBooks company "
                f"({result.message}). Enable invoice emailing in QuickBooks or download "
                "and send the PDF manually.",
                ErrorKind.UNSUPPORTED_OPERATION,
            )
        sent = self._unwrap("send_invoice", result)

        # The send response may be sparse; keep the resolved details
        merged = sent if sent.customer_name else invoice
        logger.info("invoice_sent", invoice_id=invoice.id)
        return {
            "invoice": merged.to_display(),
            "sent_to": recipient,
            "summary": f"Invoice {invoice.label} has been emailed to {recipient}.",
        }
