"""Turn result normalizer.

Reconciles the agent transcript (final text plus ordered tool steps) into the
UI-facing result: one response text, the updated invoice collection, the
active selection and workflow statistics. Nothing here raises for business
failures; a turn always resolves to non-empty text.
"""

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from invoice_assistant.agents.base import ToolStep, TurnTranscript
from invoice_assistant.intent import TurnPolicy
from invoice_assistant.models import Invoice
from invoice_assistant.text_parsing import parse_invoices_from_text
from invoice_assistant.tools.executor import normalize_reference
from invoice_assistant.tools.quickbooks_api import UNKNOWN_ERROR, extract_fault_message
from invoice_assistant.tools.results import ErrorKind

logger = structlog.get_logger(__name__)

NOT_UNDERSTOOD_MESSAGE = (
    "Sorry, I didn't understand that request. Try something like "
    "'show unpaid invoices' or 'create an invoice for $500 for Amy's Bird Sanctuary'."
)
TIMEOUT_MESSAGE = (
    "Request timed out. QuickBooks operations can take up to a minute. "
    "Please try again, or check QuickBooks to see whether the change went through."
)
AUTH_REQUIRED_MESSAGE = "Please connect your QuickBooks account to manage invoices."

MAX_ERROR_LENGTH = 300
MAX_SEARCH_DEPTH = 6

_NOT_FOUND_MARKERS = ("not found", "inactive")
_EXCEPTION_PREFIX = re.compile(r"^(?:[A-Za-z_][\w.]*(?:Error|Exception)\s*:\s*)+")
_TRACEBACK_LINE = re.compile(r"^\s*(Traceback|File \")", re.MULTILINE)

_ACTIONS = {
    "get_invoice": "retrieve invoice",
    "list_invoices": "list invoices",
    "create_invoice": "create invoice",
    "update_invoice": "update invoice",
    "delete_invoice": "delete invoice",
    "send_invoice": "email invoice",
}
_UPSERT_TOOLS = {"get_invoice", "create_invoice", "update_invoice"}


class TurnStatus(str, Enum):
    OK = "ok"
    PARTIAL = "partial"
    ERROR = "error"
    AUTH_REQUIRED = "auth_required"
    TIMEOUT = "timeout"


@dataclass
class DisplayState:
    """The UI's displayed invoices and active selection, round-tripped per request."""

    invoices: list[Invoice] = field(default_factory=list)
    selected_invoice_id: str | None = None

    @classmethod
    def from_records(
        cls, records: list[dict[str, Any]] | None, selected_invoice_id: str | None = None
    ) -> "DisplayState":
        invoices = [invoice for invoice in map(Invoice.coerce, records or []) if invoice]
        return cls(invoices=invoices, selected_invoice_id=selected_invoice_id)

    @property
    def selected_invoice(self) -> Invoice | None:
        if self.selected_invoice_id is None:
            return None
        return next((inv for inv in self.invoices if inv.id == self.selected_invoice_id), None)

    def replace(self, invoices: list[Invoice]) -> None:
        self.invoices = list(invoices)
        if self.selected_invoice is None:
            self.selected_invoice_id = None

    def upsert(self, invoice: Invoice, select: bool = True) -> None:
        for index, existing in enumerate(self.invoices):
            if existing.id == invoice.id:
                self.invoices[index] = invoice
                break
        else:
            self.invoices.insert(0, invoice)
        if select:
            self.selected_invoice_id = invoice.id

    def remove(self, invoice_id: str) -> None:
        self.invoices = [inv for inv in self.invoices if inv.id != invoice_id]
        if self.selected_invoice_id == invoice_id:
            self.selected_invoice_id = None


@dataclass
class StepOutcome:
    tool_name: str
    success: bool
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"tool": self.tool_name, "success": self.success, "message": self.message}


@dataclass
class NormalizedTurnResult:
    """Everything the client needs to render one turn."""

    text: str
    status: TurnStatus = TurnStatus.OK
    state: DisplayState = field(default_factory=DisplayState)
    steps: list[StepOutcome] = field(default_factory=list)
    is_multi_step: bool = False

    @property
    def workflow_steps(self) -> list[str]:
        return [
            f"Step {index}: {step.tool_name} - {'Completed' if step.success else 'Failed'}"
            for index, step in enumerate(self.steps, 1)
        ]

    @property
    def completed_steps(self) -> int:
        return sum(1 for step in self.steps if step.success)

    @property
    def failed_steps(self) -> int:
        return sum(1 for step in self.steps if not step.success)

    def to_dict(self) -> dict[str, Any]:
        selected = self.state.selected_invoice
        return {
            "text": self.text,
            "status": self.status.value,
            "invoices": [invoice.to_display() for invoice in self.state.invoices],
            "selectedInvoiceId": self.state.selected_invoice_id,
            "selectedInvoice": selected.to_display() if selected else None,
            "steps": [step.to_dict() for step in self.steps],
            "workflowSteps": self.workflow_steps,
            "isMultiStep": self.is_multi_step,
            "totalSteps": len(self.steps),
            "completedSteps": self.completed_steps,
            "failedSteps": self.failed_steps,
        }

    @classmethod
    def timeout(cls, state: DisplayState | None = None) -> "NormalizedTurnResult":
        return cls(text=TIMEOUT_MESSAGE, status=TurnStatus.TIMEOUT, state=state or DisplayState())

    @classmethod
    def auth_required(cls, state: DisplayState | None = None) -> "NormalizedTurnResult":
        return cls(
            text=AUTH_REQUIRED_MESSAGE,
            status=TurnStatus.AUTH_REQUIRED,
            state=state or DisplayState(),
        )


# === Extraction ===


def _search_invoices(payload: Any, depth: int) -> list[Invoice]:
    if depth > MAX_SEARCH_DEPTH:
        return []
    if isinstance(payload, list):
        coerced = [Invoice.coerce(item) for item in payload]
        if coerced and all(coerced):
            return [invoice for invoice in coerced if invoice]
        found: list[Invoice] = []
        for item in payload:
            found.extend(_search_invoices(item, depth + 1))
        return found
    if isinstance(payload, dict):
        single = Invoice.coerce(payload)
        if single:
            return [single]
        for value in payload.values():
            found = _search_invoices(value, depth + 1)
            if found:
                return found
    return []


def extract_invoices(payload: Any) -> list[Invoice]:
    """Pull invoices out of any known result shape.

    Checks, in order: ``invoices``/``invoice`` keys, the QuickBooks
    ``QueryResponse.Invoice`` and ``Invoice`` envelopes, then a bounded
    recursive search.
    """
    if isinstance(payload, dict):
        if isinstance(payload.get("invoices"), list):
            return [inv for inv in map(Invoice.coerce, payload["invoices"]) if inv]
        for key in ("invoice", "Invoice"):
            if isinstance(payload.get(key), dict):
                invoice = Invoice.coerce(payload[key])
                if invoice:
                    return [invoice]
        query = payload.get("QueryResponse")
        if isinstance(query, dict) and isinstance(query.get("Invoice"), list):
            return [inv for inv in map(Invoice.coerce, query["Invoice"]) if inv]
    return _search_invoices(payload, 0)


# === Messages ===


def sanitize_error(message: Any) -> str:
    """Reduce an error to one readable line: no fault JSON, exception prefixes or tracebacks."""
    if isinstance(message, dict):
        text = extract_fault_message(message, fallback=message.get("error") or message.get("message"))
    else:
        text = str(message or "")
        stripped = text.strip()
        if stripped.startswith("{"):
            try:
                text = extract_fault_message(json.loads(stripped), fallback=None)
            except ValueError:
                text = UNKNOWN_ERROR
        if _TRACEBACK_LINE.search(text):
            lines = [line for line in text.splitlines() if line.strip()]
            text = lines[-1] if lines else ""

    text = _EXCEPTION_PREFIX.sub("", " ".join(str(text).split()))
    if not text:
        return UNKNOWN_ERROR
    if len(text) > MAX_ERROR_LENGTH:
        text = text[: MAX_ERROR_LENGTH - 3].rstrip() + "..."
    return text


def describe_error(step: ToolStep) -> str:
    message = sanitize_error(step.result.get("error"))
    lowered = message.lower()
    reference = normalize_reference(step.arguments.get("invoice_id"))

    if any(marker in lowered for marker in _NOT_FOUND_MARKERS) and "customer" not in lowered:
        if reference:
            return (
                f"Invoice #{reference} was not found. It may not exist or may be inactive. "
                "Please check the invoice number and try again."
            )
        return "The requested invoice was not found. It may not exist or may be inactive."
    if "customer" in lowered and "not found" in lowered:
        return message

    action = _ACTIONS.get(step.tool_name, step.tool_name.replace("_", " "))
    return f"Failed to {action}: {message}"


def describe_success(step: ToolStep, invoices: list[Invoice]) -> str:
    result = step.result
    invoice = invoices[0] if invoices else None
    label = invoice.label if invoice else f"#{normalize_reference(step.arguments.get('invoice_id'))}"

    if step.tool_name == "list_invoices":
        count = int(result.get("count", len(invoices)))
        scope = f" matching '{result['filter']}'" if result.get("filter") else ""
        noun = "invoice" if count == 1 else "invoices"
        return f"Found {count} {noun}{scope}."
    if step.tool_name == "get_invoice":
        return str(result.get("summary") or f"Here are the details for invoice {label}.")
    if step.tool_name == "create_invoice":
        return f"Invoice {label} has been successfully created."
    if step.tool_name == "update_invoice":
        return f"Invoice {label} has been successfully updated."
    if step.tool_name == "delete_invoice":
        deleted = result.get("deleted") or {}
        number = deleted.get("documentNumber") or deleted.get("id")
        if number:
            label = f"#{number}"
        return f"Invoice {label} has been successfully deleted."
    if step.tool_name == "send_invoice":
        recipient = result.get("sent_to") or step.arguments.get("email")
        return f"Invoice {label} has been successfully emailed to {recipient}."
    return str(result.get("summary") or f"Completed {step.tool_name}.")


def _apply_step(step: ToolStep, invoices: list[Invoice], state: DisplayState) -> None:
    if step.tool_name == "list_invoices":
        state.replace(invoices)
    elif step.tool_name in _UPSERT_TOOLS and invoices:
        state.upsert(invoices[0])
    elif step.tool_name == "delete_invoice":
        deleted_id = (step.result.get("deleted") or {}).get("id")
        if deleted_id:
            state.remove(str(deleted_id))
        else:
            reference = normalize_reference(step.arguments.get("invoice_id"))
            for invoice in [inv for inv in state.invoices if inv.matches_reference(reference)]:
                state.remove(invoice.id)


# === Entry point ===


def normalize_turn(
    transcript: TurnTranscript,
    policy: TurnPolicy | None = None,
    state: DisplayState | None = None,
) -> NormalizedTurnResult:
    """Normalize one turn. Tolerates zero, one or many steps of any shape."""
    state = state or DisplayState()
    outcomes: list[StepOutcome] = []

    for step in transcript.steps:
        result = step.result if isinstance(step.result, dict) else {"error": str(step.result)}
        step = ToolStep(tool_name=step.tool_name, arguments=step.arguments or {}, result=result)
        if "error" in result:
            outcomes.append(StepOutcome(step.tool_name, False, describe_error(step)))
            continue
        invoices = extract_invoices(result)
        _apply_step(step, invoices, state)
        outcomes.append(StepOutcome(step.tool_name, True, describe_success(step, invoices)))

    is_multi_step = len(outcomes) > 1 or bool(policy and policy.chained)

    if any(
        isinstance(step.result, dict)
        and step.result.get("kind") == ErrorKind.NOT_AUTHENTICATED.value
        for step in transcript.steps
    ):
        logger.info("turn_auth_rejected", steps=len(outcomes))
        return NormalizedTurnResult(
            text=AUTH_REQUIRED_MESSAGE,
            status=TurnStatus.AUTH_REQUIRED,
            state=state,
            steps=outcomes,
            is_multi_step=is_multi_step,
        )

    if len(outcomes) > 1:
        header = (
            f"Completed {len(outcomes)} steps:"
            if all(outcome.success for outcome in outcomes)
            else f"Completed {sum(o.success for o in outcomes)} of {len(outcomes)} steps:"
        )
        lines = [f"{index}. {outcome.message}" for index, outcome in enumerate(outcomes, 1)]
        text = "\n".join([header, *lines])
    elif outcomes:
        text = outcomes[0].message
    else:
        text = (transcript.text or "").strip()
        conversational = bool(policy and policy.is_conversational)
        if not conversational:
            narrated = parse_invoices_from_text(transcript.text)
            if len(narrated) == 1:
                state.upsert(narrated[0])
            elif narrated:
                state.replace(narrated)
            if narrated:
                logger.info("invoices_parsed_from_text", count=len(narrated))
        if not text:
            text = NOT_UNDERSTOOD_MESSAGE

    if not outcomes or all(outcome.success for outcome in outcomes):
        status = TurnStatus.OK
    elif any(outcome.success for outcome in outcomes):
        status = TurnStatus.PARTIAL
    else:
        status = TurnStatus.ERROR

    logger.debug(
        "turn_normalized",
        steps=len(outcomes),
        status=status.value,
        invoice_count=len(state.invoices),
    )
    return NormalizedTurnResult(
        text=text,
        status=status,
        state=state,
        steps=outcomes,
        is_multi_step=is_multi_step,
    )
