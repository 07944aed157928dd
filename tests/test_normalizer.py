"""Tests for the turn result normalizer."""

from decimal import Decimal

import pytest

from invoice_assistant.agents.base import ToolStep, TurnTranscript
from invoice_assistant.intent import classify
from invoice_assistant.models import Invoice
from invoice_assistant.normalizer import (
    AUTH_REQUIRED_MESSAGE,
    NOT_UNDERSTOOD_MESSAGE,
    DisplayState,
    NormalizedTurnResult,
    TurnStatus,
    extract_invoices,
    normalize_turn,
    sanitize_error,
)

from conftest import AMY, qbo_invoice


def display(invoice_id: str, doc: str | None = None, balance: float = 10.0) -> dict:
    return Invoice(
        id=invoice_id,
        document_number=doc,
        customer_name="Cool Cars",
        total_amount=Decimal("10"),
        balance=Decimal(str(balance)),
    ).to_display()


def step(tool_name: str, result: dict, **arguments) -> ToolStep:
    return ToolStep(tool_name=tool_name, arguments=arguments, result=result)


class TestExtractInvoices:
    def test_display_list(self):
        invoices = extract_invoices({"invoices": [display("1"), display("2")], "count": 2})

        assert [inv.id for inv in invoices] == ["1", "2"]

    def test_query_response_envelope(self):
        payload = {"QueryResponse": {"Invoice": [qbo_invoice("5", "1005", AMY, 100, 100)]}}

        assert [inv.id for inv in extract_invoices(payload)] == ["5"]

    def test_flat_invoice_envelope(self):
        payload = {"Invoice": qbo_invoice("5", "1005", AMY, 100, 100)}

        assert extract_invoices(payload)[0].document_number == "1005"

    def test_nested_search(self):
        payload = {"data": {"items": [qbo_invoice("7", "1007", AMY, 1, 1)]}}

        assert [inv.id for inv in extract_invoices(payload)] == ["7"]

    def test_nothing_invoice_like(self):
        assert extract_invoices({"message": "ok"}) == []


class TestSingleSteps:
    def test_list_replaces_collection(self):
        state = DisplayState.from_records([display("old")], "old")
        transcript = TurnTranscript(
            text="",
            steps=[step("list_invoices", {"invoices": [display("1"), display("2")], "count": 2, "filter": None})],
        )

        result = normalize_turn(transcript, classify("show me all invoices"), state)

        assert [inv.id for inv in result.state.invoices] == ["1", "2"]
        assert result.state.selected_invoice_id is None
        assert result.text == "Found 2 invoices."
        assert result.status == TurnStatus.OK

    def test_empty_list(self):
        transcript = TurnTranscript(
            text="", steps=[step("list_invoices", {"invoices": [], "count": 0, "filter": "unpaid"})]
        )

        result = normalize_turn(transcript)

        assert result.text == "Found 0 invoices matching 'unpaid'."

    def test_empty_unfiltered_list(self):
        state = DisplayState.from_records([display("1")])
        transcript = TurnTranscript(
            text="", steps=[step("list_invoices", {"invoices": [], "count": 0, "filter": None})]
        )

        result = normalize_turn(transcript, state=state)

        assert result.text == "Found 0 invoices."
        assert result.state.invoices == []

    def test_get_upserts_and_selects(self):
        state = DisplayState.from_records([display("1"), display("2")])
        updated = display("2", doc="1002", balance=0)
        transcript = TurnTranscript(
            text="", steps=[step("get_invoice", {"invoice": updated, "summary": "Invoice #1002."})]
        )

        result = normalize_turn(transcript, state=state)

        assert [inv.id for inv in result.state.invoices] == ["1", "2"]
        assert result.state.invoices[1].balance == Decimal("0")
        assert result.state.selected_invoice_id == "2"
        assert result.to_dict()["selectedInvoice"]["id"] == "2"

    def test_create_prepends(self):
        state = DisplayState.from_records([display("1")])
        transcript = TurnTranscript(
            text="", steps=[step("create_invoice", {"invoice": display("200", doc="1100")})]
        )

        result = normalize_turn(transcript, state=state)

        assert [inv.id for inv in result.state.invoices] == ["200", "1"]
        assert result.text == "Invoice #1100 has been successfully created."

    def test_update_message(self):
        transcript = TurnTranscript(
            text="", steps=[step("update_invoice", {"invoice": display("130", doc="1037")})]
        )

        assert normalize_turn(transcript).text == "Invoice #1037 has been successfully updated."

    def test_delete_removes_and_clears_selection(self):
        state = DisplayState.from_records([display("1"), display("130", doc="1037")], "130")
        transcript = TurnTranscript(
            text="",
            steps=[
                step(
                    "delete_invoice",
                    {"deleted": {"id": "130", "documentNumber": "1037"}, "summary": "..."},
                    invoice_id="1037",
                )
            ],
        )

        result = normalize_turn(transcript, state=state)

        assert [inv.id for inv in result.state.invoices] == ["1"]
        assert result.state.selected_invoice_id is None
        assert result.text == "Invoice #1037 has been successfully deleted."

    def test_send_confirms_without_touching_collection(self):
        state = DisplayState.from_records([display("1")], "1")
        transcript = TurnTranscript(
            text="",
            steps=[
                step(
                    "send_invoice",
                    {"invoice": display("130", doc="1037"), "sent_to": "test@example.com"},
                    invoice_id="1037",
                    email="test@example.com",
                )
            ],
        )

        result = normalize_turn(transcript, state=state)

        assert [inv.id for inv in result.state.invoices] == ["1"]
        assert result.state.selected_invoice_id == "1"
        assert result.text == "Invoice #1037 has been successfully emailed to test@example.com."


class TestErrors:
    def test_not_found_style(self):
        transcript = TurnTranscript(
            text="", steps=[step("get_invoice", {"error": "Invoice 13 not found"}, invoice_id="#13")]
        )

        result = normalize_turn(transcript)

        assert result.text.startswith("Invoice #13 was not found.")
        assert result.status == TurnStatus.ERROR
        assert result.failed_steps == 1

    def test_inactive_is_not_found_style(self):
        transcript = TurnTranscript(
            text="",
            steps=[step("update_invoice", {"error": "Something you're trying to use has been made inactive"}, invoice_id="5")],
        )

        assert "Invoice #5 was not found" in normalize_turn(transcript).text

    def test_customer_not_found_passes_through(self):
        message = "Customer 'Diego' not found. Please use an existing customer name."
        transcript = TurnTranscript(text="", steps=[step("create_invoice", {"error": message})])

        assert normalize_turn(transcript).text == message

    def test_provider_error_passthrough(self):
        transcript = TurnTranscript(
            text="", steps=[step("delete_invoice", {"error": "Stale Object Error"}, invoice_id="5")]
        )

        assert normalize_turn(transcript).text == "Failed to delete invoice: Stale Object Error"

    @pytest.mark.parametrize(
        "raw",
        [
            '{"Fault": {"Error": [{"Message": "Business Validation Error", "code": "6000"}], "type": "ValidationFault"}}',
            {"Fault": {"Error": [{"Message": "Business Validation Error"}]}},
            "QuickBooksAPIError: Business Validation Error",
            "Traceback (most recent call last):\n  File \"x.py\", line 1\nValueError: Business Validation Error",
        ],
    )
    def test_error_lines_hide_raw_shapes(self, raw):
        transcript = TurnTranscript(text="", steps=[step("create_invoice", {"error": raw})])

        text = normalize_turn(transcript).text

        assert text == "Failed to create invoice: Business Validation Error"
        assert "\n" not in text

    def test_empty_error(self):
        assert sanitize_error("") == "Unknown QuickBooks error occurred"

    def test_long_error_is_truncated(self):
        assert len(sanitize_error("x" * 1000)) == 300

    def test_rejected_token_requires_auth(self):
        state = DisplayState.from_records([display("1")])
        transcript = TurnTranscript(
            text="Failed to list invoices.",
            steps=[step("list_invoices", {"error": "AuthenticationFailed", "kind": "not_authenticated"})],
        )

        result = normalize_turn(transcript, state=state)

        assert result.status == TurnStatus.AUTH_REQUIRED
        assert result.text == AUTH_REQUIRED_MESSAGE
        assert [inv.id for inv in result.state.invoices] == ["1"]

    def test_rejected_token_after_a_success_requires_auth(self):
        created = display("9", doc="1099")
        transcript = TurnTranscript(
            text="",
            steps=[
                step("create_invoice", {"invoice": created, "summary": "Created invoice #1099."}),
                step("send_invoice", {"error": "AuthenticationFailed", "kind": "not_authenticated"}, invoice_id="9"),
            ],
        )

        result = normalize_turn(transcript)

        assert result.status == TurnStatus.AUTH_REQUIRED
        assert result.text == AUTH_REQUIRED_MESSAGE
        assert result.completed_steps == 1
        assert result.failed_steps == 1
        assert result.state.selected_invoice_id == "9"

    def test_other_kinds_stay_errors(self):
        transcript = TurnTranscript(
            text="",
            steps=[step("delete_invoice", {"error": "Stale Object Error", "kind": "provider_error"}, invoice_id="5")],
        )

        result = normalize_turn(transcript)

        assert result.status == TurnStatus.ERROR
        assert result.text == "Failed to delete invoice: Stale Object Error"


class TestMultiStep:
    def test_numbered_summary_and_stats(self):
        state = DisplayState()
        transcript = TurnTranscript(
            text="Done.",
            steps=[
                step("create_invoice", {"invoice": display("200", doc="1100")}),
                step(
                    "send_invoice",
                    {"invoice": display("200", doc="1100"), "sent_to": "test@example.com"},
                    invoice_id="200",
                    email="test@example.com",
                ),
            ],
        )

        result = normalize_turn(transcript, classify("create an invoice and email it"), state)

        assert result.text == (
            "Completed 2 steps:\n"
            "1. Invoice #1100 has been successfully created.\n"
            "2. Invoice #1100 has been successfully emailed to test@example.com."
        )
        payload = result.to_dict()
        assert payload["isMultiStep"] is True
        assert payload["totalSteps"] == 2
        assert payload["completedSteps"] == 2
        assert payload["failedSteps"] == 0
        assert payload["workflowSteps"] == [
            "Step 1: create_invoice - Completed",
            "Step 2: send_invoice - Completed",
        ]
        assert payload["selectedInvoiceId"] == "200"

    def test_partial_failure(self):
        transcript = TurnTranscript(
            text="",
            steps=[
                step("create_invoice", {"invoice": display("200", doc="1100")}),
                step("send_invoice", {"error": "Invalid email address: nope"}, invoice_id="200", email="nope"),
            ],
        )

        result = normalize_turn(transcript)

        assert result.status == TurnStatus.PARTIAL
        assert result.text.startswith("Completed 1 of 2 steps:")
        assert result.workflow_steps[1] == "Step 2: send_invoice - Failed"


class TestNoSteps:
    def test_conversational_text(self):
        transcript = TurnTranscript(text="Hello! How can I help?")

        result = normalize_turn(transcript, classify("hello, how are you?"))

        assert result.text == "Hello! How can I help?"
        assert result.steps == []
        assert result.is_multi_step is False

    def test_empty_text_falls_back(self):
        result = normalize_turn(TurnTranscript(text="   "), classify("do the thing"))

        assert result.text == NOT_UNDERSTOOD_MESSAGE

    def test_narrated_invoices_are_parsed(self):
        narrated = (
            "Here are your invoices:\n"
            "1. **Invoice ID:** 145 - **Customer:** Amy's Bird Sanctuary - **Date:** 2025-07-08 "
            "- **Due Date:** 2025-08-07 - **Total Amount:** $560 - **Balance:** $560\n"
            "2. **Invoice ID:** 146 - **Customer:** Cool Cars - **Total Amount:** $75.50 - **Balance:** $0"
        )

        result = normalize_turn(TurnTranscript(text=narrated), classify("show invoices"))

        assert [inv.id for inv in result.state.invoices] == ["145", "146"]
        assert result.text == narrated

    def test_conversational_turn_is_not_parsed(self):
        narrated = "Invoice ID: 145 - Customer: Amy - Balance: $1"

        result = normalize_turn(TurnTranscript(text=narrated), classify("hello"))

        assert result.state.invoices == []


class TestPresetResults:
    def test_timeout_result(self):
        state = DisplayState.from_records([display("1")], "1")

        payload = NormalizedTurnResult.timeout(state).to_dict()

        assert payload["status"] == "timeout"
        assert payload["text"].startswith("Request timed out.")
        assert payload["selectedInvoiceId"] == "1"

    def test_auth_required_result(self):
        result = NormalizedTurnResult.auth_required()

        assert result.status == TurnStatus.AUTH_REQUIRED
        assert result.text
