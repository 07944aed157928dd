"""Pytest configuration and fixtures."""

import copy
import os
from typing import Any
from unittest.mock import AsyncMock

import pytest

# Set test environment variables before importing settings
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("QUICKBOOKS_API_URL", "https://qbo.test")
os.environ.setdefault("ANTHROPIC_API_KEY", "sk-ant-test")
os.environ.setdefault("OPENAI_API_KEY", "sk-test")
os.environ.setdefault("GOOGLE_API_KEY", "test-key")
os.environ.setdefault("LLM_PROVIDER", "openai")

from invoice_assistant.clients.base import LLMResponse  # noqa: E402
from invoice_assistant.credentials import Credentials  # noqa: E402
from invoice_assistant.models import Invoice  # noqa: E402
from invoice_assistant.tools.results import Err, ErrorKind, Ok  # noqa: E402


def qbo_invoice(
    invoice_id: str,
    doc_number: str | None,
    customer: tuple[str, str],
    total: float,
    balance: float | None,
    due_date: str | None = None,
    txn_date: str = "2025-07-01",
    description: str = "Services",
    email: str | None = None,
) -> dict[str, Any]:
    """Build a QuickBooks-shaped invoice record."""
    record: dict[str, Any] = {
        "Id": invoice_id,
        "SyncToken": "0",
        "CustomerRef": {"value": customer[0], "name": customer[1]},
        "TxnDate": txn_date,
        "TotalAmt": total,
        "Line": [
            {
                "Id": "1",
                "LineNum": 1,
                "Amount": total,
                "Description": description,
                "DetailType": "SalesItemLineDetail",
                "SalesItemLineDetail": {
                    "ItemRef": {"value": "1", "name": "Services"},
                    "Qty": 1,
                    "UnitPrice": total,
                },
            },
            {"Amount": total, "DetailType": "SubTotalLineDetail", "SubTotalLineDetail": {}},
        ],
    }
    if doc_number is not None:
        record["DocNumber"] = doc_number
    if balance is not None:
        record["Balance"] = balance
    if due_date is not None:
        record["DueDate"] = due_date
    if email is not None:
        record["BillEmail"] = {"Address": email}
    return record


AMY = ("1", "Amy's Bird Sanctuary")
BILL = ("2", "Bill's Windsurf Shop")
COOL_CARS = ("3", "Cool Cars")


def sample_records() -> list[dict[str, Any]]:
    return [
        qbo_invoice("5", "1005", AMY, 100.0, 100.0, due_date="2020-01-01"),
        qbo_invoice("55", "1055", BILL, 250.0, 0.0, due_date="2020-02-01"),
        qbo_invoice("130", "1037", AMY, 560.0, 560.0, due_date="2999-01-01"),
        qbo_invoice("131", None, COOL_CARS, 75.0, None),
    ]


class FakeGateway:
    """In-memory stand-in for QuickBooksClient.

    Mirrors the provider's behavior that matters here: exact id lookup,
    sync-token checks on update/delete, deleted invoices vanish from queries.
    """

    def __init__(self, records: list[dict[str, Any]] | None = None):
        self.records: dict[str, dict[str, Any]] = {
            record["Id"]: copy.deepcopy(record)
            for record in (records if records is not None else sample_records())
        }
        self.calls: list[tuple[str, Any]] = []
        self.failures: dict[str, Err] = {}
        self.sent: list[tuple[str, str]] = []
        self._next_id = 200
        self.closed = False

    async def __aenter__(self) -> "FakeGateway":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self.closed = True

    def fail(self, operation: str, kind: ErrorKind, message: str) -> None:
        self.failures[operation] = Err(kind, message)

    def _failure(self, operation: str) -> Err | None:
        return self.failures.get(operation)

    async def get_invoice(self, invoice_id: str):
        self.calls.append(("get_invoice", invoice_id))
        if failure := self._failure("get_invoice"):
            return failure
        record = self.records.get(invoice_id)
        if record is None:
            return Err(ErrorKind.NOT_FOUND, f"Object Not Found: Invoice {invoice_id}")
        return Ok(Invoice.from_quickbooks(copy.deepcopy(record)))

    async def query_invoices(self, where=None, max_results=None, start=None):
        self.calls.append(("query_invoices", max_results))
        if failure := self._failure("query_invoices"):
            return failure
        records = list(self.records.values())[: max_results or None]
        return Ok([Invoice.from_quickbooks(copy.deepcopy(record)) for record in records])

    async def create_invoice(self, payload: dict[str, Any]):
        self.calls.append(("create_invoice", payload))
        if failure := self._failure("create_invoice"):
            return failure
        invoice_id = str(self._next_id)
        self._next_id += 1
        total = sum(line["Amount"] for line in payload["Line"])
        record = {
            "Id": invoice_id,
            "SyncToken": "0",
            "DocNumber": payload.get("DocNumber", str(1100 + int(invoice_id) - 200)),
            "CustomerRef": payload["CustomerRef"],
            "TxnDate": "2025-07-10",
            "TotalAmt": total,
            "Balance": total,
            "Line": payload["Line"],
        }
        if "DueDate" in payload:
            record["DueDate"] = payload["DueDate"]
        self.records[invoice_id] = record
        return Ok(Invoice.from_quickbooks(copy.deepcopy(record)))

    async def update_invoice(self, payload: dict[str, Any]):
        self.calls.append(("update_invoice", payload))
        if failure := self._failure("update_invoice"):
            return failure
        record = self.records.get(payload["Id"])
        if record is None:
            return Err(ErrorKind.NOT_FOUND, "Object Not Found")
        if payload["SyncToken"] != record["SyncToken"]:
            return Err(ErrorKind.PROVIDER_ERROR, "Stale Object Error")
        for key, value in payload.items():
            if key in ("Id", "SyncToken", "sparse"):
                continue
            record[key] = copy.deepcopy(value)
        if "Line" in payload:
            total = sum(
                line["Amount"] for line in record["Line"] if line["DetailType"] != "SubTotalLineDetail"
            )
            record["TotalAmt"] = total
            if "Balance" not in payload:
                record["Balance"] = total
        record["SyncToken"] = str(int(record["SyncToken"]) + 1)
        return Ok(Invoice.from_quickbooks(copy.deepcopy(record)))

    async def delete_invoice(self, invoice_id: str, sync_token: str):
        self.calls.append(("delete_invoice", (invoice_id, sync_token)))
        if failure := self._failure("delete_invoice"):
            return failure
        record = self.records.get(invoice_id)
        if record is None or record["SyncToken"] != sync_token:
            return Err(ErrorKind.PROVIDER_ERROR, "Stale Object Error")
        del self.records[invoice_id]
        return Ok({"id": invoice_id, "status": "Deleted"})

    async def send_invoice(self, invoice_id: str, recipient: str):
        self.calls.append(("send_invoice", (invoice_id, recipient)))
        if failure := self._failure("send_invoice"):
            return failure
        self.sent.append((invoice_id, recipient))
        record = copy.deepcopy(self.records[invoice_id])
        record["BillEmail"] = {"Address": recipient}
        record["EmailStatus"] = "EmailSent"
        return Ok(Invoice.from_quickbooks(record))

    async def get_company_info(self):
        self.calls.append(("get_company_info", None))
        if failure := self._failure("get_company_info"):
            return failure
        return Ok({"CompanyName": "Sandbox Company_US_1", "Country": "US"})

    def called(self, operation: str) -> list[Any]:
        return [args for name, args in self.calls if name == operation]


class ScriptedLLM:
    """LLM client double that replays a fixed list of responses."""

    def __init__(self, responses: list[LLMResponse]):
        self._responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    async def generate(self, system_prompt, messages, tools=None, tool_policy=None):
        self.calls.append({
            "system_prompt": system_prompt,
            "messages": [dict(m) for m in messages],
            "tools": tools,
            "tool_policy": tool_policy,
        })
        if self._responses:
            return self._responses.pop(0)
        return LLMResponse(content="Done.")


def tool_call(name: str, arguments: dict[str, Any], call_id: str | None = None) -> dict[str, Any]:
    return {"id": call_id or f"call_{name}", "name": name, "arguments": arguments}


@pytest.fixture
def gateway():
    """In-memory gateway seeded with four invoices."""
    return FakeGateway()


@pytest.fixture
def credentials():
    return Credentials(access_token="access-token-123", tenant_id="9130350000000000")


@pytest.fixture
def token_data():
    return {
        "access_token": "access-token-123",
        "refresh_token": "refresh-token-123",
        "realmId": "9130350000000000",
        "expires_in": 3600,
    }


@pytest.fixture
def mock_httpx_client():
    """Create a mock httpx AsyncClient."""
    client = AsyncMock()
    client.request = AsyncMock()
    client.aclose = AsyncMock()
    return client
