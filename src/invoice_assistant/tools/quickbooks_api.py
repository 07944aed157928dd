"""QuickBooks Online accounting API gateway.

Each public operation returns ``Ok(value)`` or ``Err(kind, message)``; provider
faults never propagate past this module as exceptions. The gateway is built per
request from a credentials snapshot and performs no retries.
"""

from typing import Any

import httpx
import structlog

from invoice_assistant.config import get_settings
from invoice_assistant.credentials import Credentials
from invoice_assistant.models import Invoice
from invoice_assistant.tools.results import Err, ErrorKind, Ok, Result

logger = structlog.get_logger(__name__)

UNKNOWN_ERROR = "Unknown QuickBooks error occurred"

_NOT_FOUND_MARKERS = ("not found", "inactive")
_UNSUPPORTED_MARKERS = ("not supported", "unsupported", "feature not available")


class QuickBooksAPIError(Exception):
    """Raised by the HTTP layer for a failed QuickBooks call."""

    def __init__(self, message: str, status_code: int | None = None, details: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


def extract_fault_message(payload: Any, fallback: str | None = None) -> str:
    """Flatten a QuickBooks fault payload into one message.

    Precedence: ``Fault.Error[0].Detail`` > ``Fault.Error[0].Message`` >
    ``fallback`` (usually the exception message) > a generic message.
    """
    if isinstance(payload, dict):
        fault = payload.get("Fault") or payload.get("fault") or {}
        errors: Any = []
        if isinstance(fault, dict):
            errors = fault.get("Error") or fault.get("error") or []
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            first = errors[0]
            detail = first.get("Detail") or first.get("detail")
            if detail:
                return str(detail)
            message = first.get("Message") or first.get("message")
            if message:
                return str(message)
    return fallback or UNKNOWN_ERROR


def classify_error(message: str, status_code: int | None = None) -> ErrorKind:
    """Map a flattened fault message and HTTP status onto an ErrorKind."""
    lowered = message.lower()
    if status_code == 401:
        return ErrorKind.NOT_AUTHENTICATED
    if status_code == 404 or any(marker in lowered for marker in _NOT_FOUND_MARKERS):
        return ErrorKind.NOT_FOUND
    if status_code == 501 or any(marker in lowered for marker in _UNSUPPORTED_MARKERS):
        return ErrorKind.UNSUPPORTED_OPERATION
    if status_code == 403 and "authoriz" in lowered:
        return ErrorKind.NOT_AUTHENTICATED
    return ErrorKind.PROVIDER_ERROR


def _first_invoice(data: Any) -> dict[str, Any] | None:
    """Pull a single invoice record out of either response envelope."""
    if not isinstance(data, dict):
        return None
    invoice = data.get("Invoice")
    if isinstance(invoice, dict):
        return invoice
    query_invoices = (data.get("QueryResponse") or {}).get("Invoice")
    if isinstance(query_invoices, list) and query_invoices:
        return query_invoices[0]
    return None


class QuickBooksClient:
    """Async gateway to the QuickBooks invoice endpoints for one tenant."""

    def __init__(
        self,
        credentials: Credentials,
        base_url: str | None = None,
        minor_version: int | None = None,
        timeout: float | None = None,
    ):
        settings = get_settings()
        root = (base_url or settings.quickbooks_base_url).rstrip("/")
        self.credentials = credentials
        self.base_url = f"{root}/v3/company/{credentials.tenant_id}"
        self._minor_version = minor_version or settings.quickbooks_minor_version
        self._timeout = timeout or settings.quickbooks_timeout
        self._client: httpx.AsyncClient | None = None
        self._logger = logger.bind(realm_id=credentials.tenant_id)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self._timeout),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "QuickBooksClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _get_headers(self, content_type: str = "application/json") -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.credentials.access_token}",
            "Accept": "application/json",
            "Content-Type": content_type,
        }

    # === HTTP layer ===

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        content_type: str = "application/json",
    ) -> dict[str, Any]:
        """Make an authenticated API request. Raises QuickBooksAPIError on failure."""
        client = await self._get_client()
        query = {"minorversion": str(self._minor_version)}
        if params:
            query.update(params)

        try:
            response = await client.request(
                method=method,
                url=path,
                params=query,
                json=json,
                headers=self._get_headers(content_type),
            )
        except httpx.TimeoutException as e:
            raise QuickBooksAPIError(f"QuickBooks request timed out: {e}") from e
        except httpx.RequestError as e:
            raise QuickBooksAPIError(f"QuickBooks request failed: {e}") from e

        if response.status_code >= 400:
            try:
                details = response.json() if response.content else {}
            except ValueError:
                details = {"raw": response.text[:500] if response.text else "empty response"}
            message = extract_fault_message(
                details, fallback=f"QuickBooks API error: {response.status_code}"
            )
            raise QuickBooksAPIError(message, status_code=response.status_code, details=details)

        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as e:
            raise QuickBooksAPIError(
                "Invalid QuickBooks response format", status_code=response.status_code
            ) from e
        if not isinstance(data, dict):
            raise QuickBooksAPIError("Invalid QuickBooks response format")
        # QuickBooks occasionally reports faults inside a 200 response
        if "Fault" in data:
            message = extract_fault_message(data)
            raise QuickBooksAPIError(message, status_code=response.status_code, details=data)
        return data

    def _to_err(self, operation: str, error: Exception) -> Err:
        if isinstance(error, QuickBooksAPIError):
            message = extract_fault_message(error.details, fallback=str(error) or None)
            status_code = error.status_code
        else:
            message = str(error) or UNKNOWN_ERROR
            status_code = None
        kind = classify_error(message, status_code)
        self._logger.warning(
            "quickbooks_fault",
            operation=operation,
            status=status_code,
            kind=kind.value,
        )
        return Err(kind=kind, message=message, status_code=status_code)

    # === Invoice operations ===

    async def get_invoice(self, invoice_id: str) -> Result[Invoice]:
        """GET /invoice/{id}."""
        try:
            data = await self._request("GET", f"/invoice/{invoice_id}")
        except QuickBooksAPIError as e:
            return self._to_err("get_invoice", e)

        record = _first_invoice(data)
        if record is None:
            return Err(ErrorKind.NOT_FOUND, f"Invoice {invoice_id} not found")
        return Ok(Invoice.from_quickbooks(record))

    async def query_invoices(
        self, where: str | None = None, max_results: int | None = None, start: int | None = None
    ) -> Result[list[Invoice]]:
        """GET /query with a QuickBooks SQL-like statement over invoices."""
        statement = "SELECT * FROM Invoice"
        if where:
            statement += f" WHERE {where}"
        if start:
            statement += f" STARTPOSITION {start}"
        statement += f" MAXRESULTS {max_results or get_settings().invoice_listing_cap}"

        try:
            data = await self._request("GET", "/query", params={"query": statement})
        except QuickBooksAPIError as e:
            return self._to_err("query_invoices", e)

        records = (data.get("QueryResponse") or {}).get("Invoice") or []
        invoices = [Invoice.from_quickbooks(record) for record in records if isinstance(record, dict)]
        self._logger.debug("invoices_queried", count=len(invoices))
        return Ok(invoices)

    async def create_invoice(self, payload: dict[str, Any]) -> Result[Invoice]:
        """POST /invoice with a full invoice payload."""
        try:
            data = await self._request("POST", "/invoice", json=payload)
        except QuickBooksAPIError as e:
            return self._to_err("create_invoice", e)

        record = _first_invoice(data)
        if record is None:
            return Err(ErrorKind.PROVIDER_ERROR, "QuickBooks did not return the created invoice")
        return Ok(Invoice.from_quickbooks(record))

    async def update_invoice(self, payload: dict[str, Any]) -> Result[Invoice]:
        """POST /invoice with ``Id`` + ``SyncToken`` and the changed fields."""
        if not payload.get("Id") or payload.get("SyncToken") is None:
            return Err(ErrorKind.VALIDATION_ERROR, "Invoice updates require Id and SyncToken")
        try:
            data = await self._request("POST", "/invoice", json=payload)
        except QuickBooksAPIError as e:
            return self._to_err("update_invoice", e)

        record = _first_invoice(data)
        if record is None:
            return Err(ErrorKind.PROVIDER_ERROR, "QuickBooks did not return the updated invoice")
        return Ok(Invoice.from_quickbooks(record))

    async def delete_invoice(self, invoice_id: str, sync_token: str) -> Result[dict[str, Any]]:
        """POST /invoice?operation=delete. QuickBooks marks the invoice Deleted."""
        try:
            data = await self._request(
                "POST",
                "/invoice",
                params={"operation": "delete"},
                json={"Id": invoice_id, "SyncToken": sync_token},
            )
        except QuickBooksAPIError as e:
            return self._to_err("delete_invoice", e)

        status = (data.get("Invoice") or {}).get("status", "Deleted")
        return Ok({"id": invoice_id, "status": status})

    async def send_invoice(self, invoice_id: str, recipient: str) -> Result[Invoice]:
        """POST /invoice/{id}/send?sendTo={email}."""
        try:
            data = await self._request(
                "POST",
                f"/invoice/{invoice_id}/send",
                params={"sendTo": recipient},
                content_type="application/octet-stream",
            )
        except QuickBooksAPIError as e:
            return self._to_err("send_invoice", e)

        record = _first_invoice(data)
        if record is None:
            # Some sandboxes acknowledge the send with an empty body
            return Ok(Invoice(id=invoice_id, email=recipient))
        return Ok(Invoice.from_quickbooks(record))

    async def get_company_info(self) -> Result[dict[str, Any]]:
        """GET /companyinfo/{realmId}."""
        try:
            data = await self._request("GET", f"/companyinfo/{self.credentials.tenant_id}")
        except QuickBooksAPIError as e:
            return self._to_err("get_company_info", e)

        info = data.get("CompanyInfo")
        if not isinstance(info, dict):
            return Err(ErrorKind.PROVIDER_ERROR, "QuickBooks did not return company info")
        return Ok(info)
