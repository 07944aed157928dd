"""
Pydantic schemas for the invoice assistant HTTP API.

Request fields use the camelCase names the web client sends.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ChatRequest(BaseModel):
    """
    Body of POST /api/ai/invoice-tool.

    ``message`` is optional at the schema level so that a missing message is
    reported as a 400 with the standard error body rather than a 422.
    """

    model_config = ConfigDict(populate_by_name=True)

    message: str | None = Field(None, description="The user's chat message")
    invoices: list[dict[str, Any]] | None = Field(
        None, description="Invoices currently displayed by the client"
    )
    selected_invoice_id: str | None = Field(
        None, alias="selectedInvoiceId", description="Id of the invoice currently selected"
    )
    tokens: dict[str, Any] | None = Field(
        None, description="Client-held QuickBooks tokens, used when the cookie is absent"
    )


class ChatResponse(BaseModel):
    result: dict[str, Any]


class ErrorResponse(BaseModel):
    error: str


class AuthCheckRequest(BaseModel):
    tokens: dict[str, Any] | None = None


class AuthCheckResponse(BaseModel):
    """Response for POST /api/auth/check."""

    model_config = ConfigDict(populate_by_name=True)

    authenticated: bool
    realm_id: str | None = Field(None, alias="realmId")
    error: str | None = None


class CompanyInfoResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    company_info: dict[str, Any] = Field(..., alias="companyInfo")


class HealthResponse(BaseModel):
    status: str
    service: str
