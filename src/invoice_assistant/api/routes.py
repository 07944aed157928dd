"""
HTTP endpoints for the invoice assistant.

- POST /api/ai/invoice-tool - run one chat turn
- GET /api/quickbooks/company-info - company details for the connected realm
- POST /api/auth/check - verify the stored QuickBooks tokens
"""

from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from invoice_assistant.api.dependencies import (
    get_gateway_factory,
    get_llm_client,
    get_token_cookie,
)
from invoice_assistant.api.schemas import (
    AuthCheckRequest,
    AuthCheckResponse,
    ChatRequest,
    ChatResponse,
    CompanyInfoResponse,
    ErrorResponse,
)
from invoice_assistant.chat import GatewayFactory, run_chat_turn
from invoice_assistant.clients import LLMClient
from invoice_assistant.credentials import CredentialProvider, Credentials
from invoice_assistant.normalizer import DisplayState
from invoice_assistant.tools.results import Err

logger = structlog.get_logger(__name__)

GENERIC_ERROR = "Sorry, something went wrong."

router = APIRouter(prefix="/api")


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.post(
    "/ai/invoice-tool",
    response_model=ChatResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    tags=["chat"],
)
async def invoice_tool(
    body: ChatRequest,
    token_cookie: Annotated[str | None, Depends(get_token_cookie)],
    gateway_factory: Annotated[GatewayFactory, Depends(get_gateway_factory)],
    llm_client: Annotated[LLMClient | None, Depends(get_llm_client)],
) -> Any:
    """Run one chat turn and return the normalized result."""
    message = (body.message or "").strip()
    if not message:
        return _error("Message is required", status.HTTP_400_BAD_REQUEST)

    credentials = CredentialProvider(token_cookie, body.tokens).get_credentials()
    state = DisplayState.from_records(body.invoices, body.selected_invoice_id)

    try:
        result = await run_chat_turn(
            message,
            credentials,
            state=state,
            llm_client=llm_client,
            gateway_factory=gateway_factory,
        )
    except Exception:
        logger.exception("chat_turn_failed")
        return _error(GENERIC_ERROR, status.HTTP_500_INTERNAL_SERVER_ERROR)

    return {"result": result.to_dict()}


@router.get(
    "/quickbooks/company-info",
    response_model=CompanyInfoResponse,
    responses={400: {"model": ErrorResponse}},
    tags=["quickbooks"],
)
async def company_info(
    token_cookie: Annotated[str | None, Depends(get_token_cookie)],
    gateway_factory: Annotated[GatewayFactory, Depends(get_gateway_factory)],
) -> Any:
    credentials = CredentialProvider(token_cookie).get_credentials()
    if credentials is None:
        return _error("QuickBooks not authenticated", status.HTTP_400_BAD_REQUEST)

    async with gateway_factory(credentials) as gateway:
        result = await gateway.get_company_info()

    if isinstance(result, Err):
        return _error(result.message, status.HTTP_400_BAD_REQUEST)
    logger.info("company_info_retrieved", realm_id=credentials.tenant_id)
    return {"companyInfo": result.value}


@router.post("/auth/check", response_model=AuthCheckResponse, tags=["auth"])
async def auth_check(
    token_cookie: Annotated[str | None, Depends(get_token_cookie)],
    gateway_factory: Annotated[GatewayFactory, Depends(get_gateway_factory)],
    body: AuthCheckRequest | None = None,
) -> Any:
    """
    Check whether usable QuickBooks tokens exist.

    The cookie is tried first, then tokens the client keeps in local storage.
    Tokens are validated with a company info call.
    """
    credentials: Credentials | None = CredentialProvider(token_cookie).get_credentials()

    if credentials is None and body is not None and body.tokens:
        credentials = Credentials.from_token_data(body.tokens)
        if credentials is None:
            return {"authenticated": False, "error": "Invalid token structure"}
        if credentials.is_expired:
            return {"authenticated": False, "error": "Tokens expired"}

    if credentials is None:
        return {"authenticated": False, "error": "No tokens found"}

    try:
        async with gateway_factory(credentials) as gateway:
            result = await gateway.get_company_info()
    except Exception:
        logger.exception("auth_check_failed")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"authenticated": False, "error": "Authentication check failed"},
        )

    if isinstance(result, Err):
        logger.info("auth_check_rejected", kind=result.kind.value)
        return {"authenticated": False, "error": "Token validation failed"}
    return {"authenticated": True, "realmId": credentials.tenant_id}
