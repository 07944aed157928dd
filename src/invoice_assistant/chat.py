"""Chat turn service: classify, orchestrate, normalize.

One call to ``run_chat_turn`` handles one user message. The gateway and tool
executor are built for that turn from the caller's credentials snapshot and
discarded afterwards.
"""

import asyncio
from collections.abc import Callable
from typing import Any
from uuid import uuid4

import structlog

from invoice_assistant.agents import InvoiceAgent, TurnTranscript
from invoice_assistant.clients import LLMClient
from invoice_assistant.config import get_settings
from invoice_assistant.credentials import Credentials
from invoice_assistant.intent import ToolPolicy, TurnPolicy, classify
from invoice_assistant.normalizer import DisplayState, NormalizedTurnResult, normalize_turn
from invoice_assistant.tools.executor import ToolExecutor
from invoice_assistant.tools.quickbooks_api import QuickBooksClient

logger = structlog.get_logger(__name__)

GatewayFactory = Callable[[Credentials], Any]

# Turns abandoned on timeout keep running; hold a reference until they finish
_abandoned_turns: set[asyncio.Task[Any]] = set()


class TurnTimeoutError(Exception):
    """The turn exceeded the caller-side time budget."""

    def __init__(self, timeout: float):
        super().__init__(f"Turn exceeded {timeout:.0f}s")
        self.timeout = timeout


def _forget_abandoned(task: asyncio.Task[Any]) -> None:
    _abandoned_turns.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.warning("abandoned_turn_failed", error=str(error))
    else:
        logger.info("abandoned_turn_finished")


async def wait_for_turn(task: asyncio.Task[Any], timeout: float) -> Any:
    """Wait up to ``timeout`` seconds without cancelling ``task`` on expiry."""
    try:
        return await asyncio.wait_for(asyncio.shield(task), timeout)
    except TimeoutError as e:
        _abandoned_turns.add(task)
        task.add_done_callback(_forget_abandoned)
        raise TurnTimeoutError(timeout) from e


async def _orchestrate(
    message: str,
    policy: TurnPolicy,
    credentials: Credentials | None,
    llm_client: LLMClient | None,
    gateway_factory: GatewayFactory,
) -> TurnTranscript:
    if credentials is None:
        agent = InvoiceAgent(tool_executor=None, llm_client=llm_client)
        return await agent.run_turn(message, policy)

    async with gateway_factory(credentials) as gateway:
        agent = InvoiceAgent(tool_executor=ToolExecutor(gateway), llm_client=llm_client)
        return await agent.run_turn(message, policy)


async def run_chat_turn(
    message: str,
    credentials: Credentials | None,
    state: DisplayState | None = None,
    llm_client: LLMClient | None = None,
    gateway_factory: GatewayFactory = QuickBooksClient,
    timeout: float | None = None,
) -> NormalizedTurnResult:
    """Handle one chat message end to end.

    Returns an ``auth_required`` result when the turn needs QuickBooks and no
    credentials are available, and a ``timeout`` result when the turn runs past
    ``timeout`` seconds. Unexpected failures propagate to the caller.
    """
    settings = get_settings()
    timeout = timeout or settings.turn_timeout_seconds
    state = state or DisplayState()

    with structlog.contextvars.bound_contextvars(turn_id=uuid4().hex[:12]):
        policy = classify(message, settings.max_chained_steps)
        logger.info(
            "chat_turn_started",
            mode=policy.mode.value,
            tool_policy=policy.tool_policy.value,
            step_budget=policy.step_budget,
            authenticated=credentials is not None,
        )

        if credentials is None and policy.tool_policy != ToolPolicy.NONE:
            logger.info("chat_turn_auth_required")
            return NormalizedTurnResult.auth_required(state)

        task = asyncio.ensure_future(
            _orchestrate(message, policy, credentials, llm_client, gateway_factory)
        )
        try:
            transcript = await wait_for_turn(task, timeout)
        except TurnTimeoutError:
            logger.warning("chat_turn_timed_out", timeout=timeout)
            return NormalizedTurnResult.timeout(state)

        result = normalize_turn(transcript, policy, state)
        logger.info(
            "chat_turn_completed",
            status=result.status.value,
            steps=len(result.steps),
        )
        return result
