"""Invoice assistant agent: drives one chat turn through the LLM and tools."""

import json
from typing import Any
from uuid import UUID

import structlog

from invoice_assistant.agents.base import AgentState, BaseAgent, ToolStep, TurnTranscript
from invoice_assistant.clients import LLMClient, create_llm_client
from invoice_assistant.intent import ToolPolicy, TurnPolicy
from invoice_assistant.tools.definitions import INVOICE_TOOLS
from invoice_assistant.tools.executor import ToolExecutor

logger = structlog.get_logger(__name__)

CONVERSATION_PROMPT = """You are a helpful assistant for invoice management in QuickBooks.
Respond naturally to greetings and general questions. If the user asks what you
can do, explain that you can show, list, create, update, delete and email
invoices. Do not call any tools for general conversation."""

OPERATION_PROMPT = """You are an invoice management assistant connected to QuickBooks.
Analyze the request and call the correct tool.

## Listing invoices: list_invoices
- "show invoices", "list all invoices" -> no filter
- "show unpaid invoices" -> filter "unpaid"; "show paid invoices" -> filter "paid"
- "show overdue invoices" -> filter "overdue"
- "show invoices for <customer>" -> filter "<customer name>"

## One invoice: get_invoice
- "show invoice 123", "find invoice #123"
- Pass the number without any "#" ("#1055" becomes "1055")

## Creating: create_invoice
- Extract customer_name and amount; due_date (YYYY-MM-DD) and document_number if given
- The customer must already exist

## Updating: update_invoice
- Pass invoice_id and only the fields the user asked to change
- "mark invoice 12 as paid" -> paid true

## Deleting: delete_invoice
- "delete invoice 123", "remove invoice 123", "cancel invoice 123"

## Emailing: send_invoice
- "email invoice 123 to a@b.com" -> invoice_id and email

## Rules
- Never guess invoice numbers or customers; use exactly what the user said.
- For requests with several steps (for example create then email), call one tool
  at a time and use the ID returned by the previous tool in the next call.
- When every requested operation is done, reply with a short confirmation."""


class InvoiceAgent(BaseAgent):
    """Runs one user turn: generate, execute requested tools in order, repeat.

    The turn policy's step budget is a hard cap on both generation rounds and
    executed tool calls. Calls beyond it are dropped, never executed.
    """

    def __init__(
        self,
        tool_executor: ToolExecutor | None = None,
        llm_client: LLMClient | None = None,
        llm_provider: str | None = None,
        agent_id: UUID | None = None,
    ):
        super().__init__(agent_id=agent_id, name="Invoice Assistant")
        self._tool_executor = tool_executor
        self._llm_client = llm_client or create_llm_client(llm_provider)
        self._policy: TurnPolicy | None = None

    def _get_system_prompt(self) -> str:
        if self._policy and self._policy.tool_policy == ToolPolicy.NONE:
            return CONVERSATION_PROMPT
        return OPERATION_PROMPT

    def _get_tools(self) -> list[dict[str, Any]]:
        # No executor means no QuickBooks connection for this turn
        if self._tool_executor is None:
            return []
        if self._policy and self._policy.tool_policy == ToolPolicy.NONE:
            return []
        return INVOICE_TOOLS

    async def run_turn(self, message: str, policy: TurnPolicy) -> TurnTranscript:
        """Run one chat turn to completion under ``policy``.

        Args:
            message: The user's message.
            policy: Classified tool policy and step budget.

        Returns:
            TurnTranscript with the last model text and every executed step.
        """
        self._policy = policy
        self.clear_history()
        self.add_user_message(message)

        budget = max(1, policy.step_budget)
        steps: list[ToolStep] = []
        dropped = 0
        final_text = ""

        self._logger.info(
            "turn_started",
            tool_policy=policy.tool_policy.value,
            step_budget=budget,
        )

        for round_number in range(budget):
            self.state = AgentState.THINKING
            tools = self._get_tools()
            response = await self._llm_client.generate(
                system_prompt=self._get_system_prompt(),
                messages=self._format_messages_for_llm(),
                tools=tools or None,
                # Forcing applies to the first round only; later rounds may answer in text
                tool_policy=policy.tool_policy if round_number == 0 else ToolPolicy.AUTO,
            )
            final_text = response.content or ""

            tool_calls = response.tool_calls if tools else []
            if response.tool_calls and not tools:
                self._logger.warning("tool_calls_ignored", count=len(response.tool_calls))
            if not tool_calls:
                break

            accepted = tool_calls[: budget - len(steps)]
            if len(accepted) < len(tool_calls):
                dropped += len(tool_calls) - len(accepted)
                self._logger.warning(
                    "tool_calls_over_budget",
                    dropped=len(tool_calls) - len(accepted),
                    step_budget=budget,
                )

            self.add_assistant_message(content=final_text, tool_calls=accepted)
            self.state = AgentState.ACTING

            # Sequential: a later call may depend on an earlier result
            for call in accepted:
                arguments = call.get("arguments") or {}
                result = await self._tool_executor.execute(  # type: ignore[union-attr]
                    call["name"], arguments
                )
                steps.append(ToolStep(tool_name=call["name"], arguments=arguments, result=result))
                self.add_tool_result(
                    tool_call_id=call.get("id", "unknown"),
                    result=json.dumps(result, default=str),
                    tool_name=call["name"],
                )

            if len(steps) >= budget:
                break

        self.state = AgentState.IDLE
        self._logger.info("turn_completed", steps=len(steps), dropped_calls=dropped)
        return TurnTranscript(text=final_text, steps=steps, dropped_calls=dropped)
