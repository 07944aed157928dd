"""Tests for the invoice agent's orchestration loop."""

import json

import pytest

from invoice_assistant.agents import InvoiceAgent
from invoice_assistant.clients.base import LLMResponse
from invoice_assistant.intent import ToolPolicy, classify
from invoice_assistant.tools.executor import ToolExecutor

from conftest import ScriptedLLM, tool_call


@pytest.fixture
def executor(gateway):
    return ToolExecutor(gateway, listing_cap=1000)


class TestRunTurn:
    @pytest.mark.asyncio
    async def test_conversational_turn_offers_no_tools(self, executor):
        llm = ScriptedLLM([LLMResponse(content="Hello! I can help with your invoices.")])
        agent = InvoiceAgent(tool_executor=executor, llm_client=llm)

        transcript = await agent.run_turn("hello, how are you?", classify("hello, how are you?"))

        assert transcript.steps == []
        assert transcript.text == "Hello! I can help with your invoices."
        assert llm.calls[0]["tools"] is None
        assert llm.calls[0]["tool_policy"] == ToolPolicy.NONE

    @pytest.mark.asyncio
    async def test_tool_calls_ignored_when_tools_not_offered(self, executor, gateway):
        llm = ScriptedLLM([
            LLMResponse(content="Hi!", tool_calls=[tool_call("list_invoices", {})]),
        ])
        agent = InvoiceAgent(tool_executor=executor, llm_client=llm)

        transcript = await agent.run_turn("hello", classify("hello"))

        assert transcript.steps == []
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_single_forced_list(self, executor):
        llm = ScriptedLLM([LLMResponse(content="", tool_calls=[tool_call("list_invoices", {})])])
        agent = InvoiceAgent(tool_executor=executor, llm_client=llm)

        transcript = await agent.run_turn("show me all invoices", classify("show me all invoices"))

        assert [step.tool_name for step in transcript.steps] == ["list_invoices"]
        assert transcript.steps[0].arguments == {}
        assert transcript.steps[0].result["count"] == 4
        # budget of one: no follow-up generation round
        assert len(llm.calls) == 1
        assert llm.calls[0]["tool_policy"] == ToolPolicy.FORCED

    @pytest.mark.asyncio
    async def test_budget_drops_extra_calls(self, executor, gateway):
        llm = ScriptedLLM([
            LLMResponse(
                content="",
                tool_calls=[
                    tool_call("get_invoice", {"invoice_id": "130"}, "a"),
                    tool_call("delete_invoice", {"invoice_id": "130"}, "b"),
                ],
            )
        ])
        agent = InvoiceAgent(tool_executor=executor, llm_client=llm)

        transcript = await agent.run_turn("show invoice 130", classify("show invoice 130"))

        assert [step.tool_name for step in transcript.steps] == ["get_invoice"]
        assert transcript.dropped_calls == 1
        assert gateway.called("delete_invoice") == []

    @pytest.mark.asyncio
    async def test_chained_create_then_send_uses_created_id(self, executor, gateway):
        message = "create an invoice for $500 for Amy's Bird Sanctuary and email it to test@example.com"
        llm = ScriptedLLM([
            LLMResponse(
                content="",
                tool_calls=[
                    tool_call(
                        "create_invoice",
                        {"customer_name": "Amy's Bird Sanctuary", "amount": 500},
                        "call_1",
                    )
                ],
            ),
            LLMResponse(
                content="",
                tool_calls=[
                    tool_call("send_invoice", {"invoice_id": "200", "email": "test@example.com"}, "call_2")
                ],
            ),
            LLMResponse(content="Created and emailed invoice #1100."),
        ])
        agent = InvoiceAgent(tool_executor=executor, llm_client=llm)

        transcript = await agent.run_turn(message, classify(message))

        assert [step.tool_name for step in transcript.steps] == ["create_invoice", "send_invoice"]
        created_id = transcript.steps[0].result["invoice"]["id"]
        assert transcript.steps[1].arguments["invoice_id"] == created_id
        assert gateway.sent == [("200", "test@example.com")]
        assert transcript.text == "Created and emailed invoice #1100."

        # The second round saw the first tool's result, tagged with its call id
        second_round = llm.calls[1]["messages"]
        tool_result = second_round[-1]
        assert tool_result["role"] == "tool_result"
        assert tool_result["tool_call_id"] == "call_1"
        assert tool_result["tool_name"] == "create_invoice"
        assert json.loads(tool_result["content"])["invoice"]["id"] == created_id
        assert llm.calls[1]["tool_policy"] == ToolPolicy.AUTO

    @pytest.mark.asyncio
    async def test_failed_step_does_not_abort_turn(self, executor):
        message = "get invoice 999 and then list invoices"
        llm = ScriptedLLM([
            LLMResponse(content="", tool_calls=[tool_call("get_invoice", {"invoice_id": "999"})]),
            LLMResponse(content="", tool_calls=[tool_call("list_invoices", {})]),
            LLMResponse(content="Invoice 999 does not exist; here are all invoices."),
        ])
        agent = InvoiceAgent(tool_executor=executor, llm_client=llm)

        transcript = await agent.run_turn(message, classify(message))

        assert transcript.steps[0].failed
        assert not transcript.steps[1].failed

    @pytest.mark.asyncio
    async def test_history_is_reset_per_turn(self, executor):
        llm = ScriptedLLM([LLMResponse(content="Hi"), LLMResponse(content="Hello again")])
        agent = InvoiceAgent(tool_executor=executor, llm_client=llm)

        await agent.run_turn("hi", classify("hi"))
        await agent.run_turn("hello", classify("hello"))

        assert len(llm.calls[1]["messages"]) == 1
        assert llm.calls[1]["messages"][0]["content"] == "hello"

    @pytest.mark.asyncio
    async def test_without_executor_no_tools_are_offered(self):
        llm = ScriptedLLM([LLMResponse(content="Please connect QuickBooks first.")])
        agent = InvoiceAgent(tool_executor=None, llm_client=llm)

        transcript = await agent.run_turn("weather?", classify("weather?"))

        assert transcript.steps == []
        assert llm.calls[0]["tools"] is None
