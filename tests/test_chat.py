"""End-to-end tests for a chat turn: classify, orchestrate, normalize."""

import asyncio

import pytest

from invoice_assistant.chat import TurnTimeoutError, _abandoned_turns, run_chat_turn, wait_for_turn
from invoice_assistant.clients.base import LLMResponse
from invoice_assistant.models import Invoice
from invoice_assistant.normalizer import AUTH_REQUIRED_MESSAGE, DisplayState, TurnStatus
from invoice_assistant.tools.results import ErrorKind

from conftest import ScriptedLLM, sample_records, tool_call


class SlowLLM:
    """Answers after a delay, for exercising the turn timeout."""

    def __init__(self, delay: float):
        self.delay = delay
        self.finished = False

    async def generate(self, system_prompt, messages, tools=None, tool_policy=None):
        await asyncio.sleep(self.delay)
        self.finished = True
        return LLMResponse(content="Finally.")


class ExplodingLLM:
    async def generate(self, system_prompt, messages, tools=None, tool_policy=None):
        raise RuntimeError("provider exploded")


@pytest.fixture
def displayed():
    records = [Invoice.from_quickbooks(record).to_display() for record in sample_records()]
    return DisplayState.from_records(records)


def factory_for(gateway):
    return lambda credentials: gateway


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_operation_without_credentials_requires_auth(self, gateway):
        llm = ScriptedLLM([])

        result = await run_chat_turn(
            "show me all invoices", None, llm_client=llm, gateway_factory=factory_for(gateway)
        )

        assert result.status == TurnStatus.AUTH_REQUIRED
        assert llm.calls == []
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_conversation_without_credentials_still_answers(self):
        llm = ScriptedLLM([LLMResponse(content="Hi! Connect QuickBooks to get started.")])

        result = await run_chat_turn("hello, how are you?", None, llm_client=llm)

        assert result.status == TurnStatus.OK
        assert result.text == "Hi! Connect QuickBooks to get started."
        assert llm.calls[0]["tools"] is None

    @pytest.mark.asyncio
    async def test_token_rejected_mid_turn_requires_auth(self, credentials, gateway, displayed):
        gateway.fail("query_invoices", ErrorKind.NOT_AUTHENTICATED, "AuthenticationFailed")
        llm = ScriptedLLM([LLMResponse(content="", tool_calls=[tool_call("list_invoices", {})])])
        state = displayed

        result = await run_chat_turn(
            "show me all invoices",
            credentials,
            state=state,
            llm_client=llm,
            gateway_factory=factory_for(gateway),
        )

        assert result.status == TurnStatus.AUTH_REQUIRED
        assert result.text == AUTH_REQUIRED_MESSAGE
        assert len(gateway.called("query_invoices")) == 1
        assert len(result.state.invoices) == 4
        assert gateway.closed is True


class TestTimeout:
    @pytest.mark.asyncio
    async def test_slow_turn_times_out_without_cancelling(self, credentials, gateway):
        llm = SlowLLM(delay=0.2)

        result = await run_chat_turn(
            "hello",
            credentials,
            llm_client=llm,
            gateway_factory=factory_for(gateway),
            timeout=0.01,
        )

        assert result.status == TurnStatus.TIMEOUT
        assert result.text.startswith("Request timed out.")
        pending = list(_abandoned_turns)
        assert pending
        await asyncio.gather(*pending)
        assert llm.finished is True
        assert not _abandoned_turns

    @pytest.mark.asyncio
    async def test_wait_for_turn_returns_value(self):
        async def quick():
            return 42

        task = asyncio.ensure_future(quick())

        assert await wait_for_turn(task, 1) == 42

    @pytest.mark.asyncio
    async def test_wait_for_turn_raises_on_expiry(self):
        task = asyncio.ensure_future(asyncio.sleep(0.05))

        with pytest.raises(TurnTimeoutError):
            await wait_for_turn(task, 0.001)
        await task


class TestTurns:
    @pytest.mark.asyncio
    async def test_conversational_turn_invokes_no_tools(self, credentials, gateway):
        llm = ScriptedLLM([LLMResponse(content="I'm doing well! How can I help with your invoices?")])

        result = await run_chat_turn(
            "hello, how are you?", credentials, llm_client=llm, gateway_factory=factory_for(gateway)
        )

        assert result.steps == []
        assert result.text
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_show_all_invoices(self, credentials, gateway):
        llm = ScriptedLLM([LLMResponse(content="", tool_calls=[tool_call("list_invoices", {})])])

        result = await run_chat_turn(
            "show me all invoices", credentials, llm_client=llm, gateway_factory=factory_for(gateway)
        )

        assert [step.tool_name for step in result.steps] == ["list_invoices"]
        assert len(gateway.called("query_invoices")) == 1
        assert "4" in result.text
        assert len(result.state.invoices) == 4
        assert gateway.closed is True

    @pytest.mark.asyncio
    async def test_create_then_email(self, credentials, gateway):
        message = "create an invoice for $500 for Amy's Bird Sanctuary and email it to test@example.com"
        llm = ScriptedLLM([
            LLMResponse(
                content="",
                tool_calls=[tool_call("create_invoice", {"customer_name": "Amy's Bird Sanctuary", "amount": 500})],
            ),
            LLMResponse(
                content="",
                tool_calls=[tool_call("send_invoice", {"invoice_id": "1100", "email": "test@example.com"})],
            ),
            LLMResponse(content="All done."),
        ])

        result = await run_chat_turn(message, credentials, llm_client=llm, gateway_factory=factory_for(gateway))

        assert [step.tool_name for step in result.steps] == ["create_invoice", "send_invoice"]
        assert gateway.sent == [("200", "test@example.com")]
        assert result.is_multi_step is True
        assert result.text.startswith("Completed 2 steps:")
        assert result.state.selected_invoice_id == "200"
        assert result.to_dict()["completedSteps"] == 2

    @pytest.mark.asyncio
    async def test_delete_then_list_excludes_invoice(self, credentials, gateway, displayed):
        delete_llm = ScriptedLLM([
            LLMResponse(content="", tool_calls=[tool_call("delete_invoice", {"invoice_id": "#1037"})])
        ])

        deleted = await run_chat_turn(
            "delete invoice #1037",
            credentials,
            state=displayed,
            llm_client=delete_llm,
            gateway_factory=factory_for(gateway),
        )

        assert deleted.text == "Invoice #1037 has been successfully deleted."
        assert "130" not in [inv.id for inv in deleted.state.invoices]

        list_llm = ScriptedLLM([LLMResponse(content="", tool_calls=[tool_call("list_invoices", {})])])
        listed = await run_chat_turn(
            "list invoices", credentials, llm_client=list_llm, gateway_factory=factory_for(gateway)
        )

        assert "130" not in [inv.id for inv in listed.state.invoices]

    @pytest.mark.asyncio
    async def test_missing_invoice_is_a_chat_message(self, credentials, gateway):
        llm = ScriptedLLM([LLMResponse(content="", tool_calls=[tool_call("get_invoice", {"invoice_id": "13"})])])

        result = await run_chat_turn(
            "show invoice 13", credentials, llm_client=llm, gateway_factory=factory_for(gateway)
        )

        assert result.status == TurnStatus.ERROR
        assert result.text.startswith("Invoice #13 was not found.")

    @pytest.mark.asyncio
    async def test_malformed_email_never_reaches_provider(self, credentials, gateway):
        llm = ScriptedLLM([
            LLMResponse(
                content="",
                tool_calls=[tool_call("send_invoice", {"invoice_id": "1037", "email": "not-an-email"})],
            )
        ])

        result = await run_chat_turn(
            "email invoice 1037 to not-an-email", credentials, llm_client=llm, gateway_factory=factory_for(gateway)
        )

        assert gateway.calls == []
        assert result.text == "Failed to email invoice: Invalid email address: not-an-email"

    @pytest.mark.asyncio
    async def test_unexpected_failure_propagates(self, credentials, gateway):
        with pytest.raises(RuntimeError, match="provider exploded"):
            await run_chat_turn(
                "show me all invoices",
                credentials,
                llm_client=ExplodingLLM(),
                gateway_factory=factory_for(gateway),
            )
