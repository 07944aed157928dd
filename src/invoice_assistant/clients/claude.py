"""Claude (Anthropic) client with tool use support."""

from typing import Any

import anthropic
import structlog

from invoice_assistant.clients.base import LLMResponse
from invoice_assistant.config import get_settings
from invoice_assistant.intent import ToolPolicy

logger = structlog.get_logger(__name__)


class ClaudeClient:
    """Async client for Anthropic's Messages API."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ):
        settings = get_settings()
        self._api_key = api_key or settings.anthropic_api_key.get_secret_value()
        self._model = model or settings.claude_model
        self._max_tokens = max_tokens or settings.llm_max_tokens
        self._temperature = temperature if temperature is not None else settings.llm_temperature

        self._client: anthropic.AsyncAnthropic | None = None
        self._logger = logger.bind(client="claude", model=self._model)

    def _get_client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(api_key=self._api_key)
        return self._client

    @staticmethod
    def _tool_choice(tool_policy: ToolPolicy) -> dict[str, Any]:
        # One tool call per round; later calls may depend on earlier results
        choice_type = "any" if tool_policy == ToolPolicy.FORCED else "auto"
        return {"type": choice_type, "disable_parallel_tool_use": True}

    def _convert_messages(self, messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Convert conversation history to Anthropic content blocks.

        Consecutive tool results are folded into one user message, as the API
        requires.
        """
        converted: list[dict[str, Any]] = []

        for msg in messages:
            if msg["role"] == "user":
                converted.append({"role": "user", "content": msg["content"]})
            elif msg["role"] == "assistant":
                blocks: list[dict[str, Any]] = []
                if msg.get("content"):
                    blocks.append({"type": "text", "text": msg["content"]})
                for tool_call in msg.get("tool_calls", []):
                    blocks.append({
                        "type": "tool_use",
                        "id": tool_call["id"],
                        "name": tool_call["name"],
                        "input": tool_call["arguments"],
                    })
                converted.append({"role": "assistant", "content": blocks or msg.get("content", "")})
            elif msg["role"] == "tool_result":
                block = {
                    "type": "tool_result",
                    "tool_use_id": msg["tool_call_id"],
                    "content": msg["content"],
                }
                previous = converted[-1] if converted else None
                if (
                    previous
                    and previous["role"] == "user"
                    and isinstance(previous["content"], list)
                ):
                    previous["content"].append(block)
                else:
                    converted.append({"role": "user", "content": [block]})

        return converted

    def _parse_response(self, response: Any) -> LLMResponse:
        texts: list[str] = []
        tool_calls: list[dict[str, Any]] = []

        for block in response.content:
            if block.type == "text":
                texts.append(block.text)
            elif block.type == "tool_use":
                tool_calls.append({
                    "id": block.id,
                    "name": block.name,
                    "arguments": dict(block.input or {}),
                })

        return LLMResponse(
            content="\n".join(text for text in texts if text),
            tool_calls=tool_calls,
            stop_reason=response.stop_reason or "end_turn",
            usage={
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens,
            },
        )

    async def generate(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        tool_policy: ToolPolicy = ToolPolicy.AUTO,
    ) -> LLMResponse:
        """Generate one round from Claude.

        Args:
            system_prompt: Instructions for the assistant.
            messages: Conversation history (user / assistant / tool_result).
            tools: Tool definitions; ignored when ``tool_policy`` is NONE.
            tool_policy: FORCED requires a tool call, AUTO lets the model decide.

        Returns:
            LLMResponse with content, tool calls, and usage info.
        """
        offer_tools = bool(tools) and tool_policy != ToolPolicy.NONE
        self._logger.debug(
            "generating_response",
            message_count=len(messages),
            tool_count=len(tools) if offer_tools and tools else 0,
            tool_policy=tool_policy.value,
        )

        kwargs: dict[str, Any] = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "system": system_prompt,
            "messages": self._convert_messages(messages),
            "temperature": self._temperature,
        }
        if offer_tools and tools:
            kwargs["tools"] = [
                {
                    "name": tool["name"],
                    "description": tool["description"],
                    "input_schema": tool["input_schema"],
                }
                for tool in tools
            ]
            kwargs["tool_choice"] = self._tool_choice(tool_policy)

        try:
            response = await self._get_client().messages.create(**kwargs)
        except anthropic.APIError as e:
            self._logger.error("api_error", error=str(e))
            raise

        parsed = self._parse_response(response)
        self._logger.info(
            "response_generated",
            stop_reason=parsed.stop_reason,
            tool_calls=len(parsed.tool_calls),
            input_tokens=parsed.usage["input_tokens"],
            output_tokens=parsed.usage["output_tokens"],
        )
        return parsed
