"""OpenAI GPT client with function calling support."""

import json
from typing import Any

import openai
import structlog

from invoice_assistant.clients.base import LLMResponse
from invoice_assistant.config import get_settings
from invoice_assistant.intent import ToolPolicy

logger = structlog.get_logger(__name__)

_STOP_REASONS = {
    "stop": "end_turn",
    "tool_calls": "tool_use",
    "length": "max_tokens",
    "content_filter": "content_filter",
}


class OpenAIClient:
    """Async client for OpenAI chat completions.

    Also works with OpenAI-compatible servers via ``base_url``.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ):
        settings = get_settings()
        self._api_key = api_key or settings.openai_api_key.get_secret_value()
        self._base_url = base_url
        self._model = model or settings.gpt_model
        self._max_tokens = max_tokens or settings.llm_max_tokens
        self._temperature = temperature if temperature is not None else settings.llm_temperature

        self._client: openai.AsyncOpenAI | None = None
        self._logger = logger.bind(client="openai", model=self._model)

    def _get_client(self) -> openai.AsyncOpenAI:
        if self._client is None:
            client_kwargs: dict[str, Any] = {"api_key": self._api_key}
            if self._base_url:
                client_kwargs["base_url"] = self._base_url
            self._client = openai.AsyncOpenAI(**client_kwargs)
        return self._client

    @staticmethod
    def _convert_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool["name"],
                    "description": tool["description"],
                    "parameters": tool["input_schema"],
                },
            }
            for tool in tools
        ]

    @staticmethod
    def _convert_messages(
        system_prompt: str, messages: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        converted: list[dict[str, Any]] = [{"role": "system", "content": system_prompt}]

        for msg in messages:
            if msg["role"] == "user":
                converted.append({"role": "user", "content": msg["content"]})
            elif msg["role"] == "assistant":
                assistant: dict[str, Any] = {"role": "assistant", "content": msg.get("content") or None}
                if msg.get("tool_calls"):
                    assistant["tool_calls"] = [
                        {
                            "id": tc["id"],
                            "type": "function",
                            "function": {
                                "name": tc["name"],
                                "arguments": json.dumps(tc["arguments"]),
                            },
                        }
                        for tc in msg["tool_calls"]
                    ]
                converted.append(assistant)
            elif msg["role"] == "tool_result":
                converted.append({
                    "role": "tool",
                    "tool_call_id": msg["tool_call_id"],
                    "content": msg["content"],
                })

        return converted

    def _parse_response(self, response: Any) -> LLMResponse:
        choice = response.choices[0]
        message = choice.message
        tool_calls: list[dict[str, Any]] = []

        for tc in message.tool_calls or []:
            try:
                arguments = json.loads(tc.function.arguments or "{}")
            except json.JSONDecodeError:
                self._logger.warning("tool_arguments_unparseable", tool=tc.function.name)
                arguments = {}
            tool_calls.append({
                "id": tc.id,
                "name": tc.function.name,
                "arguments": arguments if isinstance(arguments, dict) else {},
            })

        return LLMResponse(
            content=message.content or "",
            tool_calls=tool_calls,
            stop_reason=_STOP_REASONS.get(choice.finish_reason or "stop", "end_turn"),
            usage={
                "input_tokens": response.usage.prompt_tokens if response.usage else 0,
                "output_tokens": response.usage.completion_tokens if response.usage else 0,
            },
        )

    async def generate(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        tool_policy: ToolPolicy = ToolPolicy.AUTO,
    ) -> LLMResponse:
        """Generate one round from GPT.

        FORCED maps to ``tool_choice="required"``. Parallel tool calls are
        disabled so chained steps arrive one at a time.
        """
        offer_tools = bool(tools) and tool_policy != ToolPolicy.NONE
        self._logger.debug(
            "generating_response",
            message_count=len(messages),
            tool_count=len(tools) if offer_tools and tools else 0,
            tool_policy=tool_policy.value,
        )

        # GPT-5 and o-series models take max_completion_tokens and a fixed temperature
        is_reasoning_model = self._model.startswith(("gpt-5", "o3", "o4"))
        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": self._convert_messages(system_prompt, messages),
        }
        if is_reasoning_model:
            kwargs["max_completion_tokens"] = self._max_tokens
        else:
            kwargs["max_tokens"] = self._max_tokens
            kwargs["temperature"] = self._temperature

        if offer_tools and tools:
            kwargs["tools"] = self._convert_tools(tools)
            kwargs["tool_choice"] = "required" if tool_policy == ToolPolicy.FORCED else "auto"
            kwargs["parallel_tool_calls"] = False

        try:
            response = await self._get_client().chat.completions.create(**kwargs)
        except openai.APIError as e:
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
