"""Google Gemini client with function calling support (google-genai SDK)."""

from collections.abc import Callable
from typing import Any, cast

import structlog
from google import genai
from google.genai import types

from invoice_assistant.clients.base import LLMResponse
from invoice_assistant.config import get_settings
from invoice_assistant.intent import ToolPolicy

logger = structlog.get_logger(__name__)

_SCHEMA_TYPES = {
    "string": "STRING",
    "integer": "INTEGER",
    "number": "NUMBER",
    "boolean": "BOOLEAN",
    "array": "ARRAY",
    "object": "OBJECT",
}

_STOP_REASONS = {
    "STOP": "end_turn",
    "MAX_TOKENS": "max_tokens",
    "SAFETY": "content_filter",
    "RECITATION": "content_filter",
}


def to_gemini_schema(schema: dict[str, Any]) -> dict[str, Any]:
    """Convert a JSON Schema fragment into Gemini's OpenAPI subset."""
    converted: dict[str, Any] = {}
    if "type" in schema:
        converted["type"] = _SCHEMA_TYPES.get(schema["type"], "STRING")
    for key in ("description", "enum", "required"):
        if key in schema:
            converted[key] = schema[key]
    if "properties" in schema:
        converted["properties"] = {
            name: to_gemini_schema(prop) for name, prop in schema["properties"].items()
        }
    if "items" in schema:
        converted["items"] = to_gemini_schema(schema["items"])
    return converted


class GeminiClient:
    """Async client for Gemini models."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ):
        settings = get_settings()
        self._api_key = api_key or settings.google_api_key.get_secret_value()
        self._model_name = model or settings.gemini_model
        self._max_tokens = max_tokens or settings.llm_max_tokens
        self._temperature = temperature if temperature is not None else settings.llm_temperature

        self._client: genai.Client | None = None
        self._logger = logger.bind(client="gemini", model=self._model_name)

    def _get_client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(api_key=self._api_key)
        return self._client

    @staticmethod
    def _convert_tools(tools: list[dict[str, Any]]) -> list[types.Tool]:
        declarations = [
            types.FunctionDeclaration(
                name=tool["name"],
                description=tool["description"],
                parameters=types.Schema.model_validate(to_gemini_schema(tool["input_schema"])),
            )
            for tool in tools
        ]
        return [types.Tool(function_declarations=declarations)]

    @staticmethod
    def _convert_messages(messages: list[dict[str, Any]]) -> list[types.Content]:
        contents: list[types.Content] = []

        for msg in messages:
            if msg["role"] == "user":
                contents.append(types.Content(role="user", parts=[types.Part(text=msg["content"])]))
            elif msg["role"] == "assistant":
                parts = []
                if msg.get("content"):
                    parts.append(types.Part(text=msg["content"]))
                for tool_call in msg.get("tool_calls", []):
                    parts.append(
                        types.Part(
                            function_call=types.FunctionCall(
                                name=tool_call["name"], args=tool_call["arguments"]
                            )
                        )
                    )
                contents.append(types.Content(role="model", parts=parts))
            elif msg["role"] == "tool_result":
                contents.append(
                    types.Content(
                        role="user",
                        parts=[
                            types.Part(
                                function_response=types.FunctionResponse(
                                    name=msg.get("tool_name", "function"),
                                    response={"result": msg["content"]},
                                )
                            )
                        ],
                    )
                )

        return contents

    def _parse_response(self, response: Any) -> LLMResponse:
        texts: list[str] = []
        tool_calls: list[dict[str, Any]] = []
        stop_reason = "end_turn"

        if response.candidates:
            candidate = response.candidates[0]
            parts = candidate.content.parts if candidate.content and candidate.content.parts else []
            for part in parts:
                if getattr(part, "function_call", None):
                    fc = part.function_call
                    tool_calls.append({
                        "id": f"call_{fc.name}_{len(tool_calls)}",
                        "name": fc.name,
                        "arguments": dict(fc.args) if fc.args else {},
                    })
                elif getattr(part, "text", None):
                    texts.append(part.text)

            finish_reason = getattr(candidate.finish_reason, "name", candidate.finish_reason)
            stop_reason = _STOP_REASONS.get(str(finish_reason), "end_turn")
            if tool_calls:
                stop_reason = "tool_use"

        usage = {"input_tokens": 0, "output_tokens": 0}
        metadata = getattr(response, "usage_metadata", None)
        if metadata:
            usage["input_tokens"] = getattr(metadata, "prompt_token_count", 0) or 0
            usage["output_tokens"] = getattr(metadata, "candidates_token_count", 0) or 0

        return LLMResponse(
            content="\n".join(texts),
            tool_calls=tool_calls,
            stop_reason=stop_reason,
            usage=usage,
        )

    async def generate(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        tool_policy: ToolPolicy = ToolPolicy.AUTO,
    ) -> LLMResponse:
        """Generate one round from Gemini. FORCED maps to function calling mode ANY."""
        offer_tools = bool(tools) and tool_policy != ToolPolicy.NONE
        self._logger.debug(
            "generating_response",
            message_count=len(messages),
            tool_count=len(tools) if offer_tools and tools else 0,
            tool_policy=tool_policy.value,
        )

        config = types.GenerateContentConfig(
            max_output_tokens=self._max_tokens,
            temperature=self._temperature,
            system_instruction=system_prompt,
        )
        if offer_tools and tools:
            config.tools = cast(
                list[types.Tool | Callable[..., Any]], self._convert_tools(tools)
            )
            mode = (
                types.FunctionCallingConfigMode.ANY
                if tool_policy == ToolPolicy.FORCED
                else types.FunctionCallingConfigMode.AUTO
            )
            config.tool_config = types.ToolConfig(
                function_calling_config=types.FunctionCallingConfig(mode=mode)
            )
            config.automatic_function_calling = types.AutomaticFunctionCallingConfig(disable=True)

        contents = cast(list[Any], self._convert_messages(messages))

        try:
            response = await self._get_client().aio.models.generate_content(
                model=self._model_name,
                contents=contents,
                config=config,
            )
        except Exception as e:
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
