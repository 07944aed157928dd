"""Response shape shared by the LLM clients."""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class LLMResponse:
    """Provider-neutral result of one generation round.

    ``tool_calls`` entries are ``{"id", "name", "arguments"}`` dicts with the
    arguments already decoded.
    """

    content: str
    tool_calls: list[dict[str, Any]] = field(default_factory=list)
    stop_reason: str = "end_turn"
    usage: dict[str, int] = field(
        default_factory=lambda: {"input_tokens": 0, "output_tokens": 0}
    )

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)
