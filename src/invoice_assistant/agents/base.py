"""Base agent: conversation history and the think/act/observe bookkeeping."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

import structlog

logger = structlog.get_logger(__name__)


class AgentState(str, Enum):
    """Possible states for an agent."""

    IDLE = "idle"
    THINKING = "thinking"
    ACTING = "acting"
    ERROR = "error"


@dataclass
class AgentMessage:
    """A message in the agent's conversation history."""

    role: str  # "user", "assistant", or "tool_result"
    content: str
    tool_calls: list[dict[str, Any]] = field(default_factory=list)
    tool_call_id: str | None = None
    tool_name: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_llm_message(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "content": self.content,
            "tool_calls": self.tool_calls,
            "tool_call_id": self.tool_call_id,
            "tool_name": self.tool_name,
        }


@dataclass
class ToolStep:
    """One executed tool invocation within a turn. Never persisted."""

    tool_name: str
    arguments: dict[str, Any]
    result: dict[str, Any]

    @property
    def failed(self) -> bool:
        return isinstance(self.result, dict) and "error" in self.result


@dataclass
class TurnTranscript:
    """Final model text plus the ordered tool steps of one turn."""

    text: str
    steps: list[ToolStep] = field(default_factory=list)
    dropped_calls: int = 0


class BaseAgent(ABC):
    """Abstract base for LLM agents.

    Subclasses provide the system prompt and tool list; the base keeps the
    per-turn conversation history in the shape the LLM clients expect.
    """

    def __init__(self, agent_id: UUID | None = None, name: str = "Agent"):
        self.id = agent_id or uuid4()
        self.name = name
        self.state = AgentState.IDLE
        self._conversation_history: list[AgentMessage] = []

        self._logger = logger.bind(agent_id=str(self.id), agent_name=self.name)

    @property
    def conversation_history(self) -> list[AgentMessage]:
        """Get the agent's conversation history."""
        return self._conversation_history.copy()

    @abstractmethod
    def _get_system_prompt(self) -> str:
        pass

    @abstractmethod
    def _get_tools(self) -> list[dict[str, Any]]:
        pass

    def add_user_message(self, content: str) -> None:
        self._conversation_history.append(AgentMessage(role="user", content=content))
        self._logger.debug("user_message_added", content_length=len(content))

    def add_assistant_message(
        self, content: str, tool_calls: list[dict[str, Any]] | None = None
    ) -> None:
        self._conversation_history.append(
            AgentMessage(role="assistant", content=content, tool_calls=tool_calls or [])
        )
        self._logger.debug(
            "assistant_message_added",
            content_length=len(content),
            tool_calls=len(tool_calls or []),
        )

    def add_tool_result(self, tool_call_id: str, result: str, tool_name: str | None = None) -> None:
        self._conversation_history.append(
            AgentMessage(
                role="tool_result",
                content=result,
                tool_call_id=tool_call_id,
                tool_name=tool_name,
            )
        )
        self._logger.debug("tool_result_added", tool_call_id=tool_call_id)

    def clear_history(self) -> None:
        self._conversation_history.clear()
        self._logger.debug("history_cleared")

    def _format_messages_for_llm(self) -> list[dict[str, Any]]:
        return [message.to_llm_message() for message in self._conversation_history]

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(id={self.id}, name={self.name}, state={self.state.value})"
