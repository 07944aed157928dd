"""Agents that drive LLM tool calling for the invoice assistant."""

from invoice_assistant.agents.base import AgentMessage, AgentState, BaseAgent, ToolStep, TurnTranscript
from invoice_assistant.agents.invoice_agent import InvoiceAgent

__all__ = [
    "AgentMessage",
    "AgentState",
    "BaseAgent",
    "InvoiceAgent",
    "ToolStep",
    "TurnTranscript",
]
