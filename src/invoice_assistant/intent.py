"""Keyword intent classifier for chat turns.

``classify`` is a pure function from user text to a ``TurnPolicy``: whether the
turn is conversational or operational, which tool policy to hand the model, and
how many steps the orchestration loop may take. It is a lexical heuristic;
callers must tolerate misclassification.
"""

import re
from dataclasses import dataclass, field
from enum import Enum

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_CHAINED_STEPS = 5

OPERATIONAL_KEYWORDS: tuple[str, ...] = (
    "invoice",
    "invoices",
    "show",
    "list",
    "get",
    "fetch",
    "display",
    "find",
    "search",
    "unpaid",
    "paid",
    "outstanding",
    "due",
    "overdue",
    "create",
    "update",
    "delete",
    "email",
    "send",
)

CONVERSATIONAL_KEYWORDS: tuple[str, ...] = (
    "hi",
    "hello",
    "hey",
    "how are you",
    "good morning",
    "good afternoon",
    "good evening",
    "thanks",
    "thank you",
    "what can you do",
    "help",
    "capabilities",
)

CHAIN_CONJUNCTIONS: tuple[str, ...] = ("and", "then", "after")

# (first verb, alternatives for the second) pairs that imply two operations
CHAIN_VERB_PAIRS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("create", ("email", "send")),
    ("update", ("send", "email")),
    ("find", ("update",)),
    ("get", ("update", "delete")),
)


class TurnMode(str, Enum):
    CONVERSATIONAL = "conversational"
    OPERATIONAL = "operational"
    UNKNOWN = "unknown"


class ToolPolicy(str, Enum):
    """How the model may use tools on a turn."""

    FORCED = "forced"  # at least one tool call is required
    AUTO = "auto"
    NONE = "none"  # tools are not offered at all


@dataclass(frozen=True)
class TurnPolicy:
    mode: TurnMode
    tool_policy: ToolPolicy
    step_budget: int
    chained: bool = False
    matched: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_conversational(self) -> bool:
        return self.mode == TurnMode.CONVERSATIONAL


def _pattern(phrase: str) -> re.Pattern[str]:
    words = r"\s+".join(re.escape(word) for word in phrase.split())
    return re.compile(rf"\b{words}\b", re.IGNORECASE)


_OPERATIONAL = {keyword: _pattern(keyword) for keyword in OPERATIONAL_KEYWORDS}
_CONVERSATIONAL = {keyword: _pattern(keyword) for keyword in CONVERSATIONAL_KEYWORDS}
_CONJUNCTIONS = [_pattern(word) for word in CHAIN_CONJUNCTIONS]


def _matches(patterns: dict[str, re.Pattern[str]], text: str) -> list[str]:
    return [keyword for keyword, pattern in patterns.items() if pattern.search(text)]


def is_chained(text: str, operational: list[str] | None = None) -> bool:
    """True when the text implies more than one dependent operation."""
    if any(pattern.search(text) for pattern in _CONJUNCTIONS):
        return True
    verbs = set(operational if operational is not None else _matches(_OPERATIONAL, text))
    return any(
        first in verbs and any(second in verbs for second in seconds)
        for first, seconds in CHAIN_VERB_PAIRS
    )


def classify(text: str, max_chained_steps: int = DEFAULT_CHAINED_STEPS) -> TurnPolicy:
    """Classify a user message into a turn policy.

    Operational cues win over conversational ones. A chained operational turn
    gets ``ToolPolicy.AUTO`` and ``max_chained_steps``; a single operation is
    forced with a budget of one. Text matching neither set falls back to auto
    with a budget of one.
    """
    text = text or ""
    operational = _matches(_OPERATIONAL, text)
    conversational = _matches(_CONVERSATIONAL, text)

    if operational:
        if is_chained(text, operational):
            policy = TurnPolicy(
                mode=TurnMode.OPERATIONAL,
                tool_policy=ToolPolicy.AUTO,
                step_budget=max(1, max_chained_steps),
                chained=True,
                matched=tuple(operational),
            )
        else:
            policy = TurnPolicy(
                mode=TurnMode.OPERATIONAL,
                tool_policy=ToolPolicy.FORCED,
                step_budget=1,
                matched=tuple(operational),
            )
    elif conversational:
        policy = TurnPolicy(
            mode=TurnMode.CONVERSATIONAL,
            tool_policy=ToolPolicy.NONE,
            step_budget=1,
            matched=tuple(conversational),
        )
    else:
        policy = TurnPolicy(mode=TurnMode.UNKNOWN, tool_policy=ToolPolicy.AUTO, step_budget=1)

    logger.debug(
        "turn_classified",
        mode=policy.mode.value,
        tool_policy=policy.tool_policy.value,
        step_budget=policy.step_budget,
    )
    return policy
