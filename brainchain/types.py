"""
Shared type definitions for brainchain.

Holds the per-request decision objects (Plan, Vote, ReasoningState), the
request/response values that travel through the stage chain, and the
error hierarchy.
"""

from __future__ import annotations

import copy
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from statistics import fmean
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MessageRole(str, Enum):
    """Role in conversation."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass
class Message:
    """A single message in conversation history."""

    role: MessageRole
    content: str
    timestamp: float | None = None
    metadata: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, str]:
        """Convert to the provider message format."""
        return {"role": self.role.value, "content": self.content}


class Intent(str, Enum):
    """What the user is asking for."""

    DEBUG = "DEBUG"
    REFACTOR = "REFACTOR"
    IMPLEMENTATION = "IMPLEMENTATION"
    EXPLANATION = "EXPLANATION"
    TESTING = "TESTING"
    CALCULATION = "CALCULATION"
    GENERAL = "GENERAL"
    SIMPLE = "SIMPLE"


class Strategy(str, Enum):
    """How much reasoning effort a request gets."""

    FAST_RECALL = "FAST_RECALL"
    BALANCED = "BALANCED"
    SLOW_REASONING = "SLOW_REASONING"


class StageId(str, Enum):
    """Stage identifiers, declared in canonical chain order."""

    PLAN_BUILDER = "plan_builder"
    TONE_ADAPTER = "tone_adapter"
    CONTEXT_ENRICHER = "context_enricher"
    TOOL_POLICY = "tool_policy"
    QUALITY_REFINER = "quality_refiner"


ALL_STAGES: tuple[StageId, ...] = tuple(StageId)

FAST_PATH_STAGES: tuple[StageId, ...] = (
    StageId.PLAN_BUILDER,
    StageId.TOOL_POLICY,
    StageId.TONE_ADAPTER,
)


@dataclass(frozen=True)
class Plan:
    """
    The single per-request decision object.

    Produced once by the planner and read by every later stage. Only the
    tool policy stage derives a new Plan carrying ``approved_tools``.
    """

    intent: Intent
    complexity: int
    ambiguity: int
    strategy: Strategy
    required_tools: tuple[str, ...] = ()
    selected_stages: tuple[StageId, ...] = ALL_STAGES
    confidence: float = 0.5
    user_query: str = ""
    focus_area: str = "general"
    approved_tools: tuple[str, ...] | None = None
    created_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        if not 1 <= self.complexity <= 10:
            raise ValueError(f"complexity must be in 1..10, got {self.complexity}")
        if not 1 <= self.ambiguity <= 10:
            raise ValueError(f"ambiguity must be in 1..10, got {self.ambiguity}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be in 0..1, got {self.confidence}")
        # Keep first occurrence order
        object.__setattr__(self, "required_tools", tuple(dict.fromkeys(self.required_tools)))

    @property
    def is_simple(self) -> bool:
        return self.intent == Intent.SIMPLE

    def uses_stage(self, stage: StageId) -> bool:
        return stage in self.selected_stages

    def with_approved_tools(self, tools: tuple[str, ...] | list[str]) -> Plan:
        """Return a copy of this plan carrying the approved tool set."""
        return replace(self, approved_tools=tuple(tools))

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "intent": self.intent.value,
            "complexity": self.complexity,
            "ambiguity": self.ambiguity,
            "strategy": self.strategy.value,
            "required_tools": list(self.required_tools),
            "selected_stages": [s.value for s in self.selected_stages],
            "confidence": self.confidence,
            "user_query": self.user_query,
            "focus_area": self.focus_area,
            "approved_tools": list(self.approved_tools) if self.approved_tools is not None else None,
        }


class Vote(BaseModel):
    """A stage's confidence that tools are needed for this request."""

    model_config = ConfigDict(frozen=True)

    source: str
    score: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""
    category: str = "TOOL_REQUIRED"
    timestamp: float = Field(default_factory=time.time)

    @property
    def strength(self) -> str:
        if self.score < 0.33:
            return "WEAK"
        if self.score < 0.67:
            return "MEDIUM"
        return "STRONG"

    def summary(self) -> str:
        return f"{self.source}={self.score:.2f} ({self.strength})"


@dataclass
class ReasoningState:
    """
    Accumulated tool reasoning for one request.

    Votes are append-only: ``add_vote`` replaces the tuple, existing
    votes are never edited.
    """

    trace_id: str
    user_query: str = ""
    suggested_tools: list[str] = field(default_factory=list)
    approved_tools: list[str] | None = None
    denied_tools: dict[str, str] = field(default_factory=dict)
    votes: tuple[Vote, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)

    def add_vote(self, vote: Vote) -> None:
        self.votes = (*self.votes, vote)

    def suggest_tools(self, tools: list[str]) -> None:
        for tool in tools:
            if tool not in self.suggested_tools:
                self.suggested_tools.append(tool)

    def approve_tools(self, tools: list[str]) -> None:
        self.approved_tools = list(tools)

    def deny_tool(self, tool: str, reason: str) -> None:
        self.denied_tools[tool] = reason

    def is_tool_approved(self, tool: str) -> bool:
        return self.approved_tools is not None and tool in self.approved_tools

    def average_vote_score(self) -> float | None:
        if not self.votes:
            return None
        return fmean(v.score for v in self.votes)

    def snapshot(self) -> ReasoningState:
        """Deep copy used to roll back a failed stage."""
        return copy.deepcopy(self)

    def restore(self, snapshot: ReasoningState) -> None:
        """Reset this state in place to a previous snapshot."""
        self.user_query = snapshot.user_query
        self.suggested_tools = list(snapshot.suggested_tools)
        self.approved_tools = (
            list(snapshot.approved_tools) if snapshot.approved_tools is not None else None
        )
        self.denied_tools = dict(snapshot.denied_tools)
        self.votes = snapshot.votes
        self.metadata = copy.deepcopy(snapshot.metadata)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "trace_id": self.trace_id,
            "user_query": self.user_query,
            "suggested_tools": list(self.suggested_tools),
            "approved_tools": self.approved_tools,
            "denied_tools": dict(self.denied_tools),
            "votes": [v.model_dump() for v in self.votes],
            "average_vote_score": self.average_vote_score(),
        }


@dataclass(frozen=True)
class ToolPermissions:
    """The exact set of tools the model may call for this request."""

    enabled: bool = True
    allowed: tuple[str, ...] = ()
    denied: tuple[str, ...] = ()

    @classmethod
    def disabled(cls, denied: tuple[str, ...] = ()) -> ToolPermissions:
        return cls(enabled=False, allowed=(), denied=denied)

    def allows(self, tool: str) -> bool:
        return self.enabled and tool in self.allowed


@dataclass
class ChatRequest:
    """A request as it travels down the stage chain."""

    user_text: str
    user_id: str = "anonymous"
    conversation_id: str = ""
    system_prompt: str = ""
    context_blocks: list[str] = field(default_factory=list)
    history: list[Message] = field(default_factory=list)
    tool_permissions: ToolPermissions | None = None
    guidance: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def with_guidance(self, note: str) -> ChatRequest:
        """Return a deep copy with an extra guidance note."""
        clone = copy.deepcopy(self)
        clone.guidance.append(note)
        return clone

    def render_prompt(self) -> str:
        """Build the prompt text sent to the model."""
        sections: list[str] = []
        if self.system_prompt:
            sections.append(self.system_prompt)
        for block in self.context_blocks:
            sections.append(block)
        for note in self.guidance:
            sections.append(note)
        sections.append(f"User: {self.user_text}")
        return "\n\n".join(sections)


class QualityEvaluation(BaseModel):
    """Multi-criteria score for one answer, each criterion on a 1..5 scale."""

    clarity: float = 3.0
    relevance: float = 3.0
    factual: float = 3.0
    helpfulness: float = 3.0
    overall: float | None = None
    issues: list[str] = Field(default_factory=list)
    source: str = "unknown"

    @field_validator("clarity", "relevance", "factual", "helpfulness", "overall", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> Any:
        if value is None:
            return None
        return max(1.0, min(5.0, float(value)))

    @property
    def score(self) -> float:
        """Evaluator-supplied overall, else the mean of the criteria."""
        if self.overall is not None:
            return self.overall
        return fmean([self.clarity, self.relevance, self.factual, self.helpfulness])

    @property
    def verdict(self) -> str:
        score = self.score
        if score >= 4.5:
            return "EXCELLENT"
        if score >= 3.5:
            return "GOOD"
        if score >= 3.0:
            return "ACCEPTABLE"
        return "NEEDS_IMPROVEMENT"

    @classmethod
    def neutral(cls, reason: str = "evaluation unavailable") -> QualityEvaluation:
        return cls(overall=3.0, issues=[reason], source="fallback")


@dataclass
class ChatResponse:
    """The answer as it travels back up the stage chain."""

    text: str
    trace_id: str = ""
    intent: str | None = None
    tools_used: list[str] = field(default_factory=list)
    evaluation: QualityEvaluation | None = None
    refinement_attempts: int = 0
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "text": self.text,
            "trace_id": self.trace_id,
            "intent": self.intent,
            "tools_used": list(self.tools_used),
            "evaluation": self.evaluation.model_dump() if self.evaluation else None,
            "refinement_attempts": self.refinement_attempts,
            "error": self.error,
        }


# brainchain error classes


class BrainChainError(Exception):
    """Base class for brainchain errors."""

    pass


class ModelInvocationError(BrainChainError):
    """The model call failed."""

    def __init__(self, message: str, trace_id: str = ""):
        self.trace_id = trace_id
        super().__init__(message)


class ModelTimeoutError(ModelInvocationError):
    """The model call did not finish within the request deadline."""

    def __init__(self, timeout: float, trace_id: str = ""):
        self.timeout = timeout
        super().__init__(f"Model call exceeded {timeout:.1f}s", trace_id=trace_id)


class EvaluationError(BrainChainError):
    """An answer could not be scored."""

    pass


__all__ = [
    "ALL_STAGES",
    "BrainChainError",
    "ChatRequest",
    "ChatResponse",
    "EvaluationError",
    "FAST_PATH_STAGES",
    "Intent",
    "Message",
    "MessageRole",
    "ModelInvocationError",
    "ModelTimeoutError",
    "Plan",
    "QualityEvaluation",
    "ReasoningState",
    "StageId",
    "Strategy",
    "ToolPermissions",
    "Vote",
]
