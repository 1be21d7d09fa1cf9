"""
Pytest configuration and fixtures for brainchain tests.
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest

# Add project root to path so we can import the brainchain package
sys.path.insert(0, str(Path(__file__).parent.parent))

from brainchain.audit import AuditRecord
from brainchain.context import RequestContext
from brainchain.invoker import ModelReply
from brainchain.types import (
    ALL_STAGES,
    ChatRequest,
    ChatResponse,
    Intent,
    Plan,
    QualityEvaluation,
    Strategy,
)
from brainchain.working_memory import WorkingMemoryStore


class FakeInvoker:
    """ModelInvoker that replays canned replies and records every call."""

    def __init__(
        self,
        replies: list[str] | None = None,
        tools_used: list[str] | None = None,
        delay: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        self.replies = list(replies or ["Here is the answer."])
        self.tools_used = list(tools_used or [])
        self.delay = delay
        self.error = error
        self.calls: list[dict] = []

    async def generate(self, prompt, tool_permissions, conversation_history):
        self.calls.append(
            {
                "prompt": prompt,
                "tool_permissions": tool_permissions,
                "history": list(conversation_history),
            }
        )
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        text = self.replies[min(len(self.calls), len(self.replies)) - 1]
        return ModelReply(text=text, tools_used=list(self.tools_used), model="fake-model")


class ScriptedEvaluator:
    """Evaluator returning a fixed sequence of overall scores; repeats the last."""

    def __init__(self, *scores: float, error: Exception | None = None, delay: float = 0.0) -> None:
        self.scores = list(scores or (4.0,))
        self.error = error
        self.delay = delay
        self.calls: list[tuple[str, str]] = []

    async def evaluate(self, question: str, answer: str) -> QualityEvaluation:
        self.calls.append((question, answer))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        score = self.scores[min(len(self.calls), len(self.scores)) - 1]
        return QualityEvaluation(
            overall=score, issues=[f"issue after call {len(self.calls)}"], source="scripted"
        )


class RecordingSink:
    """AnalyticsSink that keeps every record in memory."""

    def __init__(self) -> None:
        self.records: list[AuditRecord] = []

    def emit(self, record: AuditRecord) -> None:
        self.records.append(record)

    def events(self) -> list[str]:
        return [r.event for r in self.records]


class RecordingTerminal:
    """Terminal that answers with numbered replies and records requests."""

    def __init__(self, error_factory=None) -> None:
        self.requests: list[ChatRequest] = []
        self.errors: list[Exception] = []
        self.error_factory = error_factory

    async def __call__(self, request: ChatRequest, ctx: RequestContext) -> ChatResponse:
        self.requests.append(request)
        if self.error_factory is not None:
            error = self.error_factory()
            self.errors.append(error)
            raise error
        return ChatResponse(text=f"answer {len(self.requests)}", trace_id=ctx.trace_id)


def make_plan(**overrides) -> Plan:
    values = dict(
        intent=Intent.EXPLANATION,
        complexity=6,
        ambiguity=2,
        strategy=Strategy.BALANCED,
        required_tools=(),
        selected_stages=ALL_STAGES,
        confidence=0.7,
        user_query="explain closures",
    )
    values.update(overrides)
    return Plan(**values)


@pytest.fixture
def fake_invoker():
    """Provide a FakeInvoker with a single default reply."""
    return FakeInvoker()


@pytest.fixture
def invoker_factory():
    """Provide the FakeInvoker class for custom replies or failures."""
    return FakeInvoker


@pytest.fixture
def evaluator_factory():
    """Provide the ScriptedEvaluator class."""
    return ScriptedEvaluator


@pytest.fixture
def recording_sink():
    return RecordingSink()


@pytest.fixture
def terminal_factory():
    return RecordingTerminal


@pytest.fixture
def plan_factory():
    """Build Plans with sensible defaults and keyword overrides."""
    return make_plan


@pytest.fixture
def memory():
    """Provide an empty working memory store."""
    return WorkingMemoryStore()


@pytest.fixture
def ctx():
    """Provide a request context for user-1 with no deadline."""
    return RequestContext.create("user-1", "conv-1")


@pytest.fixture
def request_factory():
    def build(text: str = "explain closures", **kwargs) -> ChatRequest:
        kwargs.setdefault("user_id", "user-1")
        kwargs.setdefault("conversation_id", "conv-1")
        return ChatRequest(user_text=text, **kwargs)

    return build


# Markers
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "hypothesis: property-based tests"
    )
    config.addinivalue_line(
        "markers", "slow: tests that take >1s"
    )
