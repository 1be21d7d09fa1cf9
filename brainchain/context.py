"""
Per-request context passed explicitly to every stage.

Nothing request-scoped lives at module level: the Plan, the
ReasoningState, the deadline and the cancellation token all hang off a
RequestContext created at the entry point.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .cancellation import CancellationToken
from .types import Plan, ReasoningState

DEFERRED_OUTPUTS_KEY = "deferred_stage_outputs"

if TYPE_CHECKING:
    from .pipeline import PipelineTelemetry


def new_trace_id() -> str:
    """Short correlation id carried by every log line of a request."""
    return uuid.uuid4().hex[:12]


@dataclass
class RequestContext:
    """Mutable per-request state shared by the stages of one chain run."""

    trace_id: str = field(default_factory=new_trace_id)
    user_id: str = "anonymous"
    conversation_id: str = ""
    plan: Plan | None = None
    state: ReasoningState | None = None
    deadline: float | None = None
    cancellation_token: CancellationToken = field(default_factory=CancellationToken)
    started_at: float = field(default_factory=time.monotonic)
    telemetry: PipelineTelemetry | None = None

    def __post_init__(self) -> None:
        if self.state is None:
            self.state = ReasoningState(trace_id=self.trace_id)

    @classmethod
    def create(
        cls,
        user_id: str,
        conversation_id: str = "",
        timeout: float | None = None,
        cancellation_token: CancellationToken | None = None,
    ) -> RequestContext:
        """Create a context with a fresh trace id and optional deadline."""
        ctx = cls(
            user_id=user_id,
            conversation_id=conversation_id,
            cancellation_token=cancellation_token or CancellationToken(),
        )
        if timeout is not None:
            ctx.deadline = ctx.started_at + timeout
        return ctx

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or None when unbounded."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started_at) * 1000

    def check_cancelled(self) -> None:
        self.cancellation_token.check()

    def require_plan(self) -> Plan:
        if self.plan is None:
            raise RuntimeError(f"[{self.trace_id}] plan requested before planning ran")
        return self.plan

    def defer_stage_output(self, stage: str, output: str) -> None:
        """
        Queue a working-memory note until the chain finishes.

        Notes live in the reasoning state, so a stage retry that restores
        the state also drops the notes of the abandoned attempt.
        """
        self.state.metadata.setdefault(DEFERRED_OUTPUTS_KEY, []).append((stage, output))

    def deferred_stage_outputs(self) -> list[tuple[str, str]]:
        return list(self.state.metadata.get(DEFERRED_OUTPUTS_KEY, []))


__all__ = ["RequestContext", "new_trace_id"]
