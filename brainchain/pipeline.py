"""
Ordered stage runner.

Stages wrap each other onion-style: each one receives the request and a
``next`` callable, may change the request before calling ``next``, may
answer directly without calling it, and may change the response on the
way back up.

When a stage's own logic raises, the executor logs it, rolls the
ReasoningState back to what it was before the stage ran and calls the
rest of the chain exactly once with the original request. Errors raised
by ``next`` itself, and cancellation, are passed through untouched.
"""

from __future__ import annotations

import copy
import logging
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from .cancellation import CancelledException
from .context import RequestContext
from .types import ALL_STAGES, ChatRequest, ChatResponse, Plan, StageId

logger = logging.getLogger(__name__)

NextFn = Callable[[ChatRequest], Awaitable[ChatResponse]]
Terminal = Callable[[ChatRequest, RequestContext], Awaitable[ChatResponse]]

CANONICAL_ORDER: tuple[StageId, ...] = ALL_STAGES


@runtime_checkable
class Stage(Protocol):
    """One unit of the processing chain."""

    stage_id: StageId

    async def process(
        self, request: ChatRequest, ctx: RequestContext, next: NextFn
    ) -> ChatResponse: ...


@dataclass
class StageTelemetry:
    """
    Telemetry for a single stage run.

    ``duration_ms`` includes the downstream chain, since stages wrap it.
    """

    stage: StageId
    duration_ms: float
    success: bool
    error: str | None = None
    retried: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "stage": self.stage.value,
            "duration_ms": self.duration_ms,
            "success": self.success,
            "error": self.error,
            "retried": self.retried,
        }


@dataclass
class PipelineTelemetry:
    """Telemetry for every stage run of one request."""

    stages: list[StageTelemetry] = field(default_factory=list)

    def record(self, entry: StageTelemetry) -> None:
        self.stages.append(entry)

    @property
    def failed_stages(self) -> list[StageId]:
        return [s.stage for s in self.stages if not s.success]

    @property
    def retries(self) -> int:
        return sum(1 for s in self.stages if s.retried)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "stages": [s.to_dict() for s in self.stages],
            "failed_stages": [s.value for s in self.failed_stages],
            "retries": self.retries,
        }


def select_stages(plan: Plan, registry: Mapping[StageId, Stage]) -> list[Stage]:
    """
    Stages to run after planning, in canonical chain order.

    Pure: depends only on the plan and the registry. The planner itself
    is never included since it has already run.
    """
    return [
        registry[stage_id]
        for stage_id in CANONICAL_ORDER
        if stage_id is not StageId.PLAN_BUILDER
        and stage_id in plan.selected_stages
        and stage_id in registry
    ]


class PipelineExecutor:
    """Runs an ordered list of stages around a terminal call."""

    async def run(
        self,
        stages: Iterable[Stage],
        request: ChatRequest,
        ctx: RequestContext,
        terminal: Terminal,
    ) -> ChatResponse:
        if ctx.telemetry is None:
            ctx.telemetry = PipelineTelemetry()
        return await self._call(list(stages), 0, request, ctx, terminal)

    async def _call(
        self,
        stages: list[Stage],
        index: int,
        request: ChatRequest,
        ctx: RequestContext,
        terminal: Terminal,
    ) -> ChatResponse:
        if index >= len(stages):
            ctx.check_cancelled()
            return await terminal(request, ctx)

        stage = stages[index]
        original = copy.deepcopy(request)
        snapshot = ctx.state.snapshot()
        plan_before = ctx.plan
        downstream_errors: list[Exception] = []

        async def next_fn(next_request: ChatRequest) -> ChatResponse:
            try:
                return await self._call(stages, index + 1, next_request, ctx, terminal)
            except Exception as e:
                downstream_errors.append(e)
                raise

        start = time.time()
        try:
            response = await stage.process(request, ctx, next_fn)
        except Exception as e:
            duration_ms = (time.time() - start) * 1000
            if isinstance(e, CancelledException) or any(e is err for err in downstream_errors):
                ctx.telemetry.record(
                    StageTelemetry(stage.stage_id, duration_ms, success=False, error=str(e))
                )
                raise

            logger.warning(
                f"[{ctx.trace_id}] Stage {stage.stage_id.value} failed, "
                f"continuing with original request: {type(e).__name__}: {e}"
            )
            ctx.state.restore(snapshot)
            ctx.plan = plan_before
            ctx.telemetry.record(
                StageTelemetry(
                    stage.stage_id, duration_ms, success=False, error=str(e), retried=True
                )
            )
            return await self._call(stages, index + 1, copy.deepcopy(original), ctx, terminal)

        ctx.telemetry.record(
            StageTelemetry(stage.stage_id, (time.time() - start) * 1000, success=True)
        )
        return response


__all__ = [
    "CANONICAL_ORDER",
    "NextFn",
    "PipelineExecutor",
    "PipelineTelemetry",
    "Stage",
    "StageTelemetry",
    "Terminal",
    "select_stages",
]
