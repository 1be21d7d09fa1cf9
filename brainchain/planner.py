"""
Plan building, the first stage of every chain.

Produces the request's single Plan: intent, complexity, ambiguity,
strategy, required tools and which later stages to run. Cheap requests
take a fast path that skips enrichment and refinement. Planning never
fails outward: empty input or any internal error yields the default plan.
"""

from __future__ import annotations

import logging

from .audit import AnalyticsSink, AuditRecord, NullAuditSink
from .classifier import (
    Classifier,
    RuleBasedClassifier,
    detect_tone,
    fast_path_tools,
    has_vague_target,
    is_fast_path,
    required_tools,
    select_strategy,
)
from .config import PlannerConfig
from .context import RequestContext
from .pipeline import NextFn
from .types import (
    ALL_STAGES,
    FAST_PATH_STAGES,
    ChatRequest,
    ChatResponse,
    Intent,
    Plan,
    StageId,
    Strategy,
    Vote,
)
from .working_memory import UNKNOWN_INTENT, WorkingMemorySnapshot, WorkingMemoryStore

logger = logging.getLogger(__name__)

DEFAULT_PLAN_QUERY = "(default plan)"

# Intents a vague follow-up may not inherit
_NON_CONTINUABLE = {UNKNOWN_INTENT, Intent.GENERAL.value, Intent.SIMPLE.value}


def build_default_plan() -> Plan:
    """Plan used for empty input and whenever planning fails."""
    return Plan(
        intent=Intent.GENERAL,
        complexity=5,
        ambiguity=5,
        strategy=Strategy.BALANCED,
        required_tools=(),
        selected_stages=ALL_STAGES,
        confidence=0.5,
        user_query=DEFAULT_PLAN_QUERY,
    )


def build_fast_path_plan(text: str) -> Plan:
    return Plan(
        intent=Intent.SIMPLE,
        complexity=1,
        ambiguity=1,
        strategy=Strategy.FAST_RECALL,
        required_tools=tuple(fast_path_tools(text)),
        selected_stages=FAST_PATH_STAGES,
        confidence=0.95,
        user_query=text,
    )


def stages_for(intent: Intent) -> tuple[StageId, ...]:
    """SIMPLE requests skip enrichment and refinement."""
    if intent == Intent.SIMPLE:
        return FAST_PATH_STAGES
    return ALL_STAGES


class PlanBuilder:
    """
    First stage: classify the request and store the Plan on the context.

    Writes the detected intent and tone to working memory and casts the
    planner's tool vote.
    """

    stage_id = StageId.PLAN_BUILDER

    def __init__(
        self,
        memory: WorkingMemoryStore,
        classifier: Classifier | None = None,
        config: PlannerConfig | None = None,
        audit: AnalyticsSink | None = None,
    ):
        self.memory = memory
        self.classifier = classifier or RuleBasedClassifier()
        self.config = config or PlannerConfig()
        self.audit = audit or NullAuditSink()

    def build(
        self,
        text: str,
        suggested_tools: list[str] | None = None,
        snapshot: WorkingMemorySnapshot | None = None,
        trace_id: str = "",
    ) -> tuple[Plan, list[Vote]]:
        """Build the plan and the votes it implies. Never raises."""
        try:
            return self._build(text, suggested_tools or [], snapshot)
        except Exception as e:
            logger.error(f"[{trace_id}] Planning failed, using default plan: {e}")
            return build_default_plan(), []

    def _build(
        self,
        text: str,
        suggested_tools: list[str],
        snapshot: WorkingMemorySnapshot | None,
    ) -> tuple[Plan, list[Vote]]:
        stripped = text.strip()
        if not stripped:
            return build_default_plan(), []

        if self.config.fast_path_enabled and is_fast_path(stripped, self.config.fast_path_max_chars):
            return build_fast_path_plan(stripped), []

        result = self.classifier.classify(stripped)
        intent, confidence, ambiguity = result.intent, result.confidence, result.ambiguity
        votes: list[Vote] = []

        recent = snapshot.most_recent_intent if snapshot is not None else UNKNOWN_INTENT
        if (
            self.config.continuity_enabled
            and intent == Intent.GENERAL
            and recent not in _NON_CONTINUABLE
            and has_vague_target(stripped)
        ):
            intent = Intent(recent)
            confidence = 0.6
            ambiguity = max(1, ambiguity - 2)
            votes.append(
                Vote(
                    source="working_memory",
                    score=0.6,
                    reasoning=f"Follow-up continues previous {recent} request",
                    category="CONTINUITY",
                )
            )

        tools = required_tools(stripped, intent, suggested_tools)
        if tools:
            votes.append(
                Vote(
                    source="planner",
                    score=self.config.tool_vote_score,
                    reasoning=f"Plan requires {len(tools)} tool(s)",
                )
            )
        else:
            votes.append(
                Vote(
                    source="planner",
                    score=self.config.no_tool_vote_score,
                    reasoning="Plan requires no tools",
                )
            )

        plan = Plan(
            intent=intent,
            complexity=result.complexity,
            ambiguity=ambiguity,
            strategy=select_strategy(result.complexity),
            required_tools=tuple(tools),
            selected_stages=stages_for(intent),
            confidence=confidence,
            user_query=stripped,
            focus_area=result.focus_area,
        )
        return plan, votes

    async def process(self, request: ChatRequest, ctx: RequestContext, next: NextFn) -> ChatResponse:
        snapshot = self.memory.snapshot(ctx.user_id)
        plan, votes = self.build(
            request.user_text, list(ctx.state.suggested_tools), snapshot, ctx.trace_id
        )

        ctx.plan = plan
        ctx.state.user_query = plan.user_query
        for vote in votes:
            ctx.state.add_vote(vote)

        if plan.user_query != DEFAULT_PLAN_QUERY:
            self.memory.append_intent(ctx.user_id, plan.intent.value, plan.confidence)
            tone, intensity = detect_tone(request.user_text)
            self.memory.append_tone(ctx.user_id, tone, intensity)

        logger.info(
            f"[{ctx.trace_id}] Plan: intent={plan.intent.value} complexity={plan.complexity} "
            f"ambiguity={plan.ambiguity} strategy={plan.strategy.value} "
            f"tools={list(plan.required_tools)} stages={[s.value for s in plan.selected_stages]}"
        )
        self.audit.emit(AuditRecord.for_request(ctx, "plan", **plan.to_dict()))

        return await next(request)


__all__ = [
    "DEFAULT_PLAN_QUERY",
    "PlanBuilder",
    "build_default_plan",
    "build_fast_path_plan",
    "stages_for",
]
