"""
Tool approval.

Combines the plan's required tools, the catalog's suggestions and the
stages' votes into an approved/denied split, lets the safety guardrail
veto dangerous tools, and rewrites the request's tool permissions to
exactly what survived. An empty result disables tools for the request.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from statistics import fmean

from .audit import AnalyticsSink, AuditRecord, NullAuditSink
from .config import PolicyConfig
from .context import RequestContext
from .pipeline import NextFn
from .safety import SafetyGuardrail
from .types import ChatRequest, ChatResponse, StageId, ToolPermissions, Vote

logger = logging.getLogger(__name__)

VoteAggregator = Callable[[Sequence[Vote]], float | None]

SAFETY_REASON = "safety_deny_list"


def average_vote_score(votes: Sequence[Vote]) -> float | None:
    """Mean vote score, or None when nobody voted."""
    if not votes:
        return None
    return fmean(v.score for v in votes)


def minimum_vote_score(votes: Sequence[Vote]) -> float | None:
    """Strictest aggregation: any single low vote blocks tools."""
    if not votes:
        return None
    return min(v.score for v in votes)


@dataclass(frozen=True)
class ToolDecision:
    """Outcome of tool approval before the safety veto."""

    approved: tuple[str, ...]
    denied: Mapping[str, str] = field(default_factory=dict)
    score: float | None = None


def decide_tools(
    required: Sequence[str],
    suggested: Sequence[str],
    votes: Sequence[Vote],
    threshold: float = 0.5,
    aggregator: VoteAggregator = average_vote_score,
) -> ToolDecision:
    """
    Approve ``required ∩ suggested`` (or ``required`` when nothing was
    suggested) if the aggregated vote reaches ``threshold``.

    No votes counts as approval. Every tool that is not approved gets a
    denial reason.
    """
    required = list(dict.fromkeys(required))
    suggested_set = set(suggested)
    denied: dict[str, str] = {}

    if suggested_set:
        candidates = [t for t in required if t in suggested_set]
        for tool in required:
            if tool not in suggested_set:
                denied[tool] = "not_suggested"
        for tool in dict.fromkeys(suggested):
            if tool not in required:
                denied[tool] = "not_required"
    else:
        candidates = required

    score = aggregator(votes)
    if score is not None and score < threshold:
        for tool in candidates:
            denied[tool] = f"vote_score_{score:.2f}_below_{threshold:.2f}"
        candidates = []

    return ToolDecision(approved=tuple(candidates), denied=denied, score=score)


def policy_block(approved: Sequence[str], rejected: Sequence[str]) -> str:
    """Tool rules appended to the system prompt."""
    lines = ["[TOOL EXECUTION POLICY]"]
    if not approved:
        lines.append("NO TOOLS ARE APPROVED FOR THIS REQUEST.")
        lines.append("You must not attempt to use any tools. Answer using your knowledge only.")
    else:
        lines.append("Approved tools (you may use these):")
        lines.extend(f"  - {tool}" for tool in approved)
        if rejected:
            lines.append("Rejected tools (you must not use these):")
            lines.extend(f"  - {tool}" for tool in rejected)
    lines.append("[END TOOL POLICY]")
    return "\n".join(lines)


class ToolPolicyEnforcer:
    """Stage that decides and enforces the request's tool set."""

    stage_id = StageId.TOOL_POLICY

    def __init__(
        self,
        guardrail: SafetyGuardrail | None = None,
        config: PolicyConfig | None = None,
        aggregator: VoteAggregator = average_vote_score,
        audit: AnalyticsSink | None = None,
    ):
        self.config = config or PolicyConfig()
        self.guardrail = guardrail or SafetyGuardrail(self.config.extra_denied_tools)
        self.aggregator = aggregator
        self.audit = audit or NullAuditSink()

    async def process(self, request: ChatRequest, ctx: RequestContext, next: NextFn) -> ChatResponse:
        plan = ctx.require_plan()
        state = ctx.state

        decision = decide_tools(
            plan.required_tools,
            state.suggested_tools,
            state.votes,
            threshold=self.config.vote_threshold,
            aggregator=self.aggregator,
        )
        approved, removed = self.guardrail.filter_tools(decision.approved, ctx.trace_id)

        for tool, reason in decision.denied.items():
            state.deny_tool(tool, reason)
        for tool in removed:
            state.deny_tool(tool, SAFETY_REASON)
        state.approve_tools(approved)
        ctx.plan = plan.with_approved_tools(approved)

        denied = tuple(state.denied_tools)
        if approved:
            request.tool_permissions = ToolPermissions(
                enabled=True, allowed=tuple(approved), denied=denied
            )
        else:
            request.tool_permissions = ToolPermissions.disabled(denied=denied)

        block = policy_block(approved, denied)
        request.system_prompt = f"{request.system_prompt}\n\n{block}" if request.system_prompt else block

        score = "n/a" if decision.score is None else f"{decision.score:.2f}"
        logger.info(
            f"[{ctx.trace_id}] Tool policy: approved={approved} denied={dict(state.denied_tools)} "
            f"vote_score={score} votes=[{', '.join(v.summary() for v in state.votes)}]"
        )
        self.audit.emit(
            AuditRecord.for_request(
                ctx,
                "tool_policy",
                approved=list(approved),
                denied=dict(state.denied_tools),
                safety_removed=removed,
                vote_score=decision.score,
            )
        )
        return await next(request)


__all__ = [
    "SAFETY_REASON",
    "ToolDecision",
    "ToolPolicyEnforcer",
    "VoteAggregator",
    "average_vote_score",
    "decide_tools",
    "minimum_vote_score",
    "policy_block",
]
