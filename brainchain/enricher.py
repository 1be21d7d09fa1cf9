"""
Context enrichment stage.

Asks the tool catalog for candidates matching the planned intent, then
attaches supporting material to the request: a working-memory summary,
the long-term conversation summary and recent history.
"""

from __future__ import annotations

import logging

from .audit import AnalyticsSink, AuditRecord, NullAuditSink
from .catalog import ToolCatalogIndex
from .config import PolicyConfig
from .context import RequestContext
from .conversation import ConversationStore
from .pipeline import NextFn
from .types import ChatRequest, ChatResponse, Plan, StageId, Vote
from .working_memory import WorkingMemorySnapshot, WorkingMemoryStore

logger = logging.getLogger(__name__)


def intent_query(plan: Plan, text: str) -> str:
    """Catalog query with the intent and required tools folded in."""
    parts = [plan.intent.value.lower(), text]
    parts.extend(plan.required_tools)
    return " ".join(p for p in parts if p)


def memory_block(snapshot: WorkingMemorySnapshot, current_text: str) -> str:
    if snapshot.is_empty:
        return ""
    previous = list(snapshot.user_messages)
    if previous and previous[-1] == current_text:
        previous = previous[:-1]

    lines = ["[WORKING MEMORY]", snapshot.summary()]
    if previous:
        lines.append("Recent user messages:")
        lines.extend(f"- {m}" for m in previous)
    if snapshot.stage_outputs:
        lines.append("Recent stage notes:")
        lines.extend(f"- {stage}: {output}" for stage, output in snapshot.stage_outputs)
    return "\n".join(lines)


class ContextEnricher:
    """Seeds suggested tools and attaches memory context to the request."""

    stage_id = StageId.CONTEXT_ENRICHER

    def __init__(
        self,
        catalog: ToolCatalogIndex,
        memory: WorkingMemoryStore,
        conversations: ConversationStore | None = None,
        config: PolicyConfig | None = None,
        audit: AnalyticsSink | None = None,
        history_turns: int = 10,
    ):
        self.catalog = catalog
        self.memory = memory
        self.conversations = conversations
        self.config = config or PolicyConfig()
        self.audit = audit or NullAuditSink()
        self.history_turns = history_turns

    def rank_tools(self, plan: Plan, text: str) -> list[tuple[str, float]]:
        ranked = self.catalog.rank(intent_query(plan, text))
        ranked = [(tool, score) for tool, score in ranked if score >= self.config.catalog_min_score]
        return ranked[: self.config.catalog_top_k]

    async def process(self, request: ChatRequest, ctx: RequestContext, next: NextFn) -> ChatResponse:
        plan = ctx.require_plan()

        ranked = self.rank_tools(plan, request.user_text)
        if ranked:
            ctx.state.suggest_tools([tool for tool, _ in ranked])
            top_tool, top_score = ranked[0]
            ctx.state.add_vote(
                Vote(
                    source="tool_catalog",
                    score=top_score,
                    reasoning=f"Best catalog match {top_tool}",
                )
            )

        block = memory_block(self.memory.snapshot(ctx.user_id), request.user_text)
        if block:
            request.context_blocks.append(block)

        if self.conversations is not None and ctx.conversation_id:
            summary = self.conversations.context_summary(ctx.conversation_id, ctx.user_id)
            if summary:
                request.context_blocks.append("[CONVERSATION CONTEXT]\n" + summary)
            if not request.history:
                request.history = self.conversations.history(
                    ctx.conversation_id, self.history_turns
                )

        logger.info(
            f"[{ctx.trace_id}] Enriched request: suggested={ctx.state.suggested_tools} "
            f"context_blocks={len(request.context_blocks)} history={len(request.history)}"
        )
        self.audit.emit(
            AuditRecord.for_request(
                ctx,
                "enrichment",
                ranked=[list(r) for r in ranked],
                suggested_tools=list(ctx.state.suggested_tools),
            )
        )
        return await next(request)


__all__ = ["ContextEnricher", "intent_query", "memory_block"]
