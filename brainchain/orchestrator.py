"""
Request entry point.

ChatOrchestrator wires the stages together and runs one request:

1. Create a RequestContext with a fresh trace id and deadline
2. Record the user message in working memory
3. Detection pass: seed suggested tools from the catalog
4. Run the planner, then the chain its Plan selects, around the model call
5. Turn a failed model call into an apologetic answer tagged with the trace id
6. Flush stage notes to working memory once the chain has succeeded
7. Write the turn to the conversation store and the audit trail
"""

from __future__ import annotations

import logging
from typing import Any

from .api_client import MultiProviderClient
from .audit import AnalyticsSink, AuditLogger, AuditRecord, NullAuditSink
from .cancellation import CancellationToken, CancelledException
from .catalog import KeywordToolCatalog, ToolCatalogIndex
from .classifier import Classifier
from .config import BrainChainConfig
from .context import RequestContext
from .conversation import ConversationStore, default_conversation_id
from .enricher import ContextEnricher
from .invoker import LLMModelInvoker, ModelInvoker, model_terminal
from .pipeline import PipelineExecutor, Stage, select_stages
from .planner import PlanBuilder, build_default_plan
from .policy import ToolPolicyEnforcer
from .refiner import Evaluator, HeuristicEvaluator, LLMJudgeEvaluator, QualityRefiner
from .safety import SafetyGuardrail
from .tone import PersonalityProfile, ToneAdapter
from .types import ChatRequest, ChatResponse, MessageRole, StageId
from .working_memory import WorkingMemoryStore

logger = logging.getLogger(__name__)


def apology(trace_id: str) -> str:
    return (
        "I'm sorry, I couldn't complete that request right now. "
        f"Please try again in a moment. (trace id: {trace_id})"
    )


class ChatOrchestrator:
    """Runs requests through the stage chain."""

    def __init__(
        self,
        invoker: ModelInvoker,
        memory: WorkingMemoryStore | None = None,
        catalog: ToolCatalogIndex | None = None,
        conversations: ConversationStore | None = None,
        evaluator: Evaluator | None = None,
        classifier: Classifier | None = None,
        profile: PersonalityProfile | None = None,
        config: BrainChainConfig | None = None,
        audit: AnalyticsSink | None = None,
    ):
        self.config = config or BrainChainConfig()
        self.invoker = invoker
        self.memory = memory or WorkingMemoryStore(self.config.memory)
        self.catalog = catalog or KeywordToolCatalog(
            min_score=self.config.policy.catalog_min_score,
            top_k=self.config.policy.catalog_top_k,
        )
        self.conversations = conversations
        self.audit = audit or NullAuditSink()
        self.guardrail = SafetyGuardrail(self.config.policy.extra_denied_tools)
        self.executor = PipelineExecutor()
        self.terminal = model_terminal(invoker)

        self.planner = PlanBuilder(self.memory, classifier, self.config.planner, self.audit)
        self.registry: dict[StageId, Stage] = {
            StageId.TONE_ADAPTER: ToneAdapter(profile, self.memory),
            StageId.CONTEXT_ENRICHER: ContextEnricher(
                self.catalog, self.memory, conversations, self.config.policy, self.audit
            ),
            StageId.TOOL_POLICY: ToolPolicyEnforcer(
                self.guardrail, self.config.policy, audit=self.audit
            ),
            StageId.QUALITY_REFINER: QualityRefiner(
                evaluator or HeuristicEvaluator(), self.config.refinement, self.audit
            ),
        }

    @classmethod
    def from_config(
        cls,
        config: BrainChainConfig | None = None,
        client: MultiProviderClient | None = None,
        **kwargs: Any,
    ) -> ChatOrchestrator:
        """Build an orchestrator backed by the provider clients."""
        config = config or BrainChainConfig.load()
        client = client or MultiProviderClient(default_model=config.models.default_model)
        invoker = LLMModelInvoker(
            client,
            model=config.models.default_model,
            max_tokens=config.models.max_tokens,
            temperature=config.models.temperature,
        )
        if "evaluator" not in kwargs and config.refinement.evaluator == "llm":
            kwargs["evaluator"] = LLMJudgeEvaluator(client, model=config.refinement.evaluator_model)
        kwargs.setdefault("audit", AuditLogger(config.audit))
        kwargs.setdefault("profile", PersonalityProfile.load())
        return cls(invoker, config=config, **kwargs)

    def _seed_suggestions(self, text: str, ctx: RequestContext) -> None:
        try:
            ranked = self.catalog.rank(text)
        except Exception as e:
            logger.warning(f"[{ctx.trace_id}] Tool detection pass failed: {e}")
            return
        tools = [
            tool for tool, score in ranked[: self.config.policy.catalog_top_k]
            if score >= self.config.policy.catalog_min_score
        ]
        ctx.state.suggest_tools(tools)

    async def _run_selected(self, request: ChatRequest, ctx: RequestContext) -> ChatResponse:
        if ctx.plan is None:
            ctx.plan = build_default_plan()
        stages = select_stages(ctx.plan, self.registry)
        return await self.executor.run(stages, request, ctx, self.terminal)

    async def respond(
        self,
        text: str,
        user_id: str = "anonymous",
        conversation_id: str | None = None,
        timeout: float | None = None,
        cancellation_token: CancellationToken | None = None,
        system_prompt: str = "",
    ) -> ChatResponse:
        """
        Answer one user message.

        Args:
            text: The user's message
            user_id: Key for working memory
            conversation_id: Long-term conversation key; a per-minute default when omitted
            timeout: Seconds before the model call is abandoned
            cancellation_token: Lets the caller abort the request
            system_prompt: Base system prompt

        Returns:
            The answer. A failed model call yields an apology carrying the
            trace id, with ``error`` set.

        Raises:
            CancelledException: If the caller cancelled the request
        """
        conversation_id = conversation_id or default_conversation_id()
        ctx = RequestContext.create(
            user_id,
            conversation_id,
            timeout=timeout if timeout is not None else self.config.models.timeout_seconds,
            cancellation_token=cancellation_token,
        )
        request = ChatRequest(
            user_text=text,
            user_id=user_id,
            conversation_id=conversation_id,
            system_prompt=system_prompt,
        )
        logger.info(f"[{ctx.trace_id}] Request from {user_id} ({len(text)} chars)")

        if text.strip():
            self.memory.append_user_message(user_id, text)
        self._seed_suggestions(text, ctx)

        try:
            response = await self.executor.run([self.planner], request, ctx, self._run_selected)
        except CancelledException:
            logger.info(f"[{ctx.trace_id}] Request cancelled after {ctx.elapsed_ms():.0f}ms")
            self.audit.emit(AuditRecord.for_request(ctx, "request_cancelled"))
            raise
        except Exception as e:
            logger.error(
                f"[{ctx.trace_id}] Request failed after {ctx.elapsed_ms():.0f}ms: "
                f"{type(e).__name__}: {e}"
            )
            response = ChatResponse(text=apology(ctx.trace_id), error=f"{type(e).__name__}: {e}")
        else:
            logger.info(
                f"[{ctx.trace_id}] Request completed in {ctx.elapsed_ms():.0f}ms "
                f"intent={ctx.plan.intent.value if ctx.plan else None} "
                f"tools={ctx.state.approved_tools or []}"
            )
            for stage, output in ctx.deferred_stage_outputs():
                self.memory.append_stage_output(user_id, stage, output)

        response.trace_id = ctx.trace_id
        if ctx.plan is not None:
            response.intent = ctx.plan.intent.value
        response.metadata["elapsed_ms"] = ctx.elapsed_ms()
        response.metadata["approved_tools"] = list(ctx.state.approved_tools or [])
        response.metadata["denied_tools"] = dict(ctx.state.denied_tools)
        if ctx.telemetry is not None:
            response.metadata["telemetry"] = ctx.telemetry.to_dict()

        self._record_turn(ctx, text, response)
        self.audit.emit(
            AuditRecord.for_request(
                ctx,
                "request_complete",
                ok=response.ok,
                error=response.error,
                intent=response.intent,
                approved_tools=response.metadata["approved_tools"],
                denied_tools=response.metadata["denied_tools"],
                refinement_attempts=response.refinement_attempts,
                elapsed_ms=response.metadata["elapsed_ms"],
            )
        )
        return response

    def _record_turn(self, ctx: RequestContext, text: str, response: ChatResponse) -> None:
        if self.conversations is None or not text.strip():
            return
        try:
            self.conversations.append_turn(ctx.conversation_id, MessageRole.USER, text)
            if response.ok:
                self.conversations.append_turn(
                    ctx.conversation_id, MessageRole.ASSISTANT, response.text
                )
        except Exception as e:
            logger.warning(f"[{ctx.trace_id}] Failed to store conversation turn: {e}")

    def record_feedback(
        self, trace_id: str, user_id: str, accepted: bool, suggestion: str = "", feedback: str = ""
    ) -> None:
        """Forward the caller's verdict on an answer to the analytics sink."""
        self.audit.emit(
            AuditRecord(
                event="suggestion_feedback",
                trace_id=trace_id,
                user_id=user_id,
                payload={"accepted": accepted, "suggestion": suggestion[:200], "feedback": feedback},
            )
        )

    def prune_memory(self, max_idle_seconds: float | None = None) -> int:
        return self.memory.prune_idle(max_idle_seconds)


__all__ = ["ChatOrchestrator", "apology"]
