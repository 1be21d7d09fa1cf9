"""
Tests for plan building.
"""

from __future__ import annotations

import pytest

from brainchain.classifier import Classification
from brainchain.config import PlannerConfig
from brainchain.planner import (
    DEFAULT_PLAN_QUERY,
    PlanBuilder,
    build_default_plan,
    stages_for,
)
from brainchain.types import (
    ALL_STAGES,
    FAST_PATH_STAGES,
    ChatResponse,
    Intent,
    StageId,
    Strategy,
)


class BrokenClassifier:
    def classify(self, text):
        raise RuntimeError("classifier exploded")


class FixedClassifier:
    def __init__(self, intent: Intent):
        self.intent = intent

    def classify(self, text):
        return Classification(intent=self.intent, confidence=0.8, complexity=6, ambiguity=3)


async def echo_next(request):
    return ChatResponse(text="ok")


class TestDefaultPlan:
    """Empty and failing input resolve to the default plan."""

    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    def test_empty_text(self, memory, text):
        plan, votes = PlanBuilder(memory).build(text)

        assert plan.intent == Intent.GENERAL
        assert plan.user_query == DEFAULT_PLAN_QUERY
        assert votes == []

    def test_default_plan_values(self):
        plan = build_default_plan()

        assert (plan.complexity, plan.ambiguity) == (5, 5)
        assert plan.strategy == Strategy.BALANCED
        assert plan.required_tools == ()
        assert plan.selected_stages == ALL_STAGES
        assert plan.confidence == 0.5

    def test_classifier_failure_never_propagates(self, memory):
        plan, votes = PlanBuilder(memory, classifier=BrokenClassifier()).build(
            "Refactor the payment module"
        )

        assert plan.user_query == DEFAULT_PLAN_QUERY
        assert votes == []


class TestFastPath:
    """SIMPLE plans skip enrichment and refinement."""

    def test_simple_plan_excludes_enricher_and_refiner(self, memory):
        plan, votes = PlanBuilder(memory).build("1 + 2")

        assert plan.intent == Intent.SIMPLE
        assert StageId.CONTEXT_ENRICHER not in plan.selected_stages
        assert StageId.QUALITY_REFINER not in plan.selected_stages
        assert plan.selected_stages == FAST_PATH_STAGES
        assert plan.required_tools == ("add",)
        assert plan.strategy == Strategy.FAST_RECALL
        assert votes == []

    def test_fast_path_can_be_disabled(self, memory):
        builder = PlanBuilder(memory, config=PlannerConfig(fast_path_enabled=False))

        plan, _ = builder.build("1 + 2")

        assert plan.intent == Intent.CALCULATION
        assert plan.selected_stages == ALL_STAGES

    def test_stages_for(self):
        assert stages_for(Intent.SIMPLE) == FAST_PATH_STAGES
        assert stages_for(Intent.DEBUG) == ALL_STAGES


class TestClassifiedPlans:
    """Plans from the classifier."""

    def test_debug_plan(self, memory):
        plan, votes = PlanBuilder(memory).build(
            "There is a bug in my login handler, the app crashes on submit"
        )

        assert plan.intent == Intent.DEBUG
        assert plan.confidence == 0.95
        assert plan.focus_area == "DEBUG"
        assert [v.source for v in votes] == ["planner"]
        assert votes[0].score == 0.15

    def test_tools_raise_planner_vote(self, memory):
        plan, votes = PlanBuilder(memory).build("Calculate 15 plus 27 for the invoice total")

        assert plan.intent == Intent.CALCULATION
        assert "add" in plan.required_tools
        assert votes[0].score == 0.85

    def test_pluggable_classifier(self, memory):
        plan, _ = PlanBuilder(memory, classifier=FixedClassifier(Intent.TESTING)).build(
            "anything at all goes here"
        )

        assert plan.intent == Intent.TESTING
        assert plan.complexity == 6
        assert plan.strategy == Strategy.BALANCED


class TestContinuity:
    """Vague follow-ups inherit the previous intent."""

    def test_vague_follow_up_inherits_intent(self, memory):
        memory.append_intent("user-1", Intent.DEBUG.value, 0.95)

        plan, votes = PlanBuilder(memory).build(
            "can you look at it again", snapshot=memory.snapshot("user-1")
        )

        assert plan.intent == Intent.DEBUG
        assert plan.confidence == 0.6
        assert plan.ambiguity == 1
        assert votes[0].source == "working_memory"
        assert votes[0].category == "CONTINUITY"
        assert votes[0].score == 0.6

    def test_no_history_stays_general(self, memory):
        plan, votes = PlanBuilder(memory).build(
            "can you look at it again", snapshot=memory.snapshot("user-1")
        )

        assert plan.intent == Intent.GENERAL
        assert [v.source for v in votes] == ["planner"]

    def test_continuity_can_be_disabled(self, memory):
        memory.append_intent("user-1", Intent.DEBUG.value, 0.95)
        builder = PlanBuilder(memory, config=PlannerConfig(continuity_enabled=False))

        plan, _ = builder.build("can you look at it again", snapshot=memory.snapshot("user-1"))

        assert plan.intent == Intent.GENERAL


class TestProcess:
    """PlanBuilder as a stage."""

    @pytest.mark.asyncio
    async def test_sets_plan_and_writes_memory(self, memory, ctx, request_factory, recording_sink):
        builder = PlanBuilder(memory, audit=recording_sink)

        response = await builder.process(request_factory("Please refactor the payment module"), ctx, echo_next)

        assert response.text == "ok"
        assert ctx.plan.intent == Intent.REFACTOR
        assert ctx.state.user_query == "Please refactor the payment module"
        assert [v.source for v in ctx.state.votes] == ["planner"]
        assert memory.most_recent_intent("user-1") == "REFACTOR"
        assert len(memory.snapshot("user-1").tones) == 1
        assert recording_sink.events() == ["plan"]
        assert recording_sink.records[0].trace_id == ctx.trace_id

    @pytest.mark.asyncio
    async def test_default_plan_leaves_memory_alone(self, memory, ctx, request_factory):
        await PlanBuilder(memory).process(request_factory(""), ctx, echo_next)

        assert ctx.plan.user_query == DEFAULT_PLAN_QUERY
        assert memory.snapshot("user-1").is_empty

    @pytest.mark.asyncio
    async def test_uses_detection_pass_suggestions(self, memory, ctx, request_factory):
        ctx.state.suggest_tools(["analyzeProjectComprehensive"])

        await PlanBuilder(memory).process(
            request_factory("review the project structure"), ctx, echo_next
        )

        assert ctx.plan.required_tools == ("analyzeProjectComprehensive",)
