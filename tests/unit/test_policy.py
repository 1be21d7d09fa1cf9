"""
Tests for tool approval and enforcement.
"""

from __future__ import annotations

import pytest

from brainchain.config import PolicyConfig
from brainchain.policy import (
    SAFETY_REASON,
    ToolPolicyEnforcer,
    average_vote_score,
    decide_tools,
    minimum_vote_score,
    policy_block,
)
from brainchain.types import ChatResponse, Vote


def votes(*scores: float) -> list[Vote]:
    return [Vote(source=f"stage{i}", score=s) for i, s in enumerate(scores)]


class TestAggregators:
    """Vote reducers."""

    def test_average(self):
        assert average_vote_score([]) is None
        assert average_vote_score(votes(0.4, 0.8)) == pytest.approx(0.6)

    def test_minimum(self):
        assert minimum_vote_score([]) is None
        assert minimum_vote_score(votes(0.9, 0.3)) == 0.3


class TestDecideTools:
    """Intersection and threshold logic."""

    def test_intersection_of_required_and_suggested(self):
        decision = decide_tools(["A", "B"], ["A", "C"], votes(0.4, 0.8))

        assert decision.approved == ("A",)
        assert decision.denied == {"B": "not_suggested", "C": "not_required"}
        assert decision.score == pytest.approx(0.6)

    def test_nothing_required_approves_nothing(self):
        decision = decide_tools([], ["A", "C"], votes(0.9))

        assert decision.approved == ()
        assert set(decision.denied) == {"A", "C"}

    def test_nothing_required_nothing_suggested(self):
        assert decide_tools([], [], votes(0.9)).approved == ()

    def test_low_vote_denies_everything(self):
        decision = decide_tools(["A"], ["A"], votes(0.2))

        assert decision.approved == ()
        assert decision.denied["A"] == "vote_score_0.20_below_0.50"

    def test_no_votes_approves(self):
        assert decide_tools(["A"], ["A"], []).approved == ("A",)

    def test_no_suggestions_uses_required(self):
        assert decide_tools(["A", "B"], [], votes(0.85)).approved == ("A", "B")

    def test_threshold_is_inclusive(self):
        assert decide_tools(["A"], [], votes(0.5)).approved == ("A",)

    def test_pluggable_aggregator(self):
        decision = decide_tools(["A"], ["A"], votes(0.9, 0.3), aggregator=minimum_vote_score)

        assert decision.approved == ()


class TestPolicyBlock:
    """Prompt text listing approved and rejected tools."""

    def test_no_tools(self):
        block = policy_block([], ["executeCommand"])

        assert block.startswith("[TOOL EXECUTION POLICY]")
        assert "NO TOOLS ARE APPROVED FOR THIS REQUEST." in block
        assert block.endswith("[END TOOL POLICY]")

    def test_lists_approved_and_rejected(self):
        block = policy_block(["add"], ["executeCommand"])

        assert "  - add" in block
        assert "Rejected tools (you must not use these):\n  - executeCommand" in block


def capture_next(seen: list):
    async def next_fn(request):
        seen.append(request)
        return ChatResponse(text="done")

    return next_fn


class TestToolPolicyEnforcer:
    """The stage itself."""

    @pytest.mark.asyncio
    async def test_safety_strips_dangerous_tool(self, ctx, plan_factory, request_factory, recording_sink):
        ctx.plan = plan_factory(required_tools=("analyzeProjectComprehensive", "executeCommand"))
        ctx.state.suggest_tools(["analyzeProjectComprehensive", "executeCommand"])
        ctx.state.add_vote(Vote(source="planner", score=0.85))
        seen: list = []

        response = await ToolPolicyEnforcer(audit=recording_sink).process(
            request_factory("review the project"), ctx, capture_next(seen)
        )

        assert response.text == "done"
        permissions = seen[0].tool_permissions
        assert permissions.allowed == ("analyzeProjectComprehensive",)
        assert not permissions.allows("executeCommand")
        assert "executeCommand" in permissions.denied
        assert ctx.state.denied_tools["executeCommand"] == SAFETY_REASON
        assert ctx.state.approved_tools == ["analyzeProjectComprehensive"]
        assert ctx.plan.approved_tools == ("analyzeProjectComprehensive",)
        assert "[TOOL EXECUTION POLICY]" in seen[0].system_prompt
        assert recording_sink.records[0].payload["safety_removed"] == ["executeCommand"]

    @pytest.mark.asyncio
    async def test_empty_required_disables_tools(self, ctx, plan_factory, request_factory):
        ctx.plan = plan_factory(required_tools=())
        ctx.state.suggest_tools(["search"])
        seen: list = []

        await ToolPolicyEnforcer().process(request_factory(), ctx, capture_next(seen))

        permissions = seen[0].tool_permissions
        assert not permissions.enabled
        assert permissions.allowed == ()
        assert ctx.state.approved_tools == []
        assert ctx.state.denied_tools == {"search": "not_required"}
        assert "NO TOOLS ARE APPROVED" in seen[0].system_prompt

    @pytest.mark.asyncio
    async def test_policy_block_appended_to_existing_prompt(self, ctx, plan_factory, request_factory):
        ctx.plan = plan_factory(required_tools=("add",))
        seen: list = []

        await ToolPolicyEnforcer().process(
            request_factory(system_prompt="You are helpful."), ctx, capture_next(seen)
        )

        assert seen[0].system_prompt.startswith("You are helpful.\n\n[TOOL EXECUTION POLICY]")

    @pytest.mark.asyncio
    async def test_extra_denied_tools(self, ctx, plan_factory, request_factory):
        ctx.plan = plan_factory(required_tools=("getWeather", "getCurrentDateTime"))
        seen: list = []
        enforcer = ToolPolicyEnforcer(config=PolicyConfig(extra_denied_tools=["getWeather"]))

        await enforcer.process(request_factory(), ctx, capture_next(seen))

        assert seen[0].tool_permissions.allowed == ("getCurrentDateTime",)
        assert ctx.state.denied_tools["getWeather"] == SAFETY_REASON
