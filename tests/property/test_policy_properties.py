"""
Property-based tests for tool approval and stage selection.

Property tests verify invariants:
- Approved tools are always required tools, and suggested ones when any were suggested
- No tool is both approved and denied
- The mean vote lies between the lowest and highest vote
- The safety filter partitions its input and never keeps a deny-listed tool
- Stage selection keeps canonical order and never re-runs the planner
"""

from __future__ import annotations

from hypothesis import given, settings
from hypothesis import strategies as st

from brainchain.pipeline import CANONICAL_ORDER, select_stages
from brainchain.policy import average_vote_score, decide_tools, minimum_vote_score
from brainchain.safety import DEFAULT_DENY_LIST, SafetyGuardrail
from brainchain.types import Intent, Plan, StageId, Strategy, Vote

TOOL_NAMES = [
    "add",
    "search",
    "getWeather",
    "findBugs",
    "analyzeFile",
    "executeCommand",
    "deleteFile",
    "sendEmail",
]

tool_lists = st.lists(st.sampled_from(TOOL_NAMES), max_size=8)
vote_scores = st.lists(st.floats(min_value=0.0, max_value=1.0, allow_nan=False), max_size=6)


def votes_from(scores: list[float]) -> list[Vote]:
    return [Vote(source=f"stage{i}", score=s) for i, s in enumerate(scores)]


class TestDecideToolsProperties:
    """Approval set invariants."""

    @given(required=tool_lists, suggested=tool_lists, scores=vote_scores)
    def test_approved_subset_of_required(self, required, suggested, scores):
        decision = decide_tools(required, suggested, votes_from(scores))

        assert set(decision.approved) <= set(required)
        if suggested:
            assert set(decision.approved) <= set(suggested)

    @given(required=tool_lists, suggested=tool_lists, scores=vote_scores)
    def test_approved_and_denied_disjoint(self, required, suggested, scores):
        decision = decide_tools(required, suggested, votes_from(scores))

        assert not set(decision.approved) & set(decision.denied)

    @given(required=tool_lists, suggested=tool_lists, scores=vote_scores)
    def test_low_score_approves_nothing(self, required, suggested, scores):
        decision = decide_tools(required, suggested, votes_from(scores), threshold=0.5)

        if decision.score is not None and decision.score < 0.5:
            assert decision.approved == ()

    @given(required=tool_lists, suggested=tool_lists)
    def test_no_votes_never_blocks(self, required, suggested):
        decision = decide_tools(required, suggested, [])

        expected = [t for t in dict.fromkeys(required) if not suggested or t in suggested]
        assert list(decision.approved) == expected
        assert decision.score is None


class TestVoteAggregationProperties:
    @given(scores=st.lists(st.floats(min_value=0.0, max_value=1.0, allow_nan=False), min_size=1))
    def test_mean_within_bounds(self, scores):
        mean = average_vote_score(votes_from(scores))

        assert 0.0 <= mean <= 1.0
        assert min(scores) - 1e-9 <= mean <= max(scores) + 1e-9

    @given(scores=st.lists(st.floats(min_value=0.0, max_value=1.0, allow_nan=False), min_size=1))
    def test_minimum_not_above_mean(self, scores):
        votes = votes_from(scores)

        assert minimum_vote_score(votes) <= average_vote_score(votes) + 1e-9


class TestSafetyProperties:
    @given(tools=tool_lists, extra=st.lists(st.sampled_from(TOOL_NAMES), max_size=3))
    def test_filter_partitions_input(self, tools, extra):
        guardrail = SafetyGuardrail(extra)

        kept, removed = guardrail.filter_tools(tools)

        assert sorted(kept + removed) == sorted(tools)
        assert not set(kept) & (DEFAULT_DENY_LIST | set(extra))
        assert all(t in guardrail.deny_list for t in removed)


class TestStageSelectionProperties:
    @settings(max_examples=50)
    @given(stages=st.lists(st.sampled_from(list(StageId)), unique=True))
    def test_canonical_subsequence(self, stages):
        plan = Plan(
            intent=Intent.GENERAL,
            complexity=5,
            ambiguity=5,
            strategy=Strategy.BALANCED,
            selected_stages=tuple(stages),
        )
        registry = {stage_id: stage_id for stage_id in StageId}

        selected = select_stages(plan, registry)

        assert StageId.PLAN_BUILDER not in selected
        assert set(selected) == set(stages) - {StageId.PLAN_BUILDER}
        positions = [CANONICAL_ORDER.index(s) for s in selected]
        assert positions == sorted(positions)
