"""
Tests for per-user working memory.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from brainchain.config import MemoryConfig
from brainchain.working_memory import WorkingMemoryStore


class TestBuffers:
    """Capacity-bounded FIFO behavior."""

    def test_keeps_last_five_messages_oldest_first(self, memory):
        for i in range(15):
            memory.append_user_message("u1", f"m{i}")

        assert memory.snapshot("u1").user_messages == ("m10", "m11", "m12", "m13", "m14")

    def test_stage_output_capacity(self, memory):
        for i in range(5):
            memory.append_stage_output("u1", "quality_refiner", f"out{i}")

        outputs = memory.snapshot("u1").stage_outputs
        assert [o for _, o in outputs] == ["out2", "out3", "out4"]

    def test_custom_capacities(self):
        store = WorkingMemoryStore(MemoryConfig(user_messages=2, intents=1))

        for i in range(4):
            store.append_user_message("u1", f"m{i}")
            store.append_intent("u1", f"I{i}", 0.5)

        snapshot = store.snapshot("u1")
        assert snapshot.user_messages == ("m2", "m3")
        assert [e.intent for e in snapshot.intents] == ["I3"]


class TestQueries:
    """Derived read-only queries."""

    def test_most_recent_intent(self, memory):
        assert memory.most_recent_intent("u1") == "unknown"

        memory.append_intent("u1", "DEBUG", 0.95)
        memory.append_intent("u1", "TESTING", 0.7)

        assert memory.most_recent_intent("u1") == "TESTING"

    @pytest.mark.parametrize(
        "tones,expected",
        [
            ([], "neutral"),
            (["positive", "negative", "positive"], "positive"),
            (["negative", "positive"], "positive"),
            (["confused", "urgent", "urgent", "confused"], "confused"),
            (["urgent", "urgent", "neutral"], "urgent"),
        ],
    )
    def test_dominant_tone(self, memory, tones, expected):
        for tone in tones:
            memory.append_tone("u1", tone, 0.5)

        assert memory.dominant_tone("u1") == expected

    def test_snapshot_is_isolated_from_later_appends(self, memory):
        memory.append_user_message("u1", "first")
        snapshot = memory.snapshot("u1")

        memory.append_user_message("u1", "second")

        assert snapshot.user_messages == ("first",)

    def test_unknown_user_snapshot_is_empty(self, memory):
        snapshot = memory.snapshot("nobody")

        assert snapshot.is_empty
        assert len(memory) == 0

    def test_summary(self, memory):
        memory.append_user_message("u1", "hello")
        memory.append_intent("u1", "DEBUG", 0.9)
        memory.append_tone("u1", "frustrated", 0.6)

        assert memory.summary("u1") == (
            "Recent intent: DEBUG, dominant tone: frustrated, messages: 1"
        )

    def test_to_dict(self, memory):
        memory.append_stage_output("u1", "quality_refiner", "GOOD 4.0")

        data = memory.snapshot("u1").to_dict()

        assert data["stage_outputs"] == [["quality_refiner", "GOOD 4.0"]]
        assert data["most_recent_intent"] == "unknown"


class TestLifecycle:
    """Forgetting and pruning users."""

    def test_forget(self, memory):
        memory.append_user_message("u1", "hello")

        assert memory.forget("u1") is True
        assert memory.forget("u1") is False
        assert memory.snapshot("u1").is_empty

    def test_prune_idle(self, memory):
        memory.append_user_message("idle", "old")
        memory.append_user_message("active", "new")
        memory._states["idle"].last_access = time.time() - 100

        assert memory.prune_idle(10) == 1
        assert memory.user_ids() == ["active"]


class TestConcurrency:
    """Per-user isolation under concurrent writers."""

    def test_hundred_users_no_leakage(self, memory):
        def work(i: int) -> None:
            for n in range(5):
                memory.append_user_message(f"user-{i}", f"user-{i} message {n}")
                memory.append_intent(f"user-{i}", f"intent-{i}", 0.5)

        with ThreadPoolExecutor(max_workers=32) as pool:
            list(pool.map(work, range(100)))

        assert len(memory) == 100
        for i in range(100):
            snapshot = memory.snapshot(f"user-{i}")
            assert len(snapshot.user_messages) == 5
            assert all(m.startswith(f"user-{i} ") for m in snapshot.user_messages)
            assert snapshot.most_recent_intent == f"intent-{i}"

    def test_same_user_concurrent_appends_stay_bounded(self, memory):
        def work(i: int) -> None:
            for n in range(50):
                memory.append_user_message("shared", f"{i}-{n}")

        with ThreadPoolExecutor(max_workers=20) as pool:
            list(pool.map(work, range(20)))

        assert len(memory.snapshot("shared").user_messages) == 5

    def test_append_survives_removal_after_lookup(self, memory, monkeypatch):
        memory.append_user_message("u1", "first")
        lookup = memory._entry
        removed = []

        def entry_then_remove(user_id):
            found = lookup(user_id)
            if not removed:
                removed.append(memory.forget(user_id))
            return found

        monkeypatch.setattr(memory, "_entry", entry_then_remove)
        memory.append_user_message("u1", "second")

        assert removed == [True]
        assert memory.user_ids() == ["u1"]
        assert memory.snapshot("u1").user_messages == ("second",)

    def test_prune_racing_appends_loses_nothing_registered(self, memory):
        def write(i: int) -> None:
            for n in range(20):
                memory.append_user_message(f"user-{i}", f"message {n}")

        def prune(_: int) -> None:
            for _ in range(20):
                memory.prune_idle(-1)

        with ThreadPoolExecutor(max_workers=16) as pool:
            futures = [pool.submit(write, i) for i in range(10)]
            futures += [pool.submit(prune, i) for i in range(4)]
            for future in futures:
                future.result()

        for uid in memory.user_ids():
            assert memory.snapshot(uid).user_messages
