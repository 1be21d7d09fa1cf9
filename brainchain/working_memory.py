"""
Per-user working memory.

Four bounded recency buffers per user (recent messages, stage outputs,
intents, tones). Old entries fall off the front when a buffer is full.
This is short-lived state that shapes the next turn; long-term history
lives behind ConversationStore.
"""

from __future__ import annotations

import logging
import time
from collections import Counter, deque
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from threading import Lock
from typing import Any

from .config import MemoryConfig

logger = logging.getLogger(__name__)

UNKNOWN_INTENT = "unknown"
NEUTRAL_TONE = "neutral"


@dataclass(frozen=True)
class IntentEntry:
    intent: str
    confidence: float
    timestamp: float


@dataclass(frozen=True)
class ToneEntry:
    tone: str
    intensity: float
    timestamp: float


@dataclass
class WorkingMemoryState:
    """Mutable buffers for one user. Only touched under that user's lock."""

    user_messages: deque[str]
    stage_outputs: deque[tuple[str, str]]
    intents: deque[IntentEntry]
    tones: deque[ToneEntry]
    last_access: float = field(default_factory=time.time)

    @classmethod
    def with_capacities(cls, config: MemoryConfig) -> WorkingMemoryState:
        return cls(
            user_messages=deque(maxlen=config.user_messages),
            stage_outputs=deque(maxlen=config.stage_outputs),
            intents=deque(maxlen=config.intents),
            tones=deque(maxlen=config.tones),
        )


@dataclass(frozen=True)
class WorkingMemorySnapshot:
    """Immutable, oldest-first copy of one user's buffers."""

    user_id: str
    user_messages: tuple[str, ...] = ()
    stage_outputs: tuple[tuple[str, str], ...] = ()
    intents: tuple[IntentEntry, ...] = ()
    tones: tuple[ToneEntry, ...] = ()

    @property
    def most_recent_intent(self) -> str:
        return self.intents[-1].intent if self.intents else UNKNOWN_INTENT

    @property
    def dominant_tone(self) -> str:
        return _dominant([t.tone for t in self.tones])

    @property
    def is_empty(self) -> bool:
        return not (self.user_messages or self.stage_outputs or self.intents or self.tones)

    def summary(self) -> str:
        return (
            f"Recent intent: {self.most_recent_intent}, "
            f"dominant tone: {self.dominant_tone}, "
            f"messages: {len(self.user_messages)}"
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "user_id": self.user_id,
            "user_messages": list(self.user_messages),
            "stage_outputs": [list(s) for s in self.stage_outputs],
            "intents": [e.intent for e in self.intents],
            "tones": [e.tone for e in self.tones],
            "most_recent_intent": self.most_recent_intent,
            "dominant_tone": self.dominant_tone,
        }


def _dominant(tones: list[str]) -> str:
    """Most frequent tone; ties go to the tied tone seen most recently."""
    if not tones:
        return NEUTRAL_TONE
    counts = Counter(tones)
    best = max(counts.values())
    for tone in reversed(tones):
        if counts[tone] == best:
            return tone
    return NEUTRAL_TONE


class WorkingMemoryStore:
    """
    Thread-safe map of user id to WorkingMemoryState.

    Each user has a dedicated lock, so appends for different users never
    contend. The registry lock is held only while an entry is created or
    removed; removal also takes the user lock, so an append never lands
    on a state that has already been dropped.
    """

    def __init__(self, config: MemoryConfig | None = None):
        self.config = config or MemoryConfig()
        self._states: dict[str, WorkingMemoryState] = {}
        self._locks: dict[str, Lock] = {}
        self._registry_lock = Lock()

    def _entry(self, user_id: str) -> tuple[WorkingMemoryState, Lock]:
        state = self._states.get(user_id)
        lock = self._locks.get(user_id)
        if state is not None and lock is not None:
            return state, lock
        with self._registry_lock:
            if user_id not in self._states:
                self._states[user_id] = WorkingMemoryState.with_capacities(self.config)
                self._locks[user_id] = Lock()
                logger.debug(f"Created working memory for user {user_id}")
            return self._states[user_id], self._locks[user_id]

    @contextmanager
    def _locked(self, user_id: str) -> Iterator[WorkingMemoryState]:
        """Hold the user's lock on a state that is still registered."""
        while True:
            state, lock = self._entry(user_id)
            with lock:
                # Removal takes this lock, so a registered state stays registered.
                if self._states.get(user_id) is state:
                    yield state
                    state.last_access = time.time()
                    return
            logger.debug(f"Working memory for user {user_id} was removed, retrying append")

    def append_user_message(self, user_id: str, text: str) -> None:
        with self._locked(user_id) as state:
            state.user_messages.append(text)

    def append_stage_output(self, user_id: str, stage: str, output: str) -> None:
        with self._locked(user_id) as state:
            state.stage_outputs.append((stage, output))

    def append_intent(self, user_id: str, intent: str, confidence: float) -> None:
        with self._locked(user_id) as state:
            state.intents.append(IntentEntry(intent, confidence, time.time()))

    def append_tone(self, user_id: str, tone: str, intensity: float) -> None:
        with self._locked(user_id) as state:
            state.tones.append(ToneEntry(tone, intensity, time.time()))

    def most_recent_intent(self, user_id: str) -> str:
        """Last recorded intent, or ``"unknown"`` when none."""
        return self.snapshot(user_id).most_recent_intent

    def dominant_tone(self, user_id: str) -> str:
        """Majority tone, or ``"neutral"`` when none."""
        return self.snapshot(user_id).dominant_tone

    def snapshot(self, user_id: str) -> WorkingMemorySnapshot:
        state = self._states.get(user_id)
        lock = self._locks.get(user_id)
        if state is None or lock is None:
            return WorkingMemorySnapshot(user_id=user_id)
        with lock:
            return WorkingMemorySnapshot(
                user_id=user_id,
                user_messages=tuple(state.user_messages),
                stage_outputs=tuple(state.stage_outputs),
                intents=tuple(state.intents),
                tones=tuple(state.tones),
            )

    def summary(self, user_id: str) -> str:
        return self.snapshot(user_id).summary()

    def forget(self, user_id: str) -> bool:
        with self._registry_lock:
            lock = self._locks.get(user_id)
            if lock is None:
                return False
            with lock:
                del self._locks[user_id]
                del self._states[user_id]
            return True

    def prune_idle(self, max_idle_seconds: float | None = None) -> int:
        """Drop users idle for longer than ``max_idle_seconds``; returns count."""
        limit = self.config.max_idle_seconds if max_idle_seconds is None else max_idle_seconds
        cutoff = time.time() - limit
        pruned = 0
        with self._registry_lock:
            for uid in list(self._states):
                with self._locks[uid]:
                    if self._states[uid].last_access >= cutoff:
                        continue
                    del self._states[uid]
                    del self._locks[uid]
                pruned += 1
        if pruned:
            logger.info(f"Pruned working memory for {pruned} idle users")
        return pruned

    def user_ids(self) -> list[str]:
        with self._registry_lock:
            return list(self._states)

    def __len__(self) -> int:
        return len(self._states)


__all__ = [
    "IntentEntry",
    "NEUTRAL_TONE",
    "ToneEntry",
    "UNKNOWN_INTENT",
    "WorkingMemorySnapshot",
    "WorkingMemoryState",
    "WorkingMemoryStore",
]
