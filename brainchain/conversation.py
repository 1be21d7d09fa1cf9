"""
Long-term conversation memory port.

The pipeline reads a context summary and recent history from a
ConversationStore and writes each finished turn back. The storage engine
is not ours; InMemoryConversationStore backs tests and single-process use.
"""

from __future__ import annotations

import time
from collections import defaultdict
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Protocol, runtime_checkable

from .types import Message, MessageRole


def default_conversation_id() -> str:
    """Fallback id when the caller sends none; stable within a minute."""
    return f"session_default_{int(time.time() // 60)}"


@dataclass
class UserProfile:
    """What the long-term store knows about a user."""

    user_id: str
    name: str = ""
    preferences: dict[str, Any] = field(default_factory=dict)
    expertise_areas: list[str] = field(default_factory=list)

    def describe(self) -> str:
        parts = []
        if self.name:
            parts.append(f"User: {self.name}")
        if self.expertise_areas:
            parts.append("Expertise: " + ", ".join(self.expertise_areas))
        if self.preferences:
            parts.append(
                "Preferences: " + ", ".join(f"{k}={v}" for k, v in sorted(self.preferences.items()))
            )
        return "; ".join(parts)


@runtime_checkable
class ConversationStore(Protocol):
    """Append-only per-conversation log plus per-user profiles."""

    def context_summary(self, conversation_id: str, user_id: str) -> str: ...

    def history(self, conversation_id: str, limit: int = 10) -> list[Message]: ...

    def append_turn(self, conversation_id: str, role: MessageRole, content: str) -> None: ...

    def profile(self, user_id: str) -> UserProfile | None: ...


class InMemoryConversationStore:
    """Process-local ConversationStore."""

    def __init__(self, summary_turns: int = 6, snippet_chars: int = 160):
        self.summary_turns = summary_turns
        self.snippet_chars = snippet_chars
        self._turns: dict[str, list[Message]] = defaultdict(list)
        self._profiles: dict[str, UserProfile] = {}
        self._lock = Lock()

    def append_turn(self, conversation_id: str, role: MessageRole, content: str) -> None:
        with self._lock:
            self._turns[conversation_id].append(
                Message(role=role, content=content, timestamp=time.time())
            )

    def history(self, conversation_id: str, limit: int = 10) -> list[Message]:
        with self._lock:
            turns = list(self._turns.get(conversation_id, ()))
        return turns[-limit:] if limit > 0 else []

    def set_profile(self, profile: UserProfile) -> None:
        with self._lock:
            self._profiles[profile.user_id] = profile

    def profile(self, user_id: str) -> UserProfile | None:
        with self._lock:
            return self._profiles.get(user_id)

    def context_summary(self, conversation_id: str, user_id: str) -> str:
        lines: list[str] = []
        profile = self.profile(user_id)
        if profile is not None and profile.describe():
            lines.append(profile.describe())

        recent = self.history(conversation_id, self.summary_turns)
        if recent:
            lines.append(f"Previous conversation ({len(recent)} recent turns):")
            for message in recent:
                snippet = message.content.replace("\n", " ")
                if len(snippet) > self.snippet_chars:
                    snippet = snippet[: self.snippet_chars - 3] + "..."
                lines.append(f"- {message.role.value}: {snippet}")
        return "\n".join(lines)


__all__ = [
    "ConversationStore",
    "InMemoryConversationStore",
    "UserProfile",
    "default_conversation_id",
]
