"""
Personality and tone adaptation.

A fixed PersonalityProfile (eight traits on a 1..10 scale plus a
communication style) drives a deterministic rewrite of the answer's
prose. Code spans are never touched, and the rewrite only swaps surface
wording, so the facts of the answer stay as the model wrote them.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Literal

from .context import RequestContext
from .pipeline import NextFn
from .types import ChatRequest, ChatResponse, Intent, Plan, StageId
from .working_memory import WorkingMemoryStore

logger = logging.getLogger(__name__)

# Default profile file location
DEFAULT_PROFILE_PATH = Path.home() / ".brainchain" / "personality.json"

TRAIT_NAMES = (
    "helpfulness",
    "humor",
    "formality",
    "verbosity",
    "patience",
    "empathy",
    "enthusiasm",
    "directness",
)


class Archetype(str, Enum):
    """Coarse personality buckets derived from the traits."""

    MENTOR = "MENTOR"
    ENTHUSIAST = "ENTHUSIAST"
    PROFESSIONAL = "PROFESSIONAL"
    FRIEND = "FRIEND"
    BALANCED = "BALANCED"


def _clamp_trait(value: Any) -> int:
    return max(1, min(10, int(value)))


@dataclass
class CommunicationStyle:
    """How answers are phrased, independent of the traits."""

    language_level: Literal["simple", "intermediate", "technical"] = "intermediate"
    emoji_usage: Literal["none", "minimal", "moderate", "heavy"] = "moderate"
    tone: str = "friendly"


@dataclass
class PersonalityProfile:
    """
    Trait scores (1..10) that shape the final wording of every answer.

    Values outside 1..10 are clamped on construction and on load.
    """

    helpfulness: int = 9
    humor: int = 6
    formality: int = 5
    verbosity: int = 6
    patience: int = 9
    empathy: int = 8
    enthusiasm: int = 7
    directness: int = 7
    style: CommunicationStyle = field(default_factory=CommunicationStyle)

    def __post_init__(self) -> None:
        for name in TRAIT_NAMES:
            setattr(self, name, _clamp_trait(getattr(self, name)))

    @property
    def archetype(self) -> Archetype:
        if self.helpfulness >= 8 and self.empathy >= 8 and self.patience >= 8:
            return Archetype.MENTOR
        if self.humor >= 7 and self.enthusiasm >= 7:
            return Archetype.ENTHUSIAST
        if self.directness >= 8 and self.formality >= 7:
            return Archetype.PROFESSIONAL
        if self.empathy >= 8 and self.formality <= 4:
            return Archetype.FRIEND
        return Archetype.BALANCED

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        data = {name: getattr(self, name) for name in TRAIT_NAMES}
        data["style"] = asdict(self.style)
        data["archetype"] = self.archetype.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PersonalityProfile:
        """Create from dictionary."""
        traits = {name: data[name] for name in TRAIT_NAMES if name in data}
        style_fields = {f.name for f in fields(CommunicationStyle)}
        style_data = {k: v for k, v in data.get("style", {}).items() if k in style_fields}
        return cls(**traits, style=CommunicationStyle(**style_data))

    def save(self, path: Path | None = None) -> None:
        """Save profile to file."""
        path = path or DEFAULT_PROFILE_PATH
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: Path | None = None) -> PersonalityProfile:
        """Load profile from file."""
        path = path or DEFAULT_PROFILE_PATH
        if path.exists():
            with open(path) as f:
                return cls.from_dict(json.load(f))
        return cls()


# Fenced blocks (closed or running to the end) and inline code
_CODE_SPAN = re.compile(r"(```.*?(?:```|\Z)|`[^`\n]+`)", re.DOTALL)
_EMOJI = re.compile("[\u2600-\u27bf\U0001f300-\U0001faff]\ufe0f?")

_CONTRACT = (("cannot", "can't"), ("do not", "don't"), ("will not", "won't"), ("it is", "it's"))
_EXPAND = (("can't", "cannot"), ("don't", "do not"), ("won't", "will not"), ("it's", "it is"))
_SIMPLER = (("utilize", "use"), ("facilitate", "help"), ("leverage", "use"))
_TECHNICAL = (("use", "utilize"),)
_ENTHUSE = (("great", "amazing"), ("good", "excellent"))
_CALM = (("amazing", "good"), ("excellent", "fine"))

_STRESSED_TONES = {"frustrated", "confused", "urgent"}


def _match_case(source: str, replacement: str) -> str:
    if source[:1].isupper():
        return replacement[:1].upper() + replacement[1:]
    return replacement


def swap_words(text: str, pairs: tuple[tuple[str, str], ...], count: int = 0) -> str:
    """Whole-word, case-insensitive swaps that keep a leading capital."""
    for old, new in pairs:
        pattern = re.compile(rf"\b{re.escape(old)}\b", re.IGNORECASE)
        text = pattern.sub(lambda m, new=new: _match_case(m.group(), new), text, count=count)
    return text


def map_prose(text: str, transform: Callable[[str], str]) -> str:
    """Apply ``transform`` to everything outside code spans."""
    parts = _CODE_SPAN.split(text)
    return "".join(part if i % 2 else transform(part) for i, part in enumerate(parts))


def empathy_preface(profile: PersonalityProfile) -> str:
    if profile.formality >= 8:
        return "I understand this issue is frustrating. Let us work through it step by step."
    return "I know this one is frustrating, so let's work through it step by step."


class ToneAdapter:
    """Last stage on the way out: restyles the accepted answer."""

    stage_id = StageId.TONE_ADAPTER

    def __init__(
        self,
        profile: PersonalityProfile | None = None,
        memory: WorkingMemoryStore | None = None,
    ):
        self.profile = profile or PersonalityProfile()
        self.memory = memory

    def _restyle(self, prose: str) -> str:
        profile = self.profile
        style = profile.style

        if profile.formality <= 3:
            prose = swap_words(prose, _CONTRACT)
        elif profile.formality >= 8:
            prose = swap_words(prose, _EXPAND)

        if style.language_level == "simple":
            prose = swap_words(prose, _SIMPLER)
        elif style.language_level == "technical":
            prose = swap_words(prose, _TECHNICAL)

        if profile.enthusiasm >= 8:
            prose = swap_words(prose, _ENTHUSE)
        elif profile.enthusiasm <= 3:
            prose = swap_words(prose, _CALM)

        if style.emoji_usage == "none":
            prose = _EMOJI.sub("", prose)
        else:
            if profile.humor >= 8:
                prose = re.sub(r"\berror\b", "error (oops! 😅)", prose, count=1, flags=re.IGNORECASE)
            if style.emoji_usage == "heavy":
                prose = re.sub(r"\bsuccess\b", "success ✅", prose, count=1, flags=re.IGNORECASE)
        return prose

    def adapt(self, text: str, plan: Plan | None, dominant_tone: str = "neutral") -> str:
        """Restyle ``text`` for ``plan``'s intent. Pure apart from the profile."""
        if not text or plan is None or plan.intent in (Intent.SIMPLE, Intent.CALCULATION):
            return text

        adapted = map_prose(text, self._restyle)
        if (
            plan.intent == Intent.DEBUG
            and self.profile.empathy >= 7
            and dominant_tone in _STRESSED_TONES
        ):
            adapted = f"{empathy_preface(self.profile)}\n\n{adapted}"
        return adapted

    async def process(self, request: ChatRequest, ctx: RequestContext, next: NextFn) -> ChatResponse:
        response = await next(request)

        try:
            tone = self.memory.dominant_tone(ctx.user_id) if self.memory is not None else "neutral"
            adapted = self.adapt(response.text, ctx.plan, tone)
        except Exception as e:
            logger.warning(f"[{ctx.trace_id}] Tone adaptation failed, returning answer unchanged: {e}")
            return response

        if adapted != response.text:
            logger.debug(
                f"[{ctx.trace_id}] Applied {self.profile.archetype.value} tone "
                f"(dominant user tone: {tone})"
            )
        response.text = adapted
        response.metadata["archetype"] = self.profile.archetype.value
        return response


__all__ = [
    "Archetype",
    "CommunicationStyle",
    "DEFAULT_PROFILE_PATH",
    "PersonalityProfile",
    "TRAIT_NAMES",
    "ToneAdapter",
    "empathy_preface",
    "map_prose",
    "swap_words",
]
