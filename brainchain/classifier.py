"""
Table-driven request classification.

Heuristics only, fast enough to run on every request. Intent, tool and
tone rules are plain tables so each rule can be tested on its own and a
different Classifier can be dropped in without touching the pipeline.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from .types import Intent, Strategy

FAST_PATH_MAX_CHARS = 40

# Anything mentioning these needs the full chain
_COMPLEX_KEYWORDS = (
    "why", "how", "explain", "architecture", "design", "refactor", "optimize",
    "version", "latest", "documentation", "tutorial", "guide", "research",
    "find", "search", "tell me about", "weather", "forecast", "temperature",
)

_GREETINGS = (
    "hi", "hello", "hey", "thanks", "thank you", "ok", "okay", "yes", "no",
    "bye", "goodbye", "good morning", "good evening",
)

_ARITHMETIC = re.compile(r"\d+(\.\d+)?\s*[-+*/×÷]\s*\(?\d+")
_TIME_QUESTION = re.compile(
    r"\b(what\s+time|what\s+date|what\s+day|what's\s+the\s+(time|date|day)|today's\s+date)\b"
)
_GREETING = re.compile(
    r"^(" + "|".join(re.escape(g) for g in _GREETINGS) + r")(\s+(there|you|a lot|so much))?[\s!.]*$"
)


@dataclass(frozen=True)
class IntentRule:
    """One row of the intent table: first matching row wins."""

    intent: Intent
    pattern: re.Pattern[str]
    strong_keywords: tuple[str, ...] = ()

    def matches(self, text: str) -> bool:
        return self.pattern.search(text) is not None

    def confidence(self, text: str) -> float:
        if any(k in text for k in self.strong_keywords):
            return 0.95
        return 0.7


INTENT_RULES: tuple[IntentRule, ...] = (
    IntentRule(
        Intent.CALCULATION,
        re.compile(r"\b(calculate|compute|sum|total)\b|\badd\s+\d|\d+\s*[-+*/×÷]\s*\d+"),
        ("calculate", "compute"),
    ),
    IntentRule(
        Intent.DEBUG,
        re.compile(r"\b(bug|error|fix|crash\w*|fail\w*|debug\w*|exception|traceback|broken)\b"),
        ("bug", "debug", "traceback", "exception"),
    ),
    IntentRule(
        Intent.REFACTOR,
        re.compile(r"\b(refactor\w*|improve|optimi[sz]e|clean\s*up|restructure|simplify)\b"),
        ("refactor",),
    ),
    IntentRule(
        Intent.TESTING,
        re.compile(r"\b(unit\s+tests?|integration\s+tests?|tests?|testing|coverage|pytest|mock)\b"),
        ("unit test", "pytest", "coverage"),
    ),
    IntentRule(
        Intent.IMPLEMENTATION,
        re.compile(r"\b(implement\w*|create|build|write|scaffold|generate)\b"),
        ("implement",),
    ),
    IntentRule(
        Intent.EXPLANATION,
        re.compile(r"\b(explain\w*|understand|how|why|what|describe)\b"),
        ("explain",),
    ),
)

# (focus area, keywords), checked in order
FOCUS_AREAS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("DEBUG", ("bug", "error", "fix")),
    ("REFACTOR", ("refactor", "improve", "optimize")),
    ("TESTING", ("test",)),
    ("ARCHITECTURE", ("architecture", "design")),
    ("PERFORMANCE", ("performance", "speed", "latency")),
    ("SECURITY", ("security", "vulnerab", "auth")),
    ("IMPLEMENTATION", ("implement", "create", "build")),
)

_TECHNICAL = re.compile(r"\b(algorithm|architecture|optimi[sz]ation|refactor\w*|debug\w*|concurren\w*)\b")
_CODE_BLOCK = re.compile(r"```|^( {4}|\t)\S", re.MULTILINE)
_SENTENCE_END = re.compile(r"[.!?]+(\s|$)")

_VAGUE_TARGET = re.compile(r"\b(it|this|that|these|those|thing|stuff|something)\b")
_HEDGE = re.compile(r"\b(maybe|probably|might|could|somehow)\b")
_PERSONAL_PRONOUN = re.compile(r"\b(he|she|they|we)\b")


@dataclass(frozen=True)
class Classification:
    """Result of classifying one request."""

    intent: Intent
    confidence: float
    complexity: int
    ambiguity: int
    focus_area: str = "GENERAL"


@runtime_checkable
class Classifier(Protocol):
    """Anything that can turn request text into a Classification."""

    def classify(self, text: str) -> Classification: ...


def _clamp(value: int, low: int = 1, high: int = 10) -> int:
    return max(low, min(high, value))


def is_fast_path(text: str, max_chars: int = FAST_PATH_MAX_CHARS) -> bool:
    """
    True for pure arithmetic, a direct time/date question or a bare greeting.

    Long text, several questions, or any keyword that calls for research
    or explanation always takes the full chain.
    """
    stripped = text.strip()
    if not stripped or len(stripped) > max_chars:
        return False

    lower = stripped.lower()
    if lower.count("?") > 1:
        return False
    if _GREETING.match(lower):
        return True
    if any(k in lower for k in _COMPLEX_KEYWORDS):
        return False
    return bool(_ARITHMETIC.search(lower) or _TIME_QUESTION.search(lower))


def fast_path_tools(text: str) -> list[str]:
    """The single obvious tool for a fast-path request, if any."""
    lower = text.lower()
    if any(k in lower for k in ("date", "time", "today", "day")):
        return ["getCurrentDateTime"]
    if "+" in lower or "add" in lower or "plus" in lower:
        return ["add"]
    if "*" in lower or "×" in lower or "times" in lower or "multiply" in lower:
        return ["multiply"]
    if "/" in lower or "÷" in lower or "divide" in lower:
        return ["divide"]
    if _ARITHMETIC.search(lower):
        return ["subtract"]
    return []


def score_complexity(text: str) -> int:
    """Complexity 1..10 from length, words, sentences, keywords, questions and code."""
    lower = text.lower()
    score = 1
    if len(text) > 100:
        score += 2
    if len(text) > 200:
        score += 2
    score += min(len(text.split()) // 5, 3)
    if _TECHNICAL.search(lower):
        score += 2
    score += text.count("?")
    if len(_SENTENCE_END.findall(text)) >= 3:
        score += 1
    if _CODE_BLOCK.search(text):
        score += 2
    return _clamp(score)


def score_ambiguity(text: str) -> int:
    """Ambiguity 1..10 from vague targets, hedges, very short text and pronouns."""
    lower = text.lower()
    score = 0
    if _VAGUE_TARGET.search(lower):
        score += 2
    if _HEDGE.search(lower):
        score += 1
    if len(text.strip()) < 20:
        score += 2
    if _PERSONAL_PRONOUN.search(lower):
        score += 1
    return _clamp(score)


def has_vague_target(text: str) -> bool:
    return _VAGUE_TARGET.search(text.lower()) is not None


def select_strategy(complexity: int) -> Strategy:
    """Complexity <=3 FAST_RECALL, 4..7 BALANCED, >=8 SLOW_REASONING."""
    if complexity <= 3:
        return Strategy.FAST_RECALL
    if complexity <= 7:
        return Strategy.BALANCED
    return Strategy.SLOW_REASONING


def focus_area(text: str) -> str:
    lower = text.lower()
    for area, keywords in FOCUS_AREAS:
        if any(k in lower for k in keywords):
            return area
    return "GENERAL"


class RuleBasedClassifier:
    """Classifier driven by an ordered IntentRule table."""

    def __init__(self, rules: tuple[IntentRule, ...] = INTENT_RULES):
        self.rules = rules

    def match_intent(self, text: str) -> tuple[Intent, float]:
        lower = text.lower()
        for rule in self.rules:
            if rule.matches(lower):
                return rule.intent, rule.confidence(lower)
        return Intent.GENERAL, 0.5

    def classify(self, text: str) -> Classification:
        intent, confidence = self.match_intent(text)
        return Classification(
            intent=intent,
            confidence=confidence,
            complexity=score_complexity(text),
            ambiguity=score_ambiguity(text),
            focus_area=focus_area(text),
        )


# Tool rules


@dataclass(frozen=True)
class ToolRule:
    tool: str
    pattern: re.Pattern[str]


# Requests like these defer to the catalog's ranked suggestions
_ANALYSIS = re.compile(
    r"\b(analy[sz]e|check|review|inspect|audit|project|code|repository|codebase|bug|error)\b|\.py\b|\.java\b"
)

_CALCULATION_TRIGGER = re.compile(r"\b(add|calculate|sum|total|plus|how much)\b|\+")

TOOL_RULES: tuple[ToolRule, ...] = (
    ToolRule("add", re.compile(r"\b(add|calculate|sum|total|plus|how much)\b|\+")),
    ToolRule("subtract", re.compile(r"\b(subtract|minus)\b|\d\s*-\s*\d")),
    ToolRule("multiply", re.compile(r"\b(multiply|times)\b|\*")),
    ToolRule("divide", re.compile(r"\b(divide|divided)\b|\d\s*/\s*\d")),
)

GENERAL_TOOL_RULES: tuple[ToolRule, ...] = (
    ToolRule("getCurrentDateTime", re.compile(r"\b(date|today|time|now|what time|what's the date)\b")),
    ToolRule("getWeather", re.compile(r"\b(weather|temperature|rain|sunny|forecast|celsius|fahrenheit)\b")),
    ToolRule("sendEmail", re.compile(r"\b(email|e-mail|mail)\b")),
    ToolRule("search", re.compile(r"\b(search|find|look up|latest|version of)\b")),
    ToolRule("calendar", re.compile(r"\b(event|meeting|schedule|calendar|appointment)\b")),
)


def required_tools(text: str, intent: Intent, suggested: list[str]) -> list[str]:
    """Tools the plan believes are necessary for this request."""
    lower = text.lower()
    if _ANALYSIS.search(lower):
        return list(dict.fromkeys(suggested))

    tools: list[str] = []
    if intent == Intent.CALCULATION or _CALCULATION_TRIGGER.search(lower):
        tools.extend(rule.tool for rule in TOOL_RULES if rule.pattern.search(lower))
    tools.extend(rule.tool for rule in GENERAL_TOOL_RULES if rule.pattern.search(lower))
    return list(dict.fromkeys(tools))


# Tone detection

# (keyword, tone), checked in table order; urgent and frustration first
URGENT_TONES: tuple[tuple[str, str], ...] = (
    ("urgent", "urgent"), ("asap", "urgent"), ("immediately", "urgent"),
    ("critical", "urgent"), ("emergency", "urgent"), ("help", "urgent"),
    ("stuck", "frustrated"), ("blocked", "frustrated"), ("frustrated", "frustrated"),
    ("annoyed", "frustrated"), ("angry", "frustrated"),
    ("confused", "confused"), ("lost", "confused"), ("unclear", "confused"),
    ("don't understand", "confused"),
)
POSITIVE_TONES: tuple[tuple[str, str], ...] = (
    ("great", "positive"), ("excellent", "positive"), ("amazing", "excited"),
    ("awesome", "excited"), ("wonderful", "positive"), ("fantastic", "excited"),
    ("love", "positive"), ("thanks", "positive"), ("thank you", "positive"),
    ("appreciate", "positive"), ("happy", "positive"), ("glad", "positive"),
    ("perfect", "excited"),
)
NEGATIVE_TONES: tuple[tuple[str, str], ...] = (
    ("bad", "negative"), ("terrible", "negative"), ("horrible", "negative"),
    ("awful", "negative"), ("hate", "negative"), ("dislike", "negative"),
    ("sad", "negative"), ("unhappy", "negative"), ("disappointed", "negative"),
    ("fail", "negative"), ("error", "negative"), ("problem", "negative"),
)
_TONE_TABLES = (URGENT_TONES, POSITIVE_TONES, NEGATIVE_TONES)


def _tone_intensity(text: str, lower: str) -> float:
    hits = sum(1 for table in _TONE_TABLES for keyword, _ in table if keyword in lower)
    intensity = min(hits * 15, 50)
    intensity += min((text.count("!") + text.count("?")) * 10, 30)
    if len(text) > 3 and text == text.upper() and any(c.isalpha() for c in text):
        intensity += 20
    if len(text) < 10:
        intensity += 10
    return min(intensity, 100) / 100


def detect_tone(text: str) -> tuple[str, float]:
    """Return ``(tone, intensity)`` with intensity in 0..1."""
    stripped = text.strip()
    if not stripped:
        return "neutral", 0.0

    lower = stripped.lower()
    intensity = _tone_intensity(stripped, lower)
    for table in _TONE_TABLES:
        for keyword, tone in table:
            if keyword in lower:
                return tone, intensity

    if re.search(r"!{2,}", lower):
        return "excited", intensity
    if re.search(r"\?{2,}", lower):
        return "confused", intensity
    if len(stripped) > 3 and stripped == stripped.upper() and any(c.isalpha() for c in stripped):
        return "frustrated", intensity
    return "neutral", intensity


__all__ = [
    "Classification",
    "Classifier",
    "FAST_PATH_MAX_CHARS",
    "GENERAL_TOOL_RULES",
    "INTENT_RULES",
    "IntentRule",
    "RuleBasedClassifier",
    "TOOL_RULES",
    "ToolRule",
    "detect_tone",
    "fast_path_tools",
    "focus_area",
    "has_vague_target",
    "is_fast_path",
    "required_tools",
    "score_ambiguity",
    "score_complexity",
    "select_strategy",
]
