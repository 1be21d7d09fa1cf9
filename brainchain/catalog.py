"""
Tool catalog lookup.

The pipeline only depends on ``rank(free_text) -> [(tool_id, score)]``.
A semantic index can sit behind that contract; KeywordToolCatalog is the
in-process default used when none is configured.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

_TOKEN = re.compile(r"[a-z0-9]+")
_STOPWORDS = frozenset(
    {"a", "an", "and", "the", "for", "of", "to", "in", "on", "is", "it", "my", "me", "i", "you", "what", "from"}
)


@runtime_checkable
class ToolCatalogIndex(Protocol):
    """Ranks candidate tool ids for a piece of free text, best first."""

    def rank(self, free_text: str) -> list[tuple[str, float]]: ...


def tokenize(text: str) -> set[str]:
    # Split camelCase ids so "getWeather" matches "weather"
    spaced = re.sub(r"([a-z])([A-Z])", r"\1 \2", text)
    return set(_TOKEN.findall(spaced.lower())) - _STOPWORDS


@dataclass
class ToolDescriptor:
    tool_id: str
    description: str
    keywords: tuple[str, ...] = ()

    def terms(self) -> set[str]:
        return tokenize(self.tool_id) | tokenize(self.description) | set(self.keywords)


DEFAULT_TOOLS: tuple[ToolDescriptor, ...] = (
    ToolDescriptor("add", "Add two numbers", ("sum", "plus", "total", "calculate")),
    ToolDescriptor("subtract", "Subtract one number from another", ("minus", "calculate")),
    ToolDescriptor("multiply", "Multiply two numbers", ("times", "product", "calculate")),
    ToolDescriptor("divide", "Divide two numbers", ("quotient", "calculate")),
    ToolDescriptor("getCurrentDateTime", "Current date and time", ("today", "now", "clock")),
    ToolDescriptor("getWeather", "Weather forecast for a city", ("temperature", "rain", "forecast")),
    ToolDescriptor("search", "Search the web for recent information", ("find", "lookup", "latest")),
    ToolDescriptor("calendar", "Calendar events and meetings", ("schedule", "appointment", "meeting")),
    ToolDescriptor(
        "analyzeProjectComprehensive",
        "Analyze a project codebase structure and dependencies",
        ("review", "audit", "architecture", "project", "codebase", "repository"),
    ),
    ToolDescriptor("analyzeFile", "Analyze a single source file", ("file", "review", "inspect", "code")),
    ToolDescriptor("findBugs", "Find likely bugs and error causes", ("bug", "error", "debug", "crash", "fix")),
    ToolDescriptor("suggestRefactorings", "Suggest refactorings for code", ("refactor", "clean", "improve")),
    ToolDescriptor("generateTests", "Generate unit tests for code", ("test", "tests", "coverage", "pytest")),
    ToolDescriptor("explainCode", "Explain what code does", ("explain", "understand", "how", "why")),
    ToolDescriptor("executeCommand", "Run a shell command", ("run", "shell", "command", "execute")),
    ToolDescriptor("deleteFile", "Delete a file from disk", ("delete", "remove", "file")),
    ToolDescriptor("sendEmail", "Send an email message", ("email", "mail", "send")),
)


@dataclass
class KeywordToolCatalog:
    """Scores tools by the fraction of their terms that appear in the text."""

    tools: tuple[ToolDescriptor, ...] = DEFAULT_TOOLS
    min_score: float = 0.1
    top_k: int = 5
    _terms: dict[str, set[str]] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        self._terms = {t.tool_id: t.terms() for t in self.tools}

    def rank(self, free_text: str) -> list[tuple[str, float]]:
        words = tokenize(free_text)
        if not words:
            return []
        scored: list[tuple[str, float]] = []
        for tool_id, terms in self._terms.items():
            hits = len(words & terms)
            if not hits:
                continue
            # Saturates at three matching terms
            score = round(min(1.0, hits / 3), 3)
            if score >= self.min_score:
                scored.append((tool_id, score))
        scored.sort(key=lambda item: (-item[1], item[0]))
        return scored[: self.top_k]


__all__ = ["DEFAULT_TOOLS", "KeywordToolCatalog", "ToolCatalogIndex", "ToolDescriptor", "tokenize"]
