"""
Configuration management for brainchain.

Every section is a plain dataclass so the whole tree round-trips through
JSON. API keys are never stored here; they come from the environment.
"""

import json
import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Literal

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".brainchain" / "config.json"


@dataclass
class PlannerConfig:
    """Configuration for plan building."""

    fast_path_enabled: bool = True
    fast_path_max_chars: int = 40
    # Inherit the previous intent for vague follow-ups
    continuity_enabled: bool = True
    tool_vote_score: float = 0.85
    no_tool_vote_score: float = 0.15


@dataclass
class PolicyConfig:
    """Configuration for tool approval."""

    vote_threshold: float = 0.5
    extra_denied_tools: list[str] = field(default_factory=list)
    catalog_top_k: int = 5
    catalog_min_score: float = 0.1


@dataclass
class RefinementConfig:
    """Configuration for the quality refinement loop."""

    enabled: bool = True
    quality_threshold: float = 3.0
    max_attempts: int = 2
    time_budget_seconds: float = 30.0
    skip_complexity_at_or_below: int = 3
    evaluator: Literal["llm", "heuristic"] = "heuristic"
    evaluator_model: str = "haiku"


@dataclass
class MemoryConfig:
    """Capacities of the per-user working memory buffers."""

    user_messages: int = 5
    stage_outputs: int = 3
    intents: int = 10
    tones: int = 10
    max_idle_seconds: float = 3600.0


@dataclass
class ModelConfig:
    """Configuration for the terminal model call."""

    default_model: str = "sonnet"
    timeout_seconds: float = 60.0
    max_tokens: int = 4096
    temperature: float = 0.2


@dataclass
class AuditConfig:
    """Configuration for the JSONL audit trail."""

    enabled: bool = True
    log_path: str = "~/.brainchain/audit.jsonl"
    max_size_mb: float = 50.0
    max_files: int = 5


def _section(section_cls, data: dict | None):
    """Build one section from JSON, ignoring keys it does not define."""
    data = data or {}
    known = {f.name for f in fields(section_cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        logger.warning(f"Ignoring unknown {section_cls.__name__} keys: {', '.join(unknown)}")
    return section_cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class BrainChainConfig:
    """Complete brainchain configuration."""

    planner: PlannerConfig = field(default_factory=PlannerConfig)
    policy: PolicyConfig = field(default_factory=PolicyConfig)
    refinement: RefinementConfig = field(default_factory=RefinementConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    models: ModelConfig = field(default_factory=ModelConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)

    @classmethod
    def load(cls, path: Path | None = None) -> "BrainChainConfig":
        """Load configuration from file."""
        if path is None:
            path = DEFAULT_CONFIG_PATH

        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        return cls(
            planner=_section(PlannerConfig, data.get("planner")),
            policy=_section(PolicyConfig, data.get("policy")),
            refinement=_section(RefinementConfig, data.get("refinement")),
            memory=_section(MemoryConfig, data.get("memory")),
            models=_section(ModelConfig, data.get("models")),
            audit=_section(AuditConfig, data.get("audit")),
        )

    def save(self, path: Path | None = None) -> None:
        """Save configuration to file."""
        if path is None:
            path = DEFAULT_CONFIG_PATH

        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            json.dump(asdict(self), f, indent=2)
