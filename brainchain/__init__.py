"""
brainchain: request orchestration for a conversational coding assistant.

Every user message runs through an ordered chain of stages around a
single model call:

- Plan building (intent, complexity, strategy, required tools)
- Tone adaptation of the final answer
- Context enrichment from the tool catalog and memory
- Tool approval by vote, with a hard safety deny-list
- Quality evaluation with bounded regeneration
"""

__version__ = "0.1.0"

# Entry point
from .orchestrator import ChatOrchestrator

# Chain machinery
from .cancellation import CancellationToken, CancelledException
from .context import RequestContext, new_trace_id
from .pipeline import (
    CANONICAL_ORDER,
    PipelineExecutor,
    PipelineTelemetry,
    Stage,
    StageTelemetry,
    select_stages,
)

# Stages
from .enricher import ContextEnricher
from .planner import PlanBuilder, build_default_plan
from .policy import ToolPolicyEnforcer, average_vote_score, decide_tools
from .refiner import HeuristicEvaluator, LLMJudgeEvaluator, QualityRefiner
from .safety import DEFAULT_DENY_LIST, SafetyGuardrail
from .tone import PersonalityProfile, ToneAdapter

# Ports and their default implementations
from .audit import AnalyticsSink, AuditLogger, AuditRecord, NullAuditSink
from .catalog import KeywordToolCatalog, ToolCatalogIndex
from .classifier import Classifier, RuleBasedClassifier
from .conversation import ConversationStore, InMemoryConversationStore
from .invoker import LLMModelInvoker, ModelInvoker, ModelReply
from .working_memory import WorkingMemorySnapshot, WorkingMemoryStore

# Configuration
from .config import BrainChainConfig

# Types
from .types import (
    BrainChainError,
    ChatRequest,
    ChatResponse,
    Intent,
    ModelInvocationError,
    ModelTimeoutError,
    Plan,
    QualityEvaluation,
    ReasoningState,
    StageId,
    Strategy,
    ToolPermissions,
    Vote,
)

__all__ = [
    # Entry point
    "ChatOrchestrator",
    # Chain machinery
    "CANONICAL_ORDER",
    "CancellationToken",
    "CancelledException",
    "PipelineExecutor",
    "PipelineTelemetry",
    "RequestContext",
    "Stage",
    "StageTelemetry",
    "new_trace_id",
    "select_stages",
    # Stages
    "ContextEnricher",
    "DEFAULT_DENY_LIST",
    "HeuristicEvaluator",
    "LLMJudgeEvaluator",
    "PersonalityProfile",
    "PlanBuilder",
    "QualityRefiner",
    "SafetyGuardrail",
    "ToneAdapter",
    "ToolPolicyEnforcer",
    "average_vote_score",
    "build_default_plan",
    "decide_tools",
    # Ports
    "AnalyticsSink",
    "AuditLogger",
    "AuditRecord",
    "Classifier",
    "ConversationStore",
    "InMemoryConversationStore",
    "KeywordToolCatalog",
    "LLMModelInvoker",
    "ModelInvoker",
    "ModelReply",
    "NullAuditSink",
    "RuleBasedClassifier",
    "ToolCatalogIndex",
    "WorkingMemorySnapshot",
    "WorkingMemoryStore",
    # Configuration
    "BrainChainConfig",
    # Types
    "BrainChainError",
    "ChatRequest",
    "ChatResponse",
    "Intent",
    "ModelInvocationError",
    "ModelTimeoutError",
    "Plan",
    "QualityEvaluation",
    "ReasoningState",
    "StageId",
    "Strategy",
    "ToolPermissions",
    "Vote",
]
