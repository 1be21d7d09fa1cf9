"""
Quality refinement stage.

Scores the model's draft on clarity, relevance, factual grounding and
helpfulness. A draft scoring below the threshold is regenerated with the
evaluator's issues as guidance and scored again, at most
``max_attempts`` times and within a wall-clock budget. The best-scoring
answer wins. Evaluation trouble of any kind scores a neutral 3.0 and the
draft is accepted.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Protocol, runtime_checkable

from .api_client import BaseLLMClient, MultiProviderClient
from .audit import AnalyticsSink, AuditRecord, NullAuditSink
from .cancellation import CancelledException
from .config import RefinementConfig
from .context import RequestContext
from .pipeline import NextFn
from .types import ChatRequest, ChatResponse, EvaluationError, QualityEvaluation, StageId

logger = logging.getLogger(__name__)


@runtime_checkable
class Evaluator(Protocol):
    """Scores an answer to a question. Raises on failure."""

    async def evaluate(self, question: str, answer: str) -> QualityEvaluation: ...


JUDGE_PROMPT = """You are an expert quality judge. Evaluate this AI response across multiple criteria.

User Query: "{question}"
AI Response: "{answer}"

Please evaluate the response on these 4 criteria (1-5 scale each):

1. CLARITY (1-5):
   - Is the response well-structured and easy to understand?
   - Are explanations clear and logical?

2. RELEVANCE (1-5):
   - Does it directly address the user's question?
   - Does it provide what the user was looking for?

3. FACTUAL ACCURACY (1-5):
   - Are the facts, numbers, and technical details correct?
   - Are version numbers, dates, and specifications accurate?
   - If you detect any factual errors, rate this LOW (1-2)

4. HELPFULNESS (1-5):
   - Would this response actually help the user?
   - Is it actionable and does it provide sufficient detail?

Also identify any specific issues: factual errors, outdated information,
contradictions, missing important details.

Respond in this exact format:
CLARITY: [1-5]
RELEVANCE: [1-5]
FACTUAL: [1-5]
HELPFULNESS: [1-5]
OVERALL: [1-5]
ISSUES: [list any specific problems, or "none"]
"""

_NUMBER = re.compile(r"\d+(?:\.\d+)?")
_DATE_LIKE = re.compile(r"\b(19|20)\d\d\b|\b(mon|tues|wednes|thurs|fri|satur|sun)day\b")
_FIELDS = {
    "CLARITY": "clarity",
    "RELEVANCE": "relevance",
    "FACTUAL": "factual",
    "HELPFULNESS": "helpfulness",
    "OVERALL": "overall",
}


def parse_score(raw: str, default: float = 3.0) -> float:
    """First number in ``raw`` clamped to 1..5; ``default`` when none."""
    match = _NUMBER.search(raw)
    if match is None:
        return default
    return max(1.0, min(5.0, float(match.group())))


def parse_evaluation(text: str) -> QualityEvaluation:
    """
    Parse the judge's line format.

    Raises:
        EvaluationError: If no criterion line is present
    """
    scores: dict[str, float] = {}
    issues: list[str] = []
    for line in text.splitlines():
        key, sep, value = line.strip().partition(":")
        if not sep:
            continue
        key = key.strip().strip("*").upper()
        if key in _FIELDS:
            scores[_FIELDS[key]] = parse_score(value)
        elif key == "ISSUES":
            value = value.strip()
            if value and value.lower() not in ("none", "n/a", "[]"):
                issues = [part.strip() for part in re.split(r";|\s-\s", value) if part.strip()]

    if not scores:
        raise EvaluationError("Judge reply contained no scores")
    return QualityEvaluation(**scores, issues=issues, source="llm_judge")


class LLMJudgeEvaluator:
    """Scores answers with a second model call."""

    def __init__(
        self,
        client: MultiProviderClient | BaseLLMClient,
        model: str = "haiku",
        max_tokens: int = 400,
        max_answer_chars: int = 6000,
    ):
        self.client = client
        self.model = model
        self.max_tokens = max_tokens
        self.max_answer_chars = max_answer_chars

    async def evaluate(self, question: str, answer: str) -> QualityEvaluation:
        prompt = JUDGE_PROMPT.format(question=question, answer=answer[: self.max_answer_chars])
        response = await self.client.complete(
            messages=[{"role": "user", "content": prompt}],
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=0.0,
        )
        return parse_evaluation(response.content)


class HeuristicEvaluator:
    """Deterministic scoring from the answer's surface features."""

    _WORD = re.compile(r"[a-z0-9]+")

    def clarity(self, answer: str) -> float:
        words = answer.split()
        if not words:
            return 1.0
        if len(words) < 20:
            return 4.5
        sentences = [s for s in re.split(r"[.!?]+", answer) if s.strip()]
        if len(words) / max(1, len(sentences)) > 30:
            return 2.5
        return 4.5

    def relevance(self, question: str, answer: str) -> float:
        if not answer.strip():
            return 1.0
        q, a = question.lower(), answer.lower()
        if re.search(r"\d+.*[-+*/].*\d+", q):
            return 4.5 if re.search(r"\d", a) else 3.0
        if any(k in q for k in ("date", "today")):
            return 4.8 if _DATE_LIKE.search(a) else 3.0

        keywords = [w for w in self._WORD.findall(q) if len(w) > 3]
        if not keywords:
            return 3.5
        ratio = sum(1 for w in keywords if w in a) / len(keywords)
        if ratio >= 0.8:
            return 4.5
        if ratio >= 0.6:
            return 4.0
        if ratio >= 0.4:
            return 3.5
        if ratio >= 0.2:
            return 3.0
        return 2.5

    def helpfulness(self, answer: str) -> float:
        if not answer.strip():
            return 1.0
        if len(answer) < 50:
            return 4.5
        has_example = "example" in answer or "for instance" in answer
        has_code = "```" in answer or "def " in answer
        if len(answer) < 200:
            return min(5.0, 4.0 + 0.3 * has_example + 0.3 * has_code)

        score = 3.5 + 0.4 * has_example + 0.4 * has_code
        if any(k in answer for k in ("you can", "you should", "try")):
            score += 0.3
        if any(k in answer for k in ("because", "reason", "why")):
            score += 0.3
        if any(k in answer for k in ("\n-", "\n1.", "##")):
            score += 0.2
        return min(5.0, score)

    def factual(self, answer: str) -> float:
        # Only hedging is visible without a judge
        hedges = len(re.findall(r"\b(i think|probably|not sure|might be)\b", answer.lower()))
        return max(2.0, 4.0 - 0.5 * hedges)

    async def evaluate(self, question: str, answer: str) -> QualityEvaluation:
        scores = {
            "clarity": self.clarity(answer),
            "relevance": self.relevance(question, answer),
            "factual": self.factual(answer),
            "helpfulness": self.helpfulness(answer),
        }
        issues = []
        if scores["clarity"] < 3.0:
            issues.append("Sentences are too long; break the answer into shorter sentences")
        if scores["relevance"] < 3.0:
            issues.append("The answer drifts from the question; address it directly")
        if scores["factual"] < 3.0:
            issues.append("The answer hedges; state facts plainly or say what is unknown")
        if scores["helpfulness"] < 3.0:
            issues.append("Add a concrete example or actionable steps")
        return QualityEvaluation(**scores, issues=issues, source="heuristic")


def refinement_guidance(previous_answer: str, evaluation: QualityEvaluation) -> str:
    issues = evaluation.issues or ["Overall quality was below the acceptable threshold"]
    lines = [
        "[REFINEMENT REQUEST]",
        f"A previous answer scored {evaluation.score:.1f}/5.0. Write an improved answer.",
        "Issues to fix:",
        *(f"- {issue}" for issue in issues),
        "Previous answer:",
        previous_answer,
        "[END REFINEMENT REQUEST]",
    ]
    return "\n".join(lines)


class QualityRefiner:
    """Stage that evaluates the draft and regenerates it when it scores low."""

    stage_id = StageId.QUALITY_REFINER

    def __init__(
        self,
        evaluator: Evaluator,
        config: RefinementConfig | None = None,
        audit: AnalyticsSink | None = None,
    ):
        self.evaluator = evaluator
        self.config = config or RefinementConfig()
        self.audit = audit or NullAuditSink()

    def _budget_deadline(self, ctx: RequestContext) -> float:
        deadline = time.monotonic() + self.config.time_budget_seconds
        remaining = ctx.remaining()
        if remaining is not None:
            deadline = min(deadline, time.monotonic() + remaining)
        return deadline

    async def evaluate(
        self, question: str, answer: str, deadline: float, ctx: RequestContext
    ) -> QualityEvaluation:
        """Evaluate within the budget; any failure scores neutral."""
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            logger.warning(f"[{ctx.trace_id}] Refinement budget exhausted before evaluation")
            return QualityEvaluation.neutral("time budget exhausted")
        try:
            return await asyncio.wait_for(self.evaluator.evaluate(question, answer), remaining)
        except asyncio.TimeoutError:
            logger.warning(f"[{ctx.trace_id}] Evaluation timed out, using neutral score")
            return QualityEvaluation.neutral("evaluation timed out")
        except Exception as e:
            logger.warning(f"[{ctx.trace_id}] Evaluation failed, using neutral score: {e}")
            return QualityEvaluation.neutral(f"evaluation failed: {type(e).__name__}")

    async def process(self, request: ChatRequest, ctx: RequestContext, next: NextFn) -> ChatResponse:
        plan = ctx.require_plan()
        if not self.config.enabled or plan.complexity <= self.config.skip_complexity_at_or_below:
            return await next(request)

        draft = await next(request)
        if not draft.text.strip():
            return draft

        deadline = self._budget_deadline(ctx)
        best = draft
        best_eval = await self.evaluate(request.user_text, draft.text, deadline, ctx)
        scores = [best_eval.score]
        attempts = 0

        while best_eval.score < self.config.quality_threshold and attempts < self.config.max_attempts:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning(f"[{ctx.trace_id}] Refinement budget exhausted after {attempts} attempt(s)")
                break

            attempts += 1
            logger.info(
                f"[{ctx.trace_id}] Refining answer (attempt {attempts}/{self.config.max_attempts}), "
                f"score {best_eval.score:.1f} < {self.config.quality_threshold:.1f}"
            )
            guided = request.with_guidance(refinement_guidance(best.text, best_eval))
            try:
                refined = await asyncio.wait_for(next(guided), remaining)
            except CancelledException:
                raise
            except asyncio.TimeoutError:
                logger.warning(f"[{ctx.trace_id}] Regeneration timed out, keeping best answer")
                break
            except Exception as e:
                logger.warning(f"[{ctx.trace_id}] Regeneration failed, keeping best answer: {e}")
                break

            refined_eval = await self.evaluate(request.user_text, refined.text, deadline, ctx)
            scores.append(refined_eval.score)
            if refined_eval.score > best_eval.score:
                best, best_eval = refined, refined_eval

        best.evaluation = best_eval
        best.refinement_attempts = attempts

        logger.info(
            f"[{ctx.trace_id}] Quality {best_eval.verdict} ({best_eval.score:.1f}) "
            f"after {attempts} refinement(s)"
        )
        ctx.defer_stage_output(
            self.stage_id.value,
            f"{best_eval.verdict} {best_eval.score:.1f} after {attempts} refinement(s)",
        )
        self.audit.emit(
            AuditRecord.for_request(
                ctx,
                "quality",
                scores=scores,
                final_score=best_eval.score,
                verdict=best_eval.verdict,
                attempts=attempts,
                issues=best_eval.issues,
            )
        )
        return best


__all__ = [
    "Evaluator",
    "HeuristicEvaluator",
    "JUDGE_PROMPT",
    "LLMJudgeEvaluator",
    "QualityRefiner",
    "parse_evaluation",
    "parse_score",
    "refinement_guidance",
]
