"""
Model invocation boundary.

The chain ends in a single text-generation call. ModelInvoker is the
contract; LLMModelInvoker adapts the provider clients to it, and
``invoke_with_deadline`` races the call against the request deadline and
the caller's cancellation token.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from .api_client import BaseLLMClient, MultiProviderClient
from .cancellation import CancelledException
from .context import RequestContext
from .pipeline import Terminal
from .types import (
    BrainChainError,
    ChatRequest,
    ChatResponse,
    Message,
    ModelInvocationError,
    ModelTimeoutError,
    ToolPermissions,
)

logger = logging.getLogger(__name__)


@dataclass
class ModelReply:
    """Text returned by the model plus whatever tools it reports using."""

    text: str
    tools_used: list[str] = field(default_factory=list)
    model: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class ModelInvoker(Protocol):
    """
    The text-generation call.

    Implementations raise ModelInvocationError on failure instead of
    returning an error value.
    """

    async def generate(
        self,
        prompt: str,
        tool_permissions: ToolPermissions | None,
        conversation_history: Sequence[Message],
    ) -> ModelReply: ...


def describe_permissions(permissions: ToolPermissions | None) -> str:
    # No permissions means the policy stage never ran: no tools
    if permissions is None or not permissions.enabled or not permissions.allowed:
        return "Tool execution is disabled for this request. Answer from your own knowledge."
    return "You may call only these tools: " + ", ".join(permissions.allowed)


def effective_permissions(request: ChatRequest) -> ToolPermissions:
    """Permissions sent with the model call; tools are disabled when none were set."""
    if request.tool_permissions is None:
        return ToolPermissions.disabled()
    return request.tool_permissions


class LLMModelInvoker:
    """ModelInvoker backed by the Anthropic / OpenAI clients."""

    def __init__(
        self,
        client: MultiProviderClient | BaseLLMClient,
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.2,
    ):
        self.client = client
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def generate(
        self,
        prompt: str,
        tool_permissions: ToolPermissions | None,
        conversation_history: Sequence[Message],
    ) -> ModelReply:
        messages = [m.to_dict() for m in conversation_history if m.content]
        messages.append({"role": "user", "content": prompt})
        system = describe_permissions(tool_permissions)

        try:
            response = await self.client.complete(
                messages=messages,
                system=system,
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except Exception as e:
            # SDK errors (rate limits, API status) share no common base
            raise ModelInvocationError(f"Model call failed: {type(e).__name__}: {e}") from e

        return ModelReply(
            text=response.content,
            model=response.model,
            metadata={
                "input_tokens": response.input_tokens,
                "output_tokens": response.output_tokens,
                "stop_reason": response.stop_reason,
            },
        )


async def invoke_with_deadline(
    invoker: ModelInvoker, request: ChatRequest, ctx: RequestContext
) -> ModelReply:
    """
    Run ``invoker.generate`` for ``request`` within the request's limits.

    Raises:
        CancelledException: The caller cancelled the request first
        ModelTimeoutError: The deadline passed first
        ModelInvocationError: The call itself failed
    """
    ctx.check_cancelled()
    timeout = ctx.remaining()
    if timeout is not None and timeout <= 0:
        raise ModelTimeoutError(0.0, trace_id=ctx.trace_id)

    call = asyncio.ensure_future(
        invoker.generate(request.render_prompt(), effective_permissions(request), request.history)
    )
    cancelled = asyncio.ensure_future(ctx.cancellation_token.wait_for_cancellation())
    try:
        done, pending = await asyncio.wait(
            {call, cancelled}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        call.cancel()
        cancelled.cancel()
        raise

    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)

    if call in done:
        try:
            return call.result()
        except BrainChainError:
            raise
        except Exception as e:
            raise ModelInvocationError(str(e), trace_id=ctx.trace_id) from e
    if cancelled in done:
        logger.info(f"[{ctx.trace_id}] Model call cancelled by caller")
        raise CancelledException(f"[{ctx.trace_id}] Request was cancelled")
    logger.warning(f"[{ctx.trace_id}] Model call timed out after {timeout:.1f}s")
    raise ModelTimeoutError(timeout or 0.0, trace_id=ctx.trace_id)


def model_terminal(invoker: ModelInvoker) -> Terminal:
    """Build the chain's terminal step around ``invoker``."""

    async def terminal(request: ChatRequest, ctx: RequestContext) -> ChatResponse:
        reply = await invoke_with_deadline(invoker, request, ctx)
        permissions = effective_permissions(request)
        tools_used = [t for t in reply.tools_used if permissions.allows(t)]
        return ChatResponse(
            text=reply.text,
            trace_id=ctx.trace_id,
            intent=ctx.plan.intent.value if ctx.plan else None,
            tools_used=tools_used,
            metadata={"model": reply.model, **reply.metadata},
        )

    return terminal


__all__ = [
    "LLMModelInvoker",
    "ModelInvoker",
    "ModelReply",
    "describe_permissions",
    "effective_permissions",
    "invoke_with_deadline",
    "model_terminal",
]
