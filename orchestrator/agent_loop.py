"""
Step-bounded tool-calling agent loop.

The loop drives the state machine in state_machine.py: it asks the model for
the next step, runs the requested tools, appends their results to the context
and repeats until the model answers, the step budget runs out or the caller
cancels. Frames are yielded as they happen so transports can stream them.

There is no separate answer call: the model's text in its final planning step
(the one with no tool calls) is the answer, streamed as it is produced.
"""

import uuid
from collections.abc import AsyncIterator
from contextlib import aclosing

from api.base_client import BaseAIClient
from config.config import Config, get_config
from models.chat import ChatMessage, MessagePart, TokenUsage, ToolInvocation
from models.errors import OperationCancelled
from models.stream import DoneWithUsage, StepFinish, StreamFrame, TextDelta, ToolCall, ToolEvent
from utils.cancellation import CancellationToken
from utils.logger import get_logger, set_turn_id
from utils.rate_limiter import RateLimitConfig, RateLimiter, RateLimitResult

from .prompts import build_system_prompt
from .state_machine import (
    AnswerFinalized,
    Cancelled,
    LoopState,
    Phase,
    PlanReady,
    ToolsFinished,
    advance,
)
from .tools import TOOL_SPECS, ToolExecutor

logger = get_logger(__name__)

DEFAULT_MAX_STEPS = 10


class AgentLoop:
    """
    Research agent for one deployment: a model client, the tools and the admission policy.

    Args:
        llm: Streaming planning client
        tools: Executor behind searchWeb / scrapePages
        rate_limiter: Admission limiter (None disables rate limiting)
        rate_limit: Budget template; its key is replaced per caller when scope is "user"
        rate_limit_scope: "global" (one shared budget) or "user"
        max_steps: Default step budget per turn
    """

    def __init__(
        self,
        llm: BaseAIClient,
        tools: ToolExecutor,
        *,
        rate_limiter: RateLimiter | None = None,
        rate_limit: RateLimitConfig | None = None,
        rate_limit_scope: str = "global",
        max_steps: int = DEFAULT_MAX_STEPS,
    ):
        self.llm = llm
        self.tools = tools
        self.rate_limiter = rate_limiter
        self.rate_limit = rate_limit
        self.rate_limit_scope = rate_limit_scope
        self.max_steps = max_steps

    async def admit(self, user_id: str | None = None) -> RateLimitResult | None:
        """
        Loop-entry gate, run before any model or tool work.

        Raises:
            RateLimitExceeded: budget still exhausted after retries
            BackendError: rate-limit store unreachable
        """
        if self.rate_limiter is None or self.rate_limit is None:
            return None
        key = self.rate_limit.key
        if self.rate_limit_scope == "user" and user_id:
            key = f"{key}:{user_id}"
        config = RateLimitConfig(
            key=key,
            limit=self.rate_limit.limit,
            window_duration_ms=self.rate_limit.window_duration_ms,
            max_retries=self.rate_limit.max_retries,
        )
        return await self.rate_limiter.enforce(config)

    async def _plan(
        self,
        context: list[ChatMessage],
        cancel: CancellationToken,
        system: str,
        chunks: list[str],
        calls: list[ToolCall],
        usage: list[TokenUsage],
    ) -> AsyncIterator[TextDelta]:
        async with aclosing(self.llm.plan_next_step(system, context, TOOL_SPECS)) as events:
            async for event in events:
                if cancel.cancelled:
                    return
                if isinstance(event, TextDelta):
                    chunks.append(event.text)
                    yield event
                elif isinstance(event, ToolCall):
                    calls.append(event)
                elif isinstance(event, StepFinish):
                    usage.append(event.usage)

    async def run_agent_turn(
        self,
        messages: list[ChatMessage],
        step_budget: int | None = None,
        cancel: CancellationToken | None = None,
    ) -> AsyncIterator[StreamFrame]:
        """
        Run one turn and stream its frames.

        Yields TextDelta and ToolEvent frames in the order they happen, then
        exactly one DoneWithUsage whose outcome is "answered", "truncated"
        or "cancelled". Model failures propagate to the caller.

        Args:
            messages: Conversation history ending with the user's message
            step_budget: Maximum planning+tool cycles (defaults to max_steps)
            cancel: Token the transport fires when the caller goes away
        """
        cancel = cancel or CancellationToken()
        turn_id = uuid.uuid4().hex[:12]
        set_turn_id(turn_id)

        state = LoopState(max_steps=step_budget or self.max_steps)
        system = build_system_prompt()
        parts: list[MessagePart] = []

        logger.info(
            "Agent turn started",
            extra={"extra_fields": {"messages": len(messages), "max_steps": state.max_steps}},
        )

        def context() -> list[ChatMessage]:
            if not parts:
                return list(messages)
            return [*messages, ChatMessage(role="assistant", parts=list(parts))]

        while not state.is_done:
            if cancel.cancelled:
                state = advance(state, Cancelled(cancel.reason or "cancelled"))
                break

            if state.phase is Phase.PLANNING:
                chunks: list[str] = []
                calls: list[ToolCall] = []
                usage: list[TokenUsage] = []
                async for delta in self._plan(context(), cancel, system, chunks, calls, usage):
                    yield delta
                if cancel.cancelled:
                    continue

                text = "".join(chunks)
                if text:
                    parts.append(MessagePart.text_part(text))
                state = advance(
                    state,
                    PlanReady(text=text, tool_calls=tuple(calls), usage=usage[-1] if usage else TokenUsage()),
                )

            elif state.phase is Phase.TOOL_EXECUTING:
                for call in state.pending_calls:
                    yield ToolEvent("call", call.id, call.name, call.arguments)
                try:
                    results = await self.tools.execute_all(state.pending_calls, cancel)
                except OperationCancelled:
                    continue
                if cancel.cancelled:
                    continue

                for call, result in results:
                    parts.append(
                        MessagePart.tool_part(
                            ToolInvocation(
                                tool_call_id=call.id,
                                tool_name=call.name,
                                args=call.arguments,
                                result=result,
                                state="result",
                            )
                        )
                    )
                    yield ToolEvent("result", call.id, call.name, call.arguments, result)
                state = advance(state, ToolsFinished(results=tuple(results)))

            elif state.phase is Phase.ANSWERING:
                state = advance(state, AnswerFinalized())

        if state.outcome == "truncated":
            logger.warning(
                "Step budget exhausted before the model answered",
                extra={"extra_fields": {"max_steps": state.max_steps}},
            )
        logger.info(
            "Agent turn finished",
            extra={
                "extra_fields": {
                    "outcome": state.outcome,
                    "steps": state.step_index,
                    "tool_calls": len(state.steps) - (1 if state.outcome == "answered" else 0),
                    "total_tokens": state.usage.total_tokens,
                }
            },
        )
        yield DoneWithUsage(
            outcome=state.outcome or "cancelled",
            text=state.final_text,
            usage=state.usage,
            steps=state.step_index,
            transcript=context(),
        )


async def ask_deep_search(
    loop: AgentLoop,
    messages: list[ChatMessage],
    step_budget: int | None = None,
    cancel: CancellationToken | None = None,
) -> str:
    """Run one turn to completion and return the final text (used by the CLI and evals)."""
    text = ""
    async for frame in loop.run_agent_turn(messages, step_budget, cancel):
        if isinstance(frame, DoneWithUsage):
            text = frame.text
    return text


def create_agent_loop_from_env(config: Config | None = None) -> AgentLoop:
    """
    Wire the agent from configuration.

    Raises:
        ConfigError: naming the first missing provider credential
    """
    from api.openai_client import create_llm_client_from_env
    from tools.web.factory import (
        create_bulk_fetcher_from_env,
        create_search_provider_from_env,
        get_shared_cache,
        get_shared_store,
    )

    config = config or get_config()
    cache = get_shared_cache(config)
    tools = ToolExecutor(
        create_search_provider_from_env(config, cache),
        create_bulk_fetcher_from_env(config, cache),
        default_num_results=config.SEARCH_NUM_RESULTS,
    )
    return AgentLoop(
        create_llm_client_from_env(config),
        tools,
        rate_limiter=RateLimiter(get_shared_store(config), key_prefix=f"{config.CACHE_KEY_PREFIX}:ratelimit"),
        rate_limit=RateLimitConfig(
            key="chat",
            limit=config.RATE_LIMIT_REQUESTS,
            window_duration_ms=config.RATE_LIMIT_WINDOW_MS,
            max_retries=config.RATE_LIMIT_MAX_RETRIES,
        ),
        rate_limit_scope=config.RATE_LIMIT_SCOPE,
        max_steps=config.MAX_STEPS,
    )
