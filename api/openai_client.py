import json
import time
import uuid
from collections.abc import AsyncIterator
from typing import Any

import openai

from models.chat import ChatMessage, TokenUsage, ToolInvocation
from models.errors import UpstreamError
from models.stream import PlanEvent, StepFinish, TextDelta, ToolCall
from utils.logger import get_logger

from .base_client import BaseAIClient, ToolSpec

logger = get_logger(__name__)

# OpenAI-compatible endpoints; None means the SDK default
PROVIDER_BASE_URLS: dict[str, str | None] = {
    "openai": None,
    "deepseek": "https://api.deepseek.com/v1",
    "grok": "https://api.x.ai/v1",
    "gemini": "https://generativelanguage.googleapis.com/v1beta/openai/",
}


def _tool_payload(spec: ToolSpec) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": spec.name,
            "description": spec.description,
            "parameters": spec.parameters,
        },
    }


def _assistant_segment(text: str, invocations: list[ToolInvocation]) -> list[dict[str, Any]]:
    message: dict[str, Any] = {"role": "assistant", "content": text or None}
    if invocations:
        message["tool_calls"] = [
            {
                "id": inv.tool_call_id,
                "type": "function",
                "function": {"name": inv.tool_name, "arguments": json.dumps(inv.args)},
            }
            for inv in invocations
        ]
    out = [message]
    for inv in invocations:
        out.append(
            {
                "role": "tool",
                "tool_call_id": inv.tool_call_id,
                "content": json.dumps(inv.result, default=str),
            }
        )
    return out


def to_openai_messages(system: str, messages: list[ChatMessage]) -> list[dict[str, Any]]:
    """
    Convert the conversation into chat-completions messages.

    An assistant message whose parts interleave text and tool invocations is
    split into one assistant/tool round per step: text after a batch of tool
    results starts a new step. Invocations without a result are dropped.
    """
    out: list[dict[str, Any]] = [{"role": "system", "content": system}]
    for message in messages:
        if message.role != "assistant" or not message.parts:
            out.append({"role": message.role, "content": message.text})
            continue

        text = ""
        invocations: list[ToolInvocation] = []
        for part in message.parts:
            if part.type == "text":
                if invocations:
                    out.extend(_assistant_segment(text, invocations))
                    text, invocations = "", []
                text += part.text or ""
            elif part.tool_invocation is not None and part.tool_invocation.state == "result":
                invocations.append(part.tool_invocation)
        if text or invocations:
            out.extend(_assistant_segment(text, invocations))
    return out


def _parse_arguments(raw: str) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Model emitted invalid tool arguments", extra={"extra_fields": {"raw": raw[:200]}})
        return {}
    return parsed if isinstance(parsed, dict) else {}


class OpenAIClient(BaseAIClient):
    """
    Streaming tool-calling client for any OpenAI-compatible chat completions API.

    DeepSeek, Grok and Gemini are reached through their OpenAI-compatible
    endpoints (see PROVIDER_BASE_URLS), so one client covers every provider.
    """

    def __init__(
        self,
        api_key: str,
        model_name: str = "gpt-4o-mini",
        *,
        provider: str = "openai",
        timeout_s: float = 60.0,
        temperature: float | None = None,
        client: Any = None,
        **kwargs,
    ):
        """
        Initialize the client.

        Args:
            api_key: Provider API key
            model_name: Model to call
            provider: Key into PROVIDER_BASE_URLS
            timeout_s: Request timeout
            temperature: Sampling temperature (provider default when None)
            client: Pre-built AsyncOpenAI-like client (tests)
        """
        super().__init__(api_key, model_name=model_name, **kwargs)
        if provider not in PROVIDER_BASE_URLS:
            raise ValueError(f"Unsupported provider: {provider}")
        self.provider = provider
        self.model_name = model_name
        self.temperature = temperature
        self.client = client or openai.AsyncOpenAI(
            api_key=api_key,
            base_url=PROVIDER_BASE_URLS[provider],
            timeout=timeout_s,
        )

    async def plan_next_step(
        self,
        system: str,
        messages: list[ChatMessage],
        tools: list[ToolSpec],
    ) -> AsyncIterator[PlanEvent]:
        request: dict[str, Any] = {
            "model": self.model_name,
            "messages": to_openai_messages(system, messages),
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            request["tools"] = [_tool_payload(t) for t in tools]
        if self.temperature is not None:
            request["temperature"] = self.temperature

        start = time.perf_counter()
        pending: dict[int, dict[str, str]] = {}
        finish_reason: str | None = None
        usage = TokenUsage()

        try:
            stream = await self.client.chat.completions.create(**request)
            async for chunk in stream:
                if getattr(chunk, "usage", None):
                    usage = TokenUsage(
                        prompt_tokens=chunk.usage.prompt_tokens or 0,
                        completion_tokens=chunk.usage.completion_tokens or 0,
                        total_tokens=chunk.usage.total_tokens or 0,
                    )
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                delta = choice.delta
                if delta is not None:
                    if delta.content:
                        yield TextDelta(delta.content)
                    for tc in delta.tool_calls or []:
                        # Some compatible endpoints omit the index on single calls
                        index = tc.index if tc.index is not None else len(pending)
                        slot = pending.setdefault(index, {"id": "", "name": "", "arguments": ""})
                        if tc.id:
                            slot["id"] = tc.id
                        if tc.function is not None:
                            slot["name"] += tc.function.name or ""
                            slot["arguments"] += tc.function.arguments or ""
                if choice.finish_reason:
                    finish_reason = choice.finish_reason
        except openai.APIStatusError as e:
            raise UpstreamError(
                f"{self.provider} API error: {e.status_code}",
                status_code=e.status_code,
                retryable=e.status_code == 429 or e.status_code >= 500,
            ) from e
        except openai.APIError as e:
            raise UpstreamError(f"{self.provider} API error: {e}", retryable=True) from e

        for index in sorted(pending):
            slot = pending[index]
            if not slot["name"]:
                continue
            yield ToolCall(
                id=slot["id"] or f"call_{uuid.uuid4().hex[:12]}",
                name=slot["name"],
                arguments=_parse_arguments(slot["arguments"]),
            )

        logger.info(
            "Planning step complete",
            extra={
                "extra_fields": {
                    "provider": self.provider,
                    "model": self.model_name,
                    "latency_ms": int((time.perf_counter() - start) * 1000),
                    "tool_calls": len(pending),
                    "finish_reason": finish_reason,
                    "total_tokens": usage.total_tokens,
                }
            },
        )
        yield StepFinish(finish_reason=finish_reason, usage=usage)

    async def aclose(self) -> None:
        close = getattr(self.client, "close", None)
        if close is not None:
            await close()


def create_llm_client_from_env(config=None) -> OpenAIClient:
    """
    Build the planning client for LLM_PROVIDER / DEFAULT_MODEL.

    Raises:
        ConfigError: If the provider's API key is not set
    """
    from config.config import get_config

    config = config or get_config()
    return OpenAIClient(
        config.llm_api_key(),
        model_name=config.DEFAULT_MODEL,
        provider=config.LLM_PROVIDER,
        timeout_s=config.LLM_TIMEOUT_S,
    )
