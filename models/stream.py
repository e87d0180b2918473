"""
Events flowing out of the model client and out of the agent loop.

The model client yields TextDelta, ToolCall and StepFinish for one planning
step. The agent loop re-emits TextDelta, reports tool activity as ToolEvent
and closes every turn with exactly one DoneWithUsage.
"""

from dataclasses import dataclass, field
from typing import Any, Literal

from .chat import ChatMessage, TokenUsage

TurnOutcome = Literal["answered", "truncated", "cancelled"]


@dataclass(frozen=True)
class TextDelta:
    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": "text-delta", "text": self.text}


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StepFinish:
    finish_reason: str | None = None
    usage: TokenUsage = field(default_factory=TokenUsage)


@dataclass(frozen=True)
class ToolEvent:
    phase: Literal["call", "result"]
    tool_call_id: str
    tool_name: str
    args: dict[str, Any] = field(default_factory=dict)
    result: Any = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "type": f"tool-{self.phase}",
            "toolCallId": self.tool_call_id,
            "toolName": self.tool_name,
            "args": self.args,
        }
        if self.phase == "result":
            data["result"] = self.result
        return data


@dataclass(frozen=True)
class DoneWithUsage:
    outcome: TurnOutcome
    text: str
    usage: TokenUsage
    steps: int
    transcript: list[ChatMessage] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "finish",
            "outcome": self.outcome,
            "text": self.text,
            "steps": self.steps,
            "usage": self.usage.to_dict(),
        }


PlanEvent = TextDelta | ToolCall | StepFinish
StreamFrame = TextDelta | ToolEvent | DoneWithUsage
