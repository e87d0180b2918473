"""Conversation messages, as received from the client and as persisted."""

from dataclasses import dataclass, field
from typing import Any, Literal

Role = Literal["system", "user", "assistant"]
ToolInvocationState = Literal["call", "result"]


@dataclass(frozen=True)
class ToolInvocation:
    tool_call_id: str
    tool_name: str
    args: dict[str, Any] = field(default_factory=dict)
    result: Any = None
    state: ToolInvocationState = "call"

    def to_dict(self) -> dict[str, Any]:
        data = {
            "toolCallId": self.tool_call_id,
            "toolName": self.tool_name,
            "args": self.args,
            "state": self.state,
        }
        if self.state == "result":
            data["result"] = self.result
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolInvocation":
        return cls(
            tool_call_id=data.get("toolCallId", ""),
            tool_name=data.get("toolName", ""),
            args=data.get("args") or {},
            result=data.get("result"),
            state=data.get("state", "call"),
        )


@dataclass(frozen=True)
class MessagePart:
    """Either a text segment or a tool invocation inside a message."""

    type: Literal["text", "tool-invocation"]
    text: str | None = None
    tool_invocation: ToolInvocation | None = None

    @classmethod
    def text_part(cls, text: str) -> "MessagePart":
        return cls(type="text", text=text)

    @classmethod
    def tool_part(cls, invocation: ToolInvocation) -> "MessagePart":
        return cls(type="tool-invocation", tool_invocation=invocation)

    def to_dict(self) -> dict[str, Any]:
        if self.type == "tool-invocation" and self.tool_invocation is not None:
            return {"type": "tool-invocation", "toolInvocation": self.tool_invocation.to_dict()}
        return {"type": "text", "text": self.text or ""}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MessagePart":
        if data.get("type") == "tool-invocation":
            return cls.tool_part(ToolInvocation.from_dict(data.get("toolInvocation") or {}))
        return cls.text_part(data.get("text") or "")


@dataclass(frozen=True)
class ChatMessage:
    role: Role
    content: str = ""
    parts: list[MessagePart] = field(default_factory=list)
    id: str | None = None

    @property
    def text(self) -> str:
        """Plain text of the message: `content`, or its text parts joined."""
        if self.content:
            return self.content
        return "".join(p.text or "" for p in self.parts if p.type == "text")

    @property
    def tool_invocations(self) -> list[ToolInvocation]:
        return [p.tool_invocation for p in self.parts if p.tool_invocation is not None]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.text,
            "parts": [p.to_dict() for p in self.parts],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChatMessage":
        return cls(
            id=data.get("id"),
            role=data.get("role", "user"),
            content=data.get("content") or "",
            parts=[MessagePart.from_dict(p) for p in data.get("parts") or []],
        )


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __post_init__(self):
        if self.total_tokens == 0 and (self.prompt_tokens > 0 or self.completion_tokens > 0):
            object.__setattr__(self, "total_tokens", self.prompt_tokens + self.completion_tokens)

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


def last_user_text(messages: list[ChatMessage]) -> str:
    for message in reversed(messages):
        if message.role == "user":
            return message.text
    return ""


def chat_title(messages: list[ChatMessage]) -> str:
    """First 50 characters of the latest user message followed by '...'."""
    return last_user_text(messages)[:50] + "..."
