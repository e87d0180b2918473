"""
Models package for conversation messages and agent stream events.
"""

from .chat import ChatMessage, MessagePart, TokenUsage, ToolInvocation
from .stream import DoneWithUsage, StepFinish, TextDelta, ToolCall, ToolEvent

__all__ = [
    "ChatMessage",
    "DoneWithUsage",
    "MessagePart",
    "StepFinish",
    "TextDelta",
    "TokenUsage",
    "ToolCall",
    "ToolEvent",
    "ToolInvocation",
]
