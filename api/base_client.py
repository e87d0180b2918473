from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from models.chat import ChatMessage
from models.stream import PlanEvent


@dataclass(frozen=True)
class ToolSpec:
    """A tool the model may call, described by a JSON Schema for its arguments."""

    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=dict)


class BaseAIClient(ABC):
    """
    Abstract base class for AI model clients.
    All model-specific clients should inherit from this class and implement its methods.
    """

    @abstractmethod
    def __init__(self, api_key: str, **kwargs):
        """
        Initialize the AI client.

        Args:
            api_key: API key for the AI service
            **kwargs: Additional model-specific parameters
        """
        self.api_key = api_key
        self.model_name = kwargs.get('model_name')

    @abstractmethod
    def plan_next_step(
        self,
        system: str,
        messages: list[ChatMessage],
        tools: list[ToolSpec],
    ) -> AsyncIterator[PlanEvent]:
        """
        Stream one planning step.

        Args:
            system: System instructions
            messages: Conversation so far, including earlier steps' tool results
            tools: Tools the model may call in this step

        Yields:
            TextDelta for each text chunk, one ToolCall per complete tool call,
            and finally exactly one StepFinish carrying token usage
        """

    async def aclose(self) -> None:
        return None
