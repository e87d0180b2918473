"""Pydantic response models (DTOs) for FastAPI endpoints."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class TokenUsageDTO(BaseModel):
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


class ChatSummaryDTO(BaseModel):
    id: str
    title: str
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "ChatSummaryDTO":
        return cls(
            id=row["id"],
            title=row["title"],
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )


class ChatDetailDTO(ChatSummaryDTO):
    messages: list[dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def from_chat(cls, chat: dict[str, Any]) -> "ChatDetailDTO":
        return cls(
            id=chat["id"],
            title=chat["title"],
            created_at=chat.get("created_at"),
            updated_at=chat.get("updated_at"),
            messages=[m.to_dict() for m in chat.get("messages", [])],
        )


class ChatListResponseDTO(BaseModel):
    chats: list[ChatSummaryDTO] = Field(default_factory=list)


class HealthResponseDTO(BaseModel):
    status: str
    timestamp: str
    version: str = "1.0.0"
    checks: dict[str, str] = Field(default_factory=dict)
